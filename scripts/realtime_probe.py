#!/usr/bin/env python3
"""Passive realtime probe for the live collections.

This script uses farmguard to:
1) fetch the initial snapshot of fire zones, security points and team members,
2) subscribe to the change stream of all three tables,
3) print every change, subscription status transition and notice.

Use this to verify that the change stream is delivered and that reconnects
behave as expected. Configuration comes from SUPABASE_URL/SUPABASE_ANON_KEY.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
import time
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from farmguard import ChangeEvent, FarmGuardClient, FarmGuardConfig, Notice, RefreshError  # noqa: E402
from farmguard.models.subscription import SubscriptionState  # noqa: E402

_LOG = logging.getLogger("realtime_probe")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch the live collections through the change stream.")
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--refresh-every",
        type=float,
        default=0.0,
        help="Run a full refresh every N seconds (0 = never).",
    )
    parser.add_argument(
        "--status-seconds",
        type=int,
        default=30,
        help="Print a connectivity summary each N seconds.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_change(event: ChangeEvent) -> None:
    record = event.new_record or event.old_record
    print(f"[change] {event.collection} {event.kind} id={event.record_id} record={record}")


def _print_notice(notice: Notice) -> None:
    print(f"[{notice.level}] {notice.title}: {notice.message}")


def _print_state(collection: str, state: SubscriptionState) -> None:
    print(
        f"[status] {collection} {state.connection_status} retry={state.retry_count} "
        f"exhausted={state.exhausted} error={state.last_error}"
    )


async def _run(args: argparse.Namespace) -> int:
    overrides: dict[str, object] = {}
    if args.refresh_every > 0:
        overrides = {"auto_refresh_enabled": True, "auto_refresh_interval": args.refresh_every}
    config = FarmGuardConfig.from_env(**overrides)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    started = time.monotonic()
    async with FarmGuardClient(config, on_notice=_print_notice, on_change=_print_change) as client:
        client.registry.add_listener(_print_state)
        print(
            f"Snapshot: {len(client.fire_zones)} fire zones, {len(client.security_points)} security points, "
            f"{len(client.team_members)} team members"
        )
        while not stop.is_set():
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=args.status_seconds)
            if args.duration and time.monotonic() - started >= args.duration:
                break
            if stop.is_set():
                break
            print(f"[summary] connected={client.is_connected} last_updated={client.last_updated}")

        if not client.is_connected:
            try:
                await client.refresh_data()
            except RefreshError as exc:
                _LOG.error("Final refresh incomplete: %s", exc)
                return 1
    return 0


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
