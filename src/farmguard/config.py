"""Client configuration for farmguard."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from farmguard._constants import (
    DEFAULT_AUTO_REFRESH_INTERVAL_S,
    DEFAULT_HEARTBEAT_INTERVAL_S,
    DEFAULT_JOIN_TIMEOUT_S,
    INITIAL_RETRY_DELAY_S,
    MAX_RETRIES,
    MAX_RETRY_DELAY_S,
)
from farmguard.exceptions import FarmGuardConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class FarmGuardConfig:
    """Client configuration.

    Parameters
    ----------
    url : str
        Base URL of the hosted store (e.g. ``https://<ref>.supabase.co``).
    anon_key : str
        Public API key sent as ``apikey`` and bearer token.
    schema : str
        Database schema the watched tables live in.
    max_retries : int
        Automatic reconnect attempts per collection before giving up.
    initial_retry_delay : float
        Delay in seconds before the first reconnect attempt.
    max_retry_delay : float
        Ceiling in seconds for the exponential reconnect delay.
    join_timeout : float
        Seconds to wait for a channel join acknowledgement before the
        subscription is reported as timed out.
    heartbeat_interval : float
        Seconds between websocket heartbeats.
    request_timeout : float
        Total timeout in seconds for REST requests.
    auto_refresh_enabled : bool
        Start the periodic full refresh together with the client.
    auto_refresh_interval : float
        Seconds between periodic full refreshes.
    """

    url: str
    anon_key: str
    schema: str = "public"
    max_retries: int = MAX_RETRIES
    initial_retry_delay: float = INITIAL_RETRY_DELAY_S
    max_retry_delay: float = MAX_RETRY_DELAY_S
    join_timeout: float = DEFAULT_JOIN_TIMEOUT_S
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL_S
    request_timeout: float = 15.0
    auto_refresh_enabled: bool = False
    auto_refresh_interval: float = DEFAULT_AUTO_REFRESH_INTERVAL_S

    def __post_init__(self) -> None:
        if not self.url.strip():
            raise FarmGuardConfigError("url must be non-empty")
        if not self.anon_key.strip():
            raise FarmGuardConfigError("anon_key must be non-empty")
        if self.max_retries < 0:
            raise FarmGuardConfigError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_retry_delay <= 0 or self.max_retry_delay < self.initial_retry_delay:
            raise FarmGuardConfigError(
                "retry delays must satisfy 0 < initial_retry_delay <= max_retry_delay",
            )

    @property
    def rest_url(self) -> str:
        return f"{self.url.rstrip('/')}/rest/v1"

    @property
    def realtime_url(self) -> str:
        base = self.url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://") :]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://") :]
        return f"{base}/realtime/v1/websocket"

    @classmethod
    def from_env(cls, **overrides: Any) -> FarmGuardConfig:
        """Create configuration from environment variables.

        Reads ``SUPABASE_URL`` and ``SUPABASE_ANON_KEY`` (the
        ``NEXT_PUBLIC_`` prefixed variants are accepted too) plus optional
        ``FARMGUARD_*`` variables. Explicit keyword arguments override
        environment values.

        Raises
        ------
        FarmGuardConfigError
            When no URL or API key can be resolved.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        url = env.get("SUPABASE_URL") or env.get("NEXT_PUBLIC_SUPABASE_URL")
        if url is not None:
            config_kwargs["url"] = url
        key = env.get("SUPABASE_ANON_KEY") or env.get("NEXT_PUBLIC_SUPABASE_ANON_KEY")
        if key is not None:
            config_kwargs["anon_key"] = key

        schema = env.get("FARMGUARD_SCHEMA")
        if schema is not None:
            config_kwargs["schema"] = schema

        _ENV_FLOAT_MAP = {
            "FARMGUARD_INITIAL_RETRY_DELAY": "initial_retry_delay",
            "FARMGUARD_MAX_RETRY_DELAY": "max_retry_delay",
            "FARMGUARD_JOIN_TIMEOUT": "join_timeout",
            "FARMGUARD_HEARTBEAT_INTERVAL": "heartbeat_interval",
            "FARMGUARD_REQUEST_TIMEOUT": "request_timeout",
            "FARMGUARD_AUTO_REFRESH_INTERVAL": "auto_refresh_interval",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)

        retries_env = env.get("FARMGUARD_MAX_RETRIES")
        if retries_env is not None and "max_retries" not in overrides:
            config_kwargs["max_retries"] = int(retries_env)

        if "auto_refresh_enabled" not in overrides:
            config_kwargs["auto_refresh_enabled"] = _env_bool(env.get("FARMGUARD_AUTO_REFRESH"), False)

        config_kwargs.update(overrides)

        missing = [name for name in ("url", "anon_key") if not config_kwargs.get(name)]
        if missing:
            raise FarmGuardConfigError(f"Missing configuration: {', '.join(missing)}")

        return cls(**config_kwargs)
