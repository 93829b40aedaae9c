"""REST transport for the hosted store (PostgREST over aiohttp)."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from farmguard._constants import USER_AGENT
from farmguard._redact import redact_for_log
from farmguard.config import FarmGuardConfig
from farmguard.exceptions import BackendError, TransportError

_logger = logging.getLogger(__name__)


class Backend(Protocol):
    """Structural CRUD interface consumed by the state layer.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`RestTransport`) concrete.
    """

    async def fetch_all(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]: ...

    async def update(self, collection: str, record_id: int | str, patch: Mapping[str, Any]) -> dict[str, Any]: ...


class RestTransport:
    """PostgREST client for whole-table reads and single-row updates."""

    def __init__(self, config: FarmGuardConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._config.anon_key,
            "authorization": f"Bearer {self._config.anon_key}",
            "accept": "application/json",
            "content-type": "application/json",
            "accept-profile": self._config.schema,
            "content-profile": self._config.schema,
            "user-agent": USER_AGENT,
        }

    async def _request(
        self,
        method: str,
        collection: str,
        *,
        params: dict[str, str],
        body: Mapping[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> Any:
        url = f"{self._config.rest_url}/{collection}"
        headers = self._headers()
        if extra_headers:
            headers.update(extra_headers)
        data = json.dumps(body, separators=(",", ":"), default=str) if body is not None else None
        endpoint = f"{method} /{collection}"

        _logger.debug("%s %s params=%s body=%s", method, url, params, redact_for_log(body))

        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout)
        try:
            async with self._http.request(
                method, url, params=params, data=data, headers=headers, timeout=timeout
            ) as resp:
                text = await resp.text()
                status = resp.status
        except aiohttp.ClientError as exc:
            raise TransportError(f"Request to {endpoint} failed: {exc}", endpoint=endpoint) from exc
        except TimeoutError as exc:
            raise TransportError(f"Request to {endpoint} timed out", endpoint=endpoint) from exc

        try:
            decoded = json.loads(text) if text.strip() else None
        except json.JSONDecodeError as exc:
            if status >= 400:
                raise BackendError(
                    f"HTTP {status} from {endpoint}: {text[:200]}",
                    status_code=status,
                    endpoint=endpoint,
                ) from exc
            raise TransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            ) from exc

        if status >= 400:
            code = ""
            message = text[:200]
            if isinstance(decoded, dict):
                code = str(decoded.get("code") or "")
                message = str(decoded.get("message") or decoded.get("error") or message)
            raise BackendError(
                f"{endpoint} failed: HTTP {status} code={code} message={message}",
                status_code=status,
                code=code,
                endpoint=endpoint,
            )
        return decoded

    async def fetch_all(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        """Fetch every row of *collection*, optionally ordered."""
        params = {"select": "*"}
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        decoded = await self._request("GET", collection, params=params)
        if decoded is None:
            return []
        if not isinstance(decoded, list):
            raise TransportError(
                f"Expected a list of rows from {collection}, got {type(decoded).__name__}",
                endpoint=f"GET /{collection}",
            )
        return [row for row in decoded if isinstance(row, dict)]

    async def update(self, collection: str, record_id: int | str, patch: Mapping[str, Any]) -> dict[str, Any]:
        """Patch one row by primary key and return the updated row.

        Raises
        ------
        BackendError
            When the store rejects the update or no row matched *record_id*.
        """
        decoded = await self._request(
            "PATCH",
            collection,
            params={"id": f"eq.{record_id}"},
            body=patch,
            extra_headers={"prefer": "return=representation"},
        )
        rows = decoded if isinstance(decoded, list) else [decoded] if isinstance(decoded, dict) else []
        if not rows:
            raise BackendError(
                f"PATCH /{collection} matched no row with id={record_id}",
                code="not_found",
                endpoint=f"PATCH /{collection}",
            )
        return rows[0]
