"""
Gateway Proxy - Allowlisted, time-bounded calls to the upstream RPC node.

Every call returns a GatewayResult and NEVER raises past call():
- Paths outside the allowlist fail closed before any network I/O
- Each call carries its own timeout
- Outcomes are classified into ErrorKind; callers never branch on raw status
- The decoded JSON is forwarded untouched (see envelope.py for unwrapping)
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import unquote

import aiohttp

from explorer_rpc.config import GatewayConfig, get_config
from explorer_rpc.exceptions import GatewayError
from explorer_rpc.models import (
    DataSource,
    ErrorKind,
    GatewayHealth,
    GatewayIncident,
    GatewayResult,
    GatewayStatus,
)


logger = logging.getLogger(__name__)


def classify_status(status: int) -> ErrorKind:
    """Map a non-2xx HTTP status onto the error taxonomy."""
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status in (405, 501):
        return ErrorKind.ENDPOINT_UNAVAILABLE
    if 400 <= status < 500:
        return ErrorKind.HTTP_4XX
    if 500 <= status < 600:
        return ErrorKind.HTTP_5XX
    return ErrorKind.UNKNOWN_ERROR


class GatewayProxy:
    """
    Proxy for the upstream RPC node.

    Features:
    - Endpoint allowlist (exact prefix or prefix/*, case-insensitive)
    - Per-endpoint timeouts from GatewayConfig
    - Primary/legacy path chaining with provenance tagging
    - Health counters and a bounded incident log
    """

    DEGRADED_THRESHOLD = 3
    UNAVAILABLE_THRESHOLD = 5
    MAX_BODY_PREVIEW = 500

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._config = config or get_config()
        self._session = session
        self._owns_session = session is None

        # Health tracking
        self._health = GatewayHealth(
            status=GatewayStatus.UNKNOWN,
            last_check=datetime.now(timezone.utc),
        )

        # Incident log
        self._incidents: list[GatewayIncident] = []
        self._max_incidents = 100

    @property
    def config(self) -> GatewayConfig:
        return self._config

    @property
    def rpc_base(self) -> str:
        return self._config.rpc_base

    # ─────────────────────────────────────────────────────────────
    # Allowlist
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def normalize_path(path: str) -> str:
        """Ensure a single leading slash."""
        path = path.strip()
        return "/" + path.lstrip("/")

    def is_allowed(self, path: str) -> bool:
        """
        Check a logical path against the allowlist.

        The query string is ignored. Absolute URLs, backslashes and `.`/`..`
        segments (also percent-encoded) are always rejected.
        """
        if not isinstance(path, str) or not path.strip():
            return False
        if "://" in path or path.strip().startswith("//") or "\\" in path:
            return False

        clean = unquote(self.normalize_path(path).split("?", 1)[0].split("#", 1)[0])
        if "\\" in clean or "://" in clean:
            return False
        if any(segment in (".", "..") for segment in clean.split("/")):
            return False

        lowered = clean.lower().rstrip("/") or "/"
        return any(
            lowered == prefix or lowered.startswith(prefix + "/")
            for prefix in self._config.allowed_prefixes
        )

    # ─────────────────────────────────────────────────────────────
    # Calls
    # ─────────────────────────────────────────────────────────────

    async def call(
        self,
        path: str,
        timeout: Optional[float] = None,
        method: str = "GET",
        body: Any = None,
    ) -> GatewayResult:
        """
        Perform one upstream call.

        Args:
            path: Logical RPC path, optionally with a query string
            timeout: Seconds; defaults to the endpoint's configured timeout
            method: HTTP method
            body: JSON body for non-GET calls

        Returns:
            GatewayResult (never raises)
        """
        if not isinstance(path, str) or not self.is_allowed(path):
            logger.warning(f"[gateway] Rejected non-allowlisted path {path!r}")
            return GatewayResult(
                ok=False,
                data=None,
                error_kind=ErrorKind.NOT_PERMITTED,
                rpc_base=self.rpc_base,
                path=str(path),
                detail="path is not in the RPC allowlist",
            )

        path = self.normalize_path(path)
        seconds = timeout if timeout is not None else self._config.timeout_for(path)
        url = f"{self.rpc_base}{path}"
        self._health.requests_total += 1

        start_time = time.time()
        try:
            status, data = await asyncio.wait_for(
                self._request(method.upper(), url, seconds, body),
                timeout=seconds,
            )
        except asyncio.TimeoutError:
            error = GatewayError(
                message=f"Timed out after {seconds:.2f}s",
                kind=ErrorKind.TIMEOUT,
                request_url=url,
            )
        except GatewayError as e:
            error = e
        except Exception as e:
            error = GatewayError(
                message=f"Unexpected error: {e}",
                kind=ErrorKind.UNKNOWN_ERROR,
                request_url=url,
                original_error=e,
            )
        else:
            self._on_success((time.time() - start_time) * 1000)
            logger.debug(f"[gateway] {method} {path} -> {status}")
            return GatewayResult(
                ok=True,
                data=data,
                error_kind=ErrorKind.OK,
                rpc_base=self.rpc_base,
                path=path,
                http_status=status,
            )

        self._on_error(error, path)
        return GatewayResult(
            ok=False,
            data=None,
            error_kind=error.kind,
            rpc_base=self.rpc_base,
            path=path,
            http_status=error.status_code,
            detail=error.message,
        )

    async def call_with_legacy(
        self,
        primary: str,
        legacy: str,
        timeout: Optional[float] = None,
    ) -> GatewayResult:
        """
        Call the primary path; on not_found retry the legacy path.

        A legacy success is tagged fetched_via=legacy. When the legacy path is
        also absent, the primary not-found result is returned; any other
        legacy failure is returned as is.
        """
        result = await self.call(primary, timeout)
        if result.ok or result.error_kind != ErrorKind.NOT_FOUND:
            return result

        fallback = await self.call(legacy, timeout)
        if fallback.ok:
            logger.warning(f"[gateway] {primary} not found, served from legacy path {legacy}")
            return fallback.with_source(DataSource.LEGACY)
        if fallback.error_kind == ErrorKind.NOT_FOUND:
            return result
        return fallback.with_source(DataSource.LEGACY)

    async def probe(self, path: str, timeout: Optional[float] = None) -> bool:
        """True when the upstream answers the path with a 2xx status."""
        result = await self.call(path, timeout)
        exists = result.ok and result.is_success_status
        logger.debug(f"[gateway] probe {path}: {exists} ({result.error_kind.value})")
        return exists

    async def check_health(self) -> dict[str, Any]:
        """Probe /status and report reachability and latency."""
        start_time = time.time()
        result = await self.call("/status")
        latency_ms = (time.time() - start_time) * 1000
        self._health.last_check = datetime.now(timezone.utc)
        return {
            "ok": result.ok,
            "rpc_base": self.rpc_base,
            "latency_ms": round(latency_ms, 1),
            "error_kind": result.error_kind.value,
            "http_status": result.http_status,
            "detail": result.detail,
            "status": self._health.status.value,
            "usable": self._health.is_usable(),
        }

    # ─────────────────────────────────────────────────────────────
    # HTTP Helpers
    # ─────────────────────────────────────────────────────────────

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self._get_default_headers())
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": "ExplorerRpc/1.0",
        }

    async def _request(
        self,
        method: str,
        url: str,
        timeout: float,
        body: Any = None,
    ) -> tuple[int, Any]:
        """
        Make one HTTP request and decode its JSON body.

        Raises:
            GatewayError: Classified failure
        """
        session = await self._get_session()
        kwargs: dict[str, Any] = {"timeout": aiohttp.ClientTimeout(total=timeout)}
        if body is not None and method != "GET":
            kwargs["json"] = body

        try:
            async with session.request(method, url, **kwargs) as response:
                raw = await response.read()

                if response.status >= 400 or response.status < 200:
                    raise GatewayError(
                        message=f"HTTP {response.status}",
                        kind=classify_status(response.status),
                        status_code=response.status,
                        request_url=url,
                        response_body=raw[:self.MAX_BODY_PREVIEW].decode("utf-8", errors="replace"),
                    )

                try:
                    return response.status, json.loads(raw.decode("utf-8"))
                except ValueError as e:
                    raise GatewayError(
                        message="Response body is not valid UTF-8 JSON",
                        kind=ErrorKind.INVALID_RESPONSE,
                        status_code=response.status,
                        request_url=url,
                        response_body=raw[:self.MAX_BODY_PREVIEW].decode("utf-8", errors="replace"),
                        original_error=e,
                    )

        except asyncio.TimeoutError as e:
            raise GatewayError(
                message=f"Timed out after {timeout:.2f}s",
                kind=ErrorKind.TIMEOUT,
                request_url=url,
                original_error=e,
            )
        except aiohttp.ClientConnectionError as e:
            raise GatewayError(
                message=f"Connection error: {e}",
                kind=ErrorKind.NETWORK_UNREACHABLE,
                request_url=url,
                original_error=e,
            )
        except aiohttp.ClientError as e:
            raise GatewayError(
                message=f"Client error: {e}",
                kind=ErrorKind.UNKNOWN_ERROR,
                request_url=url,
                original_error=e,
            )

    # ─────────────────────────────────────────────────────────────
    # Health & Error Tracking
    # ─────────────────────────────────────────────────────────────

    def _on_success(self, latency_ms: float) -> None:
        self._health.latency_ms = latency_ms
        self._health.consecutive_failures = 0

        if self._health.status != GatewayStatus.HEALTHY:
            self._health.status = GatewayStatus.HEALTHY
            logger.info(f"[gateway] {self.rpc_base} is HEALTHY")

    def _on_error(self, error: GatewayError, path: str) -> None:
        """Track a failed call; not_found is a valid outcome, not a fault."""
        if error.kind == ErrorKind.NOT_FOUND:
            logger.debug(f"[gateway] {path} not found")
            return

        self._health.error_count += 1
        self._health.consecutive_failures += 1
        self._health.last_error = str(error)
        self._health.last_error_time = datetime.now(timezone.utc)

        if self._health.consecutive_failures >= self.UNAVAILABLE_THRESHOLD:
            if self._health.status != GatewayStatus.UNAVAILABLE:
                self._health.status = GatewayStatus.UNAVAILABLE
                logger.error(f"[gateway] {self.rpc_base} marked UNAVAILABLE")
        elif self._health.consecutive_failures >= self.DEGRADED_THRESHOLD:
            if self._health.status != GatewayStatus.DEGRADED:
                self._health.status = GatewayStatus.DEGRADED
                logger.warning(f"[gateway] {self.rpc_base} marked DEGRADED")

        self._log_incident(error, path)

    def _log_incident(self, error: GatewayError, path: str) -> None:
        incident = GatewayIncident(
            error_kind=error.kind,
            path=path,
            timestamp=datetime.now(timezone.utc),
            error_message=str(error),
            http_status=error.status_code,
        )

        self._incidents.append(incident)

        if len(self._incidents) > self._max_incidents:
            self._incidents = self._incidents[-self._max_incidents:]

        logger.warning(f"[gateway] Incident on {path}: {error}")

    def get_health(self) -> GatewayHealth:
        return self._health

    def get_incidents(self, limit: int = 10) -> list[GatewayIncident]:
        """Get recent incidents."""
        return self._incidents[-limit:]

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "GatewayProxy":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<GatewayProxy(rpc_base={self.rpc_base}, status={self._health.status.value})>"
