"""
Explorer RPC HTTP API.

============================================================
PURPOSE
============================================================
aiohttp surface over the gateway, service and resolver.

ROUTES:
- GET/POST /api/rpc/{path}   allowlisted catch-all proxy
- GET      /api/blocks       recent blocks (tx-derived fallback)
- GET      /api/search?q=    universal search resolution
- GET      /api/dashboard    status + peers + recent transactions
- GET      /api/health       upstream reachability

Upstream failures are reported as structured payloads, never as
unhandled exceptions.
============================================================
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from aiohttp import web

from explorer_rpc.gateway import GatewayProxy
from explorer_rpc.models import ErrorKind
from explorer_rpc.resolver import EntityResolver
from explorer_rpc.service import ExplorerService


logger = logging.getLogger(__name__)


PROXY_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "X-RPC-Proxy": "explorer-rpc",
}


# ============================================================
# JSON ENCODER
# ============================================================

class ExplorerEncoder(json.JSONEncoder):
    """JSON encoder for explorer records."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)


def json_response(
    data: Any,
    status: int = 200,
    headers: Optional[dict[str, str]] = None,
) -> web.Response:
    """Create JSON response."""
    return web.Response(
        text=json.dumps(data, cls=ExplorerEncoder, indent=2),
        status=status,
        content_type="application/json",
        headers=headers,
    )


# ============================================================
# API HANDLERS
# ============================================================

class ExplorerAPI:
    """HTTP handlers for the explorer data layer."""

    def __init__(self, service: ExplorerService, resolver: EntityResolver) -> None:
        self._service = service
        self._resolver = resolver
        self._gateway = service.gateway

    # --------------------------------------------------------
    # PROXY
    # --------------------------------------------------------

    async def proxy(self, request: web.Request) -> web.Response:
        """
        GET/POST /api/rpc/{path}

        403 on allowlist rejection, 200 on success, 404 when the upstream
        reports absence, 502 for every other failure.
        """
        rpc_path = "/" + request.match_info.get("path", "").strip("/")
        if rpc_path == "/":
            return json_response({
                "ok": False,
                "error_kind": ErrorKind.NOT_PERMITTED.value,
                "detail": "No RPC path specified",
            }, status=400, headers=PROXY_HEADERS)

        headers = {**PROXY_HEADERS, "X-RPC-Path": rpc_path}

        if not self._gateway.is_allowed(rpc_path):
            logger.warning(f"[api] Proxy rejected {rpc_path}")
            return json_response({
                "ok": False,
                "error_kind": ErrorKind.NOT_PERMITTED.value,
                "detail": f"Path {rpc_path!r} is not in the allowlist",
                "rpc_base": self._gateway.rpc_base,
                "path": rpc_path,
                "http_status": None,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }, status=403, headers=headers)

        full_path = f"{rpc_path}?{request.query_string}" if request.query_string else rpc_path

        body = None
        if request.method == "POST" and request.can_read_body:
            try:
                body = await request.json()
            except ValueError:
                body = None

        result = await self._gateway.call(full_path, method=request.method, body=body)

        if result.ok:
            status = 200
        elif result.error_kind == ErrorKind.NOT_FOUND:
            status = 404
        elif result.error_kind == ErrorKind.NOT_PERMITTED:
            status = 403
        else:
            status = 502
        return json_response(result.to_dict(), status=status, headers=headers)

    # --------------------------------------------------------
    # EXPLORER ENDPOINTS
    # --------------------------------------------------------

    async def blocks(self, request: web.Request) -> web.Response:
        """GET /api/blocks?limit=N"""
        listing = await self._service.list_blocks(request.query.get("limit"))
        return json_response(listing.to_dict(), headers={"Cache-Control": "no-store"})

    async def search(self, request: web.Request) -> web.Response:
        """GET /api/search?q=..."""
        resolution = await self._resolver.resolve(request.query.get("q", ""))
        return json_response(resolution.to_dict())

    async def dashboard(self, request: web.Request) -> web.Response:
        """
        GET /api/dashboard

        Each section reports its own success or failure.
        """
        summary = await self._service.dashboard_summary()
        return json_response(summary.to_dict(), headers={"Cache-Control": "no-store"})

    async def health(self, request: web.Request) -> web.Response:
        """GET /api/health"""
        report = await self._gateway.check_health()
        report["timestamp"] = datetime.now(timezone.utc).isoformat()
        report["service"] = "explorer-rpc"
        return json_response(report, status=200 if report["ok"] else 503)


# ============================================================
# APP FACTORY
# ============================================================

def create_explorer_app(gateway: GatewayProxy) -> web.Application:
    """
    Create the explorer API application.

    The gateway is closed when the application shuts down.
    """
    api = ExplorerAPI(ExplorerService(gateway), EntityResolver(gateway))

    app = web.Application()

    app.router.add_get("/api/rpc/{path:.*}", api.proxy)
    app.router.add_post("/api/rpc/{path:.*}", api.proxy)
    app.router.add_get("/api/blocks", api.blocks)
    app.router.add_get("/api/search", api.search)
    app.router.add_get("/api/dashboard", api.dashboard)
    app.router.add_get("/api/health", api.health)

    async def close_gateway(app: web.Application) -> None:
        await gateway.close()

    app.on_cleanup.append(close_gateway)
    return app
