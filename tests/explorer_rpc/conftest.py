"""
Shared fixtures for Explorer RPC tests.

FakeNode is a real aiohttp server standing in for an IPPAN node: tests
register canned responses per path, and every request that reaches it is
recorded so tests can assert which upstream calls were (not) made.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Union

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from explorer_rpc.config import GatewayConfig, reset_config
from explorer_rpc.gateway import GatewayProxy


@dataclass
class CannedResponse:
    body: Any = None
    status: int = 200
    delay: float = 0.0
    raw: Union[str, bytes, None] = None


@dataclass
class RecordedRequest:
    method: str
    path: str
    body: Any = None


class FakeNode:
    """Catch-all upstream: exact path+query match first, then path only."""

    def __init__(self) -> None:
        self.routes: dict[str, CannedResponse] = {}
        self.requests: list[RecordedRequest] = []
        self.base_url = ""

    def add(
        self,
        path: str,
        body: Any = None,
        status: int = 200,
        delay: float = 0.0,
        raw: Union[str, bytes, None] = None,
    ) -> None:
        self.routes[path] = CannedResponse(body=body, status=status, delay=delay, raw=raw)

    @property
    def paths(self) -> list[str]:
        return [request.path for request in self.requests]

    async def handle(self, request: web.Request) -> web.Response:
        body = None
        if request.can_read_body:
            body = await request.json()
        self.requests.append(RecordedRequest(request.method, request.path_qs, body))

        canned = self.routes.get(request.path_qs) or self.routes.get(request.path)
        if canned is None:
            return web.json_response({"error": "not found"}, status=404)

        if canned.delay:
            await asyncio.sleep(canned.delay)
        if isinstance(canned.raw, bytes):
            return web.Response(body=canned.raw, status=canned.status, content_type="application/octet-stream")
        if canned.raw is not None:
            return web.Response(text=canned.raw, status=canned.status, content_type="text/html")
        return web.json_response(canned.body, status=canned.status)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture(autouse=True)
def clean_config():
    """No test leaks a process-wide config into another."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
async def fake_node():
    node = FakeNode()
    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", node.handle)

    server = TestServer(app)
    await server.start_server()
    node.base_url = str(server.make_url("/")).rstrip("/")

    yield node

    await server.close()


@pytest.fixture
def config(fake_node):
    return GatewayConfig(rpc_base=fake_node.base_url)


@pytest.fixture
async def gateway(config):
    proxy = GatewayProxy(config)
    yield proxy
    await proxy.close()
