"""
Pytest configuration and fixtures

Runs every API test against an in-process fake ERP backend built on
aiohttp.web, so requests go over a real socket without leaving the machine.
"""

import inspect
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from connectors.erp_api.api_client import HttpClient, set_default_client
from core.config import ApiSettings
from core.observability.metrics import get_metrics
from core.security.token_store import InMemoryTokenStore, set_default_token_store


@dataclass
class RecordedCall:
    """One request as seen by the fake backend."""
    method: str
    path: str
    query: Dict[str, List[str]]
    query_string: str
    authorization: Optional[str]
    content_type: Optional[str]
    body: bytes

    def json(self) -> Any:
        return json.loads(self.body) if self.body else None


Reply = Tuple[int, Any]
Responder = Union[Reply, Callable[[RecordedCall], Any]]

# Reply that closes the socket before any response bytes are written
DROP_CONNECTION = object()


class FakeBackend:
    """Scriptable ERP backend.

    ``route(method, path, *responses)`` registers replies for one endpoint.
    Each reply is a ``(status, payload)`` tuple or a (possibly async) callable
    taking the RecordedCall and returning one. Replies are consumed in order;
    the last one keeps answering. A reply of ``DROP_CONNECTION`` closes the
    socket instead of answering.
    """

    DROP_CONNECTION = DROP_CONNECTION

    def __init__(self):
        self.calls: List[RecordedCall] = []
        self.base_url = ""
        self._routes: Dict[Tuple[str, str], List[Responder]] = {}
        self.app = web.Application()
        self.app.router.add_route("*", "/{tail:.*}", self._dispatch)

    def route(self, method: str, path: str, *responses: Responder) -> None:
        self._routes[(method, path)] = list(responses)

    def calls_to(self, method: str, path: str) -> List[RecordedCall]:
        return [c for c in self.calls if c.method == method and c.path == path]

    async def _dispatch(self, request: web.Request) -> web.Response:
        call = RecordedCall(
            method=request.method,
            path=request.path,
            query={key: request.query.getall(key) for key in request.query.keys()},
            query_string=request.query_string,
            authorization=request.headers.get("Authorization"),
            content_type=request.headers.get("Content-Type"),
            body=await request.read(),
        )
        self.calls.append(call)

        responses = self._routes.get((request.method, request.path))
        if not responses:
            return web.json_response({"detail": "Not found."}, status=404)

        responder = responses.pop(0) if len(responses) > 1 else responses[0]
        if callable(responder):
            responder = responder(call)
            if inspect.isawaitable(responder):
                responder = await responder

        if responder is DROP_CONNECTION:
            request.transport.close()
            raise ConnectionResetError("connection dropped by fake backend")

        status, payload = responder
        if payload is None:
            return web.Response(status=status)
        if isinstance(payload, bytes):
            return web.Response(status=status, body=payload, content_type="application/octet-stream")
        if isinstance(payload, str):
            return web.Response(status=status, text=payload, content_type="text/plain")
        return web.json_response(payload, status=status)


@pytest.fixture(autouse=True)
def reset_globals():
    """Fresh metrics and no process-wide client/store leaking between tests."""
    get_metrics().reset()
    set_default_client(None)
    set_default_token_store(None)
    yield
    set_default_client(None)
    set_default_token_store(None)


@pytest.fixture
async def backend():
    fake = FakeBackend()
    server = TestServer(fake.app)
    await server.start_server()
    fake.base_url = f"http://{server.host}:{server.port}"
    yield fake
    await server.close()


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore(access="access-1", refresh="refresh-1")


@pytest.fixture
def settings(backend) -> ApiSettings:
    return ApiSettings(base_url=backend.base_url, token_store="memory")


@pytest.fixture
async def client(settings, token_store):
    http_client = HttpClient(settings, token_store)
    yield http_client
    await http_client.close()
