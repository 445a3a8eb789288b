import inspect
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from fra_webgis.client import WebGISClient
from fra_webgis.profiles import get_profile

BASE_URL = "http://webgis.test"


class FakeUpstream:
    """Routes requests for the fake WebGIS API by path and records them."""

    def __init__(self):
        self.routes: Dict[str, Callable[[httpx.Request], Any]] = {}
        self.requests: List[httpx.Request] = []

    def route(self, path: str, handler: Optional[Callable] = None, json: Any = None, status: int = 200):
        if handler is None:
            def handler(request, _json=json, _status=status):
                return httpx.Response(_status, json=_json)
        self.routes[path] = handler

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={"error": f"no route for {request.url.path}"})
        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    def calls(self, path: str) -> int:
        return sum(1 for request in self.requests if request.url.path == path)

    def params(self, path: str) -> List[Dict[str, str]]:
        return [dict(request.url.params) for request in self.requests if request.url.path == path]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def make_client(upstream):
    def factory(profile: str = "india", **kwargs) -> WebGISClient:
        kwargs.setdefault("retry_attempts", 1)
        kwargs.setdefault("retry_wait", 0)
        return WebGISClient(BASE_URL, get_profile(profile), transport=upstream.transport, **kwargs)

    return factory
