"""Shared fixtures: a CozeApiClient wired to httpx.MockTransport."""

import json

import httpx
import pytest

from core.gateway import CozeApiClient


class FakeCoze:
    """Routes requests by path to canned responses and records every call."""

    def __init__(self) -> None:
        self.routes: dict[str, list] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, *responses) -> None:
        """Queue responses for a path; the last one repeats."""
        self.routes.setdefault(path, []).extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"msg": f"no route for {request.url.path}"})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        return httpx.Response(200, json=item)

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @staticmethod
    def json_body(request: httpx.Request) -> dict:
        return json.loads(request.content.decode("utf-8"))


@pytest.fixture
def fake_coze() -> FakeCoze:
    return FakeCoze()


@pytest.fixture
async def client(fake_coze):
    api = CozeApiClient(
        base_url="https://api.coze.test",
        api_token="pat_test_token",
        transport=httpx.MockTransport(fake_coze.handler),
    )
    yield api
    await api.aclose()
