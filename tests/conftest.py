"""Shared fixtures: a scripted HTTP backend and API/scope builders."""

import asyncio
import inspect
import json

import httpx
import pytest

from campchat.config import ApiConfig
from campchat.core.session import SessionScope
from campchat.core.types import ParticipantMode
from campchat.transport.api import ChatApi

BASE_URL = "http://api.test/api"
GUEST_PREFIX = "/api/chat/portal/cg1"
STAFF_PREFIX = "/api/chat/campgrounds/cg1"


class FakeBackend:
    """Route table for httpx.MockTransport that records every request.

    Handlers may return an httpx.Response, a JSON-serializable value, or an
    awaitable of either.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def on(self, method, path, handler):
        if isinstance(handler, httpx.Response):
            template = handler
            handler = lambda request: httpx.Response(  # noqa: E731
                template.status_code, headers=template.headers, content=template.content
            )
        elif not callable(handler):
            value = handler
            handler = lambda request: value  # noqa: E731
        self.routes[(method, path)] = handler

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def body(self, method, path, index=-1):
        return json.loads(self.calls(method, path)[index].content)

    async def __call__(self, request):
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": f"no route for {request.url.path}"})
        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json=result)


@pytest.fixture
def backend():
    return FakeBackend()


def make_scope(mode=ParticipantMode.GUEST, auth_token="token-1", guest_id=None):
    return SessionScope(
        campground_id="cg1",
        mode=mode,
        session_id="sess-1",
        auth_token=auth_token,
        guest_id=guest_id,
    )


@pytest.fixture
def make_api(backend):
    def _make(mode=ParticipantMode.GUEST, auth_token="token-1", guest_id=None):
        client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(backend))
        scope = make_scope(mode, auth_token, guest_id)
        return ChatApi(ApiConfig(base_url=BASE_URL), scope, client=client)

    return _make


async def eventually(predicate, timeout=2.0):
    """Poll until ``predicate()`` is truthy or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
