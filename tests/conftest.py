"""Shared fakes: a scripted transport and a client wired to it."""

import asyncio
import inspect
from dataclasses import dataclass, field
from unittest.mock import MagicMock
from urllib.parse import urlsplit

import pytest

from api_client import ApiClient
from auth.token_store import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, MemoryCredentialStore
from transport import Response
from url_normalizer import ResponseNormalizer

API_URL = "http://api.test"
APP_ORIGIN = "https://app.test"


@dataclass
class Call:
    method: str
    path: str
    headers: dict
    params: object = None
    json: object = None
    data: object = None


@dataclass
class FakeTransport:
    routes: dict = field(default_factory=dict)
    calls: list = field(default_factory=list)
    cookies: dict = field(default_factory=dict)
    closed: bool = False

    def route(self, method: str, path: str, handler):
        """``handler(call)`` returns a Response (or awaitable of one) or raises."""
        self.routes[(method, path)] = handler

    def reply(self, method: str, path: str, status: int, data=None):
        self.route(method, path, lambda call: Response(status, data))

    async def send(self, method, url, *, headers, params=None, json=None, data=None):
        call = Call(method, urlsplit(url).path, dict(headers), params, json, data)
        self.calls.append(call)
        await asyncio.sleep(0)
        result = self.routes[(method, call.path)](call)
        if inspect.isawaitable(result):
            result = await result
        return result

    def cookie(self, name, url):
        return self.cookies.get(name)

    async def close(self):
        self.closed = True

    def sent(self, method: str, path: str) -> list[Call]:
        return [c for c in self.calls if c.method == method and c.path == path]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def store():
    return MemoryCredentialStore({ACCESS_TOKEN_KEY: "T1", REFRESH_TOKEN_KEY: "R1"})


@pytest.fixture
def invalidated():
    return MagicMock(name="on_session_invalidated")


@pytest.fixture
def nav_reset():
    return MagicMock(name="on_navigation_reset")


@pytest.fixture
def client(transport, store, invalidated, nav_reset):
    return ApiClient(
        API_URL,
        store,
        transport=transport,
        normalizer=ResponseNormalizer(APP_ORIGIN),
        on_session_invalidated=invalidated,
        on_navigation_reset=nav_reset,
    )
