"""
Shared fixtures: a fake httpx client for backend tests, fake backends for
gateway tests, and a store rooted in a temp directory.
"""

import asyncio
import contextlib
import json

import pytest

from switchboard.backends.router import BackendRouter
from switchboard.models import (
    Complete,
    Delta,
    GenerationResult,
    Message,
    StreamError,
    Usage,
)
from switchboard.storage import ConversationStore


def sse(obj) -> str:
    """One SSE data line."""
    return f"data: {json.dumps(obj)}"


# ---------------------------------------------------------------------------
# Fake httpx
# ---------------------------------------------------------------------------

class FakeResponse:
    """Just enough of httpx.Response for the backends."""

    def __init__(self, status_code=200, json_data=None, lines=None, chunks=None,
                 text="", headers=None):
        self.status_code = status_code
        self._json = json_data
        self._lines = lines or []
        self._chunks = chunks or []
        self.text = text or (json.dumps(json_data) if json_data is not None else "")
        self.headers = headers or {}

    def json(self):
        if self._json is None:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._json

    async def aread(self):
        return self.text.encode()

    async def aiter_lines(self):
        for line in self._lines:
            yield line

    async def aiter_bytes(self):
        for chunk in self._chunks:
            yield chunk


class FakeAsyncClient:
    """
    Stands in for httpx.AsyncClient. Calling it (as the backends do with
    httpx.AsyncClient(timeout=...)) returns itself; every request is recorded
    and answered with `response`, or raises `error`.
    """

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []
        self.init_kwargs = {}

    def __call__(self, *args, **kwargs):
        self.init_kwargs = kwargs
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def post(self, url, headers=None, json=None):
        self.calls.append({"method": "POST", "url": url, "headers": headers, "json": json})
        if self.error:
            raise self.error
        return self.response

    @contextlib.asynccontextmanager
    async def stream(self, method, url, headers=None, json=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "json": json})
        if self.error:
            raise self.error
        yield self.response

    @property
    def last(self) -> dict:
        return self.calls[-1]


@pytest.fixture
def http(monkeypatch):
    """Patch httpx.AsyncClient for every backend; set .response / .error per test."""
    client = FakeAsyncClient()
    monkeypatch.setattr("switchboard.backends.base.httpx.AsyncClient", client)
    return client


# ---------------------------------------------------------------------------
# Fake backends
# ---------------------------------------------------------------------------

class FakeBackend:
    """A backend that answers from memory and records what it was asked."""

    def __init__(self, name="fake", reply="Hi there!", deltas=None, error=None,
                 stream_error=None, usage=None, delay=0.0):
        self.name = name
        self.default_model = f"{name}-1"
        self.reply = reply
        self.deltas = deltas if deltas is not None else ["Hi", " there", "!"]
        self.error = error
        self.stream_error = stream_error
        self.usage = usage or Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5)
        self.delay = delay
        self.requests = []
        self.stream_closed = False

    async def generate(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return GenerationResult(
            content=self.reply,
            model=request.model or self.default_model,
            usage=self.usage,
            backend=self.name,
        )

    async def stream(self, request):
        self.requests.append(request)
        try:
            for text in self.deltas:
                yield Delta(text=text)
            if self.stream_error:
                yield StreamError(message=f"{self.name}: {self.stream_error}", backend=self.name)
                return
            yield Complete(usage=self.usage, model=request.model or self.default_model)
        finally:
            self.stream_closed = True


@pytest.fixture
def store(tmp_path):
    return ConversationStore(tmp_path / "conversations")


@pytest.fixture
def make_router():
    def _make(**backends):
        return BackendRouter(backends)
    return _make


def user(content, **kwargs):
    return Message(role="user", content=content, **kwargs)


def assistant(content, **kwargs):
    return Message(role="assistant", content=content, **kwargs)
