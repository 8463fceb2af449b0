"""
Tests for the gateway: dispatch, history, persistence and comparison.
Run with: pytest tests/test_gateway.py
"""

import asyncio
import contextlib

import pytest

from conftest import FakeBackend, user
from switchboard.errors import ProviderError, StoreError, ValidationError
from switchboard.gateway import Gateway
from switchboard.models import Complete, Delta, StreamError


def _gateway(store, make_router, **kwargs):
    backends = {
        "openai": FakeBackend("openai", reply="From OpenAI"),
        "anthropic": FakeBackend("anthropic", reply="From Claude"),
    }
    backends.update(kwargs.pop("backends", {}))
    return Gateway(make_router(**backends), store, default_provider="anthropic", **kwargs)


async def _collect(agen):
    return [event async for event in agen]


# ---------------------------------------------------------------------------
# respond
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_respond_persists_both_turns(store, make_router):
    gw = _gateway(store, make_router)

    reply = await gw.respond("openai", gw.build_request("Hello there, friend"), conversation_id="c1")

    assert reply.response == "From OpenAI"
    assert reply.conversation_id == "c1"
    assert reply.model == "openai-1"
    assert reply.store_error is None
    messages = await store.get("c1")
    assert [(m.role, m.content) for m in messages] == [
        ("user", "Hello there, friend"),
        ("assistant", "From OpenAI"),
    ]
    assert messages[1].model == "openai-1"
    assert (await store.metadata("c1")).title == "Hello there friend"


@pytest.mark.asyncio
async def test_respond_generates_conversation_id(store, make_router):
    gw = _gateway(store, make_router)
    reply = await gw.respond(None, gw.build_request("hi"))
    assert len(reply.conversation_id) == 32
    assert len(await store.get(reply.conversation_id)) == 2


@pytest.mark.asyncio
async def test_respond_uses_default_provider(store, make_router):
    gw = _gateway(store, make_router)
    reply = await gw.respond(None, gw.build_request("hi"))
    assert reply.response == "From Claude"


@pytest.mark.asyncio
async def test_respond_sends_stored_history(store, make_router):
    backend = FakeBackend("openai")
    gw = _gateway(store, make_router, backends={"openai": backend})

    await gw.respond("openai", gw.build_request("first"), conversation_id="c")
    await gw.respond("openai", gw.build_request("second"), conversation_id="c")

    sent = backend.requests[-1]
    assert [m.content for m in sent.messages] == ["first", "Hi there!", "second"]
    assert len(await store.get("c")) == 4


@pytest.mark.asyncio
async def test_respond_without_history(store, make_router):
    backend = FakeBackend("openai")
    gw = _gateway(store, make_router, backends={"openai": backend})

    await gw.respond("openai", gw.build_request("first"), conversation_id="c")
    await gw.respond("openai", gw.build_request("second"), conversation_id="c", include_history=False)

    assert [m.content for m in backend.requests[-1].messages] == ["second"]
    assert len(await store.get("c")) == 4


@pytest.mark.asyncio
async def test_respond_provider_failure_persists_nothing(store, make_router):
    failing = FakeBackend("openai", error=ProviderError("openai", "Rate limit exceeded", status_code=429))
    gw = _gateway(store, make_router, backends={"openai": failing})

    with pytest.raises(ProviderError):
        await gw.respond("openai", gw.build_request("hi"), conversation_id="c")

    assert await store.get("c") == []
    assert await store.metadata("c") is None


@pytest.mark.asyncio
async def test_respond_unknown_provider(store, make_router):
    gw = _gateway(store, make_router)
    with pytest.raises(ValidationError):
        await gw.respond("skynet", gw.build_request("hi"))


@pytest.mark.asyncio
async def test_respond_rejects_bad_conversation_id_before_dispatch(store, make_router):
    backend = FakeBackend("openai")
    gw = _gateway(store, make_router, backends={"openai": backend})

    with pytest.raises(ValidationError, match="Invalid conversation id"):
        await gw.respond("openai", gw.build_request("hi"), conversation_id="../x", include_history=False)

    assert backend.requests == []
    assert list(store.directory.iterdir()) == []


@pytest.mark.asyncio
async def test_respond_store_failure_still_returns_content(store, make_router, monkeypatch):
    gw = _gateway(store, make_router)

    async def broken_extend(conversation_id, messages):
        raise StoreError("disk full", conversation_id)

    monkeypatch.setattr(store, "extend", broken_extend)
    reply = await gw.respond("openai", gw.build_request("hi"), conversation_id="c")

    assert reply.response == "From OpenAI"
    assert reply.store_error == "disk full"
    assert reply.to_dict()["storeError"] == "disk full"


@pytest.mark.asyncio
async def test_request_timeout_becomes_provider_error(store, make_router):
    slow = FakeBackend("openai", delay=1.0)
    gw = _gateway(store, make_router, backends={"openai": slow}, request_timeout=0.05)

    with pytest.raises(ProviderError, match="Timeout after 0.05s"):
        await gw.respond("openai", gw.build_request("hi"), conversation_id="c")
    assert await store.get("c") == []


def test_build_request_uses_defaults(store, make_router):
    gw = _gateway(store, make_router, temperature=0.3, max_tokens=256)
    req = gw.build_request("hi")
    assert req.temperature == 0.3
    assert req.max_tokens == 256
    assert gw.build_request("hi", max_tokens=3000).max_tokens == 3000


def test_reply_to_dict_uses_camel_case(store, make_router):
    from switchboard.gateway import ChatReply
    from switchboard.models import Usage

    data = ChatReply("ok", "c1", "m", Usage(1, 2, 3), "2024-01-01T00:00:00+00:00").to_dict()
    assert data["conversationId"] == "c1"
    assert data["usage"]["total_tokens"] == 3
    assert "storeError" not in data


# ---------------------------------------------------------------------------
# respond_stream
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stream_persists_after_complete(store, make_router):
    gw = _gateway(store, make_router)

    events = await _collect(gw.respond_stream("openai", gw.build_request("hi"), conversation_id="s1"))

    assert [e.text for e in events if isinstance(e, Delta)] == ["Hi", " there", "!"]
    done = events[-1]
    assert isinstance(done, Complete)
    assert done.conversation_id == "s1"
    assert done.store_error is None
    assert done.usage.total_tokens == 5

    messages = await store.get("s1")
    assert [(m.role, m.content) for m in messages] == [("user", "hi"), ("assistant", "Hi there!")]


@pytest.mark.asyncio
async def test_stream_error_persists_nothing(store, make_router):
    broken = FakeBackend("openai", stream_error="connection reset")
    gw = _gateway(store, make_router, backends={"openai": broken})

    events = await _collect(gw.respond_stream("openai", gw.build_request("hi"), conversation_id="s"))

    assert isinstance(events[-1], StreamError)
    assert events[-1].message == "openai: connection reset"
    assert [e for e in events if isinstance(e, Delta)]  # deltas sent before the failure stand
    assert await store.get("s") == []


@pytest.mark.asyncio
async def test_stream_unknown_provider_is_stream_error(store, make_router):
    gw = _gateway(store, make_router)
    events = await _collect(gw.respond_stream("skynet", gw.build_request("hi")))
    assert len(events) == 1
    assert isinstance(events[0], StreamError)


@pytest.mark.asyncio
async def test_stream_bad_conversation_id_is_single_stream_error(store, make_router):
    backend = FakeBackend("openai")
    gw = _gateway(store, make_router, backends={"openai": backend})

    events = await _collect(gw.respond_stream(
        "openai", gw.build_request("hi"), conversation_id="../x", include_history=False,
    ))

    assert len(events) == 1
    assert isinstance(events[0], StreamError)
    assert "Invalid conversation id" in events[0].message
    assert backend.requests == []


@pytest.mark.asyncio
async def test_stream_store_failure_reported_in_complete(store, make_router, monkeypatch):
    gw = _gateway(store, make_router)

    async def broken_extend(conversation_id, messages):
        raise StoreError("disk full", conversation_id)

    monkeypatch.setattr(store, "extend", broken_extend)
    events = await _collect(gw.respond_stream("openai", gw.build_request("hi"), conversation_id="s"))
    assert events[-1].store_error == "disk full"
    assert events[-1].to_dict()["storeError"] == "disk full"


@pytest.mark.asyncio
async def test_closing_stream_closes_backend_and_skips_persist(store, make_router):
    backend = FakeBackend("openai")
    gw = _gateway(store, make_router, backends={"openai": backend})

    async with contextlib.aclosing(gw.respond_stream("openai", gw.build_request("hi"), conversation_id="s")) as events:
        async for event in events:
            assert isinstance(event, Delta)
            break

    assert backend.stream_closed
    assert await store.get("s") == []


# ---------------------------------------------------------------------------
# compare
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_compare_one_ok_one_failing(store, make_router):
    gw = _gateway(store, make_router, backends={
        "openai": FakeBackend("openai", reply="A says hi"),
        "anthropic": FakeBackend("anthropic", error=ProviderError("anthropic", "Authentication failed")),
    })

    results = await gw.compare(["openai", "anthropic"], "hello")

    assert [r.provider for r in results] == ["openai", "anthropic"]
    assert results[0].status == "fulfilled"
    assert results[0].response.content == "A says hi"
    assert results[0].error is None
    assert results[1].status == "rejected"
    assert results[1].response is None
    assert results[1].error == "anthropic: Authentication failed"
    assert (await store.stats())["total_conversations"] == 0


@pytest.mark.asyncio
async def test_compare_dedupes_and_keeps_order(store, make_router):
    gw = _gateway(store, make_router)
    results = await gw.compare(["anthropic", "openai", "Anthropic"], "hi")
    assert [r.provider for r in results] == ["anthropic", "openai"]


@pytest.mark.asyncio
async def test_compare_runs_concurrently(store, make_router):
    gw = _gateway(store, make_router, backends={
        "openai": FakeBackend("openai", delay=0.2),
        "anthropic": FakeBackend("anthropic", delay=0.2),
    })
    loop = asyncio.get_running_loop()
    t0 = loop.time()
    await gw.compare(["openai", "anthropic"], "hi")
    assert loop.time() - t0 < 0.35


@pytest.mark.asyncio
async def test_compare_uses_per_provider_models(store, make_router):
    backend = FakeBackend("openai")
    gw = _gateway(store, make_router, backends={"openai": backend})
    results = await gw.compare(["openai"], "hi", models={"openai": "gpt-3.5-turbo"})
    assert backend.requests[0].model == "gpt-3.5-turbo"
    assert results[0].response.model == "gpt-3.5-turbo"


@pytest.mark.asyncio
async def test_compare_defaults_to_configured_providers(store, make_router):
    gw = _gateway(store, make_router, compare_providers=["openai"])
    results = await gw.compare(None, "hi")
    assert [r.provider for r in results] == ["openai"]


@pytest.mark.asyncio
async def test_compare_unknown_provider_is_rejected_result(store, make_router):
    gw = _gateway(store, make_router)
    results = await gw.compare(["openai", "skynet"], "hi")
    assert results[0].ok
    assert results[1].status == "rejected"
    assert "Unsupported AI provider" in results[1].error


def test_compare_result_to_dict(store, make_router):
    from switchboard.gateway import CompareResult
    from switchboard.models import GenerationResult, Usage

    ok = CompareResult("openai", "fulfilled", response=GenerationResult("hi", "gpt-4", Usage(1, 1, 2)))
    assert ok.to_dict() == {
        "provider": "openai",
        "status": "fulfilled",
        "response": {
            "provider": "openai",
            "content": "hi",
            "model": "gpt-4",
            "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
        },
        "error": None,
    }


# ---------------------------------------------------------------------------
# from_config
# ---------------------------------------------------------------------------

def test_gateway_from_config(tmp_path):
    cfg = {
        "default_provider": "gemini",
        "providers": {"gemini": {"api_key": "g"}},
        "storage": {"conversations_dir": str(tmp_path / "convs"), "max_messages": 10},
        "generation": {"temperature": 0.1, "max_tokens": 200, "request_timeout": 30},
        "compare": {"providers": ["gemini", "cohere"]},
    }
    gw = Gateway.from_config(cfg)
    assert gw.default_provider == "gemini"
    assert gw.store.max_messages == 10
    assert gw.request_timeout == 30
    assert gw.compare_providers == ["gemini", "cohere"]
    assert gw.router.get("gemini").api_key == "g"
    assert (tmp_path / "convs").is_dir()
