"""
FastAPI application — the switchboard HTTP entry point.

Chat (plain and streamed as server-sent events), side-by-side comparison
across providers, and conversation management. Every SwitchboardError is
mapped to a status code and a {"error": ...} body in one handler.
"""

import contextlib
import json
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from switchboard import __version__
from switchboard.config import get_config
from switchboard.errors import (
    NotFound,
    ProviderError,
    StoreError,
    SwitchboardError,
    ValidationError,
)
from switchboard.gateway import Gateway
from switchboard.validation import (
    parse_chat_payload,
    parse_compare_payload,
    parse_import_payload,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Globals — initialized at startup
# ---------------------------------------------------------------------------
gateway: Gateway | None = None
limits: dict = {}
_started_at = time.monotonic()


def setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    global gateway, limits, _started_at

    cfg = get_config()
    setup_logging(cfg)

    gateway = Gateway.from_config(cfg)
    limits = cfg.get("limits", {})
    _started_at = time.monotonic()

    logger.info(
        "Switchboard started — listening on %s:%s",
        cfg.get("server", {}).get("host", "0.0.0.0"),
        cfg.get("server", {}).get("port", 3001),
    )
    logger.info("Providers: %s (default %s)", ", ".join(gateway.router.names()), gateway.default_provider)
    logger.info("Conversations: %s", gateway.store.directory)

    yield

    logger.info("Switchboard shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Switchboard",
    description="One line in, five carriers out.",
    version=__version__,
    lifespan=lifespan,
)

_ERROR_STATUS = (
    (ValidationError, 400),
    (NotFound, 404),
    (ProviderError, 502),
    (StoreError, 500),
)


@app.exception_handler(SwitchboardError)
async def switchboard_error_handler(request: Request, exc: SwitchboardError):
    status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {}
    if isinstance(exc, ProviderError) and exc.retry_after is not None:
        headers["Retry-After"] = str(int(exc.retry_after))
    return JSONResponse({"error": exc.message}, status_code=status, headers=headers)


async def _json_body(request: Request):
    try:
        return await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be valid JSON") from e


async def _sse(events):
    """Frame stream events as server-sent events."""
    async with contextlib.aclosing(events):
        async for event in events:
            yield f"data: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"


# ---------------------------------------------------------------------------
# Service endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return JSONResponse({
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - _started_at, 3),
    })


@app.get("/api/models")
async def list_models():
    """Known model ids per provider."""
    return JSONResponse({"models": gateway.router.list_models()})


@app.get("/api/config")
async def api_config():
    providers = gateway.router.names()
    return JSONResponse({
        "availableProviders": providers,
        "defaultProvider": gateway.default_provider,
        "maxTokens": limits.get("max_tokens", 4000),
        "maxMessageLength": limits.get("max_message_chars", 10000),
        "maxTemperature": limits.get("max_temperature", 2.0),
        "maxConversationLength": gateway.store.max_messages,
        "supportedFeatures": {"streaming": providers},
    })


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

@app.post("/api/chat")
async def chat(request: Request):
    payload = parse_chat_payload(await _json_body(request), gateway.router.names(), limits)
    gen_request = gateway.build_request(
        payload.message,
        model=payload.model,
        system_prompt=payload.system_prompt,
        temperature=payload.temperature,
        max_tokens=payload.max_tokens,
    )
    reply = await gateway.respond(
        payload.provider,
        gen_request,
        conversation_id=payload.conversation_id,
        include_history=payload.include_history,
    )
    return JSONResponse(reply.to_dict())


@app.post("/api/chat/stream")
async def chat_stream(request: Request):
    """
    Streamed chat. Frames are `data: {"content": ...}` followed by one
    `data: {"done": true, ...}` or `data: {"error": ...}`.
    """
    payload = parse_chat_payload(await _json_body(request), gateway.router.names(), limits)
    gen_request = gateway.build_request(
        payload.message,
        model=payload.model,
        system_prompt=payload.system_prompt,
        temperature=payload.temperature,
        max_tokens=payload.max_tokens,
    )
    events = gateway.respond_stream(
        payload.provider,
        gen_request,
        conversation_id=payload.conversation_id,
        include_history=payload.include_history,
    )
    return StreamingResponse(
        _sse(events),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.post("/api/compare")
async def compare(request: Request):
    payload = parse_compare_payload(await _json_body(request), gateway.router.names(), limits)
    results = await gateway.compare(payload.providers, payload.message, models=payload.models)
    return JSONResponse({"results": [r.to_dict() for r in results]})


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

@app.get("/api/conversations")
async def list_conversations(limit: int = 20, offset: int = 0):
    conversations = await gateway.store.list(limit=limit, offset=offset)
    return JSONResponse({"conversations": [c.to_dict() for c in conversations]})


@app.get("/api/conversations/search")
async def search_conversations(q: str = "", limit: int = 10):
    """Substring search across every stored message."""
    results = await gateway.store.search(q, limit=limit)
    return JSONResponse({"query": q, "results": results})


@app.get("/api/conversations/stats")
async def conversation_stats():
    return JSONResponse(await gateway.store.stats())


@app.post("/api/conversations/import")
async def import_conversation(request: Request):
    payload = parse_import_payload(await _json_body(request))
    conversation_id = await gateway.store.import_conversation(
        payload.messages, conversation_id=payload.conversation_id,
    )
    meta = await gateway.store.metadata(conversation_id)
    return JSONResponse({
        "conversationId": conversation_id,
        "messageCount": meta.message_count if meta else len(payload.messages),
    })


@app.get("/api/conversations/{conversation_id}")
async def get_conversation(conversation_id: str):
    messages = await gateway.store.get(conversation_id)
    return JSONResponse({"conversation": [m.to_dict() for m in messages]})


@app.delete("/api/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str):
    deleted = await gateway.store.delete(conversation_id)
    return JSONResponse({"success": True, "deleted": deleted})


@app.get("/api/conversations/{conversation_id}/export")
async def export_conversation(conversation_id: str, format: str = "json"):
    """
    Download one conversation.

    Query params:
        format  str  — json | txt  (default: json)
    """
    if await gateway.store.metadata(conversation_id) is None:
        raise NotFound(f"Conversation not found: {conversation_id}")

    fmt = format.lower().strip() or "json"
    content = await gateway.store.export(conversation_id, fmt)
    media_type = "application/json" if fmt == "json" else "text/plain"
    return Response(
        content=content.encode("utf-8"),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="conversation-{conversation_id}.{fmt}"'},
    )
