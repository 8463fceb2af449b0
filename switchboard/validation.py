"""
Request validation for the HTTP layer.

Turns raw JSON bodies (camelCase keys) into checked, normalized values and
raises ValidationError with a caller-readable message otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from switchboard.errors import ValidationError
from switchboard.storage import validate_conversation_id

DEFAULT_LIMITS = {
    "max_message_chars": 10000,
    "max_tokens": 4000,
    "max_temperature": 2.0,
}


@dataclass
class ChatPayload:
    message: str
    provider: str | None = None
    model: str = ""
    conversation_id: str | None = None
    system_prompt: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    include_history: bool = True


@dataclass
class ComparePayload:
    message: str
    providers: list[str] | None = None
    models: dict[str, str] = field(default_factory=dict)


@dataclass
class ImportPayload:
    messages: list[dict]
    conversation_id: str | None = None


def _limits(limits: dict | None) -> dict:
    return {**DEFAULT_LIMITS, **(limits or {})}


def _require_object(body) -> dict:
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _message(body: dict, max_chars: int) -> str:
    message = body.get("message")
    if not message or not isinstance(message, str):
        raise ValidationError("Message is required and must be a string")
    if not message.strip():
        raise ValidationError("Message cannot be empty")
    if len(message) > max_chars:
        raise ValidationError(f"Message is too long (max {max_chars:,} characters)")
    return message.strip()


def _provider(value, known: list[str]) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or value.lower() not in known:
        raise ValidationError("Invalid AI provider specified")
    return value.lower()


def _temperature(value, maximum: float) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Temperature must be a number between 0 and {maximum:g}")
    try:
        temp = float(value)
    except (TypeError, ValueError):
        temp = float("nan")
    if not 0 <= temp <= maximum:
        raise ValidationError(f"Temperature must be a number between 0 and {maximum:g}")
    return temp


def _max_tokens(value, maximum: int) -> int | None:
    if value is None:
        return None
    tokens = None
    if isinstance(value, int) and not isinstance(value, bool):
        tokens = value
    elif isinstance(value, float) and value.is_integer():
        tokens = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        tokens = int(value)
    if tokens is None or not 1 <= tokens <= maximum:
        raise ValidationError(f"MaxTokens must be a number between 1 and {maximum}")
    return tokens


def _conversation_id(value) -> str | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError("ConversationId must be a string")
    return validate_conversation_id(value)


def parse_chat_payload(body, providers: list[str], limits: dict | None = None) -> ChatPayload:
    """Validate a /api/chat or /api/chat/stream body."""
    body = _require_object(body)
    lim = _limits(limits)

    system_prompt = body.get("systemPrompt")
    if system_prompt is not None and not isinstance(system_prompt, str):
        raise ValidationError("SystemPrompt must be a string")

    model = body.get("model") or ""
    if not isinstance(model, str):
        raise ValidationError("Model must be a string")

    return ChatPayload(
        message=_message(body, lim["max_message_chars"]),
        provider=_provider(body.get("provider"), providers),
        model=model,
        conversation_id=_conversation_id(body.get("conversationId")),
        system_prompt=system_prompt.strip() if system_prompt else None,
        temperature=_temperature(body.get("temperature"), lim["max_temperature"]),
        max_tokens=_max_tokens(body.get("maxTokens"), lim["max_tokens"]),
        include_history=bool(body.get("includeHistory", True)),
    )


def parse_compare_payload(body, providers: list[str], limits: dict | None = None) -> ComparePayload:
    """Validate a /api/compare body."""
    body = _require_object(body)
    lim = _limits(limits)

    requested = body.get("providers")
    if requested is not None:
        if not isinstance(requested, list) or not requested:
            raise ValidationError("Providers must be a non-empty list")
        requested = [_provider(p, providers) for p in requested]

    models = body.get("models") or {}
    if not isinstance(models, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in models.items()
    ):
        raise ValidationError("Models must map provider names to model ids")

    return ComparePayload(
        message=_message(body, lim["max_message_chars"]),
        providers=requested,
        models=models,
    )


def parse_import_payload(body) -> ImportPayload:
    """Validate a /api/conversations/import body."""
    body = _require_object(body)
    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise ValidationError("Messages must be a non-empty list")
    return ImportPayload(
        messages=messages,
        conversation_id=_conversation_id(body.get("conversationId")),
    )
