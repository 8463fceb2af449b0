"""
Canonical data models shared by the backends, the store and the gateway.
These define the shape of data flowing through switchboard.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Union
from uuid import uuid4

from switchboard.errors import ValidationError

ROLES = ("user", "assistant", "system")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _count(value) -> int:
    """Coerce a vendor token count to a non-negative int (missing -> 0)."""
    try:
        n = int(value or 0)
    except (TypeError, ValueError):
        return 0
    return max(n, 0)


@dataclass(frozen=True)
class Message:
    """A single turn in a conversation."""
    role: str
    content: str
    timestamp: str = field(default_factory=utc_now)
    model: str = ""          # Set on assistant turns
    id: str = field(default_factory=lambda: uuid4().hex)

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValidationError(f"Invalid role: {self.role!r}")
        if not isinstance(self.content, str):
            raise ValidationError("Message content must be a string")

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.model:
            data["model"] = self.model
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        if not isinstance(data, dict):
            raise ValidationError("Message must be an object")
        kwargs = {
            "role": data.get("role", ""),
            "content": data.get("content", ""),
            "model": data.get("model") or "",
        }
        if data.get("timestamp"):
            kwargs["timestamp"] = str(data["timestamp"])
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        return cls(**kwargs)


@dataclass(frozen=True)
class Usage:
    """Token usage in canonical form."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(cls, prompt=None, completion=None, total=None) -> "Usage":
        """
        Build usage from whatever the vendor reported.
        Missing counts become 0; a missing total is the sum of the parts.
        """
        p = _count(prompt)
        c = _count(completion)
        t = _count(total) if total is not None else p + c
        return cls(prompt_tokens=p, completion_tokens=c, total_tokens=t)

    def to_dict(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class GenerationRequest:
    """
    A backend-agnostic chat request.
    The last message is the turn to answer; everything before it is context.
    An empty model means "use the backend's default".
    """
    messages: tuple[Message, ...]
    model: str = ""
    system_prompt: str | None = None
    temperature: float = 0.7
    max_tokens: int = 1000

    def __post_init__(self):
        # Accept any sequence but store a tuple so the request stays immutable
        object.__setattr__(self, "messages", tuple(self.messages))
        if not self.messages:
            raise ValidationError("A request needs at least one message")
        if isinstance(self.temperature, bool) or not isinstance(self.temperature, (int, float)):
            raise ValidationError("temperature must be a number")
        if self.temperature < 0:
            raise ValidationError("temperature must be >= 0")
        if isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int) or self.max_tokens < 1:
            raise ValidationError("max_tokens must be a positive integer")

    @property
    def latest(self) -> Message:
        return self.messages[-1]

    @property
    def history(self) -> tuple[Message, ...]:
        return self.messages[:-1]

    def with_history(self, history) -> "GenerationRequest":
        """Return a copy with stored history placed before this request's messages."""
        return replace(self, messages=tuple(history) + self.messages)

    def with_model(self, model: str) -> "GenerationRequest":
        return replace(self, model=model)


@dataclass
class GenerationResult:
    """Standardized result from any backend."""
    content: str
    model: str
    usage: Usage = field(default_factory=Usage)
    backend: str = ""
    latency_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "model": self.model,
            "usage": self.usage.to_dict(),
        }


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Delta:
    """An incremental content fragment."""
    text: str

    terminal = False

    def to_dict(self) -> dict:
        return {"content": self.text}


@dataclass(frozen=True)
class Complete:
    """Terminal event for a stream that finished normally."""
    usage: Usage = field(default_factory=Usage)
    model: str = ""
    conversation_id: str | None = None
    store_error: str | None = None

    terminal = True

    def to_dict(self) -> dict:
        data = {"done": True, "usage": self.usage.to_dict()}
        if self.conversation_id:
            data["conversationId"] = self.conversation_id
        if self.store_error:
            data["storeError"] = self.store_error
        return data


@dataclass(frozen=True)
class StreamError:
    """Terminal event for a stream that failed. Deltas already sent stand."""
    message: str
    backend: str = ""

    terminal = True

    def to_dict(self) -> dict:
        return {"error": self.message}


StreamEvent = Union[Delta, Complete, StreamError]
