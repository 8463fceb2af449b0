"""
Cohere backend — v1 chat API.

History and the new turn are separate fields: `chat_history` holds every
turn except the last, `message` holds the last. Roles are USER / CHATBOT.
The stream is newline-delimited JSON events rather than SSE.
"""

from __future__ import annotations

import json
import logging

from switchboard.backends.base import BaseBackend
from switchboard.errors import ProviderError
from switchboard.models import GenerationRequest, GenerationResult, Usage

logger = logging.getLogger(__name__)

_FAILED_FINISH_REASONS = {"ERROR", "ERROR_TOXIC", "ERROR_LIMIT", "USER_CANCEL"}


def _usage(meta: dict | None) -> Usage:
    billed = (meta or {}).get("billed_units") or {}
    return Usage.from_counts(billed.get("input_tokens"), billed.get("output_tokens"))


class CohereBackend(BaseBackend):
    """Backend for the Cohere API."""

    provider = "cohere"
    DEFAULT_URL = "https://api.cohere.ai/v1"
    DEFAULT_MODEL = "command"
    MODELS = ("command", "command-light", "command-nightly")

    def endpoint(self, model: str, stream: bool = False) -> str:
        return f"{self.url}/chat"

    @staticmethod
    def format_history(request: GenerationRequest) -> list[dict]:
        return [
            {
                "role": "CHATBOT" if m.role == "assistant" else "USER",
                "message": m.content,
            }
            for m in request.history
        ]

    def build_payload(self, request: GenerationRequest, model: str, stream: bool = False) -> dict:
        payload = {
            "model": model,
            "message": request.latest.content,
            "chat_history": self.format_history(request),
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if request.system_prompt:
            payload["preamble"] = request.system_prompt
        if stream:
            payload["stream"] = True
        return payload

    def parse_response(self, data: dict, model: str) -> GenerationResult:
        return GenerationResult(
            content=data["text"],
            model=model,  # v1 chat does not echo the model
            usage=_usage(data.get("meta")),
        )

    async def iter_stream(self, resp):
        async for line in resp.aiter_lines():
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(event, dict):
                continue

            event_type = event.get("event_type")
            if event_type == "text-generation":
                if event.get("text"):
                    yield event["text"]
            elif event_type == "stream-end":
                finish = event.get("finish_reason", "")
                if finish in _FAILED_FINISH_REASONS:
                    raise ProviderError(self.name, f"Stream ended with {finish}")
                yield _usage((event.get("response") or {}).get("meta"))
                return
