"""
Anthropic backend — Messages API.

System content travels in the dedicated `system` field, so system-tagged
turns are dropped from the message list. Usage is reported as input/output
counts only; the total is their sum.
"""

from __future__ import annotations

import json
import logging

from switchboard.backends.base import BaseBackend, vendor_error_message
from switchboard.errors import ProviderError
from switchboard.models import GenerationRequest, GenerationResult, Usage

logger = logging.getLogger(__name__)


class AnthropicBackend(BaseBackend):
    """Backend for the Anthropic API."""

    provider = "anthropic"
    DEFAULT_URL = "https://api.anthropic.com/v1"
    DEFAULT_MODEL = "claude-3-sonnet-20240229"
    ANTHROPIC_VERSION = "2023-06-01"
    MODELS = (
        "claude-3-opus-20240229",
        "claude-3-sonnet-20240229",
        "claude-3-haiku-20240307",
    )

    def endpoint(self, model: str, stream: bool = False) -> str:
        return f"{self.url}/messages"

    def headers(self, stream: bool = False) -> dict:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": self.ANTHROPIC_VERSION,
        }

    @staticmethod
    def format_messages(request: GenerationRequest) -> list[dict]:
        return [
            {
                "role": "assistant" if m.role == "assistant" else "user",
                "content": m.content,
            }
            for m in request.messages
            if m.role != "system"
        ]

    def build_payload(self, request: GenerationRequest, model: str, stream: bool = False) -> dict:
        payload = {
            "model": model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": self.format_messages(request),
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        if stream:
            payload["stream"] = True
        return payload

    def parse_response(self, data: dict, model: str) -> GenerationResult:
        blocks = data["content"]
        content = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        usage = data.get("usage") or {}
        return GenerationResult(
            content=content,
            model=data.get("model") or model,
            usage=Usage.from_counts(usage.get("input_tokens"), usage.get("output_tokens")),
        )

    async def iter_stream(self, resp):
        input_tokens = None
        output_tokens = None

        async for line in resp.aiter_lines():
            if not line.startswith("data:"):
                continue
            try:
                event = json.loads(line[5:].strip())
            except json.JSONDecodeError:
                continue
            if not isinstance(event, dict):
                continue

            event_type = event.get("type")

            if event_type == "content_block_delta":
                delta = event.get("delta") or {}
                if delta.get("type", "text_delta") == "text_delta" and delta.get("text"):
                    yield delta["text"]

            elif event_type == "message_start":
                usage = (event.get("message") or {}).get("usage") or {}
                input_tokens = usage.get("input_tokens")
                output_tokens = usage.get("output_tokens")
                yield Usage.from_counts(input_tokens, output_tokens)

            elif event_type == "message_delta":
                # Output count here is cumulative, not an increment
                usage = event.get("usage") or {}
                if "output_tokens" in usage:
                    output_tokens = usage["output_tokens"]
                if "input_tokens" in usage:
                    input_tokens = usage["input_tokens"]
                yield Usage.from_counts(input_tokens, output_tokens)

            elif event_type == "message_stop":
                return

            elif event_type == "error":
                raise ProviderError(self.name, vendor_error_message(event.get("error")))
