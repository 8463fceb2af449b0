"""
OpenAI backend — chat completions API.
Flat role-tagged message list; the system prompt travels as a leading
system turn. Streams over SSE lines.
"""

from __future__ import annotations

import json
import logging

from switchboard.backends.base import BaseBackend, vendor_error_message
from switchboard.errors import ProviderError
from switchboard.models import GenerationRequest, GenerationResult, Usage

logger = logging.getLogger(__name__)


def format_chat_messages(request: GenerationRequest) -> list[dict]:
    """Role-tagged turns with the system prompt prepended. Shared with Mistral."""
    messages = [{"role": m.role, "content": m.content} for m in request.messages]
    if request.system_prompt:
        messages.insert(0, {"role": "system", "content": request.system_prompt})
    return messages


def parse_chat_completion(data: dict, model: str) -> GenerationResult:
    usage = data.get("usage") or {}
    return GenerationResult(
        content=data["choices"][0]["message"].get("content") or "",
        model=data.get("model") or model,
        usage=Usage.from_counts(
            usage.get("prompt_tokens"),
            usage.get("completion_tokens"),
            usage.get("total_tokens"),
        ),
    )


def parse_chat_chunk(chunk: dict):
    """Yield the content and usage carried by one chat.completion.chunk."""
    choices = chunk.get("choices") or []
    if choices:
        content = (choices[0].get("delta") or {}).get("content")
        if content:
            yield content
    usage = chunk.get("usage")
    if usage:
        yield Usage.from_counts(
            usage.get("prompt_tokens"),
            usage.get("completion_tokens"),
            usage.get("total_tokens"),
        )


class OpenAIBackend(BaseBackend):
    """Backend for the OpenAI API."""

    provider = "openai"
    DEFAULT_URL = "https://api.openai.com/v1"
    DEFAULT_MODEL = "gpt-4"
    MODELS = ("gpt-4", "gpt-4-turbo", "gpt-3.5-turbo")

    def build_payload(self, request: GenerationRequest, model: str, stream: bool = False) -> dict:
        payload = {
            "model": model,
            "messages": format_chat_messages(request),
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "top_p": 1,
            "frequency_penalty": 0,
            "presence_penalty": 0,
        }
        if stream:
            payload["stream"] = True
            # Usage arrives in a final chunk with no choices
            payload["stream_options"] = {"include_usage": True}
        return payload

    def parse_response(self, data: dict, model: str) -> GenerationResult:
        return parse_chat_completion(data, model)

    async def iter_stream(self, resp):
        async for line in resp.aiter_lines():
            if not line.startswith("data:"):
                continue
            data_str = line[5:].strip()
            if data_str == "[DONE]":
                return
            try:
                chunk = json.loads(data_str)
            except json.JSONDecodeError:
                continue
            if not isinstance(chunk, dict):
                continue
            if chunk.get("error"):
                raise ProviderError(self.name, vendor_error_message(chunk["error"]))
            for item in parse_chat_chunk(chunk):
                yield item
