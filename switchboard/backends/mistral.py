"""
Mistral backend — La Plateforme chat completions.

Same request/response shape as OpenAI, but the stream is read as a raw
byte feed and decoded by hand: a network read can end mid-line, so bytes
go through SSEDecoder, which only hands out complete lines.
"""

from __future__ import annotations

import logging

from switchboard.backends.base import BaseBackend, vendor_error_message
from switchboard.backends.openai import (
    format_chat_messages,
    parse_chat_chunk,
    parse_chat_completion,
)
from switchboard.backends.sse import SSEDecoder
from switchboard.errors import ProviderError
from switchboard.models import GenerationRequest, GenerationResult

logger = logging.getLogger(__name__)


class MistralBackend(BaseBackend):
    """Backend for the Mistral API."""

    provider = "mistral"
    DEFAULT_URL = "https://api.mistral.ai/v1"
    DEFAULT_MODEL = "mistral-large-latest"
    MODELS = ("mistral-large-latest", "mistral-medium-latest", "mistral-small-latest")

    def headers(self, stream: bool = False) -> dict:
        headers = super().headers(stream)
        if stream:
            headers["Accept"] = "text/event-stream"
        return headers

    def build_payload(self, request: GenerationRequest, model: str, stream: bool = False) -> dict:
        return {
            "model": model,
            "messages": format_chat_messages(request),
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "top_p": 1,
            "stream": stream,
        }

    def parse_response(self, data: dict, model: str) -> GenerationResult:
        return parse_chat_completion(data, model)

    async def iter_stream(self, resp):
        decoder = SSEDecoder(prefix="data:", sentinel="[DONE]")
        async for chunk in resp.aiter_bytes():
            for event in decoder.feed(chunk):
                for item in self._parse_event(event):
                    yield item
            if decoder.done:
                break
        else:
            for event in decoder.flush():
                for item in self._parse_event(event):
                    yield item

        if decoder.dropped:
            logger.debug("Mistral stream: dropped %d malformed line(s)", decoder.dropped)

    def _parse_event(self, event: dict):
        if not isinstance(event, dict):
            return
        if event.get("object") == "error" or "error" in event:
            raise ProviderError(self.name, vendor_error_message(event.get("error") or event))
        yield from parse_chat_chunk(event)
