"""
Gemini backend — Generative Language API.

Turns alternate between `user` and `model`. There is no system role in this
API version: the system prompt goes in as the first user turn, followed by a
synthetic model acknowledgment, ahead of the real conversation.
"""

from __future__ import annotations

import json
import logging

from switchboard.backends.base import BaseBackend, vendor_error_message
from switchboard.errors import ProviderError
from switchboard.models import GenerationRequest, GenerationResult, Usage

logger = logging.getLogger(__name__)

ACKNOWLEDGMENT = "I understand."


def _usage(meta: dict | None) -> Usage:
    meta = meta or {}
    return Usage.from_counts(
        meta.get("promptTokenCount"),
        meta.get("candidatesTokenCount"),
        meta.get("totalTokenCount"),
    )


def _candidate_text(data: dict) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts)


class GeminiBackend(BaseBackend):
    """Backend for Google Gemini."""

    provider = "gemini"
    DEFAULT_URL = "https://generativelanguage.googleapis.com/v1beta"
    DEFAULT_MODEL = "gemini-pro"
    MODELS = ("gemini-pro", "gemini-1.5-pro", "gemini-1.5-flash")

    def endpoint(self, model: str, stream: bool = False) -> str:
        if stream:
            return f"{self.url}/models/{model}:streamGenerateContent?alt=sse"
        return f"{self.url}/models/{model}:generateContent"

    def headers(self, stream: bool = False) -> dict:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }

    @staticmethod
    def format_contents(request: GenerationRequest) -> list[dict]:
        contents = []
        if request.system_prompt:
            contents.append({"role": "user", "parts": [{"text": request.system_prompt}]})
            contents.append({"role": "model", "parts": [{"text": ACKNOWLEDGMENT}]})
        for m in request.messages:
            contents.append({
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            })
        return contents

    def build_payload(self, request: GenerationRequest, model: str, stream: bool = False) -> dict:
        return {
            "contents": self.format_contents(request),
            "generationConfig": {
                "temperature": request.temperature,
                "maxOutputTokens": request.max_tokens,
            },
        }

    def parse_response(self, data: dict, model: str) -> GenerationResult:
        if not data.get("candidates"):
            reason = (data.get("promptFeedback") or {}).get("blockReason", "no candidates")
            raise ProviderError(self.name, f"Response blocked: {reason}")
        return GenerationResult(
            content=_candidate_text(data),
            model=data.get("modelVersion") or model,
            usage=_usage(data.get("usageMetadata")),
        )

    async def iter_stream(self, resp):
        async for line in resp.aiter_lines():
            if not line.startswith("data:"):
                continue
            try:
                chunk = json.loads(line[5:].strip())
            except json.JSONDecodeError:
                continue
            if not isinstance(chunk, dict):
                continue
            if chunk.get("error"):
                raise ProviderError(self.name, vendor_error_message(chunk["error"]))

            text = _candidate_text(chunk)
            if text:
                yield text
            # Every chunk carries the running totals; keep the latest
            if chunk.get("usageMetadata"):
                yield _usage(chunk["usageMetadata"])
