"""
Gateway — the single entry point between callers and providers.

Resolves the provider, stitches stored history in front of the new turn,
dispatches, and persists the exchange only after the provider succeeded.
Also fans one prompt out to several providers for side-by-side comparison.

Nothing here retries; a failure is reported once and the caller decides.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, replace
from typing import AsyncIterator
from uuid import uuid4

from switchboard.backends.base import BaseBackend
from switchboard.backends.router import BackendRouter
from switchboard.errors import ProviderError, StoreError, SwitchboardError
from switchboard.models import (
    Complete,
    Delta,
    GenerationRequest,
    GenerationResult,
    Message,
    StreamError,
    StreamEvent,
    Usage,
    utc_now,
)
from switchboard.storage import ConversationStore, validate_conversation_id

logger = logging.getLogger(__name__)


@dataclass
class ChatReply:
    """What a caller gets back from one chat turn."""
    response: str
    conversation_id: str
    model: str
    usage: Usage
    timestamp: str
    store_error: str | None = None

    def to_dict(self) -> dict:
        data = {
            "response": self.response,
            "conversationId": self.conversation_id,
            "model": self.model,
            "usage": self.usage.to_dict(),
            "timestamp": self.timestamp,
        }
        if self.store_error:
            data["storeError"] = self.store_error
        return data


@dataclass
class CompareResult:
    """One provider's outcome in a comparison: fulfilled or rejected."""
    provider: str
    status: str
    response: GenerationResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "fulfilled"

    def to_dict(self) -> dict:
        response = None
        if self.response is not None:
            response = {"provider": self.provider, **self.response.to_dict()}
        return {
            "provider": self.provider,
            "status": self.status,
            "response": response,
            "error": self.error,
        }


class Gateway:
    """Dispatches chat requests to providers and records the conversation."""

    def __init__(
        self,
        router: BackendRouter,
        store: ConversationStore,
        default_provider: str = "anthropic",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        request_timeout: float | None = None,
        compare_providers: list[str] | None = None,
    ):
        self.router = router
        self.store = store
        self.default_provider = default_provider
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.request_timeout = request_timeout
        self.compare_providers = list(compare_providers or ["anthropic", "openai"])

    @classmethod
    def from_config(
        cls,
        cfg: dict,
        router: BackendRouter | None = None,
        store: ConversationStore | None = None,
    ) -> "Gateway":
        storage_cfg = cfg.get("storage", {})
        gen_cfg = cfg.get("generation", {})
        if router is None:
            router = BackendRouter.from_config(cfg.get("providers"))
        if store is None:
            store = ConversationStore(
                storage_cfg.get("conversations_dir", "./data/conversations"),
                max_messages=storage_cfg.get("max_messages", 50),
            )
        return cls(
            router,
            store,
            default_provider=cfg.get("default_provider", "anthropic"),
            temperature=gen_cfg.get("temperature", 0.7),
            max_tokens=gen_cfg.get("max_tokens", 1000),
            request_timeout=gen_cfg.get("request_timeout"),
            compare_providers=cfg.get("compare", {}).get("providers"),
        )

    def build_request(
        self,
        message: str,
        model: str = "",
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> GenerationRequest:
        """A single-turn user request with gateway defaults filled in."""
        return GenerationRequest(
            messages=(Message(role="user", content=message),),
            model=model or "",
            system_prompt=system_prompt or None,
            temperature=self.temperature if temperature is None else temperature,
            max_tokens=self.max_tokens if max_tokens is None else max_tokens,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _backend(self, provider: str | None) -> BaseBackend:
        return self.router.get(provider or self.default_provider)

    async def _with_history(
        self,
        request: GenerationRequest,
        conversation_id: str,
        include_history: bool,
    ) -> GenerationRequest:
        if not include_history:
            return request
        history = await self.store.get(conversation_id)
        return request.with_history(history) if history else request

    async def _generate(self, backend: BaseBackend, request: GenerationRequest) -> GenerationResult:
        if not self.request_timeout:
            return await backend.generate(request)
        try:
            return await asyncio.wait_for(backend.generate(request), timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Backend '%s' exceeded request timeout (%ss)", backend.name, self.request_timeout)
            raise ProviderError(backend.name, f"Timeout after {self.request_timeout}s") from e

    async def _persist(self, conversation_id: str, turns: list[Message]) -> str | None:
        """Store the exchange. Returns the error message instead of raising."""
        try:
            await self.store.extend(conversation_id, turns)
        except StoreError as e:
            logger.error("Failed to persist conversation %s: %s", conversation_id, e.message)
            return e.message
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def respond(
        self,
        provider: str | None,
        request: GenerationRequest,
        conversation_id: str | None = None,
        include_history: bool = True,
    ) -> ChatReply:
        """
        One chat turn. The new turn and the reply are persisted together,
        and only when the provider succeeded; a ProviderError leaves the
        conversation untouched.
        """
        conversation_id = validate_conversation_id(conversation_id or uuid4().hex)
        backend = self._backend(provider)
        full_request = await self._with_history(request, conversation_id, include_history)

        result = await self._generate(backend, full_request)

        assistant = Message(role="assistant", content=result.content, model=result.model)
        store_error = await self._persist(conversation_id, [*request.messages, assistant])
        return ChatReply(
            response=result.content,
            conversation_id=conversation_id,
            model=result.model,
            usage=result.usage,
            timestamp=utc_now(),
            store_error=store_error,
        )

    async def respond_stream(
        self,
        provider: str | None,
        request: GenerationRequest,
        conversation_id: str | None = None,
        include_history: bool = True,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream one chat turn: Delta* then one Complete or StreamError.
        The exchange is persisted only once the provider completed, and the
        Complete event carries the conversation id.
        """
        conversation_id = conversation_id or uuid4().hex
        try:
            validate_conversation_id(conversation_id)
            backend = self._backend(provider)
            full_request = await self._with_history(request, conversation_id, include_history)
        except SwitchboardError as e:
            yield StreamError(message=e.message)
            return

        parts: list[str] = []
        async with contextlib.aclosing(backend.stream(full_request)) as events:
            async for event in events:
                if isinstance(event, Delta):
                    parts.append(event.text)
                    yield event
                elif isinstance(event, Complete):
                    assistant = Message(role="assistant", content="".join(parts), model=event.model)
                    store_error = await self._persist(conversation_id, [*request.messages, assistant])
                    yield replace(event, conversation_id=conversation_id, store_error=store_error)
                    return
                else:
                    yield event
                    return

    async def compare(
        self,
        providers: list[str] | None,
        message: str,
        models: dict[str, str] | None = None,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> list[CompareResult]:
        """
        Send the same single-turn prompt to several providers concurrently.
        One provider failing never affects the others. Results come back in
        input order with duplicates removed. Nothing is persisted.
        """
        names = list(dict.fromkeys(p.lower() for p in (providers or self.compare_providers)))
        models = {k.lower(): v for k, v in (models or {}).items()}
        request = self.build_request(message, system_prompt=system_prompt,
                                     temperature=temperature, max_tokens=max_tokens)

        async def _ask(name: str) -> GenerationResult:
            backend = self.router.get(name)
            return await self._generate(backend, request.with_model(models.get(name, "")))

        outcomes = await asyncio.gather(*[_ask(n) for n in names], return_exceptions=True)

        results = []
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, Exception):
                error = outcome.message if isinstance(outcome, SwitchboardError) else str(outcome)
                logger.warning("Compare: provider '%s' failed: %s", name, error)
                results.append(CompareResult(provider=name, status="rejected", error=error))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(CompareResult(provider=name, status="fulfilled", response=outcome))

        logger.info(
            "Compare finished: %d fulfilled, %d rejected",
            sum(r.ok for r in results), sum(not r.ok for r in results),
        )
        return results
