"""
Backend router — provider name to backend instance.

Adding a provider means adding a backend class and an entry in PROVIDERS;
the gateway never changes.
"""

from __future__ import annotations

import logging

from switchboard.backends.anthropic import AnthropicBackend
from switchboard.backends.base import BaseBackend
from switchboard.backends.cohere import CohereBackend
from switchboard.backends.gemini import GeminiBackend
from switchboard.backends.mistral import MistralBackend
from switchboard.backends.openai import OpenAIBackend
from switchboard.errors import ValidationError

logger = logging.getLogger(__name__)

# Provider name → backend class
PROVIDERS: dict[str, type[BaseBackend]] = {
    "anthropic": AnthropicBackend,
    "openai": OpenAIBackend,
    "gemini": GeminiBackend,
    "mistral": MistralBackend,
    "cohere": CohereBackend,
}


class BackendRouter:
    """Holds one backend per provider and resolves provider names."""

    def __init__(self, backends: dict[str, BaseBackend]):
        self.backends = {name.lower(): b for name, b in backends.items()}
        logger.info("Backend router initialized: %s", ", ".join(self.backends) or "none")

    @classmethod
    def from_config(cls, providers_config: dict | None) -> "BackendRouter":
        """
        Instantiate every known provider. Providers absent from config still
        get a backend with defaults; a missing API key surfaces on first call.
        """
        providers_config = providers_config or {}
        for name in providers_config:
            if name.lower() not in PROVIDERS:
                logger.warning("Unknown provider '%s' in config, skipping", name)

        backends = {}
        for name, backend_cls in PROVIDERS.items():
            cfg = providers_config.get(name) or {}
            backends[name] = cls._create_backend(name, backend_cls, cfg)
        return cls(backends)

    @staticmethod
    def _create_backend(name: str, backend_cls: type[BaseBackend], cfg: dict) -> BaseBackend:
        backend = backend_cls(
            name=name,
            url=cfg.get("url", ""),
            api_key=cfg.get("api_key", ""),
            default_model=cfg.get("default_model", ""),
            timeout=cfg.get("timeout", 60),
        )
        if not backend.api_key:
            logger.info("Provider '%s' has no API key; calls will fail until one is set", name)
        return backend

    def get(self, provider: str) -> BaseBackend:
        """Look up a backend by provider name (case-insensitive)."""
        backend = self.backends.get((provider or "").lower())
        if backend is None:
            raise ValidationError(f"Unsupported AI provider: {provider!r}")
        return backend

    def names(self) -> list[str]:
        return list(self.backends)

    def __contains__(self, provider: str) -> bool:
        return (provider or "").lower() in self.backends

    def default_model(self, provider: str) -> str:
        return self.get(provider).default_model

    def list_models(self) -> dict[str, list[str]]:
        """Known model ids per provider."""
        return {
            name: list(getattr(b, "MODELS", ()) or [b.default_model])
            for name, b in self.backends.items()
        }
