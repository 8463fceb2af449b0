"""
Provider backends for switchboard.
One backend per vendor chat API, all behind the BaseBackend contract.
"""
from switchboard.backends.router import BackendRouter, PROVIDERS
from switchboard.backends.base import BaseBackend
from switchboard.backends.anthropic import AnthropicBackend
from switchboard.backends.cohere import CohereBackend
from switchboard.backends.gemini import GeminiBackend
from switchboard.backends.mistral import MistralBackend
from switchboard.backends.openai import OpenAIBackend

__all__ = [
    "BackendRouter",
    "PROVIDERS",
    "BaseBackend",
    "AnthropicBackend",
    "CohereBackend",
    "GeminiBackend",
    "MistralBackend",
    "OpenAIBackend",
]
