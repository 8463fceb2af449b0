"""
Switchboard error types.

Every failure the core can report is one of these. The HTTP layer maps them
to status codes in one place; nothing else inspects error strings.
"""

from __future__ import annotations


class SwitchboardError(Exception):
    """Base exception for switchboard errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(SwitchboardError):
    """Caller input is malformed. Raised before any backend or store is touched."""


class NotFound(SwitchboardError):
    """Requested resource does not exist."""


class StoreError(SwitchboardError):
    """Conversation persistence failed."""

    def __init__(self, message: str, conversation_id: str | None = None):
        super().__init__(message)
        self.conversation_id = conversation_id


class ProviderError(SwitchboardError):
    """
    A vendor call failed: auth, rate limit, HTTP error, timeout,
    network, or a response we could not parse.
    """

    def __init__(
        self,
        backend: str,
        cause: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(f"{backend}: {cause}")
        self.backend = backend
        self.cause = cause
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429
