"""
Base backend abstraction.
All backends implement this interface so the gateway can treat them uniformly.

Subclasses describe their vendor's wire format (payload, endpoint, headers,
response parsing, stream parsing). The transport, error mapping and the
streaming terminal-event discipline live here, once.
"""

from __future__ import annotations

import abc
import logging
import time
from typing import AsyncIterator

import httpx

from switchboard.errors import ProviderError
from switchboard.models import (
    Complete,
    Delta,
    GenerationRequest,
    GenerationResult,
    StreamError,
    StreamEvent,
    Usage,
)

logger = logging.getLogger(__name__)


def vendor_error_message(error) -> str:
    """Pull a readable message out of a vendor error object (dict or str)."""
    if isinstance(error, dict):
        return str(error.get("message") or error.get("type") or error)
    return str(error)


class BaseBackend(abc.ABC):
    """
    Abstract base for LLM backends.
    Each backend knows how to translate requests and parse responses.
    """

    provider: str = ""
    DEFAULT_URL: str = ""
    DEFAULT_MODEL: str = ""
    MODELS: tuple[str, ...] = ()

    def __init__(
        self,
        name: str | None = None,
        url: str = "",
        api_key: str = "",
        default_model: str = "",
        timeout: float = 60,
    ):
        self.name = name or self.provider
        self.url = (url or self.DEFAULT_URL).rstrip("/")
        self.api_key = api_key or ""
        self.default_model = default_model or self.DEFAULT_MODEL
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Wire format hooks
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def build_payload(self, request: GenerationRequest, model: str, stream: bool = False) -> dict:
        """Translate a canonical request into the vendor's JSON body."""
        ...

    @abc.abstractmethod
    def parse_response(self, data: dict, model: str) -> GenerationResult:
        """Translate the vendor's JSON response into a GenerationResult."""
        ...

    @abc.abstractmethod
    def iter_stream(self, resp: httpx.Response) -> AsyncIterator[str | Usage]:
        """
        Read a streaming response.
        Yields content fragments (str) and usage reports (Usage). A later
        usage report replaces an earlier one.
        """
        ...

    def endpoint(self, model: str, stream: bool = False) -> str:
        return f"{self.url}/chat/completions"

    def headers(self, stream: bool = False) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def resolve_model(self, request: GenerationRequest) -> str:
        return request.model or self.default_model

    def _require_key(self) -> None:
        if not self.api_key:
            raise ProviderError(self.name, "No API key configured")

    def _check_response(self, resp: httpx.Response) -> None:
        """Raise ProviderError for any non-2xx vendor response."""
        if resp.status_code < 400:
            return

        if resp.status_code in (401, 403):
            raise ProviderError(self.name, "Authentication failed (check API key)",
                                status_code=resp.status_code)

        if resp.status_code == 429:
            retry_after = resp.headers.get("retry-after")
            try:
                retry = float(retry_after) if retry_after else None
            except ValueError:
                retry = None
            raise ProviderError(self.name, "Rate limit exceeded",
                                status_code=429, retry_after=retry)

        raise ProviderError(self.name, f"HTTP {resp.status_code}: {resp.text[:200]}",
                            status_code=resp.status_code)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        One vendor call, no retries.
        Raises ProviderError on any failure.
        """
        self._require_key()
        model = self.resolve_model(request)
        payload = self.build_payload(request, model)

        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.endpoint(model),
                    headers=self.headers(),
                    json=payload,
                )
                self._check_response(resp)
                data = resp.json()
        except httpx.TimeoutException as e:
            logger.warning("Backend '%s' timed out after %ss", self.name, self.timeout)
            raise ProviderError(self.name, f"Timeout after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.warning("Backend '%s' request failed: %s", self.name, e)
            raise ProviderError(self.name, str(e) or e.__class__.__name__) from e
        except ValueError as e:
            raise ProviderError(self.name, f"Malformed response: {e}") from e

        try:
            result = self.parse_response(data, model)
        except (KeyError, IndexError, TypeError, AttributeError, ValueError) as e:
            logger.warning("Backend '%s' returned an unexpected response: %r", self.name, e)
            raise ProviderError(self.name, f"Malformed response: {e!r}") from e

        result.backend = self.name
        result.latency_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Backend '%s' served model '%s' in %.0fms (%d tokens)",
            self.name, result.model, result.latency_ms, result.usage.total_tokens,
        )
        return result

    async def stream(self, request: GenerationRequest) -> AsyncIterator[StreamEvent]:
        """
        Stream a reply as Delta* followed by exactly one Complete or StreamError.

        Failures never escape as exceptions; they end the stream with a
        StreamError. Closing the iterator stops forwarding and releases the
        connection.
        """
        model = self.resolve_model(request)
        usage = Usage()
        try:
            self._require_key()
            payload = self.build_payload(request, model, stream=True)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST",
                    self.endpoint(model, stream=True),
                    headers=self.headers(stream=True),
                    json=payload,
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                    self._check_response(resp)
                    async for item in self.iter_stream(resp):
                        if isinstance(item, Usage):
                            usage = item
                        elif item:
                            yield Delta(text=item)
        except ProviderError as e:
            logger.warning("Backend '%s' stream failed: %s", self.name, e.cause)
            yield StreamError(message=e.message, backend=self.name)
            return
        except httpx.TimeoutException:
            logger.warning("Backend '%s' stream timed out", self.name)
            yield StreamError(message=f"{self.name}: Timeout after {self.timeout}s", backend=self.name)
            return
        except Exception as e:
            logger.warning("Backend '%s' stream failed: %s", self.name, e)
            yield StreamError(message=f"{self.name}: {e}", backend=self.name)
            return

        yield Complete(usage=usage, model=model)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self.url!r}>"
