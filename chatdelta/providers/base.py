"""Shared request/retry machinery for every provider client."""

import asyncio
import logging
import time
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

import httpx

from ..config import ClientConfig
from ..errors import ProviderError
from ..types import Failure, FailureKind, Message, ProviderIdentity, Success

logger = logging.getLogger(__name__)

# Statuses some providers use for "overloaded, try again"
_UNAVAILABLE_STATUSES = {500, 502, 503, 504, 529}


class ProviderClient:
    """
    One connection to one AI backend.

    Subclasses only describe the wire format: ``_build_request`` turns a
    message list into (url, headers, payload) and ``_parse_response`` pulls
    the reply text out of the decoded JSON body. Retries, backoff, deadlines
    and error classification live here.
    """

    kind: ClassVar[str] = ""
    label: ClassVar[str] = ""

    def __init__(
        self,
        api_key: str,
        model: str,
        config: Optional[ClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.config = config or ClientConfig()
        self.identity = ProviderIdentity(name=self.kind, model=model, label=self.label)
        self._transport = transport

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def model(self) -> str:
        return self.identity.model

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model!r})"

    async def send(
        self,
        prompt: str,
        deadline: Optional[float] = None,
        history: Optional[List[Message]] = None,
    ) -> Union[Success, Failure]:
        """
        Send one prompt, retrying transient failures.

        Args:
            prompt: User prompt, must be non-empty
            deadline: Total seconds allowed across all attempts and backoff sleeps
            history: Earlier messages of this provider's conversation thread

        Returns:
            Success with the reply text, or Failure with the last error kind
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt must be non-empty")
        if deadline is not None and deadline <= 0:
            raise ValueError("deadline must be greater than 0")

        messages = list(history or []) + [{"role": "user", "content": prompt}]
        loop = asyncio.get_running_loop()
        expires = None if deadline is None else loop.time() + deadline
        start = time.perf_counter()
        attempt = 0

        while True:
            attempt += 1
            timeout = self.config.timeout
            if expires is not None:
                remaining = expires - loop.time()
                if remaining <= 0:
                    return Failure(
                        FailureKind.TIMEOUT,
                        f"deadline of {deadline:.1f}s exhausted",
                        attempts=attempt - 1,
                        latency_ms=_elapsed_ms(start),
                    )
                timeout = min(timeout, remaining)

            try:
                text = await asyncio.wait_for(self._attempt(messages, timeout), timeout)
                return Success(text, latency_ms=_elapsed_ms(start), attempts=attempt)
            except asyncio.TimeoutError:
                error = ProviderError(FailureKind.TIMEOUT, f"no reply within {timeout:.1f}s")
            except ProviderError as e:
                error = e

            if not error.retryable or attempt > self.config.max_retries:
                logger.info("%s failed after %d attempt(s): %s", self.label, attempt, error)
                return Failure(
                    error.kind,
                    error.message,
                    attempts=attempt,
                    latency_ms=_elapsed_ms(start),
                    retry_after=error.retry_after,
                )

            delay = self.config.backoff_delay(attempt - 1, error.retry_after)
            if expires is not None and loop.time() + delay >= expires:
                logger.info("%s: no time left to retry after %s", self.label, error)
                return Failure(
                    error.kind,
                    f"{error.message} (deadline reached before retry)",
                    attempts=attempt,
                    latency_ms=_elapsed_ms(start),
                    retry_after=error.retry_after,
                )

            logger.warning(
                "%s transient error (attempt %d/%d): %s. Retrying in %.1fs",
                self.label, attempt, self.config.max_retries + 1, error, delay,
            )
            await asyncio.sleep(delay)

    async def _attempt(self, messages: List[Message], timeout: float) -> str:
        """Issue exactly one HTTP request and return the reply text."""
        url, headers, payload = self._build_request(messages)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise ProviderError(FailureKind.TIMEOUT, f"request timed out: {e}") from e
        except httpx.TransportError as e:
            raise ProviderError(FailureKind.PROVIDER_UNAVAILABLE, f"network error: {e}") from e

        if response.status_code >= 400:
            raise classify_status(response)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(FailureKind.UNKNOWN, "response body is not valid JSON") from e

        try:
            text = self._parse_response(data)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ProviderError(FailureKind.UNKNOWN, f"unexpected response shape: {e!r}") from e
        if text is None:
            raise ProviderError(FailureKind.UNKNOWN, "response contained no text")
        return text

    def _build_request(self, messages: List[Message]) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        raise NotImplementedError

    def _parse_response(self, data: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError


def classify_status(response: httpx.Response) -> ProviderError:
    """Map an HTTP error response onto a failure kind."""
    status = response.status_code
    body = response.text[:300]
    message = f"HTTP {status}: {body}".strip()

    if status in (401, 403):
        return ProviderError(FailureKind.AUTHENTICATION, message)
    if status == 429:
        return ProviderError(FailureKind.RATE_LIMITED, message, retry_after=parse_retry_after(response))
    if status in _UNAVAILABLE_STATUSES or status >= 500:
        return ProviderError(FailureKind.PROVIDER_UNAVAILABLE, message)
    if status in (400, 404, 422):
        return ProviderError(FailureKind.INVALID_REQUEST, message)
    return ProviderError(FailureKind.UNKNOWN, message)


def parse_retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        # HTTP-date form is not worth supporting here
        return None
    return max(seconds, 0.0)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0
