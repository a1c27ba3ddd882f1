"""Error types for ChatDelta."""

from typing import Optional

from .types import FailureKind


class ChatDeltaError(Exception):
    """Base class for all ChatDelta errors."""


class ConfigurationError(ChatDeltaError):
    """Raised when there is nothing to dispatch to, or a provider name is unknown."""


class ProviderError(ChatDeltaError):
    """
    A single failed attempt against one provider.

    Raised inside provider clients only; ``ProviderClient.send`` converts it
    into a ``Failure`` outcome before it can reach the dispatcher.
    """

    def __init__(self, kind: FailureKind, message: str, retry_after: Optional[float] = None):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.message = message
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.kind.retryable
