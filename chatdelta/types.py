"""Result and event model shared by the dispatcher, aggregator and sinks."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union


class FailureKind(str, Enum):
    """Why a provider call (or the digest) failed."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    AUTHENTICATION = "authentication"
    INVALID_REQUEST = "invalid_request"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in (FailureKind.TIMEOUT, FailureKind.RATE_LIMITED, FailureKind.PROVIDER_UNAVAILABLE)


class RunStatus(str, Enum):
    """Overall outcome of one dispatch, for the caller to map onto exit codes or banners."""

    OK = "ok"
    PARTIAL = "partial"
    ALL_FAILED = "all_failed"
    DIGEST_FAILED = "digest_failed"


@dataclass(frozen=True)
class ProviderIdentity:
    """One backend configuration. Two identities are equal when their names match."""

    name: str
    model: str = field(compare=False)
    label: str = field(default="", compare=False)

    @property
    def display_name(self) -> str:
        return self.label or self.name


Message = Dict[str, str]


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Success:
    text: str
    latency_ms: float = 0.0
    attempts: int = 1


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str
    attempts: Optional[int] = None
    latency_ms: float = 0.0
    retry_after: Optional[float] = None


@dataclass(frozen=True)
class Cancelled:
    """The unit had not resolved when its dispatch was cancelled."""

    message: str = "cancelled before completion"


Outcome = Union[Success, Failure, Cancelled]


@dataclass(frozen=True)
class DispatchRequest:
    """One user turn: the prompt, who it goes to, and each target's prior thread."""

    prompt: str
    targets: Tuple[ProviderIdentity, ...]
    history: Mapping[str, Tuple[Message, ...]] = field(default_factory=dict)

    def __post_init__(self):
        if not self.prompt or not self.prompt.strip():
            raise ValueError("prompt must be non-empty")
        names = [target.name for target in self.targets]
        if len(names) != len(set(names)):
            raise ValueError(f"duplicate targets in dispatch request: {names}")

    def history_for(self, name: str) -> List[Message]:
        return list(self.history.get(name, ()))


@dataclass(frozen=True)
class ProviderResult:
    provider: ProviderIdentity
    outcome: Outcome
    started_at: datetime
    finished_at: datetime

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, Success)

    @property
    def cancelled(self) -> bool:
        return isinstance(self.outcome, Cancelled)

    @property
    def text(self) -> Optional[str]:
        return self.outcome.text if isinstance(self.outcome, Success) else None

    @property
    def latency_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000.0


# ---------------------------------------------------------------------------
# Digest and report
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DigestSuccess:
    text: str
    provider: Optional[ProviderIdentity] = None


@dataclass(frozen=True)
class DigestSkipped:
    reason: str


@dataclass(frozen=True)
class DigestFailure:
    kind: FailureKind
    message: str = ""
    provider: Optional[ProviderIdentity] = None


Digest = Union[DigestSuccess, DigestSkipped, DigestFailure]


@dataclass(frozen=True)
class AggregateReport:
    request: DispatchRequest
    results: Tuple[ProviderResult, ...]
    digest: Digest
    timed_out: bool = False
    cancelled: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def successes(self) -> List[ProviderResult]:
        return [result for result in self.results if result.ok]

    @property
    def failures(self) -> List[ProviderResult]:
        return [result for result in self.results if not result.ok]

    @property
    def status(self) -> RunStatus:
        if not self.successes:
            return RunStatus.ALL_FAILED
        if isinstance(self.digest, DigestFailure):
            return RunStatus.DIGEST_FAILED
        if self.failures:
            return RunStatus.PARTIAL
        return RunStatus.OK

    def result_for(self, name: str) -> Optional[ProviderResult]:
        for result in self.results:
            if result.provider.name == name:
                return result
        return None


# ---------------------------------------------------------------------------
# Events emitted to output sinks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DispatchStarted:
    request: DispatchRequest


@dataclass(frozen=True)
class ResultArrived:
    result: ProviderResult


@dataclass(frozen=True)
class DigestStarted:
    summarizer: ProviderIdentity
    inputs: Sequence[ProviderIdentity]


@dataclass(frozen=True)
class ReportReady:
    report: AggregateReport


Event = Union[DispatchStarted, ResultArrived, DigestStarted, ReportReady]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
