"""
ChatDelta: ask several AI providers the same question at once and compare the answers.

Usage:
    from chatdelta import Session, build_clients, load_credentials, select_summarizer

    clients = build_clients(load_credentials())
    session = Session(clients, select_summarizer(clients, "gemini"))
    report = await session.ask("What is the capital of France?")

    for result in report.results:
        print(result.provider.display_name, result.outcome)
    print(report.digest)
"""

from .aggregator import build_digest_prompt, synthesize
from .config import ClientConfig, DeltaConfig, load_credentials, load_delta_config
from .dispatcher import Dispatch, dispatch
from .errors import ChatDeltaError, ConfigurationError, ProviderError
from .registry import build_clients, require_clients, select_summarizer
from .session import Session
from .types import (
    AggregateReport,
    Cancelled,
    DigestFailure,
    DigestSkipped,
    DigestSuccess,
    DispatchRequest,
    Failure,
    FailureKind,
    ProviderIdentity,
    ProviderResult,
    RunStatus,
    Success,
)

__all__ = [
    "AggregateReport",
    "Cancelled",
    "ChatDeltaError",
    "ClientConfig",
    "ConfigurationError",
    "DeltaConfig",
    "DigestFailure",
    "DigestSkipped",
    "DigestSuccess",
    "Dispatch",
    "DispatchRequest",
    "Failure",
    "FailureKind",
    "ProviderError",
    "ProviderIdentity",
    "ProviderResult",
    "RunStatus",
    "Session",
    "Success",
    "build_clients",
    "build_digest_prompt",
    "dispatch",
    "load_credentials",
    "load_delta_config",
    "require_clients",
    "select_summarizer",
    "synthesize",
]
