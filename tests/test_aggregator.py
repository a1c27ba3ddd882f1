from __future__ import annotations

import asyncio

import pytest

from chatdelta.aggregator import DIGEST_INSTRUCTION, build_digest_prompt, synthesize
from chatdelta.errors import ProviderError
from chatdelta.providers import ScriptedClient
from chatdelta.types import (
    Cancelled,
    DigestFailure,
    DigestSkipped,
    DigestStarted,
    DigestSuccess,
    DispatchRequest,
    Failure,
    FailureKind,
    ProviderIdentity,
    ProviderResult,
    ReportReady,
    RunStatus,
    Success,
    utcnow,
)

GPT = ProviderIdentity("openai", "gpt-4o", "ChatGPT")
GEMINI = ProviderIdentity("gemini", "gemini-1.5-pro-latest", "Gemini")
CLAUDE = ProviderIdentity("claude", "claude-3-5-sonnet-20241022", "Claude")


def _result(identity: ProviderIdentity, outcome) -> ProviderResult:
    now = utcnow()
    return ProviderResult(identity, outcome, started_at=now, finished_at=now)


def _request(prompt: str = "What is the capital of France?") -> DispatchRequest:
    return DispatchRequest(prompt, (GPT, GEMINI, CLAUDE))


def test_digest_prompt_labels_every_reply() -> None:
    successes = [
        _result(GPT, Success("Paris.")),
        _result(CLAUDE, Success("Paris, population ~2M.")),
    ]

    prompt = build_digest_prompt("Capital of France?", successes)

    assert prompt.startswith("Question:\nCapital of France?\n")
    assert "ChatGPT (gpt-4o):\nParis.\n---" in prompt
    assert "Claude (claude-3-5-sonnet-20241022):\nParis, population ~2M.\n---" in prompt
    assert prompt.index("ChatGPT") < prompt.index("Claude")
    assert prompt.endswith(DIGEST_INSTRUCTION)


@pytest.mark.asyncio
async def test_digest_covers_two_successful_replies() -> None:
    summarizer = ScriptedClient("summary", ["Only the second reply mentions the population (~2M)."])
    results = [
        _result(GPT, Success("Paris is the capital of France.")),
        _result(GEMINI, Success("The capital of France is Paris, a city of ~2M people.")),
    ]
    request = DispatchRequest("What is the capital of France?", (GPT, GEMINI))

    report = await synthesize(request, results, summarizer)

    assert summarizer.attempts == 1
    sent = summarizer.prompts[0][-1]["content"]
    assert "Paris is the capital of France." in sent
    assert "a city of ~2M people" in sent
    assert isinstance(report.digest, DigestSuccess)
    assert report.digest.text == "Only the second reply mentions the population (~2M)."
    assert report.digest.provider == summarizer.identity
    assert report.results == tuple(results)
    assert report.status == RunStatus.OK


@pytest.mark.asyncio
async def test_failed_replies_are_left_out_of_the_digest() -> None:
    summarizer = ScriptedClient("summary", ["delta"])
    results = [
        _result(GPT, Success("Paris.")),
        _result(GEMINI, Failure(FailureKind.RATE_LIMITED, "BOOM quota exceeded", attempts=3)),
        _result(CLAUDE, Success("Paris, France.")),
    ]

    report = await synthesize(_request(), results, summarizer)

    sent = summarizer.prompts[0][-1]["content"]
    assert "BOOM" not in sent
    assert "Gemini" not in sent
    assert report.status == RunStatus.PARTIAL
    assert [r.provider for r in report.failures] == [GEMINI]


@pytest.mark.asyncio
async def test_single_success_skips_digest() -> None:
    summarizer = ScriptedClient("summary", ["should not be asked"])
    results = [
        _result(GPT, Success("Paris.")),
        _result(GEMINI, Failure(FailureKind.TIMEOUT, "no reply within 30.0s", attempts=1)),
        _result(CLAUDE, Failure(FailureKind.AUTHENTICATION, "HTTP 401", attempts=1)),
    ]

    report = await synthesize(_request(), results, summarizer)

    assert summarizer.attempts == 0
    assert report.digest == DigestSkipped("need at least two successful replies, got 1")
    assert report.status == RunStatus.PARTIAL


@pytest.mark.asyncio
async def test_no_successes_is_all_failed() -> None:
    summarizer = ScriptedClient("summary", ["unused"])
    results = [
        _result(GPT, Failure(FailureKind.AUTHENTICATION, "HTTP 401")),
        _result(GEMINI, Failure(FailureKind.PROVIDER_UNAVAILABLE, "HTTP 503")),
    ]

    report = await synthesize(_request(), results, summarizer)

    assert isinstance(report.digest, DigestSkipped)
    assert report.status == RunStatus.ALL_FAILED


@pytest.mark.asyncio
async def test_digest_skip_reasons() -> None:
    summarizer = ScriptedClient("summary", ["unused"])
    results = [_result(GPT, Success("a")), _result(GEMINI, Success("b"))]
    request = DispatchRequest("q", (GPT, GEMINI))

    disabled = await synthesize(request, results, summarizer, enabled=False)
    missing = await synthesize(request, results, None)
    cancelled = await synthesize(request, results, summarizer, cancelled=True)

    assert disabled.digest == DigestSkipped("summarization disabled")
    assert missing.digest == DigestSkipped("no summarizer configured")
    assert cancelled.digest == DigestSkipped("dispatch was cancelled")
    assert cancelled.cancelled
    assert summarizer.attempts == 0


@pytest.mark.asyncio
async def test_summarizer_failure_keeps_results() -> None:
    summarizer = ScriptedClient("summary", [ProviderError(FailureKind.AUTHENTICATION, "HTTP 401")])
    results = [
        _result(GPT, Success("Paris.")),
        _result(GEMINI, Success("Paris!")),
        _result(CLAUDE, Cancelled()),
    ]

    report = await synthesize(_request(), results, summarizer)

    assert isinstance(report.digest, DigestFailure)
    assert report.digest.kind == FailureKind.AUTHENTICATION
    assert report.status == RunStatus.DIGEST_FAILED
    assert report.result_for("openai").text == "Paris."
    assert report.result_for("gemini").text == "Paris!"


@pytest.mark.asyncio
async def test_events_announce_digest_and_report() -> None:
    summarizer = ScriptedClient("summary", ["delta"])
    results = [_result(GPT, Success("a")), _result(GEMINI, Success("b"))]
    events: asyncio.Queue = asyncio.Queue()

    report = await synthesize(DispatchRequest("q", (GPT, GEMINI)), results, summarizer, events=events)

    started = events.get_nowait()
    assert isinstance(started, DigestStarted)
    assert started.summarizer == summarizer.identity
    assert list(started.inputs) == [GPT, GEMINI]
    ready = events.get_nowait()
    assert isinstance(ready, ReportReady)
    assert ready.report is report
    assert events.empty()


@pytest.mark.asyncio
async def test_skipped_digest_still_reports_ready() -> None:
    events: asyncio.Queue = asyncio.Queue()

    await synthesize(DispatchRequest("q", (GPT,)), [_result(GPT, Success("a"))], None, events=events)

    assert isinstance(events.get_nowait(), ReportReady)
    assert events.empty()


@pytest.mark.asyncio
async def test_cancel_event_abandons_in_flight_digest() -> None:
    summarizer = ScriptedClient("summary", [(10.0, "too late")])
    results = [_result(GPT, Success("a")), _result(GEMINI, Success("b"))]
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.1, cancel.set)

    report = await asyncio.wait_for(
        synthesize(DispatchRequest("q", (GPT, GEMINI)), results, summarizer, cancel=cancel),
        1.0,
    )

    assert report.digest == DigestSkipped("dispatch was cancelled")
    assert report.cancelled
    assert report.status == RunStatus.OK


@pytest.mark.asyncio
async def test_unset_cancel_event_leaves_digest_alone() -> None:
    summarizer = ScriptedClient("summary", [(0.05, "delta")])
    results = [_result(GPT, Success("a")), _result(GEMINI, Success("b"))]

    report = await synthesize(DispatchRequest("q", (GPT, GEMINI)), results, summarizer, cancel=asyncio.Event())

    assert report.digest == DigestSuccess("delta", summarizer.identity)
    assert not report.cancelled
