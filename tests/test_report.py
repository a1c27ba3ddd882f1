from __future__ import annotations

import json
from datetime import timedelta

import pytest

from chatdelta.metrics import MetricsRegistry
from chatdelta.report import append_log, render, report_to_dict
from chatdelta.types import (
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
    Success,
    utcnow,
)

GPT = ProviderIdentity("openai", "gpt-4o", "ChatGPT")
GEMINI = ProviderIdentity("gemini", "gemini-1.5-pro-latest", "Gemini")
CLAUDE = ProviderIdentity("claude", "claude-3-5-sonnet-20241022", "Claude")


def _result(identity, outcome, latency_ms: float = 250.0) -> ProviderResult:
    finished = utcnow()
    return ProviderResult(identity, outcome, started_at=finished - timedelta(milliseconds=latency_ms),
                          finished_at=finished)


def _report(digest=None, timed_out: bool = False) -> AggregateReport:
    results = (
        _result(GPT, Success("Rust is a systems language.", attempts=1)),
        _result(GEMINI, Failure(FailureKind.RATE_LIMITED, "HTTP 429", attempts=3, retry_after=2.0)),
        _result(CLAUDE, Success("Rust guarantees memory safety.", attempts=2)),
    )
    return AggregateReport(
        request=DispatchRequest("What is Rust?", (GPT, GEMINI, CLAUDE)),
        results=results,
        digest=digest or DigestSuccess("Only Claude mentions memory safety.", GEMINI),
        timed_out=timed_out,
    )


def test_text_shows_each_provider_then_summary() -> None:
    text = render(_report(), "text")

    assert text.index("=== ChatGPT ===") < text.index("=== Gemini ===") < text.index("=== Claude ===")
    assert "Error (rate_limited): HTTP 429" in text
    assert text.rstrip().endswith("=== Summary ===\nOnly Claude mentions memory safety.")


def test_verbose_text_adds_model_and_attempts() -> None:
    text = render(_report(digest=DigestSkipped("summarization disabled")), "text", verbose=True)

    assert "=== Claude (claude-3-5-sonnet-20241022, 250ms, 2 attempts) ===" in text
    assert "(summary skipped: summarization disabled)" in text


def test_text_notes_digest_failure_and_deadline() -> None:
    digest = DigestFailure(FailureKind.AUTHENTICATION, "HTTP 401", GEMINI)

    text = render(_report(digest=digest, timed_out=True), "text")

    assert "Summary unavailable (authentication): HTTP 401" in text
    assert "dispatch deadline elapsed" in text


def test_json_output_is_structured() -> None:
    data = json.loads(render(_report(), "json"))

    assert data["prompt"] == "What is Rust?"
    assert data["status"] == "partial"
    assert [r["status"] for r in data["results"]] == ["success", "failure", "success"]
    assert data["results"][1]["error_kind"] == "rate_limited"
    assert data["results"][1]["retry_after"] == 2.0
    assert data["results"][2]["attempts"] == 2
    assert data["digest"] == {
        "status": "success",
        "text": "Only Claude mentions memory safety.",
        "provider": {"name": "gemini", "model": "gemini-1.5-pro-latest", "label": "Gemini"},
    }


def test_cancelled_results_serialize() -> None:
    report = AggregateReport(
        request=DispatchRequest("q", (GPT,)),
        results=(_result(GPT, Cancelled()),),
        digest=DigestSkipped("dispatch was cancelled"),
        cancelled=True,
    )

    data = report_to_dict(report)

    assert data["results"][0]["status"] == "cancelled"
    assert data["status"] == "all_failed"
    assert data["cancelled"] is True
    assert "Cancelled" in render(report, "text")


def test_markdown_has_sections() -> None:
    markdown = render(_report(), "markdown")

    assert markdown.startswith("# ChatDelta Results")
    assert "**Prompt:** What is Rust?" in markdown
    assert "## Claude" in markdown
    assert "## Summary" in markdown


def test_unknown_format_is_rejected() -> None:
    with pytest.raises(ValueError):
        render(_report(), "yaml")


def test_append_log_keeps_previous_entries(tmp_path) -> None:
    path = tmp_path / "logs" / "chatdelta.log"

    append_log(str(path), _report())
    append_log(str(path), _report(digest=DigestSkipped("summarization disabled")))

    content = path.read_text(encoding="utf-8")
    assert content.count("Prompt:\nWhat is Rust?") == 2
    assert content.count("--- ") == 2
    assert "=== ChatGPT (gpt-4o, 250ms, 1 attempt) ===" in content


def test_metrics_ignore_cancelled_units() -> None:
    metrics = MetricsRegistry()
    assert metrics.summary() == "Metrics: ready"

    metrics.record_all(_report().results)
    metrics.record(_result(GPT, Cancelled()))

    assert metrics.get("openai").requests_total == 1
    assert metrics.get("gemini").success_rate == 0.0
    assert metrics.snapshot()["claude"]["average_latency_ms"] == pytest.approx(250.0, abs=1.0)
    assert metrics.summary() == "3 requests | 67% success"
