"""Render an AggregateReport for humans (text, markdown) or machines (json), and append it to a log."""

import json
from pathlib import Path
from typing import Any, Dict, List

from .types import (
    AggregateReport,
    Cancelled,
    DigestFailure,
    DigestSkipped,
    DigestSuccess,
    Failure,
    ProviderIdentity,
    ProviderResult,
    Success,
)

FORMATS = ("text", "json", "markdown")


def identity_to_dict(identity: ProviderIdentity) -> Dict[str, Any]:
    return {"name": identity.name, "model": identity.model, "label": identity.display_name}


def result_to_dict(result: ProviderResult) -> Dict[str, Any]:
    outcome = result.outcome
    data: Dict[str, Any] = {
        "provider": identity_to_dict(result.provider),
        "started_at": result.started_at.isoformat(),
        "finished_at": result.finished_at.isoformat(),
        "latency_ms": round(result.latency_ms, 3),
    }
    if isinstance(outcome, Success):
        data.update(status="success", text=outcome.text, attempts=outcome.attempts)
    elif isinstance(outcome, Failure):
        data.update(
            status="failure",
            error_kind=outcome.kind.value,
            error=outcome.message,
            attempts=outcome.attempts,
        )
        if outcome.retry_after is not None:
            data["retry_after"] = outcome.retry_after
    else:
        data.update(status="cancelled", error=outcome.message)
    return data


def digest_to_dict(report: AggregateReport) -> Dict[str, Any]:
    digest = report.digest
    if isinstance(digest, DigestSuccess):
        data = {"status": "success", "text": digest.text}
    elif isinstance(digest, DigestSkipped):
        data = {"status": "skipped", "reason": digest.reason}
    else:
        data = {"status": "failure", "error_kind": digest.kind.value, "error": digest.message}
    provider = getattr(digest, "provider", None)
    if provider is not None:
        data["provider"] = identity_to_dict(provider)
    return data


def report_to_dict(report: AggregateReport) -> Dict[str, Any]:
    return {
        "prompt": report.request.prompt,
        "status": report.status.value,
        "timed_out": report.timed_out,
        "cancelled": report.cancelled,
        "created_at": report.created_at.isoformat(),
        "results": [result_to_dict(result) for result in report.results],
        "digest": digest_to_dict(report),
    }


def _outcome_line(result: ProviderResult) -> str:
    outcome = result.outcome
    if isinstance(outcome, Failure):
        return f"Error ({outcome.kind.value}): {outcome.message}"
    if isinstance(outcome, Cancelled):
        return "Cancelled"
    return outcome.text


def _details(result: ProviderResult) -> str:
    attempts = getattr(result.outcome, "attempts", None)
    detail = f"{result.provider.model}, {result.latency_ms:.0f}ms"
    if attempts:
        detail += f", {attempts} attempt{'s' if attempts != 1 else ''}"
    return detail


def render_text(report: AggregateReport, verbose: bool = False) -> str:
    lines: List[str] = []
    for result in report.results:
        header = f"=== {result.provider.display_name} ==="
        if verbose:
            header = f"=== {result.provider.display_name} ({_details(result)}) ==="
        lines.append(header)
        lines.append(_outcome_line(result))
        lines.append("")

    digest = report.digest
    if isinstance(digest, DigestSuccess):
        lines.append("=== Summary ===")
        lines.append(digest.text)
    elif isinstance(digest, DigestFailure):
        lines.append("=== Summary ===")
        lines.append(f"Summary unavailable ({digest.kind.value}): {digest.message}")
    elif verbose:
        lines.append(f"(summary skipped: {digest.reason})")

    if report.timed_out:
        lines.append("")
        lines.append("Note: the dispatch deadline elapsed before every provider replied.")
    return "\n".join(lines).rstrip() + "\n"


def render_markdown(report: AggregateReport) -> str:
    lines = ["# ChatDelta Results", "", f"**Prompt:** {report.request.prompt}", ""]
    for result in report.results:
        lines.append(f"## {result.provider.display_name}")
        lines.append("")
        lines.append(_outcome_line(result))
        lines.append("")

    digest = report.digest
    if isinstance(digest, DigestSuccess):
        lines.extend(["## Summary", "", digest.text, ""])
    elif isinstance(digest, DigestFailure):
        lines.extend(["## Summary", "", f"_Summary unavailable ({digest.kind.value}): {digest.message}_", ""])
    return "\n".join(lines)


def render(report: AggregateReport, fmt: str = "text", verbose: bool = False) -> str:
    if fmt == "json":
        return json.dumps(report_to_dict(report), indent=2, ensure_ascii=False) + "\n"
    if fmt == "markdown":
        return render_markdown(report)
    if fmt == "text":
        return render_text(report, verbose=verbose)
    raise ValueError(f"Output format must be one of: {', '.join(FORMATS)}")


def append_log(path: str, report: AggregateReport):
    """Append one report to ``path`` as plain text. Single writer, no rotation."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("a", encoding="utf-8") as f:
        f.write(f"--- {report.created_at.isoformat()} ---\n")
        f.write(f"Prompt:\n{report.request.prompt}\n\n")
        f.write(render_text(report, verbose=True))
        f.write("\n")
