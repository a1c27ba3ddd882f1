"""Delta synthesis: turn a set of provider results into one AggregateReport."""

import asyncio
import logging
from typing import List, Optional, Sequence

from .providers import ProviderClient
from .types import (
    AggregateReport,
    Digest,
    DigestFailure,
    DigestSkipped,
    DigestStarted,
    DigestSuccess,
    DispatchRequest,
    FailureKind,
    ProviderResult,
    ReportReady,
    Success,
)

logger = logging.getLogger(__name__)

CANCELLED_REASON = "dispatch was cancelled"

DIGEST_INSTRUCTION = (
    "Compare the responses above. List the key differences between them first "
    "(facts, numbers or claims that appear in only some responses, and any "
    "contradictions), then briefly note what they agree on."
)


def build_digest_prompt(prompt: str, successes: Sequence[ProviderResult]) -> str:
    """
    Build the summarizer prompt from the successful replies only.

    Args:
        prompt: The user's original question
        successes: Successful results, in registration order

    Returns:
        One prompt with every reply labelled by its provider
    """
    parts = [f"Question:\n{prompt}\n", "Given these AI model responses:"]
    for result in successes:
        identity = result.provider
        parts.append(f"{identity.display_name} ({identity.model}):\n{result.text}\n---")
    parts.append(DIGEST_INSTRUCTION)
    return "\n".join(parts)


async def synthesize(
    request: DispatchRequest,
    results: Sequence[ProviderResult],
    summarizer: Optional[ProviderClient],
    deadline: Optional[float] = None,
    events: Optional[asyncio.Queue] = None,
    timed_out: bool = False,
    cancelled: bool = False,
    enabled: bool = True,
    cancel: Optional[asyncio.Event] = None,
) -> AggregateReport:
    """
    Produce the report, asking ``summarizer`` for a digest when it makes sense.

    The per-provider results are passed through untouched whatever happens to
    the digest, so the caller always has the raw replies.

    Args:
        request: The dispatch these results belong to
        results: One result per target, in registration order
        summarizer: Client that writes the digest, or None for side-by-side only
        deadline: Seconds allowed for the summarizer call, retries included
        events: Optional queue receiving DigestStarted and ReportReady
        timed_out: Whether the dispatch deadline cut some units off
        cancelled: Whether the dispatch was cancelled
        enabled: False to skip the digest (``--no-summary``)
        cancel: Event that abandons an in-flight digest call when set

    Returns:
        The immutable AggregateReport
    """
    successes = [result for result in results if result.ok]
    digest = await _digest(request, successes, summarizer, deadline, events, cancelled, enabled, cancel)
    cancelled = cancelled or digest == DigestSkipped(CANCELLED_REASON)
    report = AggregateReport(
        request=request,
        results=tuple(results),
        digest=digest,
        timed_out=timed_out,
        cancelled=cancelled,
    )
    if events is not None:
        events.put_nowait(ReportReady(report))
    return report


async def _digest(
    request: DispatchRequest,
    successes: List[ProviderResult],
    summarizer: Optional[ProviderClient],
    deadline: Optional[float],
    events: Optional[asyncio.Queue],
    cancelled: bool,
    enabled: bool,
    cancel: Optional[asyncio.Event],
) -> Digest:
    if not enabled:
        return DigestSkipped("summarization disabled")
    if summarizer is None:
        return DigestSkipped("no summarizer configured")
    if cancelled:
        return DigestSkipped(CANCELLED_REASON)
    if len(successes) < 2:
        return DigestSkipped(f"need at least two successful replies, got {len(successes)}")

    if events is not None:
        events.put_nowait(DigestStarted(summarizer.identity, tuple(r.provider for r in successes)))

    digest_prompt = build_digest_prompt(request.prompt, successes)
    logger.debug("Requesting digest from %s over %d replies", summarizer.label, len(successes))
    send = asyncio.ensure_future(summarizer.send(digest_prompt, deadline=deadline))
    try:
        if cancel is not None and not await _finished_before(send, cancel):
            logger.info("Digest from %s abandoned, dispatch was cancelled", summarizer.label)
            return DigestSkipped(CANCELLED_REASON)
        outcome = await send
    except asyncio.CancelledError:
        send.cancel()
        raise
    except Exception as e:
        logger.exception("Summarizer %s raised", summarizer.label)
        return DigestFailure(FailureKind.UNKNOWN, f"{type(e).__name__}: {e}", summarizer.identity)

    if isinstance(outcome, Success):
        return DigestSuccess(outcome.text, summarizer.identity)
    logger.warning("Summary generation failed: %s", outcome.message)
    return DigestFailure(outcome.kind, outcome.message, summarizer.identity)


async def _finished_before(send: asyncio.Future, cancel: asyncio.Event) -> bool:
    """Wait for ``send`` unless ``cancel`` is set first; a losing ``send`` is cancelled."""
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({send, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
    if send.done():
        return True
    send.cancel()
    await asyncio.gather(send, return_exceptions=True)
    return False
