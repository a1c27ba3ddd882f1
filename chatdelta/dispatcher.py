"""
Parallel fan-out of one prompt to every active provider.

Every target gets its own task, started back to back, so total latency is
the slowest provider rather than the sum of all of them. Two timeout layers
apply: ``unit_timeout`` bounds one provider's whole retry budget and
``deadline`` bounds the dispatch as a whole. Whatever happens, ``wait()``
returns exactly one ProviderResult per target, in registration order.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .providers import ProviderClient
from .types import (
    Cancelled,
    DispatchRequest,
    DispatchStarted,
    Failure,
    FailureKind,
    Outcome,
    ProviderResult,
    ResultArrived,
    utcnow,
)

logger = logging.getLogger(__name__)

# Lets a client report its own deadline timeout (with its attempt count)
# before the dispatcher's ceiling fires.
UNIT_GRACE = 0.05


class Dispatch:
    """
    One in-flight fan-out.

    Usage:
        dispatch = Dispatch(request, clients, unit_timeout=30, deadline=45).start()
        ...
        dispatch.cancel()          # optional, e.g. the user typed a new prompt
        results = await dispatch.wait()
    """

    def __init__(
        self,
        request: DispatchRequest,
        clients: Sequence[ProviderClient],
        unit_timeout: Optional[float] = None,
        deadline: Optional[float] = None,
        events: Optional[asyncio.Queue] = None,
    ):
        by_name = {client.name: client for client in clients}
        missing = [target.name for target in request.targets if target.name not in by_name]
        if missing:
            raise ValueError(f"no client for dispatch targets: {missing}")
        if unit_timeout is not None and unit_timeout <= 0:
            raise ValueError("unit_timeout must be greater than 0")
        if deadline is not None and deadline <= 0:
            raise ValueError("deadline must be greater than 0")

        targets = {target.name for target in request.targets}
        self.request = request
        self.clients = [client for client in clients if client.name in targets]
        self.unit_timeout = unit_timeout
        self.deadline = deadline
        self.events = events
        self.timed_out = False
        self.cancelled = False

        self._tasks: Dict[str, asyncio.Task] = {}
        self._results: Dict[str, ProviderResult] = {}
        self._unit_starts: Dict[str, datetime] = {}
        self._cancel_requested = asyncio.Event()
        self._expires: Optional[float] = None

    @property
    def started(self) -> bool:
        return bool(self._tasks)

    @property
    def cancel_event(self) -> asyncio.Event:
        """Set once ``cancel()`` is called, even after the units resolved."""
        return self._cancel_requested

    def start(self) -> "Dispatch":
        if self.started:
            raise RuntimeError("dispatch already started")
        loop = asyncio.get_running_loop()
        if self.deadline is not None:
            self._expires = loop.time() + self.deadline
        self._emit(DispatchStarted(self.request))
        for client in self.clients:
            self._tasks[client.name] = asyncio.create_task(
                self._run_unit(client), name=f"chatdelta-{client.name}"
            )
        logger.debug("Dispatched to %d provider(s)", len(self._tasks))
        return self

    def cancel(self):
        """Ask the dispatch to stop; units that already resolved keep their results."""
        self._cancel_requested.set()

    async def wait(self) -> List[ProviderResult]:
        if not self.started:
            self.start()
        loop = asyncio.get_running_loop()
        cancel_waiter = asyncio.ensure_future(self._cancel_requested.wait())
        try:
            while True:
                outstanding = [task for task in self._tasks.values() if not task.done()]
                if not outstanding:
                    break
                if self._cancel_requested.is_set():
                    self.cancelled = True
                    logger.info("Dispatch cancelled with %d unit(s) outstanding", len(outstanding))
                    break
                timeout = None
                if self._expires is not None:
                    timeout = self._expires - loop.time()
                    if timeout <= 0:
                        self.timed_out = True
                        logger.warning(
                            "Dispatch deadline of %.1fs elapsed with %d unit(s) outstanding",
                            self.deadline, len(outstanding),
                        )
                        break
                await asyncio.wait(
                    outstanding + [cancel_waiter],
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
        finally:
            cancel_waiter.cancel()
            await self._stop_outstanding()

        return self._collect()

    async def _stop_outstanding(self):
        pending = [task for task in self._tasks.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _collect(self) -> List[ProviderResult]:
        results = []
        for client in self.clients:
            result = self._results.get(client.name)
            if result is None:
                outcome: Outcome
                if self.cancelled:
                    outcome = Cancelled()
                else:
                    outcome = Failure(FailureKind.TIMEOUT, "dispatch deadline elapsed")
                now = utcnow()
                started_at = self._unit_starts.get(client.name, now)
                result = ProviderResult(client.identity, outcome, started_at=started_at, finished_at=now)
                self._record(result)
            results.append(result)
        return results

    async def _run_unit(self, client: ProviderClient) -> ProviderResult:
        started_at = self._unit_starts[client.name] = utcnow()
        history = self.request.history_for(client.name)
        try:
            if self.unit_timeout is None:
                outcome = await client.send(self.request.prompt, history=history)
            else:
                outcome = await asyncio.wait_for(
                    client.send(self.request.prompt, deadline=self.unit_timeout, history=history),
                    self.unit_timeout + UNIT_GRACE,
                )
        except asyncio.TimeoutError:
            logger.warning("%s exceeded the %.1fs unit timeout", client.label, self.unit_timeout)
            outcome = Failure(FailureKind.TIMEOUT, f"no reply within {self.unit_timeout:.1f}s")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Unexpected error from %s", client.label)
            outcome = Failure(FailureKind.UNKNOWN, f"{type(e).__name__}: {e}")

        result = ProviderResult(client.identity, outcome, started_at=started_at, finished_at=utcnow())
        self._record(result)
        return result

    def _record(self, result: ProviderResult):
        name = result.provider.name
        if name in self._results:
            return
        self._results[name] = result
        self._emit(ResultArrived(result))

    def _emit(self, event):
        if self.events is not None:
            self.events.put_nowait(event)


async def dispatch(
    request: DispatchRequest,
    clients: Sequence[ProviderClient],
    unit_timeout: Optional[float] = None,
    deadline: Optional[float] = None,
    events: Optional[asyncio.Queue] = None,
) -> List[ProviderResult]:
    """
    Query every target in parallel and wait for all of them.

    Args:
        request: Prompt and targets
        clients: Active clients, in registration order
        unit_timeout: Ceiling for one provider, retries included
        deadline: Ceiling for the whole fan-out
        events: Optional queue receiving one ResultArrived per provider

    Returns:
        One ProviderResult per target, in the order of ``clients``
    """
    return await Dispatch(request, clients, unit_timeout, deadline, events).start().wait()
