"""A conversation with every active provider at once."""

import asyncio
import logging
import uuid
from typing import Dict, List, Optional, Sequence

from .aggregator import synthesize
from .config import DeltaConfig
from .dispatcher import Dispatch
from .metrics import MetricsRegistry
from .providers import ProviderClient
from .registry import require_clients
from .types import AggregateReport, DispatchRequest, Message, utcnow

logger = logging.getLogger(__name__)

MAX_REPORTS = 100


class Session:
    """
    Owns the clients, the summarizer and one conversation thread per provider.

    Turns are serialized: ``ask`` holds a lock from dispatch until the
    history commit, so a provider sees its turns in order and no two
    dispatches ever write the same history.
    """

    def __init__(
        self,
        clients: Sequence[ProviderClient],
        summarizer: Optional[ProviderClient] = None,
        config: Optional[DeltaConfig] = None,
        keep_history: bool = True,
        metrics: Optional[MetricsRegistry] = None,
        max_reports: int = MAX_REPORTS,
    ):
        if max_reports < 1:
            raise ValueError("max_reports must be >= 1")
        self.clients = list(require_clients(list(clients)))
        self.summarizer = summarizer
        self.config = config or DeltaConfig()
        self.keep_history = keep_history
        self.metrics = metrics or MetricsRegistry()
        self.id = str(uuid.uuid4())
        self.created_at = utcnow()
        self.title = "New session"
        self.max_reports = max_reports
        self.turns = 0
        # Most recent turns only; older reports are dropped
        self.reports: List[AggregateReport] = []

        self._history: Dict[str, List[Message]] = {client.name: [] for client in self.clients}
        self._lock = asyncio.Lock()
        self._current: Optional[Dispatch] = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def history(self, name: str) -> List[Message]:
        return list(self._history.get(name, []))

    async def ask(
        self,
        prompt: str,
        events: Optional[asyncio.Queue] = None,
        summarize: Optional[bool] = None,
    ) -> AggregateReport:
        """
        Run one turn: fan out, collect, synthesize, commit history.

        Args:
            prompt: The user's prompt
            events: Optional queue for live sinks (see ``chatdelta.types`` events)
            summarize: Override ``config.summarize`` for this turn

        Returns:
            The AggregateReport for this turn
        """
        async with self._lock:
            request = DispatchRequest(
                prompt=prompt,
                targets=tuple(client.identity for client in self.clients),
                history={name: tuple(messages) for name, messages in self._history.items()}
                if self.keep_history else {},
            )
            current = Dispatch(
                request,
                self.clients,
                unit_timeout=self.config.unit_timeout,
                deadline=self.config.dispatch_deadline,
                events=events,
            )
            enabled = self.config.summarize if summarize is None else summarize
            self._current = current
            try:
                results = await current.start().wait()
                report = await synthesize(
                    request,
                    results,
                    self.summarizer,
                    deadline=self.config.unit_timeout,
                    events=events,
                    timed_out=current.timed_out,
                    cancelled=current.cancelled,
                    enabled=enabled,
                    cancel=current.cancel_event,
                )
            finally:
                self._current = None
            self._commit(report)
            return report

    def cancel(self) -> bool:
        """Cancel the in-flight dispatch or digest, if any. Returns whether there was one."""
        if self._current is None:
            return False
        logger.info("Cancelling in-flight turn for session %s", self.id)
        self._current.cancel()
        return True

    def _commit(self, report: AggregateReport):
        self.metrics.record_all(report.results)
        self.turns += 1
        self.reports.append(report)
        del self.reports[:-self.max_reports]
        if self.turns == 1:
            self.title = report.request.prompt.strip().splitlines()[0][:60]
        if not self.keep_history:
            return
        for result in report.successes:
            thread = self._history.setdefault(result.provider.name, [])
            thread.append({"role": "user", "content": report.request.prompt})
            thread.append({"role": "assistant", "content": result.text})
