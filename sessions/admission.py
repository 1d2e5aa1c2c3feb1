import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from base import AssistantBackend
from errors import GatewayError
from metrics import ADMISSIONS
from models import RunInfo
from sessions.registry import Lease, SessionRegistry

CONFLICT_MESSAGE = "A run is already active. Please try again later."


@dataclass
class Admission:
    ok: bool
    detail: str
    lease: Optional[Lease] = None


class AdmissionCoordinator:
    """Lets at most one run be active per thread.

    The active flag is advisory state that is re-checked on every poll; no lock
    is held while waiting on the remote service or between polls.
    """

    def __init__(self, backend: AssistantBackend, registry: SessionRegistry):
        self.backend = backend
        self.registry = registry
        self.logger = logging.getLogger("app")

    def _log(self, thread_id: str, msg: str, level: str = "info"):
        extra = {"extra_data": {"thread_id": thread_id, "component": "admission"}}
        getattr(self.logger, level)(msg, extra=extra)

    async def acquire(self, thread_id: str, max_retries: int = 10, base_delay: float = 1.0) -> Admission:
        lease = self.registry.try_activate(thread_id)
        if lease:
            return self._admitted(lease, "idle")

        session = self.registry.by_thread(thread_id)
        generation = session.generation
        had_run = session.run_id is not None
        live = await self._live_runs(thread_id)

        # a holder still in the pre-run window has nothing to show remotely yet
        if live == [] and had_run and self.registry.reconcile(thread_id, generation):
            self._log(thread_id, "No live remote run; clearing stale active flag", "warning")
            lease = self.registry.try_activate(thread_id)
            if lease:
                return self._admitted(lease, "reconciled")

        for attempt in range(max_retries):
            self._log(thread_id, f"Run is still active: {thread_id}. Retry: {attempt}, Delay: {base_delay}s")
            await asyncio.sleep(base_delay)
            lease = self.registry.try_activate(thread_id)
            if lease:
                return self._admitted(lease, f"released after {attempt + 1} retries")

        self._log(thread_id, f"Timeout or retries exceeded: {thread_id}", "warning")
        for run in live or []:
            try:
                await self.backend.cancel_run(thread_id, run.id)
            except Exception as e:
                self._log(thread_id, f"Could not cancel run {run.id}: {e}", "warning")
        self.registry.force_clear(thread_id)
        ADMISSIONS.labels(outcome="rejected").inc()
        return Admission(ok=False, detail=CONFLICT_MESSAGE)

    async def _live_runs(self, thread_id: str) -> Optional[List[RunInfo]]:
        """Non-terminal remote runs, or None when the listing itself failed."""
        try:
            runs = await self.backend.list_runs(thread_id)
        except GatewayError as e:
            self._log(thread_id, f"Listing runs failed: {e}", "warning")
            return None
        return [run for run in runs if run.active]

    def _admitted(self, lease: Lease, detail: str) -> Admission:
        ADMISSIONS.labels(outcome="admitted").inc()
        return Admission(ok=True, detail=detail, lease=lease)
