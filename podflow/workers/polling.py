from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from podflow.application.workflows import JobKind, WorkflowService
from podflow.core.errors import PodflowError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PollerKey:
    session_id: str
    workflow_id: str
    kind: JobKind


class JobPoller:
    """Polls one pending job until it settles or the attempt budget runs out.

    Every tick re-reads the workflow through the service, so a result that
    arrived by callback stops the loop on the next tick. When the budget is
    exhausted the job is abandoned, but only if it is still pending.
    """

    def __init__(
        self,
        service: WorkflowService,
        workflow_id: str,
        kind: JobKind,
        *,
        interval: float = 2.0,
        max_attempts: int = 60,
    ) -> None:
        self._service = service
        self.workflow_id = workflow_id
        self.kind = kind
        self._interval = interval
        self._max_attempts = max_attempts
        self.attempts = 0
        self.outcome: str | None = None
        self._task: asyncio.Task[str] | None = None

    def start(self) -> asyncio.Task[str]:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name=f"poll-{self.kind}-{self.workflow_id}")
        return self._task

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def run(self) -> str:
        while self.attempts < self._max_attempts:
            await asyncio.sleep(self._interval)
            self.attempts += 1
            try:
                result = await asyncio.to_thread(self._service.poll, self.workflow_id, self.kind)
            except PodflowError as exc:
                logger.warning(
                    "%s poll for %s failed on attempt %d, will retry: %s", self.kind, self.workflow_id, self.attempts, exc
                )
                continue
            if result == "done":
                self.outcome = "done"
                logger.info("%s poll for %s settled after %d attempt(s)", self.kind, self.workflow_id, self.attempts)
                return self.outcome

        abandoned = await asyncio.to_thread(self._service.abandon, self.workflow_id, self.kind)
        self.outcome = "abandoned" if abandoned else "done"
        return self.outcome

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("Cancelled %s poll for %s", self.kind, self.workflow_id)

    async def wait(self) -> str | None:
        if self._task is None:
            return self.outcome
        try:
            return await self._task
        except asyncio.CancelledError:
            return None


class PollerRegistry:
    """Pollers bound to an operator session; cancelling the session stops its loops."""

    def __init__(self, service: WorkflowService, *, interval: float = 2.0, max_attempts: int = 60) -> None:
        self._service = service
        self._interval = interval
        self._max_attempts = max_attempts
        self._pollers: dict[PollerKey, JobPoller] = {}

    def start(self, session_id: str, workflow_id: str, kind: JobKind) -> JobPoller:
        key = PollerKey(session_id, workflow_id, kind)
        existing = self._pollers.get(key)
        if existing is not None and not existing.done:
            return existing
        poller = JobPoller(
            self._service,
            workflow_id,
            kind,
            interval=self._interval,
            max_attempts=self._max_attempts,
        )
        self._pollers[key] = poller
        poller.start().add_done_callback(lambda task: self._forget(key, poller, task))
        return poller

    def _forget(self, key: PollerKey, poller: JobPoller, task: asyncio.Task[str]) -> None:
        if self._pollers.get(key) is poller:
            del self._pollers[key]
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s poll for %s stopped: %r", key.kind, key.workflow_id, task.exception())

    def get(self, session_id: str, workflow_id: str, kind: JobKind) -> JobPoller | None:
        return self._pollers.get(PollerKey(session_id, workflow_id, kind))

    def cancel(self, session_id: str, workflow_id: str | None = None) -> int:
        """Cancel pollers of a session, optionally only those watching one workflow."""

        cancelled = 0
        for key in list(self._pollers):
            if key.session_id != session_id:
                continue
            if workflow_id is not None and key.workflow_id != workflow_id:
                continue
            self._pollers.pop(key).cancel()
            cancelled += 1
        return cancelled

    def cancel_workflow(self, workflow_id: str) -> int:
        """Cancel every session's pollers for a workflow."""

        keys = [key for key in self._pollers if key.workflow_id == workflow_id]
        for key in keys:
            self._pollers.pop(key).cancel()
        return len(keys)

    def cancel_all(self) -> None:
        for poller in self._pollers.values():
            poller.cancel()
        self._pollers.clear()

    def __len__(self) -> int:
        return sum(1 for poller in self._pollers.values() if not poller.done)
