"""
Triage Event Dispatcher
=======================

Turns trigger events into background workflow runs.

Every accepted event starts exactly one run as its own asyncio task; the
caller gets the run id back immediately and never waits for, or sees, the
run's outcome. Outcomes are reported through the engine's logs.
"""

import asyncio
from typing import Optional, Set

from src.config import settings, TriageEvent
from src.core import ConfigurationException
from src.shared.infrastructure.logging import get_context_logger, get_logger
from src.triage.domain import WorkflowRun
from src.triage.application.services import ITicketStore
from src.triage.application.workflow import TriageWorkflowEngine

logger = get_logger(__name__)


class TriageDispatcher:
    """
    Starts one workflow run per event. No de-duplication across events.

    Must be used from inside a running event loop.
    """

    def __init__(self, engine: TriageWorkflowEngine, ticket_store: Optional[ITicketStore] = None):
        self._engine = engine
        self._tickets = ticket_store
        self._tasks: Set["asyncio.Task[WorkflowRun]"] = set()

    @property
    def pending(self) -> int:
        """Number of runs still in flight."""
        return len(self._tasks)

    def dispatch(self, event: str, subject_id: str, correlation_id: Optional[str] = None) -> str:
        """
        Start a run for an event without waiting for it.

        Args:
            event: One of the TriageEvent names
            subject_id: Ticket ID (or user ID for user-signup)
            correlation_id: Request ID of the caller, for log linking

        Returns:
            The new run's ID

        Raises:
            ValidationException: If the event name is unknown
        """
        run = self._engine.new_run(event, subject_id)

        task = asyncio.get_running_loop().create_task(
            self._engine.execute(run), name=f"triage:{event}:{run.run_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        get_context_logger(__name__, correlation_id=correlation_id).info(
            "Workflow run dispatched",
            extra={"event": event, "subject_id": subject_id, "run_id": run.run_id}
        )
        return run.run_id

    def trigger_create(self, ticket_id: str, correlation_id: Optional[str] = None) -> str:
        return self.dispatch(TriageEvent.TICKET_CREATED, ticket_id, correlation_id)

    def trigger_refresh(self, ticket_id: str, correlation_id: Optional[str] = None) -> str:
        return self.dispatch(TriageEvent.TICKET_REFRESH, ticket_id, correlation_id)

    def trigger_signup(self, user_id: str, correlation_id: Optional[str] = None) -> str:
        return self.dispatch(TriageEvent.USER_SIGNUP, user_id, correlation_id)

    async def backfill(self, limit: Optional[int] = None, correlation_id: Optional[str] = None) -> int:
        """
        Refresh every ticket missing priority, assignee or helpful notes.

        Returns:
            Number of refresh runs dispatched
        """
        if self._tickets is None:
            raise ConfigurationException("Backfill needs a ticket store")

        tickets = await self._tickets.list_missing_enrichment(limit or settings.backfill_batch_size)
        for ticket in tickets:
            self.trigger_refresh(ticket.id, correlation_id)

        logger.info("Backfill dispatched", extra={"dispatched": len(tickets)})
        return len(tickets)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """
        Wait for in-flight runs.

        Runs still going after ``timeout`` are cancelled, so nothing keeps
        using the store or notifier once the caller shuts them down.
        """
        if not self._tasks:
            return
        done, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        if not still_running:
            return

        logger.warning(
            "Cancelling workflow runs still in flight after drain timeout",
            extra={
                "in_flight": len(still_running),
                "completed": len(done),
                "tasks": sorted(task.get_name() for task in still_running),
            }
        )
        for task in still_running:
            task.cancel()
        await asyncio.gather(*still_running, return_exceptions=True)
