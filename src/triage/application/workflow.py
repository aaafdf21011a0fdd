"""
Triage Workflow Engine
======================

Runs a fixed, ordered pipeline of named steps for one ticket (or user).

A step is a plain descriptor: a name, an async callable, a retry budget
and a best-effort flag. ``StepRunner`` owns retries and memoization, so
step bodies only describe the work itself.

Failure semantics:
- NonRetriableException: the run is aborted, later steps never execute
- any other exception: the step is retried within its budget, then the
  run ends as failed-exhausted (or continues, for best-effort steps)

Nothing raised by a step escapes ``TriageWorkflowEngine.execute``; callers
only ever see ``run.outcome``.
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from src.config import settings, TicketStatus, Priority, TriageEvent, VALID_EVENTS, VALID_PRIORITIES
from src.core import (
    DomainException, NonRetriableException, NotificationException,
    ResourceNotFoundException, ValidationException
)
from src.shared.infrastructure.logging import get_context_logger, get_logger, log_latency
from src.triage.domain import (
    Ticket, User, StepStatus, StepResult, WorkflowRun, SkillNormalizer
)
from src.triage.application.services import (
    ITicketStore, IUserDirectory, INotifier,
    ClassificationService, AssignmentResolver
)

logger = get_logger(__name__)

StepFn = Callable[[WorkflowRun], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[None]]


class StepName(str):
    """Step names, as they appear in logs and run records."""
    FETCH_TICKET = "fetch-ticket"
    UPDATE_STATUS = "update-status"
    AI_PROCESSING = "ai-processing"
    AI_ANALYSIS = "ai-analysis"
    ASSIGN_MODERATOR = "assign-moderator"
    ASSIGN_USER = "assign-user"
    SEND_EMAIL_NOTIFICATION = "send-email-notification"
    FETCH_USER = "fetch-user"
    SEND_WELCOME_EMAIL = "send-welcome-email"


@dataclass(frozen=True)
class Step:
    """
    One named unit of work.

    Attributes:
        name: Step name, unique within a pipeline
        run: Async callable receiving the run (for earlier step outputs)
        retries: Retries after the first attempt
        best_effort: If True, exhausting retries does not fail the run
    """
    name: str
    run: StepFn
    retries: int = 0
    best_effort: bool = False


class StepRunner:
    """
    Executes steps in order with per-step retry and write-once memoization.

    The run's step results are the memo table: a step that already
    succeeded is never executed again for that run.
    """

    def __init__(self, backoff_seconds: float = 1.0, sleep: Optional[SleepFn] = None):
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep or asyncio.sleep

    async def run_pipeline(self, run: WorkflowRun, steps: List[Step]) -> WorkflowRun:
        log = get_context_logger(__name__, correlation_id=run.run_id)

        for step in steps:
            memoized = run.step(step.name)
            if memoized is not None and memoized.succeeded:
                log.info("Step already succeeded, reusing output", extra={"step": step.name})
                continue

            result = run.start_step(step.name)
            finished = await self._run_step(run, step, result, log)
            if not finished:
                return run

        run.complete()
        return run

    async def _run_step(self, run: WorkflowRun, step: Step, result: StepResult, log) -> bool:
        """Run one step to success or exhaustion. Returns False if the run ended."""
        max_attempts = step.retries + 1

        for attempt in range(max_attempts):
            result.attempts += 1
            log.info(
                "Step started",
                extra={"step": step.name, "attempt": result.attempts, "max_attempts": max_attempts}
            )
            try:
                output = await step.run(run)
            except NonRetriableException as e:
                result.status = StepStatus.FAILED_TERMINAL
                result.error = str(e)
                log.error(
                    "Step failed with non-retriable error, aborting run",
                    extra={"step": step.name, "error": str(e), "error_type": type(e).__name__}
                )
                run.abort(f"{step.name}: {e}")
                return False
            except Exception as e:
                result.status = StepStatus.FAILED_RETRIABLE
                result.error = str(e)
                log.warning(
                    "Step attempt failed",
                    extra={
                        "step": step.name,
                        "attempt": result.attempts,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                )
                if attempt < max_attempts - 1:
                    delay = self._backoff_seconds * (2 ** attempt)
                    if delay > 0:
                        await self._sleep(delay)
                continue

            self._record_success(run, result, output)
            log.info("Step succeeded", extra={"step": step.name, "attempt": result.attempts})
            return True

        if step.best_effort:
            log.warning(
                "Best-effort step gave up, continuing run",
                extra={"step": step.name, "attempts": result.attempts, "error": result.error}
            )
            return True

        log.error(
            "Step exhausted retries, failing run",
            extra={"step": step.name, "attempts": result.attempts, "error": result.error}
        )
        run.exhaust(f"{step.name}: {result.error}")
        return False

    @staticmethod
    def _record_success(run: WorkflowRun, result: StepResult, output: Any) -> None:
        if result.succeeded:
            raise DomainException(
                f"Step '{result.name}' already recorded success",
                {"run_id": run.run_id, "step": result.name}
            )
        result.status = StepStatus.SUCCEEDED
        result.output = output
        result.error = None


class TriageWorkflowEngine:
    """
    Triage pipelines for ticket-created, ticket-refresh and user-signup.

    All collaborators are injected so runs can be exercised with fakes.
    """

    def __init__(
        self,
        ticket_store: ITicketStore,
        user_directory: IUserDirectory,
        classifier: ClassificationService,
        notifier: INotifier,
        create_retries: Optional[int] = None,
        refresh_retries: Optional[int] = None,
        signup_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Optional[SleepFn] = None
    ):
        self._tickets = ticket_store
        self._users = user_directory
        self._classifier = classifier
        self._resolver = AssignmentResolver(user_directory)
        self._notifier = notifier

        self._create_retries = settings.create_step_retries if create_retries is None else create_retries
        self._refresh_retries = settings.refresh_step_retries if refresh_retries is None else refresh_retries
        self._signup_retries = settings.signup_step_retries if signup_retries is None else signup_retries

        self._runner = StepRunner(
            backoff_seconds=settings.step_retry_backoff_seconds if backoff_seconds is None else backoff_seconds,
            sleep=sleep
        )

    # ========== Pipelines ==========

    def pipeline(self, event: str) -> List[Step]:
        """Ordered steps for an event."""
        if event == TriageEvent.TICKET_CREATED:
            retries = self._create_retries
            return [
                Step(StepName.FETCH_TICKET, self._fetch_ticket, retries),
                Step(StepName.UPDATE_STATUS, self._update_status, retries),
                Step(StepName.AI_PROCESSING, self._ai_processing, retries),
                Step(StepName.ASSIGN_MODERATOR, self._assign_moderator, retries),
                # The notifier retries delivery itself; a step retry would resend
                Step(StepName.SEND_EMAIL_NOTIFICATION, self._send_email_notification, 0, best_effort=True),
            ]
        if event == TriageEvent.TICKET_REFRESH:
            retries = self._refresh_retries
            return [
                Step(StepName.FETCH_TICKET, self._fetch_ticket, retries),
                Step(StepName.AI_ANALYSIS, self._ai_analysis, retries),
                Step(StepName.ASSIGN_USER, self._assign_user, retries),
            ]
        if event == TriageEvent.USER_SIGNUP:
            return [
                Step(StepName.FETCH_USER, self._fetch_user, self._signup_retries),
                Step(StepName.SEND_WELCOME_EMAIL, self._send_welcome_email, 0, best_effort=True),
            ]
        raise ValidationException(f"Unknown triage event: {event}", {"event": event})

    def new_run(self, event: str, subject_id: str, run_id: Optional[str] = None) -> WorkflowRun:
        if event not in VALID_EVENTS:
            raise ValidationException(f"Unknown triage event: {event}", {"event": event})
        return WorkflowRun(run_id=run_id or str(uuid.uuid4()), event=event, subject_id=subject_id)

    async def execute(self, run: WorkflowRun) -> WorkflowRun:
        """
        Execute (or resume) a run to a terminal state.

        Never raises; the result is ``run.outcome``.
        """
        log = get_context_logger(__name__, correlation_id=run.run_id)
        if run.is_finished:
            log.info("Workflow run already finished", extra={"state": run.state.value})
            return run

        log.info(
            "Workflow run started",
            extra={"event": run.event, "subject_id": run.subject_id}
        )

        try:
            await self._runner.run_pipeline(run, self.pipeline(run.event))
        except Exception as e:
            log.exception(
                "Workflow run crashed outside a step",
                extra={"error": str(e), "error_type": type(e).__name__}
            )
            if not run.is_finished:
                run.abort(f"engine error: {e}")

        log.info(
            "Workflow run finished",
            extra={
                "event": run.event,
                "subject_id": run.subject_id,
                "state": run.state.value,
                "success": run.success,
                "run_error": run.error,
                "run": run.to_dict(),
            }
        )
        return run

    async def handle(self, event: str, subject_id: str, run_id: Optional[str] = None) -> WorkflowRun:
        return await self.execute(self.new_run(event, subject_id, run_id))

    async def run_ticket_created(self, ticket_id: str) -> WorkflowRun:
        return await self.handle(TriageEvent.TICKET_CREATED, ticket_id)

    async def run_ticket_refresh(self, ticket_id: str) -> WorkflowRun:
        return await self.handle(TriageEvent.TICKET_REFRESH, ticket_id)

    async def run_user_signup(self, user_id: str) -> WorkflowRun:
        return await self.handle(TriageEvent.USER_SIGNUP, user_id)

    # ========== Ticket Steps ==========

    async def _fetch_ticket(self, run: WorkflowRun) -> Ticket:
        ticket = await self._tickets.get(run.subject_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", run.subject_id)
        return ticket

    async def _update_status(self, run: WorkflowRun) -> str:
        await self._update_ticket(run.subject_id, {"status": TicketStatus.TODO})
        return TicketStatus.TODO

    async def _ai_processing(self, run: WorkflowRun) -> Dict[str, Any]:
        return await self._analyze_and_persist(run, set_status=True)

    async def _ai_analysis(self, run: WorkflowRun) -> Dict[str, Any]:
        return await self._analyze_and_persist(run, set_status=False)

    async def _analyze_and_persist(self, run: WorkflowRun, set_status: bool) -> Dict[str, Any]:
        ticket: Ticket = run.step_output(StepName.FETCH_TICKET)
        log = get_context_logger(__name__, correlation_id=run.run_id)

        with log_latency(log, "ticket_analysis", ticket_id=ticket.id):
            analysis = await self._classifier.classify(ticket.title, ticket.description)

        skills = SkillNormalizer.normalize(analysis.related_skills)
        priority = analysis.priority if analysis.priority in VALID_PRIORITIES else Priority.MEDIUM

        fields: Dict[str, Any] = {
            "priority": priority,
            "helpful_notes": analysis.helpful_notes or "",
            "related_skills": skills,
        }
        if set_status:
            fields["status"] = TicketStatus.TODO

        log.info(
            "Ticket analyzed",
            extra={
                "ticket_id": ticket.id,
                "analysis_source": analysis.source,
                "priority": priority,
                "raw_skills": analysis.related_skills,
                "skills": skills,
            }
        )
        await self._update_ticket(ticket.id, fields)

        return {
            "summary": analysis.summary,
            "priority": priority,
            "helpful_notes": fields["helpful_notes"],
            "related_skills": skills,
            "source": analysis.source,
        }

    async def _assign_moderator(self, run: WorkflowRun) -> Optional[User]:
        skills = run.step_output(StepName.AI_PROCESSING)["related_skills"]
        moderator = await self._resolver.resolve(skills)

        await self._update_ticket(run.subject_id, {"assigned_to": moderator.id if moderator else None})
        self._log_assignment(run, skills, moderator)
        return moderator

    async def _assign_user(self, run: WorkflowRun) -> Optional[User]:
        skills = run.step_output(StepName.AI_ANALYSIS)["related_skills"]
        moderator = await self._resolver.resolve(skills)

        # A refresh never clears an existing assignment
        if moderator is not None:
            await self._update_ticket(run.subject_id, {"assigned_to": moderator.id})
        self._log_assignment(run, skills, moderator)
        return moderator

    async def _send_email_notification(self, run: WorkflowRun) -> Dict[str, Any]:
        moderator: Optional[User] = run.step_output(StepName.ASSIGN_MODERATOR)
        if moderator is None:
            return {"notified": False, "reason": "no-assignee"}

        latest = await self._tickets.get(run.subject_id)
        title = latest.title if latest else run.step_output(StepName.FETCH_TICKET).title

        sent = await self._notifier.send(
            moderator.email,
            "Ticket Assigned",
            f"A new ticket is assigned to you: {title}"
        )
        if not sent:
            raise NotificationException(
                "Assignment notification not delivered",
                {"to": moderator.email, "ticket_id": run.subject_id}
            )
        return {"notified": True, "to": moderator.email}

    # ========== Signup Steps ==========

    async def _fetch_user(self, run: WorkflowRun) -> User:
        user = await self._users.get_by_id(run.subject_id)
        if user is None:
            raise ResourceNotFoundException("User", run.subject_id)
        return user

    async def _send_welcome_email(self, run: WorkflowRun) -> Dict[str, Any]:
        user: User = run.step_output(StepName.FETCH_USER)
        sent = await self._notifier.send(
            user.email,
            "Welcome to the app",
            "Hi,\n\nThanks for signing up. We're glad to have you onboard!"
        )
        if not sent:
            raise NotificationException("Welcome email not delivered", {"to": user.email})
        return {"notified": True, "to": user.email}

    # ========== Helpers ==========

    async def _update_ticket(self, ticket_id: str, fields: Dict[str, Any]) -> None:
        if not await self._tickets.update(ticket_id, fields):
            raise ResourceNotFoundException("Ticket", ticket_id)

    @staticmethod
    def _log_assignment(run: WorkflowRun, skills: List[str], moderator: Optional[User]) -> None:
        log = get_context_logger(__name__, correlation_id=run.run_id)
        if moderator is None:
            log.warning(
                "No moderator available for assignment",
                extra={"ticket_id": run.subject_id, "skills": skills}
            )
        else:
            log.info(
                "Ticket assigned",
                extra={
                    "ticket_id": run.subject_id,
                    "skills": skills,
                    "assignee_id": moderator.id,
                    "assignee_email": moderator.email,
                }
            )
