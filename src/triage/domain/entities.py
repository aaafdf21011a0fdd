"""
Triage Domain Entities
======================

Domain entities for the ticket triage module.

Contains pure Python business objects: the ticket and user records the
engine reads and writes, the classifier's analysis, and the ephemeral
workflow run with its step results.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from src.config import TicketStatus, UserRole
from src.core import DomainException


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Ticket:
    """
    Support ticket as owned by the ticket store.

    ``priority`` is None until the analysis step has run once.
    """
    id: str
    title: str
    description: str
    status: str = TicketStatus.TODO
    priority: Optional[str] = None
    assigned_to: Optional[str] = None
    related_skills: List[str] = field(default_factory=list)
    helpful_notes: Optional[str] = None
    created_by: Optional[str] = None
    deadline: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    @property
    def needs_enrichment(self) -> bool:
        """True when a refresh run would fill in missing triage fields."""
        return self.priority is None or self.assigned_to is None or not self.helpful_notes


@dataclass
class User:
    """User as exposed by the user directory."""
    id: str
    email: str
    role: str = UserRole.USER
    skills: List[str] = field(default_factory=list)

    @property
    def is_assignable(self) -> bool:
        return self.role == UserRole.MODERATOR


@dataclass
class AnalysisResult:
    """
    Result of ticket analysis.

    ``related_skills`` holds raw tokens; normalization happens in the step.
    """
    summary: str
    priority: str
    helpful_notes: str
    related_skills: List[str] = field(default_factory=list)
    source: str = "llm"  # "llm" or "fallback"

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


class StepStatus(str, Enum):
    """Status of a single step within a run."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED_RETRIABLE = "failed-retriable"
    FAILED_TERMINAL = "failed-terminal"


class RunState(str, Enum):
    """Lifecycle state of a workflow run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED_EXHAUSTED = "failed-exhausted"


TERMINAL_RUN_STATES = (RunState.COMPLETED, RunState.ABORTED, RunState.FAILED_EXHAUSTED)


@dataclass
class StepResult:
    """Outcome of one named step. Output is memoized once succeeded."""
    name: str
    status: StepStatus = StepStatus.PENDING
    output: Any = None
    attempts: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED


@dataclass
class WorkflowRun:
    """
    One execution of a step pipeline for one subject and one event.

    State transitions:
        PENDING -> RUNNING -> RUNNING ... -> COMPLETED
                           \\-> ABORTED (terminal error)
                           \\-> FAILED_EXHAUSTED (retries used up)

    No transition leaves a terminal state.
    """
    run_id: str
    event: str
    subject_id: str
    state: RunState = RunState.PENDING
    current_step: Optional[str] = None
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_RUN_STATES

    @property
    def success(self) -> bool:
        return self.state == RunState.COMPLETED

    @property
    def outcome(self) -> Dict[str, bool]:
        """The only result a caller ever gets back."""
        return {"success": self.success}

    def step(self, name: str) -> Optional[StepResult]:
        for result in self.steps:
            if result.name == name:
                return result
        return None

    def step_output(self, name: str) -> Any:
        result = self.step(name)
        if result is None or not result.succeeded:
            raise DomainException(
                f"Step '{name}' has no recorded output",
                {"run_id": self.run_id, "step": name}
            )
        return result.output

    def ensure_step(self, name: str) -> StepResult:
        result = self.step(name)
        if result is None:
            result = StepResult(name=name)
            self.steps.append(result)
        return result

    def start_step(self, name: str) -> StepResult:
        self._guard_open()
        if self.state == RunState.PENDING:
            self.started_at = _utcnow()
        self.state = RunState.RUNNING
        self.current_step = name
        return self.ensure_step(name)

    def complete(self) -> None:
        self._finish(RunState.COMPLETED)

    def abort(self, reason: str) -> None:
        self._finish(RunState.ABORTED, reason)

    def exhaust(self, reason: str) -> None:
        self._finish(RunState.FAILED_EXHAUSTED, reason)

    def _finish(self, state: RunState, reason: Optional[str] = None) -> None:
        self._guard_open()
        self.state = state
        self.error = reason
        self.current_step = None
        self.finished_at = _utcnow()

    def _guard_open(self) -> None:
        if self.is_finished:
            raise DomainException(
                f"Workflow run {self.run_id} already finished as {self.state.value}",
                {"run_id": self.run_id, "state": self.state.value}
            )

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            "run_id": self.run_id,
            "event": self.event,
            "subject_id": self.subject_id,
            "state": self.state.value,
            "error": self.error,
            "steps": [
                {
                    "name": s.name,
                    "status": s.status.value,
                    "attempts": s.attempts,
                    "error": s.error,
                }
                for s in self.steps
            ],
        }


class AnalysisPromptBuilder:
    """
    Builds prompts for ticket analysis.

    All prompt text lives here.
    """

    SYSTEM_PROMPT = """You are a support ticket triage assistant.

Analyze the ticket and respond ONLY with a JSON object:
{
    "summary": "brief summary",
    "priority": "low|medium|high",
    "helpfulNotes": "technical guidance for the moderator handling it",
    "relatedSkills": ["skill1", "skill2"]
}

PRIORITY RULES:
- high: critical system issue, outage, database problem, security issue
- medium: bug or feature request
- low: question or minor issue

SKILLS should come from: React, Node.js, JavaScript, Python, MongoDB,
PostgreSQL, AWS, Docker, UI/UX, Mobile, DevOps, Security, Java, PHP,
Vue.js, Angular, TypeScript, Redis, Kubernetes."""

    @classmethod
    def build_prompt(cls, title: str, description: str) -> str:
        """Build analysis prompt from ticket content."""
        return f"""Title: {title}

Description:
{description}

Return ONLY the JSON object, no other text:"""

    @classmethod
    def get_system_prompt(cls) -> str:
        return cls.SYSTEM_PROMPT
