"""
pytest configuration and shared fixtures

In-memory fakes for the ticket store, user directory, notifier and LLM
client, so workflow runs can be exercised without a database or network.
"""
import copy
from typing import Any, Dict, List, Optional

import pytest

from src.config import UserRole
from src.core import LLMException
from src.infrastructure.llm import ChatCompletionResult, ILLMClient
from src.triage.application import (
    ClassificationService,
    INotifier,
    ITicketStore,
    IUserDirectory,
    TriageWorkflowEngine,
)
from src.triage.domain import Ticket, User


class InMemoryTicketStore(ITicketStore):
    """Ticket store backed by a dict. Hands out copies, like a real store."""

    def __init__(self, tickets: Optional[List[Ticket]] = None):
        self.tickets: Dict[str, Ticket] = {t.id: t for t in tickets or []}
        self.updates: List[tuple] = []
        self.get_calls = 0
        self.fail_gets = 0
        self.fail_updates = 0

    async def get(self, ticket_id: str) -> Optional[Ticket]:
        self.get_calls += 1
        if self.fail_gets:
            self.fail_gets -= 1
            raise ConnectionError("ticket store unreachable")
        ticket = self.tickets.get(ticket_id)
        return copy.deepcopy(ticket) if ticket else None

    async def update(self, ticket_id: str, fields: Dict[str, Any]) -> bool:
        if self.fail_updates:
            self.fail_updates -= 1
            raise ConnectionError("ticket store unreachable")
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            return False
        for key, value in fields.items():
            setattr(ticket, key, copy.deepcopy(value))
        self.updates.append((ticket_id, dict(fields)))
        return True

    async def list_missing_enrichment(self, limit: int = 100) -> List[Ticket]:
        missing = [t for t in self.tickets.values() if t.needs_enrichment]
        return [copy.deepcopy(t) for t in missing[:limit]]


class InMemoryUserDirectory(IUserDirectory):
    """User directory returning the first match in insertion order."""

    def __init__(self, users: Optional[List[User]] = None):
        self.users: List[User] = list(users or [])
        self.queries: List[Dict[str, Any]] = []
        self.fail_finds = 0

    async def find_one(self, role: str, skills: Optional[List[str]] = None) -> Optional[User]:
        if self.fail_finds:
            self.fail_finds -= 1
            raise ConnectionError("user directory unreachable")
        self.queries.append({"role": role, "skills": skills})
        wanted = set(skills or [])
        for user in self.users:
            if user.role != role:
                continue
            if wanted and not wanted.intersection(user.skills):
                continue
            return user
        return None

    async def get_by_id(self, user_id: str) -> Optional[User]:
        for user in self.users:
            if user.id == user_id:
                return user
        return None


class RecordingNotifier(INotifier):
    """Notifier that records every message instead of sending it."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: List[Dict[str, str]] = []

    async def send(self, to: str, subject: str, body: str) -> bool:
        self.sent.append({"to": to, "subject": subject, "body": body})
        return self.succeed


class StubLLMClient(ILLMClient):
    """LLM client returning a fixed reply."""

    def __init__(self, content: str):
        self.content = content
        self.calls: List[List[dict]] = []

    async def chat_completion(self, messages, temperature=0.3, max_tokens=500, operation="chat_completion"):
        self.calls.append(messages)
        return ChatCompletionResult(
            content=self.content,
            model="stub-model",
            prompt_tokens=10,
            completion_tokens=10,
            latency_ms=1
        )


class FailingLLMClient(ILLMClient):
    """LLM client that is always unreachable."""

    def __init__(self):
        self.calls = 0

    async def chat_completion(self, messages, temperature=0.3, max_tokens=500, operation="chat_completion"):
        self.calls += 1
        raise LLMException("Chat completion failed: connection refused")


def make_ticket(ticket_id: str = "t-1", title: str = "Login page broken", description: str = "React app shows blank page", **kwargs) -> Ticket:
    return Ticket(id=ticket_id, title=title, description=description, **kwargs)


def make_moderator(user_id: str, email: str, skills: List[str]) -> User:
    return User(id=user_id, email=email, role=UserRole.MODERATOR, skills=skills)


LLM_REPLY = """Sure, here is my analysis:
{
    "summary": "React login page renders blank",
    "priority": "High",
    "helpfulNotes": "Check the browser console for hydration errors.",
    "relatedSkills": ["reactjs", "node", "General"]
}
Let me know if you need anything else."""


@pytest.fixture
def ticket_store():
    return InMemoryTicketStore([make_ticket()])


@pytest.fixture
def user_directory():
    return InMemoryUserDirectory([
        User(id="admin-1", email="admin@x.com", role=UserRole.ADMIN, skills=["React"]),
        make_moderator("mod-1", "a@x.com", ["React"]),
        make_moderator("mod-2", "b@x.com", ["Python"]),
    ])


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def llm_client():
    return StubLLMClient(LLM_REPLY)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine_factory(ticket_store, user_directory, notifier, llm_client, sleeps):
    """Build an engine over the fakes; keyword overrides replace collaborators."""

    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    def factory(**overrides) -> TriageWorkflowEngine:
        options = {
            "ticket_store": ticket_store,
            "user_directory": user_directory,
            "classifier": ClassificationService(llm_client),
            "notifier": notifier,
            "create_retries": 2,
            "refresh_retries": 1,
            "signup_retries": 2,
            "backoff_seconds": 1.0,
            "sleep": record_sleep,
        }
        options.update(overrides)
        return TriageWorkflowEngine(**options)

    return factory


@pytest.fixture
def engine(engine_factory):
    return engine_factory()
