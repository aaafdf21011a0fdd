"""
Tests for the SQLAlchemy ticket store and user directory

Runs against a throwaway SQLite file through aiosqlite.
"""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from src.config import TicketStatus, UserRole
from src.core import ValidationException
from src.infrastructure.database import build_session_maker, create_tables
from src.triage.application import ClassificationService, TriageWorkflowEngine
from src.triage.infrastructure import SQLAlchemyTicketStore, SQLAlchemyUserDirectory
from tests.conftest import RecordingNotifier, StubLLMClient, LLM_REPLY


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'triage.db'}")
    await create_tables(engine)
    yield build_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def store(session_maker):
    return SQLAlchemyTicketStore(session_maker)


@pytest.fixture
def directory(session_maker):
    return SQLAlchemyUserDirectory(session_maker)


class TestTicketStore:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        created = await store.create("Login broken", "Blank page after login")

        ticket = await store.get(created.id)

        assert ticket.title == "Login broken"
        assert ticket.status == TicketStatus.TODO
        assert ticket.priority is None
        assert ticket.related_skills == []
        assert ticket.needs_enrichment

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("does-not-exist") is None

    @pytest.mark.asyncio
    async def test_partial_update(self, store):
        created = await store.create("Login broken", "Blank page after login")

        ok = await store.update(created.id, {"priority": "high", "related_skills": ["React"]})
        ticket = await store.get(created.id)

        assert ok is True
        assert ticket.priority == "high"
        assert ticket.related_skills == ["React"]
        assert ticket.title == "Login broken"
        assert ticket.updated_at is not None

    @pytest.mark.asyncio
    async def test_update_missing_returns_false(self, store):
        assert await store.update("does-not-exist", {"status": TicketStatus.TODO}) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fields", [
        {"title": "renamed"},
        {"status": "ARCHIVED"},
        {"priority": "critical"},
    ])
    async def test_update_rejects_bad_fields(self, store, fields):
        created = await store.create("Login broken", "Blank page after login")

        with pytest.raises(ValidationException):
            await store.update(created.id, fields)

    @pytest.mark.asyncio
    async def test_list_missing_enrichment(self, store, directory):
        moderator = await directory.add("a@x.com", UserRole.MODERATOR, ["React"])
        fresh = await store.create("New", "untriaged")
        done = await store.create("Done", "triaged")
        await store.update(done.id, {
            "priority": "low", "helpful_notes": "notes", "assigned_to": moderator.id
        })
        empty_notes = await store.create("Empty notes", "half triaged")
        await store.update(empty_notes.id, {
            "priority": "low", "helpful_notes": "", "assigned_to": moderator.id
        })

        missing = await store.list_missing_enrichment()

        assert {t.id for t in missing} == {fresh.id, empty_notes.id}
        assert len(await store.list_missing_enrichment(limit=1)) == 1


class TestUserDirectory:
    @pytest.mark.asyncio
    async def test_find_one_by_skill_in_creation_order(self, directory):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        await directory.add("admin@x.com", UserRole.ADMIN, ["React"], created_at=base)
        await directory.add("b@x.com", UserRole.MODERATOR, ["React", "Node.js"], created_at=base + timedelta(days=2))
        await directory.add("a@x.com", UserRole.MODERATOR, ["React"], created_at=base + timedelta(days=1))
        await directory.add("py@x.com", UserRole.MODERATOR, ["Python"], created_at=base + timedelta(days=3))

        match = await directory.find_one(UserRole.MODERATOR, ["Node.js", "React"])
        any_moderator = await directory.find_one(UserRole.MODERATOR)
        python = await directory.find_one(UserRole.MODERATOR, ["Python"])

        assert match.email == "a@x.com"
        assert any_moderator.email == "a@x.com"
        assert python.email == "py@x.com"

    @pytest.mark.asyncio
    async def test_find_one_no_match(self, directory):
        await directory.add("a@x.com", UserRole.MODERATOR, ["React"])

        assert await directory.find_one(UserRole.MODERATOR, ["Go"]) is None
        assert await directory.find_one(UserRole.ADMIN) is None

    @pytest.mark.asyncio
    async def test_get_by_id(self, directory):
        user = await directory.add("new@x.com")

        loaded = await directory.get_by_id(user.id)

        assert loaded.email == "new@x.com"
        assert loaded.role == UserRole.USER
        assert await directory.get_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_add_rejects_unknown_role(self, directory):
        with pytest.raises(ValidationException):
            await directory.add("x@x.com", role="superuser")


class TestEngineOverDatabase:
    @pytest.mark.asyncio
    async def test_ticket_created_run(self, store, directory):
        moderator = await directory.add("a@x.com", UserRole.MODERATOR, ["React"])
        ticket = await store.create("Login page broken", "React app shows blank page")
        notifier = RecordingNotifier()
        engine = TriageWorkflowEngine(
            ticket_store=store,
            user_directory=directory,
            classifier=ClassificationService(StubLLMClient(LLM_REPLY)),
            notifier=notifier,
            backoff_seconds=0
        )

        run = await engine.run_ticket_created(ticket.id)
        saved = await store.get(ticket.id)

        assert run.success
        assert saved.priority == "high"
        assert saved.related_skills == ["React", "Node.js"]
        assert saved.assigned_to == moderator.id
        assert notifier.sent[0]["to"] == "a@x.com"
