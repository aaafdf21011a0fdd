"""
Triage Infrastructure Repositories
====================================

SQLAlchemy implementations of the ticket store and user directory.

Each operation runs in its own session and commits on exit, so a single
read-modify-write is atomic while a workflow run as a whole is not.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import TicketStatus, UserRole, VALID_STATUSES, VALID_PRIORITIES, VALID_ROLES
from src.core import RepositoryException, ValidationException
from src.triage.application import ITicketStore, IUserDirectory
from src.triage.domain import Ticket, User
from src.triage.infrastructure.models import TicketModel, UserModel


UPDATABLE_TICKET_FIELDS = {"status", "priority", "assigned_to", "related_skills", "helpful_notes"}


def _to_ticket(model: TicketModel) -> Ticket:
    return Ticket(
        id=model.id,
        title=model.title,
        description=model.description,
        status=model.status,
        priority=model.priority,
        assigned_to=model.assigned_to,
        related_skills=list(model.related_skills or []),
        helpful_notes=model.helpful_notes,
        created_by=model.created_by,
        deadline=model.deadline,
        created_at=model.created_at,
        updated_at=model.updated_at
    )


def _to_user(model: UserModel) -> User:
    return User(
        id=model.id,
        email=model.email,
        role=model.role,
        skills=list(model.skills or [])
    )


def _validate_ticket_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_TICKET_FIELDS
    if unknown:
        raise ValidationException(f"Fields not updatable: {sorted(unknown)}")
    if "status" in fields and fields["status"] not in VALID_STATUSES:
        raise ValidationException(f"Invalid status: {fields['status']}")
    if "priority" in fields and fields["priority"] not in VALID_PRIORITIES:
        raise ValidationException(f"Invalid priority: {fields['priority']}")


class SQLAlchemyTicketStore(ITicketStore):
    """SQLAlchemy implementation of the ticket store."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, ticket_id: str) -> Optional[Ticket]:
        try:
            async with self._session_maker() as session:
                model = await session.get(TicketModel, ticket_id)
                return _to_ticket(model) if model else None
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to load ticket {ticket_id}: {e}")

    async def update(self, ticket_id: str, fields: Dict[str, Any]) -> bool:
        """Partial update; stamps updated_at (last writer wins)."""
        _validate_ticket_fields(fields)

        try:
            async with self._session_maker() as session:
                model = await session.get(TicketModel, ticket_id)
                if model is None:
                    return False

                for key, value in fields.items():
                    if key == "related_skills":
                        value = list(value or [])
                    setattr(model, key, value)
                model.updated_at = datetime.now(timezone.utc)

                await session.commit()
                return True
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to update ticket {ticket_id}: {e}")

    async def list_missing_enrichment(self, limit: int = 100) -> List[Ticket]:
        stmt = (
            select(TicketModel)
            .where(or_(
                TicketModel.priority.is_(None),
                TicketModel.assigned_to.is_(None),
                TicketModel.helpful_notes.is_(None),
                TicketModel.helpful_notes == "",
            ))
            .order_by(TicketModel.created_at, TicketModel.id)
            .limit(limit)
        )
        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return [_to_ticket(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to list tickets for backfill: {e}")

    async def create(
        self,
        title: str,
        description: str,
        created_by: Optional[str] = None,
        deadline: Optional[datetime] = None
    ) -> Ticket:
        """Create new ticket in its initial state."""
        now = datetime.now(timezone.utc)
        model = TicketModel(
            id=str(uuid4()),
            title=title,
            description=description,
            status=TicketStatus.TODO,
            priority=None,
            helpful_notes=None,
            related_skills=[],
            assigned_to=None,
            created_by=created_by,
            deadline=deadline,
            created_at=now,
            updated_at=None
        )
        try:
            async with self._session_maker() as session:
                session.add(model)
                await session.commit()
                return _to_ticket(model)
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to create ticket: {e}")


class SQLAlchemyUserDirectory(IUserDirectory):
    """SQLAlchemy implementation of the user directory."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def find_one(
        self,
        role: str,
        skills: Optional[List[str]] = None
    ) -> Optional[User]:
        """
        First user with the role in creation order.

        Skill overlap is checked in Python so the JSON column works the
        same on every backend.
        """
        stmt = (
            select(UserModel)
            .where(UserModel.role == role)
            .order_by(UserModel.created_at, UserModel.id)
        )
        wanted = set(skills or [])
        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                for model in result.scalars():
                    if not wanted or wanted.intersection(model.skills or []):
                        return _to_user(model)
                return None
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to query users with role {role}: {e}")

    async def get_by_id(self, user_id: str) -> Optional[User]:
        try:
            async with self._session_maker() as session:
                model = await session.get(UserModel, user_id)
                return _to_user(model) if model else None
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to load user {user_id}: {e}")

    async def add(
        self,
        email: str,
        role: str = UserRole.USER,
        skills: Optional[List[str]] = None,
        created_at: Optional[datetime] = None
    ) -> User:
        """Register a user (seeding and tests)."""
        if role not in VALID_ROLES:
            raise ValidationException(f"Invalid role: {role}")

        model = UserModel(
            id=str(uuid4()),
            email=email,
            role=role,
            skills=list(skills or []),
            created_at=created_at or datetime.now(timezone.utc)
        )
        try:
            async with self._session_maker() as session:
                session.add(model)
                await session.commit()
                return _to_user(model)
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to add user {email}: {e}")
