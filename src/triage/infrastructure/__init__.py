"""
Triage Infrastructure Layer
============================

Infrastructure implementations for the ticket triage module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: ticket store and user directory
- External: email notifier
"""

from src.triage.infrastructure.models import TicketModel, UserModel
from src.triage.infrastructure.repositories import (
    SQLAlchemyTicketStore,
    SQLAlchemyUserDirectory
)
from src.triage.infrastructure.external import (
    CircuitBreaker,
    EmailNotifier
)

__all__ = [
    "TicketModel",
    "UserModel",
    "SQLAlchemyTicketStore",
    "SQLAlchemyUserDirectory",
    "CircuitBreaker",
    "EmailNotifier",
]
