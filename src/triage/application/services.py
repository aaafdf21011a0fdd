"""
Triage Application Services
============================

Collaborator interfaces consumed by the workflow engine, plus the two
services the engine calls inside its steps: ticket classification and
assignee resolution.
"""

import json
from typing import Any, Dict, List, Optional
from abc import ABC, abstractmethod

from pydantic import ValidationError

from src.config import settings, UserRole
from src.core import LLMException
from src.infrastructure.llm import ILLMClient
from src.shared.infrastructure.logging import get_logger
from src.triage.domain import (
    AnalysisResult, Ticket, User,
    AnalysisPromptBuilder, RuleBasedClassifier, extract_json_object
)
from src.triage.application.dto import AnalysisPayload

logger = get_logger(__name__)


# ========== Collaborator Interfaces ==========

class ITicketStore(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID, None if it does not exist."""

    @abstractmethod
    async def update(self, ticket_id: str, fields: Dict[str, Any]) -> bool:
        """Apply a partial update. Returns False if the ticket does not exist."""

    @abstractmethod
    async def list_missing_enrichment(self, limit: int = 100) -> List[Ticket]:
        """Tickets missing priority, assignee or helpful notes."""


class IUserDirectory(ABC):
    """Interface for user lookups."""

    @abstractmethod
    async def find_one(
        self,
        role: str,
        skills: Optional[List[str]] = None
    ) -> Optional[User]:
        """
        First user with the given role, in a stable order.

        When skills is non-empty, only users sharing at least one skill
        are considered.
        """

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID."""


class INotifier(ABC):
    """Interface for best-effort message delivery."""

    @abstractmethod
    async def send(self, to: str, subject: str, body: str) -> bool:
        """Send a message. Never raises; returns False on failure."""


# ========== Application Services ==========

class ClassificationService:
    """
    Ticket classifier.

    Asks the LLM for a structured analysis and falls back to the
    rule-based classifier on any failure. ``classify`` never raises.
    """

    def __init__(
        self,
        llm_client: Optional[ILLMClient],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ):
        self._llm = llm_client
        self._temperature = settings.llm_temperature if temperature is None else temperature
        self._max_tokens = max_tokens or settings.llm_max_tokens

    async def classify(self, title: str, description: str) -> AnalysisResult:
        """
        Analyze a ticket.

        Args:
            title: Ticket title
            description: Ticket description

        Returns:
            AnalysisResult from the LLM, or from the rule-based fallback
        """
        if self._llm is None:
            logger.info("No LLM client configured, using rule-based analysis")
            return RuleBasedClassifier.classify(title, description)

        try:
            return await self._analyze_with_llm(title, description)
        except Exception as e:
            logger.warning(
                "LLM analysis failed, using rule-based analysis",
                extra={"error": str(e), "error_type": type(e).__name__}
            )
            return RuleBasedClassifier.classify(title, description)

    async def _analyze_with_llm(self, title: str, description: str) -> AnalysisResult:
        messages = [
            {"role": "system", "content": AnalysisPromptBuilder.get_system_prompt()},
            {"role": "user", "content": AnalysisPromptBuilder.build_prompt(title, description)}
        ]

        response = await self._llm.chat_completion(
            messages=messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            operation="ticket_analysis"
        )

        logger.debug(
            "LLM analysis reply received",
            extra={"model": response.model, "latency_ms": response.latency_ms}
        )
        return self.decode(response.content)

    @staticmethod
    def decode(content: Optional[str]) -> AnalysisResult:
        """
        Decode an LLM reply into an AnalysisResult.

        Raises:
            LLMException: If the reply holds no valid analysis object
        """
        json_text = extract_json_object(content or "")
        if json_text is None:
            raise LLMException("No JSON object in analysis reply")

        try:
            payload = AnalysisPayload.model_validate(json.loads(json_text))
        except json.JSONDecodeError as e:
            raise LLMException(f"Failed to parse analysis reply: {e}")
        except ValidationError as e:
            raise LLMException(
                "Analysis reply failed validation",
                {"errors": e.errors(include_url=False)}
            )

        return AnalysisResult(
            summary=payload.summary,
            priority=payload.priority,
            helpful_notes=payload.helpful_notes,
            related_skills=list(payload.related_skills),
            source="llm"
        )


class AssignmentResolver:
    """
    Picks the moderator for a ticket.

    Policy: first moderator sharing any skill, else any moderator, else
    nobody. Overlap size and current load are not considered. Admins are
    never returned.
    """

    def __init__(self, user_directory: IUserDirectory):
        self._users = user_directory

    async def resolve(self, skills: Optional[List[str]]) -> Optional[User]:
        user = None
        if skills:
            user = self._eligible(
                await self._users.find_one(role=UserRole.MODERATOR, skills=list(skills))
            )

        if user is None:
            user = self._eligible(await self._users.find_one(role=UserRole.MODERATOR))

        return user

    @staticmethod
    def _eligible(user: Optional[User]) -> Optional[User]:
        if user is not None and not user.is_assignable:
            logger.warning(
                "Directory returned a non-moderator for assignment, ignoring",
                extra={"user_id": user.id, "role": user.role}
            )
            return None
        return user
