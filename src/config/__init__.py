"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="ticket-triage", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/tickets",
        description="Ticket store connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== LLM (Classifier Oracle) ==========
    openai_api_key: Optional[str] = Field(
        default=None,
        description="API key for the OpenAI-compatible classifier endpoint"
    )
    llm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL override, e.g. https://generativelanguage.googleapis.com/v1beta/openai/"
    )
    llm_model: str = Field(
        default="gpt-4o-mini",
        description="Model used for ticket analysis"
    )
    llm_temperature: float = Field(
        default=0.3,
        description="Sampling temperature for ticket analysis",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=500,
        description="Max tokens for the analysis reply",
        ge=1,
        le=8000
    )
    llm_timeout_seconds: float = Field(
        default=20.0,
        description="Timeout for a single analysis call",
        ge=0.5,
        le=120
    )
    mock_llm: bool = Field(
        default=False,
        description="Use mock LLM responses for testing (no API calls)"
    )

    # ========== Workflow Engine ==========
    create_step_retries: int = Field(
        default=2,
        description="Retries per step for the ticket-created pipeline",
        ge=0
    )
    refresh_step_retries: int = Field(
        default=1,
        description="Retries per step for the ticket-refresh pipeline",
        ge=0
    )
    signup_step_retries: int = Field(
        default=2,
        description="Retries per step for the user-signup pipeline",
        ge=0
    )
    step_retry_backoff_seconds: float = Field(
        default=1.0,
        description="Base delay between step attempts (doubled per attempt)",
        ge=0.0
    )
    backfill_batch_size: int = Field(
        default=100,
        description="Max tickets refreshed by one backfill request",
        ge=1
    )

    # ========== Mail Notifier ==========
    mail_api_url: str = Field(
        default="https://send.api.mailtrap.io/api/send",
        description="HTTP send endpoint of the mail provider"
    )
    mail_api_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the mail provider"
    )
    mail_from_address: str = Field(
        default="noreply@tickets.local",
        description="Sender address for notifications"
    )
    mail_from_name: str = Field(
        default="Ticket Triage",
        description="Sender display name for notifications"
    )
    mail_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for mail API calls",
        ge=0.1,
        le=30
    )
    mail_max_retries: int = Field(
        default=2,
        description="Attempts per notification before giving up",
        ge=1,
        le=5
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:5173", "http://localhost:5174"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketStatus(str):
    """Ticket lifecycle statuses."""
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


class Priority(str):
    """Ticket priority levels set by the analysis step."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class UserRole(str):
    """User roles. Only moderators are eligible for assignment."""
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class TriageEvent(str):
    """Events that start a workflow run."""
    TICKET_CREATED = "ticket-created"
    TICKET_REFRESH = "ticket-refresh"
    USER_SIGNUP = "user-signup"


# ========== Lists for validation ==========

VALID_STATUSES = [
    TicketStatus.TODO, TicketStatus.IN_PROGRESS,
    TicketStatus.DONE, TicketStatus.CANCELLED
]
VALID_PRIORITIES = [Priority.LOW, Priority.MEDIUM, Priority.HIGH]
VALID_ROLES = [UserRole.USER, UserRole.MODERATOR, UserRole.ADMIN]
VALID_EVENTS = [
    TriageEvent.TICKET_CREATED,
    TriageEvent.TICKET_REFRESH,
    TriageEvent.USER_SIGNUP
]
