"""
Triage Application DTOs
========================

Pydantic models for the event intake API and for decoding the classifier
oracle's JSON reply.
"""

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator
from typing import Any, List, Literal

from src.config import TriageEvent


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["low", "medium", "high"]
EventNameStr = Literal["ticket-created", "ticket-refresh", "user-signup"]


# ========== Classifier Oracle Payload ==========

class AnalysisPayload(BaseModel):
    """
    Strict decoder for the LLM analysis JSON.

    Any missing or mistyped field fails validation, which the classifier
    treats exactly like a failed call.
    """
    model_config = ConfigDict(extra="ignore")

    summary: StrictStr
    priority: PriorityStr
    helpful_notes: StrictStr = Field(alias="helpfulNotes")
    related_skills: List[StrictStr] = Field(alias="relatedSkills")

    @field_validator("priority", mode="before")
    @classmethod
    def lowercase_priority(cls, v: Any) -> Any:
        """Models sometimes answer "High"; accept any casing."""
        if isinstance(v, str):
            return v.strip().lower()
        return v


# ========== Request DTOs ==========

class EventData(BaseModel):
    """Event payload: the id of the ticket (or user) the run is bound to."""
    id: str = Field(..., min_length=1, max_length=64, description="Ticket or user ID")


class TriggerEventRequest(BaseModel):
    """Request model for an incoming trigger event."""
    name: EventNameStr = Field(..., description="Event name")
    data: EventData


# ========== Response DTOs ==========

class TriggerEventResponse(BaseModel):
    """Response for an accepted event. The run proceeds in the background."""
    accepted: bool = True
    run_id: str
    event: EventNameStr
    subject_id: str


class BackfillResponse(BaseModel):
    """Response for a backfill request."""
    dispatched: int = Field(..., ge=0)
    event: EventNameStr = TriageEvent.TICKET_REFRESH
