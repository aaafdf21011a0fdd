"""
Triage Application Layer
=========================

Application layer for the ticket triage module.

Contains:
- Services: classification, assignment resolution
- Workflow: step runner and triage pipelines
- Dispatcher: event intake into background runs
- DTOs: Pydantic models for the API and the classifier payload
"""

from src.triage.application.dto import (
    AnalysisPayload,
    EventData,
    TriggerEventRequest,
    TriggerEventResponse,
    BackfillResponse,
)
from src.triage.application.services import (
    ClassificationService,
    AssignmentResolver,
    ITicketStore,
    IUserDirectory,
    INotifier,
)
from src.triage.application.workflow import (
    Step,
    StepName,
    StepRunner,
    TriageWorkflowEngine,
)
from src.triage.application.dispatcher import TriageDispatcher

__all__ = [
    # DTOs
    "AnalysisPayload",
    "EventData",
    "TriggerEventRequest",
    "TriggerEventResponse",
    "BackfillResponse",
    # Services
    "ClassificationService",
    "AssignmentResolver",
    # Workflow
    "Step",
    "StepName",
    "StepRunner",
    "TriageWorkflowEngine",
    "TriageDispatcher",
    # Collaborator Interfaces
    "ITicketStore",
    "IUserDirectory",
    "INotifier",
]
