"""
Triage Domain Layer
===================

Domain layer for the ticket triage module.

Contains:
- Entities: Ticket, User, AnalysisResult, WorkflowRun, StepResult
- Value Objects: SkillNormalizer, RuleBasedClassifier, AnalysisPromptBuilder

This layer is framework-agnostic and contains pure business logic.
"""

from src.triage.domain.entities import (
    Ticket,
    User,
    AnalysisResult,
    StepStatus,
    RunState,
    StepResult,
    WorkflowRun,
    AnalysisPromptBuilder,
)
from src.triage.domain.value_objects import (
    SkillNormalizer,
    RuleBasedClassifier,
    extract_json_object,
)

__all__ = [
    # Entities
    "Ticket",
    "User",
    "AnalysisResult",
    "StepStatus",
    "RunState",
    "StepResult",
    "WorkflowRun",
    "AnalysisPromptBuilder",
    # Value Objects & Services
    "SkillNormalizer",
    "RuleBasedClassifier",
    "extract_json_object",
]
