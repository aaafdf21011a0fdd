"""
Triage Controllers (API Routes)
================================

FastAPI routes for triggering triage workflow runs.

Every route only dispatches: runs continue in the background and the
caller gets a run id back with 202 Accepted.
"""

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, status

from src.config import TriageEvent
from src.triage.application import (
    TriageDispatcher,
    TriggerEventRequest,
    TriggerEventResponse,
    BackfillResponse
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/triage", tags=["Ticket Triage"])


# ========== Example payloads for Swagger ==========

TRIGGER_EVENT_EXAMPLE = {
    "name": "ticket-created",
    "data": {"id": "5f0c7d0e-6a55-4bd1-9f8c-0c1a2b3c4d5e"}
}

TRIGGER_RESPONSE_EXAMPLE = {
    "accepted": True,
    "run_id": "8d1d3f9a-2b7e-4c1f-a0d4-9e7b6c5a4f3e",
    "event": "ticket-created",
    "subject_id": "5f0c7d0e-6a55-4bd1-9f8c-0c1a2b3c4d5e"
}


# ========== Dependencies ==========

def get_dispatcher(request: Request) -> TriageDispatcher:
    """Get the dispatcher wired up at startup."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Triage workflow engine not initialized"
        )
    return dispatcher


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


# ========== Route Handlers ==========

@router.post(
    "/events",
    response_model=TriggerEventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Trigger a triage workflow",
    description="""
    Accept a trigger event and start one workflow run for it.

    **Events**:
    - `ticket-created` - analyze, assign and notify for a new ticket
    - `ticket-refresh` - re-analyze an existing ticket and fill in the assignee
    - `user-signup` - send the welcome email

    The run proceeds in the background; its outcome is only logged.
    """,
    responses={
        202: {
            "description": "Event accepted",
            "content": {"application/json": {"example": TRIGGER_RESPONSE_EXAMPLE}}
        },
        422: {"description": "Unknown event name or missing id"},
        503: {"description": "Workflow engine not available"}
    }
)
async def trigger_event(
    request: Request,
    payload: TriggerEventRequest,
    dispatcher: TriageDispatcher = Depends(get_dispatcher)
):
    run_id = dispatcher.dispatch(payload.name, payload.data.id, _correlation_id(request))

    return TriggerEventResponse(
        run_id=run_id,
        event=payload.name,
        subject_id=payload.data.id
    )


@router.post(
    "/tickets/{ticket_id}/refresh",
    response_model=TriggerEventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Refresh a ticket's triage",
)
async def refresh_ticket(
    request: Request,
    ticket_id: str = Path(..., min_length=1, max_length=64),
    dispatcher: TriageDispatcher = Depends(get_dispatcher)
):
    """Shortcut for a ticket-refresh event."""
    run_id = dispatcher.trigger_refresh(ticket_id, _correlation_id(request))

    return TriggerEventResponse(
        run_id=run_id,
        event=TriageEvent.TICKET_REFRESH,
        subject_id=ticket_id
    )


@router.post(
    "/backfill",
    response_model=BackfillResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Refresh every under-enriched ticket",
    description="""
    Dispatch a `ticket-refresh` run for each ticket that is missing a
    priority, an assignee or helpful notes, oldest first.
    """
)
async def backfill(
    request: Request,
    limit: int = Query(100, ge=1, le=1000, description="Maximum tickets to refresh"),
    dispatcher: TriageDispatcher = Depends(get_dispatcher)
):
    correlation_id = _correlation_id(request)
    dispatched = await dispatcher.backfill(limit=limit, correlation_id=correlation_id)

    logger.info(
        "Backfill requested",
        extra={"correlation_id": correlation_id, "limit": limit, "dispatched": dispatched}
    )
    return BackfillResponse(dispatched=dispatched)


triage_router = router
