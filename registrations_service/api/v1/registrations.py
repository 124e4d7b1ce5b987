"""
Registration API endpoints for Registrations Service.
Handles registration, organizer review, cancellation and check-in.
"""

from fastapi import APIRouter, Depends, Query, Path, Body, status
from typing import List, Optional
import logging

from registrations_service.api.dependencies import get_current_actor
from registrations_service.models.registration import RegistrationStatus
from registrations_service.schemas.common import Actor, SuccessResponse
from registrations_service.schemas.registration import (
    RegistrationCreate,
    RegistrationResponse,
    RegistrationCreateResponse,
    RegistrationAuditLogResponse,
    StatusChangeRequest,
    ApplyPromoRequest,
    ApplyPromoResponse,
    BulkStatusUpdate,
    BulkUpdateResponse,
    BulkUpdateResult,
    WaitlistPositionResponse,
    PromoteWaitlistResponse
)
from registrations_service.services.registration_service import registration_service
from registrations_service.services.waitlist_service import waitlist_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["registrations"])


@router.post(
    "/events/{event_id}/registrations",
    response_model=RegistrationCreateResponse,
    status_code=status.HTTP_201_CREATED
)
async def register_for_event(
    registration_data: RegistrationCreate,
    event_id: str = Path(..., description="Event ID"),
    actor: Actor = Depends(get_current_actor)
):
    """
    Register the caller for an event, individually or as part of a team.

    Args:
        registration_data: Participant details, answers and team choice
        event_id: Event to register for
        actor: Authenticated participant

    Returns:
        The registration; waitlisted when the event is full
    """
    registration, team = await registration_service.register(event_id, registration_data, actor)
    waitlisted = registration.status == RegistrationStatus.WAITLISTED

    return RegistrationCreateResponse(
        message="Event is full, you have been added to the waitlist" if waitlisted
        else "Registration submitted successfully",
        registration=RegistrationResponse.model_validate(registration),
        waitlisted=waitlisted,
        invite_code=team.invite_code if team else None
    )


@router.get("/events/{event_id}/registrations", response_model=List[RegistrationResponse])
async def list_event_registrations(
    event_id: str = Path(..., description="Event ID"),
    status_filter: Optional[RegistrationStatus] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor)
):
    """List an event's registrations (organizers only)."""
    registrations = await registration_service.list_event_registrations(
        event_id, actor, status=status_filter, limit=limit, offset=offset
    )
    return [RegistrationResponse.model_validate(r) for r in registrations]


@router.get("/events/{event_id}/waitlist", response_model=List[RegistrationResponse])
async def get_event_waitlist(
    event_id: str = Path(..., description="Event ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Waitlisted registrations in promotion order (organizers only)."""
    registrations = await waitlist_service.get_event_waitlist(event_id, actor)
    return [RegistrationResponse.model_validate(r) for r in registrations]


@router.post("/events/{event_id}/waitlist/promote", response_model=PromoteWaitlistResponse)
async def promote_waitlist(
    event_id: str = Path(..., description="Event ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Fill free slots from the waitlist."""
    promoted = await waitlist_service.promote_waitlist(event_id, actor)
    return PromoteWaitlistResponse(
        event_id=event_id,
        promoted=[RegistrationResponse.model_validate(r) for r in promoted]
    )


@router.get("/registrations/me", response_model=List[RegistrationResponse])
async def list_my_registrations(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor)
):
    """List the caller's registrations, newest first."""
    registrations = await registration_service.list_user_registrations(actor, limit=limit, offset=offset)
    return [RegistrationResponse.model_validate(r) for r in registrations]


@router.post("/registrations/bulk-status", response_model=BulkUpdateResponse)
async def bulk_update_status(
    bulk_data: BulkStatusUpdate,
    actor: Actor = Depends(get_current_actor)
):
    """Approve or reject several registrations; results are reported per item."""
    results = await registration_service.bulk_update_status(
        bulk_data.registration_ids, bulk_data.action, actor, reason=bulk_data.reason
    )
    succeeded = sum(1 for r in results if r["success"])

    return BulkUpdateResponse(
        results=[BulkUpdateResult(**r) for r in results],
        succeeded=succeeded,
        failed=len(results) - succeeded
    )


@router.get("/registrations/{registration_id}", response_model=RegistrationResponse)
async def get_registration(
    registration_id: str = Path(..., description="Registration ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Get a registration (its participant or the event's organizers)."""
    registration = await registration_service.get_registration(registration_id, actor)
    return RegistrationResponse.model_validate(registration)


@router.post("/registrations/{registration_id}/approve", response_model=RegistrationResponse)
async def approve_registration(
    registration_id: str = Path(..., description="Registration ID"),
    change: Optional[StatusChangeRequest] = Body(None),
    actor: Actor = Depends(get_current_actor)
):
    """Approve a registration; paid events move to awaiting payment."""
    registration = await registration_service.approve_registration(
        registration_id, actor, reason=change.reason if change else None
    )
    return RegistrationResponse.model_validate(registration)


@router.post("/registrations/{registration_id}/reject", response_model=RegistrationResponse)
async def reject_registration(
    registration_id: str = Path(..., description="Registration ID"),
    change: Optional[StatusChangeRequest] = Body(None),
    actor: Actor = Depends(get_current_actor)
):
    """Reject a registration and fill its slot from the waitlist."""
    registration = await registration_service.reject_registration(
        registration_id, actor, reason=change.reason if change else None
    )
    return RegistrationResponse.model_validate(registration)


@router.delete("/registrations/{registration_id}", response_model=SuccessResponse)
async def cancel_registration(
    registration_id: str = Path(..., description="Registration ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Cancel the caller's registration."""
    cancelled = await registration_service.cancel_registration(registration_id, actor)
    return SuccessResponse(message="Registration cancelled successfully", data=cancelled)


@router.post("/registrations/{registration_id}/attendance", response_model=RegistrationResponse)
async def mark_attendance(
    registration_id: str = Path(..., description="Registration ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Check in an approved participant."""
    registration = await registration_service.mark_attendance(registration_id, actor)
    return RegistrationResponse.model_validate(registration)


@router.post("/registrations/{registration_id}/promo", response_model=ApplyPromoResponse)
async def apply_promo(
    promo_data: ApplyPromoRequest,
    registration_id: str = Path(..., description="Registration ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Apply a promo code to the caller's unpaid registration."""
    registration, price = await registration_service.apply_promo_to_registration(
        registration_id, promo_data.promo_code, actor
    )
    return ApplyPromoResponse(
        registration=RegistrationResponse.model_validate(registration),
        effective_price=float(price)
    )


@router.get("/registrations/{registration_id}/waitlist-position", response_model=WaitlistPositionResponse)
async def get_waitlist_position(
    registration_id: str = Path(..., description="Registration ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Position of a registration in its event's waitlist."""
    position = await waitlist_service.get_waitlist_position(registration_id, actor)
    return WaitlistPositionResponse(**position)


@router.get("/registrations/{registration_id}/history", response_model=List[RegistrationAuditLogResponse])
async def get_registration_history(
    registration_id: str = Path(..., description="Registration ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Audit trail of a registration (organizers only)."""
    entries = await registration_service.get_registration_history(registration_id, actor)
    return [RegistrationAuditLogResponse.model_validate(e) for e in entries]
