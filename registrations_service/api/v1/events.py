"""
Event API endpoints for Registrations Service.
Event management, promo codes and availability.
"""

from fastapi import APIRouter, Depends, Query, Path, status
from typing import List, Optional
import logging

from registrations_service.api.dependencies import get_current_actor, require_organizer
from registrations_service.schemas.common import Actor, SuccessResponse
from registrations_service.schemas.event import (
    EventCreate,
    EventUpdate,
    EventResponse,
    EventPublicResponse,
    EventAvailabilityResponse,
    PromoCodeCreate,
    PromoCodeResponse,
    PromoCodeVerify,
    PromoCodeVerifyResponse
)
from registrations_service.services.availability_service import availability_service
from registrations_service.services.event_service import event_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


def project_event(event, actor: Actor):
    """Organizers see promo codes and collaborators; attendees do not."""
    if actor.is_admin or event.is_managed_by(actor.user_id):
        return EventResponse.model_validate(event)
    return EventPublicResponse.model_validate(event)


@router.post("/", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    event_data: EventCreate,
    actor: Actor = Depends(require_organizer)
):
    """
    Create a new event owned by the caller.

    Args:
        event_data: Event creation data
        actor: Authenticated organizer

    Returns:
        Created event
    """
    event = await event_service.create_event(event_data, actor)
    return EventResponse.model_validate(event)


@router.get("/", response_model=List[EventPublicResponse])
async def list_events(
    organizer_id: Optional[str] = Query(None, description="Filter by organizer"),
    open_only: bool = Query(False, description="Only events open for registration"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor)
):
    """List events ordered by start time."""
    events = await event_service.list_events(
        organizer_id=organizer_id, open_only=open_only, limit=limit, offset=offset
    )
    return [EventPublicResponse.model_validate(event) for event in events]


@router.get("/{event_id}", response_model=None)
async def get_event(
    event_id: str = Path(..., description="Event ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Get an event; the organizer view includes promo codes."""
    event = await event_service.get_event(event_id)
    return project_event(event, actor)


@router.patch("/{event_id}", response_model=EventResponse)
async def update_event(
    event_data: EventUpdate,
    event_id: str = Path(..., description="Event ID"),
    actor: Actor = Depends(get_current_actor)
):
    """
    Update an event. Raising capacity promotes waitlisted registrations.

    Returns:
        Updated event
    """
    event = await event_service.update_event(event_id, event_data, actor)
    return EventResponse.model_validate(event)


@router.delete("/{event_id}", response_model=SuccessResponse)
async def delete_event(
    event_id: str = Path(..., description="Event ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Delete an event together with its registrations and teams."""
    await event_service.delete_event(event_id, actor)
    return SuccessResponse(message="Event deleted successfully", data={"event_id": event_id})


@router.get("/{event_id}/availability", response_model=EventAvailabilityResponse)
async def get_event_availability(
    event_id: str = Path(..., description="Event ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Get the capacity summary of an event."""
    summary = await availability_service.get_event_availability(event_id)
    return EventAvailabilityResponse(**summary)


@router.post("/{event_id}/promo-codes", response_model=PromoCodeResponse, status_code=status.HTTP_201_CREATED)
async def add_promo_code(
    promo_data: PromoCodeCreate,
    event_id: str = Path(..., description="Event ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Add a promo code to an event."""
    promo = await event_service.add_promo_code(event_id, promo_data, actor)
    return PromoCodeResponse.model_validate(promo)


@router.delete("/{event_id}/promo-codes/{code}", response_model=SuccessResponse)
async def remove_promo_code(
    event_id: str = Path(..., description="Event ID"),
    code: str = Path(..., description="Promo code"),
    actor: Actor = Depends(get_current_actor)
):
    """Remove a promo code from an event."""
    await event_service.remove_promo_code(event_id, code, actor)
    return SuccessResponse(message="Promo code removed", data={"event_id": event_id, "code": code})


@router.post("/{event_id}/promo-codes/verify", response_model=PromoCodeVerifyResponse)
async def verify_promo_code(
    promo_data: PromoCodeVerify,
    event_id: str = Path(..., description="Event ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Check a promo code and preview the discounted price."""
    result = await event_service.verify_promo_code(event_id, promo_data.code)
    return PromoCodeVerifyResponse(**result)
