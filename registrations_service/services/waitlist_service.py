"""
Waitlist Service for Registrations Service.
Promotes waitlisted registrations in FIFO order whenever capacity frees up.
"""

from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session
import logging

from registrations_service.core.config import config
from registrations_service.core.exceptions import NotFound, Unauthorized
from registrations_service.db.database import db_manager
from registrations_service.db.redis_client import get_distributed_lock, event_lock_key
from registrations_service.models.event import Event
from registrations_service.models.registration import Registration, RegistrationStatus
from registrations_service.schemas.common import Actor
from .audit_log import log_status_change
from .availability_service import availability_service, count_slot_holders
from .event_publisher import event_publisher, RegistrationEventKind
from .notification_service import notification_service

logger = logging.getLogger(__name__)


def waitlist_query(session: Session, event_id: str):
    """Waitlisted registrations in promotion order: registered_at, then id."""
    return session.query(Registration).filter(
        Registration.event_id == event_id,
        Registration.status == RegistrationStatus.WAITLISTED
    ).order_by(Registration.registered_at, Registration.id)


class WaitlistService:
    """
    Waitlist promotion. Available slots are re-derived from the store on
    every run, so promoting twice without a state change is a no-op.
    """

    def __init__(self):
        self.consistency_config = None

    async def _get_configs(self):
        """Get configuration settings."""
        if not self.consistency_config:
            self.consistency_config = await config.get_consistency_config()

    def promote_in_session(self, session: Session, event: Event, changed_by: Optional[str] = None) -> List[Registration]:
        """
        Promote the oldest waitlisted registrations into free slots.
        Runs inside the caller's transaction; the caller must hold the event lock.

        Args:
            session: Open transaction
            event: Event whose waitlist to process
            changed_by: Actor recorded in the audit trail

        Returns:
            Registrations moved from Waitlisted to Pending
        """
        session.flush()

        available = event.capacity - count_slot_holders(session, event.id)
        if available <= 0:
            return []

        promoted = waitlist_query(session, event.id).limit(available).all()
        for registration in promoted:
            registration.status = RegistrationStatus.PENDING
            log_status_change(
                session, registration, "PROMOTE", RegistrationStatus.WAITLISTED,
                changed_by=changed_by, reason="Slot became available"
            )

        if promoted:
            session.flush()
            logger.info(f"Promoted {len(promoted)} waitlisted registrations for event {event.id}")

        return promoted

    async def notify_promoted(self, promoted: List[Registration], event_data: Dict[str, Any]):
        """Announce promotions. A failure for one registration does not stop the rest."""
        for registration in promoted:
            registration_data = registration.to_dict()
            try:
                await event_publisher.emit(RegistrationEventKind.WAITLIST_PROMOTED, registration_data)
            except Exception as e:
                logger.error(f"Failed to publish promotion of registration {registration.id}: {e}")

            try:
                await notification_service.send_waitlist_promoted(registration_data, event_data)
            except Exception as e:
                logger.error(f"Failed to notify promotion of registration {registration.id}: {e}")

    async def promote_waitlist(self, event_id: str, actor: Optional[Actor] = None) -> List[Registration]:
        """
        Run waitlist promotion for an event.

        Args:
            event_id: Event whose waitlist to process
            actor: Caller; when given, must manage the event

        Returns:
            Newly promoted registrations (empty when nothing changed)
        """
        await self._get_configs()

        async with get_distributed_lock(
            event_lock_key(event_id),
            timeout=self.consistency_config["lock_timeout_seconds"],
            blocking_timeout=self.consistency_config["lock_blocking_timeout_seconds"]
        ):
            with db_manager.get_transaction_session() as session:
                event = session.get(Event, event_id)
                if not event:
                    raise NotFound("Event not found", details={"event_id": event_id})
                if actor and not (actor.is_admin or event.is_managed_by(actor.user_id)):
                    raise Unauthorized("Only the organizer can manage the waitlist")

                promoted = self.promote_in_session(
                    session, event, changed_by=actor.user_id if actor else None
                )
                session.commit()
                event_data = event.to_dict()

        if promoted:
            await availability_service.invalidate(event_id)
            await self.notify_promoted(promoted, event_data)

        return promoted

    async def get_waitlist_position(self, registration_id: str, actor: Actor) -> Dict[str, Any]:
        """
        Position of a registration in its event's waitlist.

        Returns:
            Dict with status, 1-based position (None if not waitlisted) and waitlist size
        """
        with db_manager.get_session() as session:
            registration = session.get(Registration, registration_id)
            if not registration:
                raise NotFound("Registration not found", details={"registration_id": registration_id})
            if registration.participant_id != actor.user_id and not (
                actor.is_admin or registration.event.is_managed_by(actor.user_id)
            ):
                raise Unauthorized("You can only view your own registrations")

            waitlist_ids = [row.id for row in waitlist_query(session, registration.event_id).with_entities(Registration.id)]
            position = None
            if registration.status == RegistrationStatus.WAITLISTED:
                position = waitlist_ids.index(registration.id) + 1

            return {
                "registration_id": registration.id,
                "status": registration.status,
                "position": position,
                "waitlist_size": len(waitlist_ids),
            }

    async def get_event_waitlist(self, event_id: str, actor: Actor) -> List[Registration]:
        """Waitlisted registrations of an event in promotion order."""
        with db_manager.get_session() as session:
            event = session.get(Event, event_id)
            if not event:
                raise NotFound("Event not found", details={"event_id": event_id})
            if not (actor.is_admin or event.is_managed_by(actor.user_id)):
                raise Unauthorized("Only the organizer can view the waitlist")
            return waitlist_query(session, event_id).all()


# Global waitlist service instance
waitlist_service = WaitlistService()
