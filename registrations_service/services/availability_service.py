"""
Availability Service for Registrations Service.
Derives capacity summaries from the registration store and caches them in Redis.
"""

from typing import Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from registrations_service.core.config import config
from registrations_service.core.exceptions import NotFound
from registrations_service.db.database import db_manager
from registrations_service.db.redis_client import redis_manager
from registrations_service.models.event import Event
from registrations_service.models.registration import (
    Registration, RegistrationStatus, SLOT_HOLDING_STATUSES
)

logger = logging.getLogger(__name__)


def count_slot_holders(session: Session, event_id: str) -> int:
    """Registrations occupying capacity: Pending, Approved, AwaitingPayment."""
    return session.query(func.count(Registration.id)).filter(
        Registration.event_id == event_id,
        Registration.status.in_(SLOT_HOLDING_STATUSES)
    ).scalar() or 0


def count_non_rejected(session: Session, event_id: str) -> int:
    """Every registration that is not Rejected, waitlisted entrants included."""
    return session.query(func.count(Registration.id)).filter(
        Registration.event_id == event_id,
        Registration.status != RegistrationStatus.REJECTED
    ).scalar() or 0


class AvailabilityService:
    """
    Capacity summaries. Counts are always recomputed from the store;
    the cache only shortens repeated reads.
    """

    def __init__(self):
        self.cache_config = None

    async def _get_configs(self):
        """Get configuration settings."""
        if not self.cache_config:
            self.cache_config = await config.get_cache_config()

    @staticmethod
    def _cache_key(event_id: str) -> str:
        return f"registration:availability:{event_id}"

    def compute_summary(self, session: Session, event: Event) -> Dict[str, Any]:
        """Build the capacity summary for a loaded event."""
        rows = session.query(Registration.status, func.count(Registration.id)).filter(
            Registration.event_id == event.id
        ).group_by(Registration.status).all()
        counts = {status: count for status, count in rows}

        pending = counts.get(RegistrationStatus.PENDING, 0)
        approved = counts.get(RegistrationStatus.APPROVED, 0)
        awaiting_payment = counts.get(RegistrationStatus.AWAITING_PAYMENT, 0)
        slot_holders = pending + approved + awaiting_payment
        available = max(event.capacity - slot_holders, 0)

        return {
            "event_id": event.id,
            "capacity": event.capacity,
            "slot_holders": slot_holders,
            "pending": pending,
            "approved": approved,
            "awaiting_payment": awaiting_payment,
            "waitlisted": counts.get(RegistrationStatus.WAITLISTED, 0),
            "rejected": counts.get(RegistrationStatus.REJECTED, 0),
            "available": available,
            "is_full": available == 0,
        }

    async def get_event_availability(self, event_id: str, use_cache: bool = True) -> Dict[str, Any]:
        """
        Get the capacity summary for an event.

        Args:
            event_id: ID of the event
            use_cache: Whether to use Redis cache

        Returns:
            Capacity summary dict

        Raises:
            NotFound: If the event does not exist
        """
        await self._get_configs()
        cache_key = self._cache_key(event_id)

        if use_cache:
            cached = await redis_manager.get_json(cache_key)
            if cached:
                return cached

        with db_manager.get_session() as session:
            event = session.get(Event, event_id)
            if not event:
                raise NotFound("Event not found", details={"event_id": event_id})
            summary = self.compute_summary(session, event)

        if use_cache:
            await redis_manager.set_json(cache_key, summary, ttl=self.cache_config["availability_ttl"])

        return summary

    async def invalidate(self, event_id: str):
        """Drop the cached summary after a capacity-affecting write."""
        try:
            await redis_manager.delete(self._cache_key(event_id))
        except Exception as e:
            logger.error(f"Failed to invalidate availability cache for event {event_id}: {e}")


# Global availability service instance
availability_service = AvailabilityService()
