"""
Event Service for Registrations Service.
Event CRUD and promo code management. Capacity changes run under the
event lock so waitlist promotion sees a consistent count.
"""

from decimal import Decimal
from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session
import logging

from registrations_service.core.config import config
from registrations_service.core.exceptions import (
    RegistrationServiceError, NotFound, CapacityExceeded, InvalidPromoCode
)
from registrations_service.db.database import db_manager
from registrations_service.db.redis_client import get_distributed_lock, event_lock_key
from registrations_service.models.base import ensure_utc
from registrations_service.models.event import Event, PromoCode, ParticipationMode
from registrations_service.models.registration import RegistrationAuditLog
from registrations_service.schemas.common import Actor
from registrations_service.schemas.event import EventCreate, EventUpdate, PromoCodeCreate
from .availability_service import availability_service, count_slot_holders
from .event_publisher import event_publisher, RegistrationEventKind
from .promo_service import (
    apply_promo, compute_discounted_price, normalize_code, to_money, validate_promo_value
)
from .registration_service import ensure_manager
from .waitlist_service import waitlist_service

logger = logging.getLogger(__name__)

# Columns an update may not null out; an explicit null leaves them unchanged
REQUIRED_EVENT_FIELDS = (
    "title", "capacity", "starts_at", "ends_at", "is_registration_open",
    "participation_mode", "is_paid", "price", "currency",
    "collaborator_ids", "custom_questions",
)


def _validate_event_rules(event: Event):
    """Cross-field rules that must hold after any create or update."""
    if ensure_utc(event.ends_at) <= ensure_utc(event.starts_at):
        raise RegistrationServiceError("Event must end after it starts")
    if event.participation_mode != ParticipationMode.INDIVIDUAL and (event.max_team_size or 0) < 2:
        raise RegistrationServiceError("max_team_size of at least 2 is required when teams are allowed")
    if event.is_paid and event.price is None:
        raise RegistrationServiceError("Paid events require a price")
    for promo in event.promo_codes:
        validate_promo_value(promo.kind, promo.value, event.price)


class EventService:
    """
    Event store operations. Only the organizer and collaborators may change an event.
    """

    def __init__(self):
        self.consistency_config = None
        self.registration_config = None

    async def _get_configs(self):
        """Get configuration settings."""
        if not self.consistency_config:
            self.consistency_config = await config.get_consistency_config()
        if not self.registration_config:
            self.registration_config = await config.get_registration_config()

    @staticmethod
    def _load_event(session: Session, event_id: str) -> Event:
        event = session.get(Event, event_id)
        if not event:
            raise NotFound("Event not found", details={"event_id": event_id})
        return event

    @staticmethod
    def _add_promo(event: Event, promo_data: PromoCodeCreate) -> PromoCode:
        normalized = normalize_code(promo_data.code)
        if any(p.normalized_code == normalized for p in event.promo_codes):
            raise InvalidPromoCode(
                "Promo code already exists for this event",
                details={"promo_code": promo_data.code}
            )

        validate_promo_value(promo_data.kind, promo_data.value, event.price)

        promo = PromoCode(
            code=promo_data.code,
            normalized_code=normalized,
            kind=promo_data.kind,
            value=promo_data.value,
        )
        event.promo_codes.append(promo)
        return promo

    async def create_event(self, event_data: EventCreate, actor: Actor) -> Event:
        """
        Create an event owned by the caller.

        Args:
            event_data: Event details, optionally with promo codes
            actor: Organizer

        Returns:
            The created event
        """
        await self._get_configs()

        with db_manager.get_transaction_session() as session:
            event = Event(
                organizer_id=actor.user_id,
                collaborator_ids=[c for c in event_data.collaborator_ids if c != actor.user_id],
                title=event_data.title,
                description=event_data.description,
                location=event_data.location,
                capacity=event_data.capacity,
                starts_at=event_data.starts_at,
                ends_at=event_data.ends_at,
                is_registration_open=event_data.is_registration_open,
                participation_mode=event_data.participation_mode,
                max_team_size=event_data.max_team_size,
                is_paid=event_data.is_paid,
                price=event_data.price if event_data.price is not None else Decimal("0.00"),
                currency=(event_data.currency or self.registration_config["default_currency"]).upper(),
                custom_questions=[q.model_dump() for q in event_data.custom_questions],
                promo_codes=[],
            )
            _validate_event_rules(event)

            for promo_data in event_data.promo_codes:
                self._add_promo(event, promo_data)

            session.add(event)
            session.commit()

        logger.info(f"Event {event.id} '{event.title}' created by {actor.user_id} with capacity {event.capacity}")
        return event

    async def update_event(self, event_id: str, event_data: EventUpdate, actor: Actor) -> Event:
        """
        Update an event. Raising capacity promotes waitlisted registrations;
        lowering it below the current slot holders is refused.

        Raises:
            NotFound, Unauthorized, CapacityExceeded
        """
        await self._get_configs()
        changes = event_data.model_dump(exclude_unset=True)

        async with get_distributed_lock(
            event_lock_key(event_id),
            timeout=self.consistency_config["lock_timeout_seconds"],
            blocking_timeout=self.consistency_config["lock_blocking_timeout_seconds"]
        ):
            with db_manager.get_transaction_session() as session:
                event = self._load_event(session, event_id)
                ensure_manager(event, actor)

                old_capacity = event.capacity
                new_capacity = changes.get("capacity") or old_capacity
                if new_capacity < old_capacity:
                    slot_holders = count_slot_holders(session, event_id)
                    if new_capacity < slot_holders:
                        raise CapacityExceeded(
                            "Capacity cannot be lower than the number of current registrations",
                            details={"capacity": new_capacity, "slot_holders": slot_holders}
                        )

                for field, value in changes.items():
                    if value is None and field in REQUIRED_EVENT_FIELDS:
                        continue
                    if field == "custom_questions":
                        value = [q.model_dump() for q in event_data.custom_questions or []]
                    elif field == "currency" and value:
                        value = value.upper()
                    elif field == "collaborator_ids":
                        value = [c for c in value or [] if c != event.organizer_id]
                    setattr(event, field, value)

                _validate_event_rules(event)

                promoted = []
                if event.capacity > old_capacity:
                    promoted = waitlist_service.promote_in_session(session, event, changed_by=actor.user_id)

                session.commit()
                event_data_out = event.to_dict()

        logger.info(f"Event {event_id} updated by {actor.user_id}: {sorted(changes)}")

        await availability_service.invalidate(event_id)

        try:
            await event_publisher.emit(RegistrationEventKind.EVENT_UPDATED, {
                **event_data_out, "changed_fields": sorted(changes)
            })
        except Exception as e:
            logger.error(f"Failed to publish event updated: {e}")

        await waitlist_service.notify_promoted(promoted, event_data_out)
        return event

    async def delete_event(self, event_id: str, actor: Actor) -> bool:
        """
        Delete an event with its registrations, teams, promo codes and audit trail.

        Raises:
            NotFound, Unauthorized
        """
        await self._get_configs()

        async with get_distributed_lock(
            event_lock_key(event_id),
            timeout=self.consistency_config["lock_timeout_seconds"],
            blocking_timeout=self.consistency_config["lock_blocking_timeout_seconds"]
        ):
            with db_manager.get_transaction_session() as session:
                event = self._load_event(session, event_id)
                ensure_manager(event, actor)

                session.query(RegistrationAuditLog).filter(
                    RegistrationAuditLog.event_id == event_id
                ).delete(synchronize_session=False)
                session.delete(event)
                session.commit()

        logger.info(f"Event {event_id} deleted by {actor.user_id}")

        await availability_service.invalidate(event_id)

        try:
            await event_publisher.emit(RegistrationEventKind.EVENT_DELETED, {"event_id": event_id})
        except Exception as e:
            logger.error(f"Failed to publish event deleted: {e}")

        return True

    async def get_event(self, event_id: str) -> Event:
        with db_manager.get_session() as session:
            return self._load_event(session, event_id)

    async def list_events(
        self,
        organizer_id: Optional[str] = None,
        open_only: bool = False,
        limit: int = 50,
        offset: int = 0
    ) -> List[Event]:
        """List events by start time, optionally filtered."""
        with db_manager.get_session() as session:
            query = session.query(Event)
            if organizer_id:
                query = query.filter(Event.organizer_id == organizer_id)
            if open_only:
                query = query.filter(Event.is_registration_open.is_(True))
            return query.order_by(Event.starts_at, Event.id).offset(offset).limit(limit).all()

    async def add_promo_code(self, event_id: str, promo_data: PromoCodeCreate, actor: Actor) -> PromoCode:
        """
        Add a promo code to an event.

        Raises:
            NotFound, Unauthorized, InvalidPromoCode
        """
        with db_manager.get_transaction_session() as session:
            event = self._load_event(session, event_id)
            ensure_manager(event, actor)
            promo = self._add_promo(event, promo_data)
            session.commit()

        logger.info(f"Promo code {promo.code} added to event {event_id}")
        return promo

    async def remove_promo_code(self, event_id: str, code: str, actor: Actor) -> bool:
        """
        Remove a promo code. Registrations that already applied it keep the
        code but are charged the base price.

        Raises:
            NotFound, Unauthorized
        """
        with db_manager.get_transaction_session() as session:
            event = self._load_event(session, event_id)
            ensure_manager(event, actor)

            normalized = normalize_code(code)
            promo = next((p for p in event.promo_codes if p.normalized_code == normalized), None)
            if not promo:
                raise NotFound("Promo code not found", details={"event_id": event_id, "promo_code": code})

            event.promo_codes.remove(promo)
            session.commit()

        logger.info(f"Promo code {code} removed from event {event_id}")
        return True

    async def verify_promo_code(self, event_id: str, code: str) -> Dict[str, Any]:
        """
        Look up a promo code and price it before registering.

        Returns:
            The matching code with the base and discounted price

        Raises:
            NotFound, InvalidPromoCode
        """
        with db_manager.get_session() as session:
            event = self._load_event(session, event_id)
            if not event.is_paid:
                raise InvalidPromoCode("Promo codes do not apply to free events")

            promo = apply_promo(event, code)
            return {
                "event_id": event_id,
                "code": promo.code,
                "kind": promo.kind,
                "value": float(promo.value),
                "price": float(to_money(event.price)),
                "discounted_price": float(compute_discounted_price(event.price, promo)),
                "currency": event.currency,
            }


# Global event service instance
event_service = EventService()
