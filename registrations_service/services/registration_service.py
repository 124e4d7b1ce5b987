"""
Registration Service: the registration lifecycle engine.
Capacity-sensitive writes are serialized per event with a distributed lock;
counts are always re-derived from the store inside the locked transaction.
"""

from contextlib import nullcontext
from typing import Optional, List, Dict, Any, Tuple
from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import logging

from registrations_service.core.config import config
from registrations_service.core.exceptions import (
    RegistrationServiceError, NotFound, RegistrationClosed, DuplicateRegistration,
    MissingRequiredAnswer, ParticipationModeNotAllowed, InvalidPromoCode,
    CapacityExceeded, InvalidTransition, NotApproved, Unauthorized, TeamNotFound
)
from registrations_service.db.database import db_manager
from registrations_service.db.redis_client import get_distributed_lock, event_lock_key, team_lock_key
from registrations_service.models.base import utcnow
from registrations_service.models.event import Event
from registrations_service.models.team import Team
from registrations_service.models.registration import (
    Registration, RegistrationAuditLog, RegistrationStatus, ParticipationType
)
from registrations_service.schemas.common import Actor
from registrations_service.schemas.registration import RegistrationCreate
from .audit_log import create_audit_log, log_status_change
from .availability_service import availability_service, count_slot_holders, count_non_rejected
from .event_publisher import event_publisher, RegistrationEventKind
from .notification_service import notification_service
from .promo_service import apply_promo, effective_price, normalize_code
from .team_service import team_service
from .waitlist_service import waitlist_service

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def can_manage(event: Event, actor: Actor) -> bool:
    return actor.is_admin or event.is_managed_by(actor.user_id)


def ensure_manager(event: Event, actor: Actor):
    """Raise Unauthorized unless the actor organizes or co-organizes the event."""
    if not can_manage(event, actor):
        logger.warning(f"User {actor.user_id} is not allowed to manage event {event.id}")
        raise Unauthorized(
            "Only the event organizer or collaborators can perform this action",
            details={"event_id": event.id}
        )


def ensure_owner(registration: Registration, actor: Actor):
    if registration.participant_id != actor.user_id and not actor.is_admin:
        raise Unauthorized(
            "You can only modify your own registration",
            details={"registration_id": registration.id}
        )


def approval_status(event: Event, registration: Registration) -> RegistrationStatus:
    """
    Status an approval lands in. Free events and fully discounted
    registrations are approved outright; otherwise payment gates approval.
    """
    if not event.is_paid or registration.is_payment_completed:
        return RegistrationStatus.APPROVED
    if effective_price(event, registration.promo_code, strict=False) == 0:
        return RegistrationStatus.APPROVED
    return RegistrationStatus.AWAITING_PAYMENT


class RegistrationService:
    """
    Registration state machine: Register, Approve, Reject, Cancel,
    MarkAttendance and promo application, plus read queries.
    """

    def __init__(self):
        self.consistency_config = None

    async def _get_configs(self):
        """Get configuration settings."""
        if not self.consistency_config:
            self.consistency_config = await config.get_consistency_config()

    def _lock(self, lock_key: str):
        return get_distributed_lock(
            lock_key,
            timeout=self.consistency_config["lock_timeout_seconds"],
            blocking_timeout=self.consistency_config["lock_blocking_timeout_seconds"]
        )

    def resolve_event_id(self, registration_id: str) -> str:
        """Resolve a registration's event so the right lock can be taken."""
        with db_manager.get_session() as session:
            event_id = session.query(Registration.event_id).filter(
                Registration.id == registration_id
            ).scalar()
        if not event_id:
            raise NotFound("Registration not found", details={"registration_id": registration_id})
        return event_id

    @staticmethod
    def load_registration(session: Session, registration_id: str) -> Registration:
        registration = session.get(Registration, registration_id)
        if not registration:
            raise NotFound("Registration not found", details={"registration_id": registration_id})
        return registration

    @staticmethod
    def _validate_answers(event: Event, answers: Dict[str, str]):
        missing = [
            question_id for question_id in event.required_question_ids()
            if not str(answers.get(question_id) or "").strip()
        ]
        if missing:
            raise MissingRequiredAnswer(
                "Please answer all required questions",
                details={"missing_question_ids": missing}
            )

    @staticmethod
    def _validate_participation(event: Event, registration_data: RegistrationCreate):
        if registration_data.participation_type == ParticipationType.TEAM:
            if not event.allows_team:
                raise ParticipationModeNotAllowed(
                    "This event does not allow team participation",
                    details={"participation_mode": event.participation_mode.value}
                )
            if registration_data.team is None:
                raise ParticipationModeNotAllowed("Team registration requires a team choice")
        elif not event.allows_individual:
            raise ParticipationModeNotAllowed(
                "This event only allows team participation",
                details={"participation_mode": event.participation_mode.value}
            )

    async def announce_status(self, registration: Registration, event_data: Dict[str, Any],
                               old_status: Optional[RegistrationStatus]):
        registration_data = registration.to_dict()
        try:
            await event_publisher.emit(RegistrationEventKind.STATUS_CHANGED, {
                **registration_data,
                "old_status": old_status.value if old_status else None,
            })
        except Exception as e:
            logger.error(f"Failed to publish status change for registration {registration.id}: {e}")

        try:
            await notification_service.send_status_update(registration_data, event_data)
        except Exception as e:
            logger.error(f"Failed to send status notification for registration {registration.id}: {e}")

    async def register(
        self,
        event_id: str,
        registration_data: RegistrationCreate,
        actor: Actor
    ) -> Tuple[Registration, Optional[Team]]:
        """
        Register a participant for an event.

        Args:
            event_id: Event to register for
            registration_data: Participant details, answers, team choice and promo code
            actor: Authenticated participant

        Returns:
            Tuple of (registration, team created by this call or None)

        Raises:
            NotFound, RegistrationClosed, DuplicateRegistration, MissingRequiredAnswer,
            ParticipationModeNotAllowed, InvalidPromoCode, TeamNotFound, EventMismatch,
            TeamFull, InvalidTeamName
        """
        await self._get_configs()

        team_choice = registration_data.team
        joining = (
            registration_data.participation_type == ParticipationType.TEAM
            and team_choice is not None
            and team_choice.action == "join"
        )

        async with self._lock(event_lock_key(event_id)):
            team_id = None
            if joining:
                with db_manager.get_session() as session:
                    team_id = session.query(Team.id).filter(
                        Team.invite_code == normalize_code(team_choice.invite_code)
                    ).scalar()

            async with (self._lock(team_lock_key(team_id)) if team_id else nullcontext()):
                with db_manager.get_transaction_session() as session:
                    event = session.get(Event, event_id)
                    if not event:
                        raise NotFound("Event not found", details={"event_id": event_id})

                    if not event.is_registration_open or event.has_started:
                        raise RegistrationClosed(
                            "Registration for this event is closed",
                            details={"event_id": event_id}
                        )

                    # The token email wins; the body only fills in when the claim is absent
                    participant_email = (actor.email or registration_data.participant_email).strip()
                    email = normalize_email(participant_email)
                    existing = session.query(Registration.id).filter(
                        Registration.event_id == event_id,
                        or_(
                            Registration.normalized_email == email,
                            Registration.participant_id == actor.user_id
                        )
                    ).first()
                    if existing:
                        logger.warning(f"Duplicate registration attempt for event {event_id}")
                        raise DuplicateRegistration(
                            "You are already registered for this event",
                            details={"event_id": event_id, "registration_id": existing.id}
                        )

                    self._validate_answers(event, registration_data.answers)
                    self._validate_participation(event, registration_data)

                    promo_code = None
                    if registration_data.promo_code and registration_data.promo_code.strip():
                        promo_code = apply_promo(event, registration_data.promo_code).code

                    status = RegistrationStatus.PENDING
                    if count_non_rejected(session, event_id) >= event.capacity:
                        status = RegistrationStatus.WAITLISTED

                    registration = Registration(
                        event_id=event_id,
                        participant_id=actor.user_id,
                        participant_name=registration_data.participant_name,
                        participant_email=participant_email,
                        normalized_email=email,
                        status=status,
                        participation_type=registration_data.participation_type,
                        answers=dict(registration_data.answers),
                        promo_code=promo_code,
                        attended=False,
                        registered_at=utcnow(),
                    )

                    created_team = None
                    if registration_data.participation_type == ParticipationType.TEAM:
                        if team_choice.action == "create":
                            team = await team_service.create_team_in_session(
                                session, event, actor.user_id,
                                registration_data.participant_name,
                                participant_email,
                                team_choice.team_name
                            )
                            created_team = team
                            registration.is_team_leader = True
                        else:
                            if not team_id:
                                raise TeamNotFound(
                                    "Invalid invite code",
                                    details={"invite_code": team_choice.invite_code}
                                )
                            team = session.query(Team).populate_existing().filter(Team.id == team_id).one()
                            team = await team_service.join_team_in_session(
                                session, team, event, actor.user_id,
                                registration_data.participant_name,
                                participant_email
                            )
                            registration.is_team_leader = False
                        registration.team_id = team.id
                        registration.team_name = team.name

                    session.add(registration)
                    try:
                        session.flush()
                    except IntegrityError:
                        raise DuplicateRegistration(
                            "You are already registered for this event",
                            details={"event_id": event_id}
                        )

                    create_audit_log(
                        session, registration, "REGISTER",
                        field_name="status", new_value=status.value,
                        changed_by=actor.user_id
                    )
                    session.commit()
                    event_data = event.to_dict()

        logger.info(f"Registration {registration.id} created for event {event_id} as {status.value}")

        await availability_service.invalidate(event_id)

        try:
            await event_publisher.emit(RegistrationEventKind.REGISTRATION_CREATED, registration.to_dict())
        except Exception as e:
            logger.error(f"Failed to publish registration created event: {e}")

        try:
            await notification_service.send_status_update(registration.to_dict(), event_data)
        except Exception as e:
            logger.error(f"Failed to send registration notification: {e}")

        if created_team:
            await team_service.notify_team_created(created_team, event_data)
        elif joining:
            try:
                await event_publisher.emit(RegistrationEventKind.TEAM_JOINED, {
                    "team_id": registration.team_id, "event_id": event_id, "user_id": actor.user_id
                })
            except Exception as e:
                logger.error(f"Failed to publish team joined event: {e}")

        return registration, created_team

    async def approve_registration(self, registration_id: str, actor: Actor,
                                   reason: Optional[str] = None) -> Registration:
        """
        Approve a registration. Paid events move to AwaitingPayment until the
        payment completes; approving an Approved registration re-derives the status.

        Raises:
            NotFound, Unauthorized, InvalidTransition, CapacityExceeded
        """
        await self._get_configs()
        event_id = self.resolve_event_id(registration_id)

        async with self._lock(event_lock_key(event_id)):
            with db_manager.get_transaction_session() as session:
                registration = self.load_registration(session, registration_id)
                event = registration.event
                ensure_manager(event, actor)

                old_status = registration.status
                if old_status == RegistrationStatus.REJECTED:
                    raise InvalidTransition(
                        "Rejected registrations cannot be approved",
                        details={"registration_id": registration_id, "status": old_status.value}
                    )

                if old_status == RegistrationStatus.WAITLISTED and \
                        count_slot_holders(session, event.id) >= event.capacity:
                    raise CapacityExceeded(
                        "Event is at capacity",
                        details={"event_id": event.id, "capacity": event.capacity}
                    )

                registration.status = approval_status(event, registration)
                log_status_change(session, registration, "APPROVE", old_status,
                                  changed_by=actor.user_id, reason=reason)
                session.commit()
                event_data = event.to_dict()

        logger.info(f"Registration {registration_id} approved: {old_status.value} -> {registration.status.value}")

        await availability_service.invalidate(event_id)
        await self.announce_status(registration, event_data, old_status)
        return registration

    async def reject_registration(self, registration_id: str, actor: Actor,
                                  reason: Optional[str] = None) -> Registration:
        """
        Reject a registration. Freed slots go to the waitlist in the same transaction.

        Raises:
            NotFound, Unauthorized, InvalidTransition
        """
        await self._get_configs()
        event_id = self.resolve_event_id(registration_id)

        async with self._lock(event_lock_key(event_id)):
            with db_manager.get_transaction_session() as session:
                registration = self.load_registration(session, registration_id)
                event = registration.event
                ensure_manager(event, actor)

                old_status = registration.status
                if old_status == RegistrationStatus.REJECTED:
                    raise InvalidTransition(
                        "Registration is already rejected",
                        details={"registration_id": registration_id}
                    )

                held_slot = registration.holds_slot
                registration.status = RegistrationStatus.REJECTED
                log_status_change(session, registration, "REJECT", old_status,
                                  changed_by=actor.user_id, reason=reason)

                promoted = []
                if held_slot:
                    promoted = waitlist_service.promote_in_session(session, event, changed_by=actor.user_id)

                session.commit()
                event_data = event.to_dict()

        logger.info(f"Registration {registration_id} rejected, {len(promoted)} promoted from waitlist")

        await availability_service.invalidate(event_id)
        await self.announce_status(registration, event_data, old_status)
        await waitlist_service.notify_promoted(promoted, event_data)
        return registration

    async def cancel_registration(self, registration_id: str, actor: Actor,
                                  reason: Optional[str] = None) -> Dict[str, Any]:
        """
        Cancel (delete) the caller's registration. A non-leader team member
        also leaves the team roster.

        Returns:
            The cancelled registration as a dict

        Raises:
            NotFound, Unauthorized, InvalidTransition
        """
        await self._get_configs()
        event_id = self.resolve_event_id(registration_id)

        async with self._lock(event_lock_key(event_id)):
            with db_manager.get_transaction_session() as session:
                registration = self.load_registration(session, registration_id)
                ensure_owner(registration, actor)
                event = registration.event

                if registration.status == RegistrationStatus.REJECTED:
                    raise InvalidTransition(
                        "Rejected registrations cannot be cancelled",
                        details={"registration_id": registration_id}
                    )

                held_slot = registration.holds_slot
                registration_data = registration.to_dict()

                if registration.team_id and registration.is_team_leader:
                    team_service.mark_leader_cancelled_in_session(session, registration.team_id)
                elif registration.team_id:
                    team_service.remove_member_in_session(session, registration.team_id, registration.participant_id)

                create_audit_log(
                    session, registration, "CANCEL",
                    field_name="status",
                    old_value=registration.status.value,
                    new_value="cancelled",
                    changed_by=actor.user_id,
                    reason=reason
                )
                session.delete(registration)

                promoted = []
                if held_slot:
                    promoted = waitlist_service.promote_in_session(session, event, changed_by=actor.user_id)

                session.commit()
                event_data = event.to_dict()

        logger.info(f"Registration {registration_id} cancelled, {len(promoted)} promoted from waitlist")

        await availability_service.invalidate(event_id)

        try:
            await event_publisher.emit(RegistrationEventKind.REGISTRATION_CANCELLED, registration_data)
        except Exception as e:
            logger.error(f"Failed to publish registration cancelled event: {e}")

        await waitlist_service.notify_promoted(promoted, event_data)
        return registration_data

    async def mark_attendance(self, registration_id: str, actor: Actor) -> Registration:
        """
        Check in an approved participant. Only the first check-in is recorded.

        Raises:
            NotFound, Unauthorized, NotApproved
        """
        with db_manager.get_transaction_session() as session:
            registration = self.load_registration(session, registration_id)
            ensure_manager(registration.event, actor)

            if registration.status != RegistrationStatus.APPROVED:
                raise NotApproved(
                    "Only approved registrations can be checked in",
                    details={"registration_id": registration_id, "status": registration.status.value}
                )
            if registration.attended:
                raise NotApproved(
                    "Participant is already checked in",
                    details={"registration_id": registration_id}
                )

            registration.attended = True
            registration.attendance_time = utcnow()
            create_audit_log(
                session, registration, "ATTEND",
                field_name="attended", old_value="false", new_value="true",
                changed_by=actor.user_id
            )
            session.commit()

        logger.info(f"Attendance marked for registration {registration_id}")

        try:
            await event_publisher.emit(RegistrationEventKind.ATTENDANCE_MARKED, registration.to_dict())
        except Exception as e:
            logger.error(f"Failed to publish attendance event: {e}")

        return registration

    async def apply_promo_to_registration(self, registration_id: str, promo_code: str,
                                          actor: Actor) -> Tuple[Registration, Any]:
        """
        Attach a promo code to an unpaid registration.

        Returns:
            Tuple of (registration, effective price after the discount)

        Raises:
            NotFound, Unauthorized, InvalidTransition, InvalidPromoCode
        """
        with db_manager.get_transaction_session() as session:
            registration = self.load_registration(session, registration_id)
            ensure_owner(registration, actor)
            event = registration.event

            if registration.status == RegistrationStatus.REJECTED:
                raise InvalidTransition("Rejected registrations cannot use promo codes")
            if registration.is_payment_completed:
                raise InvalidTransition("Payment is already completed")
            if not event.is_paid:
                raise InvalidPromoCode("Promo codes do not apply to free events")

            promo = apply_promo(event, promo_code)
            old_code = registration.promo_code
            registration.promo_code = promo.code
            create_audit_log(
                session, registration, "APPLY_PROMO",
                field_name="promo_code", old_value=old_code, new_value=promo.code,
                changed_by=actor.user_id
            )
            price = effective_price(event, promo.code)
            session.commit()

        logger.info(f"Promo {promo.code} applied to registration {registration_id}, price now {price}")
        return registration, price

    async def bulk_update_status(self, registration_ids: List[str], action: str, actor: Actor,
                                 reason: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Approve or reject several registrations. Each id is processed on its
        own; one failure does not affect the others.

        Returns:
            Per-item results
        """
        handler = self.approve_registration if action == "approve" else self.reject_registration
        results = []

        for registration_id in registration_ids:
            try:
                registration = await handler(registration_id, actor, reason=reason)
                results.append({
                    "registration_id": registration_id,
                    "success": True,
                    "status": registration.status,
                })
            except RegistrationServiceError as e:
                logger.warning(f"Bulk {action} failed for registration {registration_id}: {e.message}")
                results.append({
                    "registration_id": registration_id,
                    "success": False,
                    "error_code": e.error_code,
                    "error_message": e.message,
                })

        return results

    async def get_registration(self, registration_id: str, actor: Actor) -> Registration:
        """Get a registration visible to its participant or the event's managers."""
        with db_manager.get_session() as session:
            registration = self.load_registration(session, registration_id)
            if registration.participant_id != actor.user_id and not can_manage(registration.event, actor):
                raise Unauthorized("You can only view your own registrations")
            return registration

    async def list_event_registrations(
        self,
        event_id: str,
        actor: Actor,
        status: Optional[RegistrationStatus] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[Registration]:
        """List an event's registrations in registration order (organizers only)."""
        with db_manager.get_session() as session:
            event = session.get(Event, event_id)
            if not event:
                raise NotFound("Event not found", details={"event_id": event_id})
            ensure_manager(event, actor)

            query = session.query(Registration).filter(Registration.event_id == event_id)
            if status:
                query = query.filter(Registration.status == status)

            return query.order_by(
                Registration.registered_at, Registration.id
            ).offset(offset).limit(limit).all()

    async def list_user_registrations(self, actor: Actor, limit: int = 100, offset: int = 0) -> List[Registration]:
        """List the caller's registrations, newest first."""
        with db_manager.get_session() as session:
            return session.query(Registration).filter(
                Registration.participant_id == actor.user_id
            ).order_by(
                Registration.registered_at.desc()
            ).offset(offset).limit(limit).all()

    async def get_registration_history(self, registration_id: str, actor: Actor) -> List[RegistrationAuditLog]:
        """Audit trail of a registration, oldest first. Survives cancellation."""
        with db_manager.get_session() as session:
            first_entry = session.query(RegistrationAuditLog).filter(
                RegistrationAuditLog.registration_id == registration_id
            ).first()
            if not first_entry:
                raise NotFound("Registration not found", details={"registration_id": registration_id})

            event = session.get(Event, first_entry.event_id)
            if not event:
                raise NotFound("Event not found", details={"event_id": first_entry.event_id})
            ensure_manager(event, actor)

            return session.query(RegistrationAuditLog).filter(
                RegistrationAuditLog.registration_id == registration_id
            ).order_by(RegistrationAuditLog.changed_at, RegistrationAuditLog.id).all()


# Global registration service instance
registration_service = RegistrationService()
