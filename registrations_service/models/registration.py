"""
Registration models for Registrations Service.
Implements the registration lifecycle record and its audit trail.
"""

from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    Column, String, Boolean, DateTime, Enum, Numeric, Text, JSON,
    ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from .base import Base, generate_id, utcnow
from .event import Event  # noqa: F401  (mapper registry)
from .team import Team  # noqa: F401  (mapper registry)


class RegistrationStatus(PyEnum):
    """Registration status enumeration."""
    PENDING = "pending"                    # Holds a slot, waiting for organizer review
    WAITLISTED = "waitlisted"              # Event was full when registering
    AWAITING_PAYMENT = "awaiting_payment"  # Approved, payment still owed
    APPROVED = "approved"                  # Confirmed attendee
    REJECTED = "rejected"                  # Terminal


# Statuses that occupy one unit of event capacity
SLOT_HOLDING_STATUSES = (
    RegistrationStatus.PENDING,
    RegistrationStatus.APPROVED,
    RegistrationStatus.AWAITING_PAYMENT,
)


class ParticipationType(PyEnum):
    INDIVIDUAL = "individual"
    TEAM = "team"


class PaymentStatus(PyEnum):
    """Payment status enumeration. Absence of a status means unpaid."""
    COMPLETED = "completed"


class Registration(Base):
    """
    A participant's registration for an event.
    At most one registration per (event, normalized email).
    """

    __tablename__ = "registrations"

    id = Column(String(32), primary_key=True, default=generate_id)
    event_id = Column(String(32), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)

    participant_id = Column(String(64), nullable=False, index=True)
    participant_name = Column(String(255), nullable=False)
    participant_email = Column(String(320), nullable=False)
    normalized_email = Column(String(320), nullable=False)

    status = Column(Enum(RegistrationStatus), nullable=False, default=RegistrationStatus.PENDING, index=True)
    participation_type = Column(Enum(ParticipationType), nullable=False, default=ParticipationType.INDIVIDUAL)
    team_id = Column(String(32), ForeignKey("teams.id"), nullable=True, index=True)
    team_name = Column(String(255), nullable=True)
    is_team_leader = Column(Boolean, nullable=True)

    attended = Column(Boolean, nullable=False, default=False)
    attendance_time = Column(DateTime(timezone=True), nullable=True)
    registered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    answers = Column(JSON, nullable=False, default=dict)

    promo_code = Column(String(64), nullable=True)

    # Payment details, written only by the payment callback
    payment_status = Column(Enum(PaymentStatus), nullable=True)
    payment_amount = Column(Numeric(10, 2), nullable=True)
    payment_currency = Column(String(3), nullable=True)
    transaction_id = Column(String(128), nullable=True, index=True)
    order_id = Column(String(128), nullable=True)
    promo_code_applied = Column(String(64), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    event = relationship("Event", back_populates="registrations")
    team = relationship("Team")

    __table_args__ = (
        UniqueConstraint('event_id', 'normalized_email', name='unique_event_participant_email'),
        UniqueConstraint('event_id', 'participant_id', name='unique_event_participant'),
        Index('idx_registration_event_status', 'event_id', 'status'),
        Index('idx_registration_waitlist_order', 'event_id', 'registered_at', 'id'),
    )

    def __repr__(self):
        return f"<Registration(id='{self.id}', event_id='{self.event_id}', status='{self.status.value}')>"

    @property
    def holds_slot(self) -> bool:
        return self.status in SLOT_HOLDING_STATUSES

    @property
    def is_payment_completed(self) -> bool:
        return self.payment_status == PaymentStatus.COMPLETED

    @property
    def payment_details(self) -> Optional[dict]:
        if self.payment_status is None:
            return None
        return {
            "status": self.payment_status.value,
            "amount": float(self.payment_amount) if self.payment_amount is not None else None,
            "currency": self.payment_currency,
            "transaction_id": self.transaction_id,
            "order_id": self.order_id,
            "promo_code_applied": self.promo_code_applied,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }

    def to_dict(self) -> dict:
        """Convert registration to dictionary representation."""
        return {
            "id": self.id,
            "event_id": self.event_id,
            "participant_id": self.participant_id,
            "participant_name": self.participant_name,
            "participant_email": self.participant_email,
            "status": self.status.value,
            "participation_type": self.participation_type.value,
            "team_id": self.team_id,
            "team_name": self.team_name,
            "is_team_leader": self.is_team_leader,
            "attended": self.attended,
            "attendance_time": self.attendance_time.isoformat() if self.attendance_time else None,
            "registered_at": self.registered_at.isoformat() if self.registered_at else None,
            "promo_code": self.promo_code,
            "payment_details": self.payment_details,
        }


class RegistrationAuditLog(Base):
    """
    Audit trail for registration changes.
    Not tied by foreign key to the registration so cancellations stay recorded.
    """

    __tablename__ = "registration_audit_logs"

    id = Column(String(32), primary_key=True, default=generate_id)
    registration_id = Column(String(32), nullable=False, index=True)
    event_id = Column(String(32), nullable=False, index=True)

    action = Column(String(50), nullable=False)  # REGISTER, APPROVE, REJECT, CANCEL, PROMOTE, ...
    field_name = Column(String(100), nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)

    changed_by = Column(String(64), nullable=True)
    changed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    reason = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_registration_audit_action_date', 'action', 'changed_at'),
    )

    def __repr__(self):
        return f"<RegistrationAuditLog(registration_id='{self.registration_id}', action='{self.action}')>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "registration_id": self.registration_id,
            "event_id": self.event_id,
            "action": self.action,
            "field_name": self.field_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "changed_by": self.changed_by,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
            "reason": self.reason,
        }
