"""
Event and promo code models for Registrations Service.
"""

from enum import Enum as PyEnum
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Enum, Numeric, Text, JSON,
    ForeignKey, Index, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship

from .base import Base, generate_id, utcnow, ensure_utc


class ParticipationMode(PyEnum):
    """How attendees may take part in an event."""
    INDIVIDUAL = "individual"
    TEAM = "team"
    BOTH = "both"


class PromoKind(PyEnum):
    """Promo code discount kind."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Event(Base):
    """
    Event owned by an organizer, with finite capacity and optional pricing.
    Deleting an event removes its promo codes, teams and registrations.
    """

    __tablename__ = "events"

    id = Column(String(32), primary_key=True, default=generate_id)
    organizer_id = Column(String(64), nullable=False, index=True)
    collaborator_ids = Column(JSON, nullable=False, default=list)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)

    capacity = Column(Integer, nullable=False)
    starts_at = Column(DateTime(timezone=True), nullable=False, index=True)
    ends_at = Column(DateTime(timezone=True), nullable=False)
    is_registration_open = Column(Boolean, nullable=False, default=True)

    participation_mode = Column(Enum(ParticipationMode), nullable=False, default=ParticipationMode.INDIVIDUAL)
    max_team_size = Column(Integer, nullable=True)

    is_paid = Column(Boolean, nullable=False, default=False)
    price = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="INR")

    # [{"id", "question", "type", "required", "options"}]
    custom_questions = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    promo_codes = relationship(
        "PromoCode", back_populates="event", cascade="all, delete-orphan", lazy="selectin"
    )
    teams = relationship("Team", back_populates="event", cascade="all, delete-orphan")
    registrations = relationship("Registration", back_populates="event", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint('capacity >= 1', name='check_event_capacity_positive'),
        CheckConstraint('price >= 0', name='check_event_price_non_negative'),
        CheckConstraint('ends_at > starts_at', name='check_event_schedule'),
        Index('idx_event_organizer_start', 'organizer_id', 'starts_at'),
    )

    def __repr__(self):
        return f"<Event(id='{self.id}', title='{self.title}', capacity={self.capacity})>"

    @property
    def allows_individual(self) -> bool:
        return self.participation_mode in (ParticipationMode.INDIVIDUAL, ParticipationMode.BOTH)

    @property
    def allows_team(self) -> bool:
        return self.participation_mode in (ParticipationMode.TEAM, ParticipationMode.BOTH)

    @property
    def has_started(self) -> bool:
        return utcnow() >= ensure_utc(self.starts_at)

    def is_managed_by(self, user_id: str) -> bool:
        """Organizer and collaborators share write rights."""
        return user_id == self.organizer_id or user_id in (self.collaborator_ids or [])

    def required_question_ids(self) -> list:
        return [q["id"] for q in (self.custom_questions or []) if q.get("required")]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organizer_id": self.organizer_id,
            "title": self.title,
            "capacity": self.capacity,
            "starts_at": self.starts_at.isoformat() if self.starts_at else None,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "is_registration_open": self.is_registration_open,
            "participation_mode": self.participation_mode.value if self.participation_mode else None,
            "max_team_size": self.max_team_size,
            "is_paid": self.is_paid,
            "price": float(self.price) if self.price is not None else 0.0,
            "currency": self.currency,
        }


class PromoCode(Base):
    """Discount code attached to a single event."""

    __tablename__ = "promo_codes"

    id = Column(String(32), primary_key=True, default=generate_id)
    event_id = Column(String(32), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)

    code = Column(String(64), nullable=False)
    # Upper-cased copy used for case-insensitive uniqueness and lookup
    normalized_code = Column(String(64), nullable=False)
    kind = Column(Enum(PromoKind), nullable=False)
    value = Column(Numeric(10, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    event = relationship("Event", back_populates="promo_codes")

    __table_args__ = (
        UniqueConstraint('event_id', 'normalized_code', name='unique_event_promo_code'),
        CheckConstraint('value >= 0', name='check_promo_value_non_negative'),
    )

    def __repr__(self):
        return f"<PromoCode(code='{self.code}', kind='{self.kind.value}', value={self.value})>"

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "kind": self.kind.value,
            "value": float(self.value),
        }
