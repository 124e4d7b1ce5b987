"""
Pydantic schemas for events, promo codes and availability.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Literal
from datetime import datetime
from decimal import Decimal

from registrations_service.models.base import ensure_utc
from registrations_service.models.event import ParticipationMode, PromoKind


class CustomQuestion(BaseModel):
    """Organizer-defined question asked at registration."""

    id: str = Field(..., min_length=1, max_length=64)
    question: str = Field(..., min_length=1, max_length=500)
    type: Literal["text", "select", "boolean"] = "text"
    required: bool = False
    options: List[str] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_options(self):
        if self.type == "select" and not self.options:
            raise ValueError('Select questions need at least one option')
        return self


class PromoCodeCreate(BaseModel):
    """Schema for adding a promo code to an event."""

    code: str = Field(..., min_length=1, max_length=64, description="Code, matched case-insensitively")
    kind: PromoKind
    value: Decimal = Field(..., ge=0)

    @field_validator('code')
    @classmethod
    def validate_code(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Promo code cannot be blank')
        return v

    @field_validator('value')
    @classmethod
    def validate_value(cls, v):
        """Validate value has at most 2 decimal places."""
        if v.as_tuple().exponent < -2:
            raise ValueError('Value cannot have more than 2 decimal places')
        return v


class PromoCodeResponse(BaseModel):
    code: str
    kind: PromoKind
    value: float

    class Config:
        from_attributes = True


class PromoCodeVerify(BaseModel):
    """Schema for previewing a promo code before registering."""

    code: str = Field(..., min_length=1, max_length=64)


class PromoCodeVerifyResponse(BaseModel):
    """A matching promo code and the price it yields."""

    event_id: str
    code: str
    kind: PromoKind
    value: float
    price: float
    discounted_price: float
    currency: str


def _validate_question_ids(questions: List[CustomQuestion]) -> List[CustomQuestion]:
    ids = [q.id for q in questions]
    if len(ids) != len(set(ids)):
        raise ValueError('Custom question ids must be unique')
    return questions


class EventCreate(BaseModel):
    """Schema for creating an event."""

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    location: Optional[str] = Field(None, max_length=255)
    capacity: int = Field(..., ge=1, description="Maximum number of slot holders")
    starts_at: datetime
    ends_at: datetime
    is_registration_open: bool = True
    participation_mode: ParticipationMode = ParticipationMode.INDIVIDUAL
    max_team_size: Optional[int] = Field(None, ge=2)
    is_paid: bool = False
    price: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    collaborator_ids: List[str] = Field(default_factory=list)
    custom_questions: List[CustomQuestion] = Field(default_factory=list)
    promo_codes: List[PromoCodeCreate] = Field(default_factory=list)

    @field_validator('starts_at', 'ends_at')
    @classmethod
    def normalize_timezone(cls, v):
        return ensure_utc(v)

    @field_validator('custom_questions')
    @classmethod
    def validate_questions(cls, v):
        return _validate_question_ids(v)

    @model_validator(mode='after')
    def validate_event(self):
        if self.ends_at <= self.starts_at:
            raise ValueError('Event must end after it starts')
        if self.participation_mode != ParticipationMode.INDIVIDUAL and not self.max_team_size:
            raise ValueError('max_team_size is required when teams are allowed')
        if self.is_paid and self.price is None:
            raise ValueError('Paid events require a price')
        codes = [p.code.upper() for p in self.promo_codes]
        if len(codes) != len(set(codes)):
            raise ValueError('Promo codes must be unique')
        return self


class EventUpdate(BaseModel):
    """Schema for updating an event. Only provided fields change."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    location: Optional[str] = Field(None, max_length=255)
    capacity: Optional[int] = Field(None, ge=1)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_registration_open: Optional[bool] = None
    participation_mode: Optional[ParticipationMode] = None
    max_team_size: Optional[int] = Field(None, ge=2)
    is_paid: Optional[bool] = None
    price: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    collaborator_ids: Optional[List[str]] = None
    custom_questions: Optional[List[CustomQuestion]] = None

    @field_validator('starts_at', 'ends_at')
    @classmethod
    def normalize_timezone(cls, v):
        return ensure_utc(v)

    @field_validator('custom_questions')
    @classmethod
    def validate_questions(cls, v):
        if v is None:
            return v
        return _validate_question_ids(v)


class EventPublicResponse(BaseModel):
    """Event as shown to attendees."""

    id: str
    organizer_id: str
    title: str
    description: Optional[str]
    location: Optional[str]
    capacity: int
    starts_at: datetime
    ends_at: datetime
    is_registration_open: bool
    participation_mode: ParticipationMode
    max_team_size: Optional[int]
    is_paid: bool
    price: float
    currency: str
    custom_questions: List[CustomQuestion] = []

    class Config:
        from_attributes = True


class EventResponse(EventPublicResponse):
    """Event as shown to its organizer and collaborators."""

    collaborator_ids: List[str] = []
    promo_codes: List[PromoCodeResponse] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EventAvailabilityResponse(BaseModel):
    """Capacity summary for an event."""

    event_id: str
    capacity: int = Field(ge=1)
    slot_holders: int = Field(ge=0)
    pending: int = Field(ge=0)
    approved: int = Field(ge=0)
    awaiting_payment: int = Field(ge=0)
    waitlisted: int = Field(ge=0)
    rejected: int = Field(ge=0)
    available: int = Field(ge=0)
    is_full: bool
