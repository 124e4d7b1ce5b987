"""
Pydantic schemas for registrations, payments and bulk operations.
"""

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime
from decimal import Decimal

from registrations_service.models.registration import RegistrationStatus, ParticipationType


# Request schemas
class TeamChoice(BaseModel):
    """Create a new team or join one by invite code."""

    action: Literal["create", "join"]
    team_name: Optional[str] = Field(None, max_length=255)
    invite_code: Optional[str] = Field(None, max_length=16)


class RegistrationCreate(BaseModel):
    """Schema for registering for an event."""

    participant_name: str = Field(..., min_length=1, max_length=255)
    participant_email: EmailStr
    answers: Dict[str, str] = Field(default_factory=dict, description="Question id to answer text")
    participation_type: ParticipationType = ParticipationType.INDIVIDUAL
    team: Optional[TeamChoice] = None
    promo_code: Optional[str] = Field(None, max_length=64)

    @field_validator('participant_name')
    @classmethod
    def validate_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Participant name cannot be blank')
        return v

    @model_validator(mode='after')
    def validate_team_choice(self):
        if self.participation_type == ParticipationType.TEAM and self.team is None:
            raise ValueError('Team registration requires a team choice')
        if self.participation_type == ParticipationType.INDIVIDUAL and self.team is not None:
            raise ValueError('Individual registration cannot carry a team choice')
        return self


class ApplyPromoRequest(BaseModel):
    promo_code: str = Field(..., min_length=1, max_length=64)


class StatusChangeRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PaymentProof(BaseModel):
    """Payment gateway callback payload."""

    transaction_id: str = Field(..., min_length=1, max_length=128)
    order_id: Optional[str] = Field(None, max_length=128)
    amount: Decimal = Field(..., ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    promo_code: Optional[str] = Field(None, max_length=64)


class BulkStatusUpdate(BaseModel):
    """Approve or reject several registrations at once."""

    registration_ids: List[str] = Field(..., min_length=1, max_length=100)
    action: Literal["approve", "reject"]
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator('registration_ids')
    @classmethod
    def dedupe_ids(cls, v):
        return list(dict.fromkeys(v))


# Response schemas
class PaymentDetailsResponse(BaseModel):
    status: str
    amount: Optional[float]
    currency: Optional[str]
    transaction_id: Optional[str]
    order_id: Optional[str]
    promo_code_applied: Optional[str]
    paid_at: Optional[datetime]


class RegistrationResponse(BaseModel):
    """Schema for registration response."""

    id: str
    event_id: str
    participant_id: str
    participant_name: str
    participant_email: str
    status: RegistrationStatus
    participation_type: ParticipationType
    team_id: Optional[str]
    team_name: Optional[str]
    is_team_leader: Optional[bool]
    attended: bool
    attendance_time: Optional[datetime]
    registered_at: datetime
    answers: Dict[str, Any] = {}
    promo_code: Optional[str]
    payment_details: Optional[PaymentDetailsResponse]

    class Config:
        from_attributes = True


class RegistrationCreateResponse(BaseModel):
    success: bool = Field(True, description="Registration success")
    message: str = Field(..., description="Outcome message")
    registration: RegistrationResponse
    waitlisted: bool = False
    invite_code: Optional[str] = Field(None, description="Invite code of a newly created team")


class ApplyPromoResponse(BaseModel):
    registration: RegistrationResponse
    effective_price: float


class PaymentOrderResponse(BaseModel):
    """Order payload handed to the payment gateway."""

    requires_payment: bool
    amount: float = 0.0
    amount_minor: int = 0
    currency: str
    receipt: Optional[str] = None
    notes: Dict[str, Any] = {}
    message: Optional[str] = None
    registration: Optional[RegistrationResponse] = None


class BulkUpdateResult(BaseModel):
    registration_id: str
    success: bool
    status: Optional[RegistrationStatus] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class BulkUpdateResponse(BaseModel):
    results: List[BulkUpdateResult]
    succeeded: int
    failed: int


class WaitlistPositionResponse(BaseModel):
    registration_id: str
    status: RegistrationStatus
    position: Optional[int] = Field(None, description="1-based position, None when not waitlisted")
    waitlist_size: int


class PromoteWaitlistResponse(BaseModel):
    event_id: str
    promoted: List[RegistrationResponse]


class RegistrationAuditLogResponse(BaseModel):
    id: str
    registration_id: str
    action: str
    field_name: Optional[str]
    old_value: Optional[str]
    new_value: Optional[str]
    changed_by: Optional[str]
    changed_at: datetime
    reason: Optional[str]

    class Config:
        from_attributes = True
