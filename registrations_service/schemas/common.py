"""
Shared Pydantic schemas for Registrations Service.
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime


class UserRole:
    ATTENDEE = "attendee"
    ORGANIZER = "organizer"
    ADMIN = "admin"
    SERVICE = "service"


class Actor(BaseModel):
    """Authenticated caller, as supplied by the identity provider token."""

    user_id: str = Field(..., min_length=1)
    email: Optional[str] = None
    name: Optional[str] = None
    role: str = UserRole.ATTENDEE

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_trusted_service(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.SERVICE)


# Error schemas
class ErrorResponse(BaseModel):
    """Schema for error responses."""

    error_code: str = Field(..., description="Error code")
    error_message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class SuccessResponse(BaseModel):
    """Schema for successful operations without a resource body."""

    success: bool = Field(True, description="Operation success status")
    message: str = Field(..., description="Success message")
    data: Optional[Dict[str, Any]] = Field(None, description="Response data")
    timestamp: datetime = Field(default_factory=datetime.now, description="Response timestamp")


class HealthCheckResponse(BaseModel):
    """Schema for health check response."""

    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=datetime.now, description="Health check timestamp")
    version: str = Field(..., description="Service version")
    database: str = Field(..., description="Database connection status")
    redis: str = Field(..., description="Redis connection status")
