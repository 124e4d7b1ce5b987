"""
Pydantic schemas for teams.
"""

from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import datetime


class TeamCreate(BaseModel):
    """Schema for creating a team. The caller becomes its leader."""

    team_name: str = Field(..., max_length=255)
    leader_name: Optional[str] = Field(None, max_length=255)
    leader_email: Optional[EmailStr] = None


class TeamJoin(BaseModel):
    """Schema for joining a team by invite code."""

    invite_code: str = Field(..., min_length=1, max_length=16)
    member_name: Optional[str] = Field(None, max_length=255)
    member_email: Optional[EmailStr] = None


class TeamMemberResponse(BaseModel):
    user_id: str
    name: str
    email: str

    class Config:
        from_attributes = True


class TeamMemberPublicResponse(BaseModel):
    user_id: str
    name: str

    class Config:
        from_attributes = True


class TeamResponse(BaseModel):
    """Team as shown to its members and the event's organizers."""

    id: str
    event_id: str
    name: str
    leader_id: str
    leader_cancelled: bool = False
    invite_code: str
    members: List[TeamMemberResponse] = []
    created_at: datetime

    class Config:
        from_attributes = True


class TeamPublicResponse(BaseModel):
    """Team as shown to other attendees: no invite code, no contact details."""

    id: str
    event_id: str
    name: str
    leader_id: str
    leader_cancelled: bool = False
    members: List[TeamMemberPublicResponse] = []

    class Config:
        from_attributes = True
