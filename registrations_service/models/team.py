"""
Team models for Registrations Service.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from .base import Base, generate_id, utcnow


class Team(Base):
    """
    Team formed for one event. The leader is always the first member.
    """

    __tablename__ = "teams"

    id = Column(String(32), primary_key=True, default=generate_id)
    event_id = Column(String(32), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    leader_id = Column(String(64), nullable=False, index=True)
    invite_code = Column(String(16), unique=True, index=True, nullable=False)
    # Set once the leader cancels their registration; the roster keeps them as first member
    leader_cancelled = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    event = relationship("Event", back_populates="teams")
    members = relationship(
        "TeamMember",
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="TeamMember.position",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Team(id='{self.id}', name='{self.name}', members={len(self.members)})>"

    def has_member(self, user_id: str) -> bool:
        return any(member.user_id == user_id for member in self.members)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "name": self.name,
            "leader_id": self.leader_id,
            "invite_code": self.invite_code,
            "leader_cancelled": bool(self.leader_cancelled),
            "members": [member.to_dict() for member in self.members],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class TeamMember(Base):
    """Ordered team roster entry."""

    __tablename__ = "team_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(String(32), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(320), nullable=False)
    position = Column(Integer, nullable=False)
    joined_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    team = relationship("Team", back_populates="members")

    __table_args__ = (
        UniqueConstraint('team_id', 'user_id', name='unique_team_member'),
        Index('idx_team_member_position', 'team_id', 'position'),
    )

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "name": self.name, "email": self.email}
