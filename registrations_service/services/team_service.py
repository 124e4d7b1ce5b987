"""
Team Service for Registrations Service.
Manages team rosters and invite codes. Team joins are serialized per team.
"""

import secrets
import string
from typing import Optional, List
from sqlalchemy.orm import Session
import logging

from registrations_service.core.config import config
from registrations_service.core.exceptions import (
    InvalidTeamName, TeamNotFound, EventMismatch, TeamFull, NotFound,
    ParticipationModeNotAllowed, RegistrationServiceError
)
from registrations_service.db.database import db_manager
from registrations_service.db.redis_client import get_distributed_lock, team_lock_key
from registrations_service.models.event import Event
from registrations_service.models.team import Team, TeamMember
from registrations_service.schemas.common import Actor
from .event_publisher import event_publisher, RegistrationEventKind
from .notification_service import notification_service

logger = logging.getLogger(__name__)

INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits


class TeamService:
    """
    Team registry. The *_in_session methods run inside a caller's transaction
    so registration and team writes commit together.
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

    def _generate_invite_code(self, session: Session) -> str:
        """Generate an invite code not used by any team."""
        length = self.registration_config["invite_code_length"]
        max_attempts = self.registration_config["invite_code_max_attempts"]

        for _ in range(max_attempts):
            code = "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))
            exists = session.query(Team.id).filter(Team.invite_code == code).first()
            if not exists:
                return code

        raise RegistrationServiceError(
            "Could not generate a unique invite code",
            details={"attempts": max_attempts}
        )

    def find_by_invite_code(self, session: Session, invite_code: Optional[str]) -> Team:
        """Look up a team by invite code, case-insensitively."""
        code = (invite_code or "").strip().upper()
        team = session.query(Team).filter(Team.invite_code == code).first() if code else None
        if not team:
            raise TeamNotFound("Invalid invite code", details={"invite_code": invite_code})
        return team

    async def create_team_in_session(
        self,
        session: Session,
        event: Event,
        leader_id: str,
        leader_name: str,
        leader_email: str,
        team_name: Optional[str]
    ) -> Team:
        """
        Create a team with the leader as its only member.

        Raises:
            InvalidTeamName: If the name is blank
            ParticipationModeNotAllowed: If the event does not allow teams
        """
        await self._get_configs()

        name = (team_name or "").strip()
        if not name:
            raise InvalidTeamName("Team name is required")

        if not event.allows_team:
            raise ParticipationModeNotAllowed(
                "This event does not allow team participation",
                details={"event_id": event.id}
            )

        team = Team(
            event_id=event.id,
            name=name,
            leader_id=leader_id,
            invite_code=self._generate_invite_code(session),
        )
        team.members.append(
            TeamMember(user_id=leader_id, name=leader_name, email=leader_email, position=0)
        )
        session.add(team)
        session.flush()

        logger.info(f"Team {team.id} '{name}' created for event {event.id} by {leader_id}")
        return team

    async def join_team_in_session(
        self,
        session: Session,
        team: Team,
        event: Event,
        member_id: str,
        member_name: str,
        member_email: str
    ) -> Team:
        """
        Add a member to a team. Re-adding an existing member is a no-op.
        The caller must hold the team lock.

        Raises:
            EventMismatch: If the team belongs to another event
            TeamFull: If the roster already has max_team_size members
        """
        if team.event_id != event.id:
            raise EventMismatch(
                "This invite code is for a different event",
                details={"team_event_id": team.event_id, "event_id": event.id}
            )

        if team.has_member(member_id):
            logger.info(f"User {member_id} is already a member of team {team.id}")
            return team

        max_size = event.max_team_size or 0
        if len(team.members) >= max_size:
            logger.warning(f"Team {team.id} is full ({len(team.members)}/{max_size})")
            raise TeamFull(
                "Team is full",
                details={"team_id": team.id, "max_team_size": max_size}
            )

        next_position = max((m.position for m in team.members), default=-1) + 1
        team.members.append(
            TeamMember(user_id=member_id, name=member_name, email=member_email, position=next_position)
        )
        session.flush()

        logger.info(f"User {member_id} joined team {team.id} ({len(team.members)}/{max_size})")
        return team

    def remove_member_in_session(self, session: Session, team_id: str, user_id: str) -> bool:
        """Drop a non-leader from a team roster."""
        team = session.get(Team, team_id)
        if not team or team.leader_id == user_id:
            return False

        for member in list(team.members):
            if member.user_id == user_id:
                team.members.remove(member)
                session.flush()
                logger.info(f"User {user_id} removed from team {team_id}")
                return True
        return False

    def mark_leader_cancelled_in_session(self, session: Session, team_id: str) -> None:
        """Flag a team whose leader cancelled; the leader stays on the roster."""
        team = session.get(Team, team_id)
        if team and not team.leader_cancelled:
            team.leader_cancelled = True
            logger.warning(
                f"Leader {team.leader_id} of team {team_id} cancelled; "
                f"{len(team.members) - 1} other member(s) remain without a leader registration"
            )

    async def create_team(self, event_id: str, actor: Actor, team_name: str,
                          leader_name: Optional[str] = None, leader_email: Optional[str] = None) -> Team:
        """
        Create a team outside of a registration.

        Args:
            event_id: Event the team is for
            actor: Team leader
            team_name: Team name

        Returns:
            The created team
        """
        with db_manager.get_transaction_session() as session:
            event = session.get(Event, event_id)
            if not event:
                raise NotFound("Event not found", details={"event_id": event_id})

            team = await self.create_team_in_session(
                session, event, actor.user_id,
                leader_name or actor.name or actor.user_id,
                actor.email or leader_email or "",
                team_name
            )
            session.commit()
            event_data = event.to_dict()

        await self.notify_team_created(team, event_data)
        return team

    async def join_team(self, invite_code: str, event_id: str, actor: Actor,
                        member_name: Optional[str] = None, member_email: Optional[str] = None) -> Team:
        """
        Join a team by invite code outside of a registration.

        Raises:
            TeamNotFound, EventMismatch, TeamFull
        """
        await self._get_configs()

        with db_manager.get_session() as session:
            team_id = self.find_by_invite_code(session, invite_code).id

        async with get_distributed_lock(
            team_lock_key(team_id),
            timeout=self.consistency_config["lock_timeout_seconds"],
            blocking_timeout=self.consistency_config["lock_blocking_timeout_seconds"]
        ):
            with db_manager.get_transaction_session() as session:
                event = session.get(Event, event_id)
                if not event:
                    raise NotFound("Event not found", details={"event_id": event_id})

                team = session.get(Team, team_id)
                team = await self.join_team_in_session(
                    session, team, event, actor.user_id,
                    member_name or actor.name or actor.user_id,
                    actor.email or member_email or ""
                )
                session.commit()

        try:
            await event_publisher.emit(RegistrationEventKind.TEAM_JOINED, {
                "team_id": team.id, "event_id": team.event_id, "user_id": actor.user_id
            })
        except Exception as e:
            logger.error(f"Failed to publish team joined event: {e}")

        return team

    async def notify_team_created(self, team: Team, event_data: dict):
        try:
            await event_publisher.emit(RegistrationEventKind.TEAM_CREATED, {
                "team_id": team.id, "event_id": team.event_id, "leader_id": team.leader_id
            })
        except Exception as e:
            logger.error(f"Failed to publish team created event: {e}")

        try:
            await notification_service.send_team_created(team.leader_id, team.to_dict(), event_data)
        except Exception as e:
            logger.error(f"Failed to send team created notification: {e}")

    async def list_teams(self, event_id: str) -> List[Team]:
        """List an event's teams, oldest first."""
        with db_manager.get_session() as session:
            if not session.get(Event, event_id):
                raise NotFound("Event not found", details={"event_id": event_id})
            return session.query(Team).filter(
                Team.event_id == event_id
            ).order_by(Team.created_at, Team.id).all()

    async def get_team(self, team_id: str) -> Team:
        with db_manager.get_session() as session:
            team = session.get(Team, team_id)
            if not team:
                raise TeamNotFound("Team not found", details={"team_id": team_id})
            return team


# Global team service instance
team_service = TeamService()
