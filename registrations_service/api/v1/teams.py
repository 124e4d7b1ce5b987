"""
Team API endpoints for Registrations Service.
"""

from fastapi import APIRouter, Depends, Path, status
from typing import List
import logging

from registrations_service.api.dependencies import get_current_actor
from registrations_service.schemas.common import Actor
from registrations_service.schemas.team import (
    TeamCreate,
    TeamJoin,
    TeamResponse,
    TeamPublicResponse
)
from registrations_service.services.event_service import event_service
from registrations_service.services.team_service import team_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["teams"])


def project_team(team, actor: Actor, can_manage_event: bool):
    """Invite codes and member emails are visible to members and organizers only."""
    if can_manage_event or team.has_member(actor.user_id):
        return TeamResponse.model_validate(team)
    return TeamPublicResponse.model_validate(team)


@router.get("/events/{event_id}/teams", response_model=None)
async def list_teams(
    event_id: str = Path(..., description="Event ID"),
    actor: Actor = Depends(get_current_actor)
) -> List[dict]:
    """List the teams formed for an event."""
    event = await event_service.get_event(event_id)
    can_manage_event = actor.is_admin or event.is_managed_by(actor.user_id)

    teams = await team_service.list_teams(event_id)
    return [project_team(team, actor, can_manage_event).model_dump(mode="json") for team in teams]


@router.post("/events/{event_id}/teams", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    team_data: TeamCreate,
    event_id: str = Path(..., description="Event ID"),
    actor: Actor = Depends(get_current_actor)
):
    """
    Create a team led by the caller.

    Returns:
        The team, including its invite code
    """
    team = await team_service.create_team(
        event_id, actor, team_data.team_name,
        leader_name=team_data.leader_name, leader_email=team_data.leader_email
    )
    return TeamResponse.model_validate(team)


@router.post("/events/{event_id}/teams/join", response_model=TeamResponse)
async def join_team(
    join_data: TeamJoin,
    event_id: str = Path(..., description="Event ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Join a team by invite code."""
    team = await team_service.join_team(
        join_data.invite_code, event_id, actor,
        member_name=join_data.member_name, member_email=join_data.member_email
    )
    return TeamResponse.model_validate(team)


@router.get("/teams/{team_id}", response_model=None)
async def get_team(
    team_id: str = Path(..., description="Team ID"),
    actor: Actor = Depends(get_current_actor)
):
    """Get a team; members and organizers see the invite code."""
    team = await team_service.get_team(team_id)
    event = await event_service.get_event(team.event_id)
    can_manage_event = actor.is_admin or event.is_managed_by(actor.user_id)
    return project_team(team, actor, can_manage_event).model_dump(mode="json")
