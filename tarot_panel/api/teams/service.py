"""Teams: one central supervising a group of tarotistas. A tarotista belongs to at most one team."""

import logging
from collections import defaultdict
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.models import Team, TeamMember, Worker
from tarot_panel.core.models.worker import ROLE_CENTRAL, ROLE_TAROTISTA

from .schemas import TeamCreate, TeamMemberInfo, TeamResponse

logger = logging.getLogger(__name__)


async def _members_by_team(db: AsyncSession, team_ids: List[UUID]) -> Dict[UUID, List[TeamMemberInfo]]:
    members: Dict[UUID, List[TeamMemberInfo]] = defaultdict(list)
    if not team_ids:
        return members
    result = await db.execute(
        select(TeamMember.team_id, Worker.id, Worker.display_name)
        .join(Worker, Worker.id == TeamMember.tarotista_worker_id)
        .where(TeamMember.team_id.in_(team_ids))
        .order_by(Worker.display_name)
    )
    for team_id, worker_id, name in result.all():
        members[team_id].append(TeamMemberInfo(worker_id=worker_id, display_name=name))
    return members


async def _to_response(db: AsyncSession, team: Team) -> TeamResponse:
    central = await db.get(Worker, team.central_worker_id) if team.central_worker_id else None
    members = await _members_by_team(db, [team.id])
    return TeamResponse(
        id=team.id,
        name=team.name,
        central_worker_id=team.central_worker_id,
        central_name=central.display_name if central else None,
        is_active=team.is_active,
        members=members.get(team.id, []),
    )


async def list_teams(db: AsyncSession) -> List[TeamResponse]:
    teams = (await db.execute(select(Team).order_by(Team.name))).scalars().all()
    members = await _members_by_team(db, [t.id for t in teams])
    central_ids = [t.central_worker_id for t in teams if t.central_worker_id]
    names = {}
    if central_ids:
        names = dict((await db.execute(select(Worker.id, Worker.display_name).where(Worker.id.in_(central_ids)))).all())
    return [
        TeamResponse(
            id=t.id,
            name=t.name,
            central_worker_id=t.central_worker_id,
            central_name=names.get(t.central_worker_id),
            is_active=t.is_active,
            members=members.get(t.id, []),
        )
        for t in teams
    ]


async def _get_worker_with_role(db: AsyncSession, worker_id: UUID, role: str, error: str) -> Worker:
    worker = await db.get(Worker, worker_id)
    if worker is None:
        raise ServiceError("WORKER_NOT_FOUND", status.HTTP_404_NOT_FOUND)
    if worker.role != role:
        raise ServiceError(error, status.HTTP_400_BAD_REQUEST)
    return worker


async def create_team(db: AsyncSession, payload: TeamCreate) -> TeamResponse:
    name = payload.name.strip()
    if not name:
        raise ServiceError("MISSING_FIELDS", status.HTTP_400_BAD_REQUEST)
    central_id: Optional[UUID] = None
    if payload.central_worker_id is not None:
        central = await _get_worker_with_role(db, payload.central_worker_id, ROLE_CENTRAL, "TARGET_NOT_CENTRAL")
        central_id = central.id
    team = Team(name=name, central_worker_id=central_id, is_active=True)
    db.add(team)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("TEAM_EXISTS", status.HTTP_409_CONFLICT)
    logger.info("Team %s created", name)
    return await _to_response(db, team)


async def _get_team(db: AsyncSession, team_id: UUID) -> Team:
    team = await db.get(Team, team_id)
    if team is None:
        raise ServiceError("TEAM_NOT_FOUND", status.HTTP_404_NOT_FOUND)
    return team


async def add_member(db: AsyncSession, team_id: UUID, worker_id: UUID) -> TeamResponse:
    """Assign a tarotista to the team, moving them out of any previous team."""
    team = await _get_team(db, team_id)
    await _get_worker_with_role(db, worker_id, ROLE_TAROTISTA, "TARGET_NOT_TAROTIST")
    result = await db.execute(select(TeamMember).where(TeamMember.tarotista_worker_id == worker_id))
    membership = result.scalar_one_or_none()
    if membership is None:
        db.add(TeamMember(team_id=team.id, tarotista_worker_id=worker_id))
    else:
        membership.team_id = team.id
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("MEMBER_CONFLICT", status.HTTP_409_CONFLICT)
    return await _to_response(db, team)


async def remove_member(db: AsyncSession, team_id: UUID, worker_id: UUID) -> TeamResponse:
    team = await _get_team(db, team_id)
    result = await db.execute(
        delete(TeamMember).where(TeamMember.team_id == team.id, TeamMember.tarotista_worker_id == worker_id)
    )
    if result.rowcount == 0:
        raise ServiceError("NOT_FOUND", status.HTTP_404_NOT_FOUND)
    await db.commit()
    return await _to_response(db, team)
