from typing import Optional

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.core.database import get_db
from campus_platform.core.permissions import UserContext, get_current_user, require_capability
from campus_platform.teams import team_service as service
from campus_platform.teams.team_schemas import TeamCreate, JoinDecision, MentorAssignment

router = APIRouter(prefix="/api/team", tags=["Teams"])


@router.post("", status_code=201)
async def create_team(
    data: TeamCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("team", "create"))
):
    team = await service.create_team(db, user, data.model_dump())
    return {"success": True, "message": "Team created successfully", "team": team}


@router.get("/my-team")
async def my_team(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("team", "view_own"))
):
    return {"success": True, "team": await service.get_my_team(db, user)}


@router.get("/mentor/assigned")
async def mentor_teams(
    db: AsyncIOMotorDatabase = Depends(get_db),
    mentor: UserContext = Depends(require_capability("team", "view_assigned"))
):
    teams = await service.get_mentor_teams(db, mentor.user_id)
    return {"success": True, "count": len(teams), "teams": teams}


@router.get("")
async def list_teams(
    search: Optional[str] = None,
    has_mentor: Optional[bool] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    teams = await service.list_teams(db, search, has_mentor)
    return {"success": True, "count": len(teams), "teams": teams}


@router.post("/{team_id}/join")
async def request_to_join(
    team_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("team", "join"))
):
    request = await service.request_to_join(db, user, team_id)
    return {"success": True, "message": "Join request sent", "request": request}


@router.post("/{team_id}/join-requests")
async def respond_to_join_request(
    team_id: str,
    data: JoinDecision,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    team = await service.respond_to_join_request(db, user, team_id, data.user_id, data.approve)
    return {"success": True, "message": "Join request updated", "team": team}


@router.post("/{team_id}/assign-mentor")
async def assign_mentor(
    team_id: str,
    data: MentorAssignment,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("team", "assign_mentor"))
):
    team = await service.assign_mentor(db, admin, team_id, data.mentor_id)
    return {"success": True, "message": "Mentor assigned successfully", "team": team}


@router.post("/distribute-mentors")
async def distribute_mentors(
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("team", "distribute_mentors"))
):
    result = await service.distribute_mentors(db, admin)
    return {"success": True, "message": f"Mentors assigned to {result['assigned']} teams", **result}
