from datetime import datetime
from typing import List, Optional
import logging
import re
import secrets

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from campus_platform.core.audit import log_audit
from campus_platform.core.database import generate_id, serialize_doc, serialize_many
from campus_platform.core.errors import (
    ConflictError, ForbiddenError, InvalidStateError, NotFoundError
)
from campus_platform.core.permissions import Role, UserContext
from campus_platform.realtime.manager import (
    notifier, ADMIN_ROOM, SUPER_ADMIN_ROOM, team_room, user_room
)

logger = logging.getLogger(__name__)

MAX_TEAM_SIZE = 4
ACTIVE_TEAM = {"is_deleted": {"$ne": True}}


def make_team_code(department: Optional[str], now: datetime = None) -> str:
    """Human readable team code, e.g. TIG-CSE-24-3F9A1C"""
    now = now or datetime.utcnow()
    dept = re.sub(r"[^A-Z]", "", (department or "GEN").upper())[:4] or "GEN"
    return f"TIG-{dept}-{now.strftime('%y')}-{secrets.token_hex(3).upper()}"


async def find_user_team(db: AsyncIOMotorDatabase, user_id: str) -> Optional[dict]:
    return await db.teams.find_one({**ACTIVE_TEAM, "members.user_id": user_id})


async def get_team(db: AsyncIOMotorDatabase, team_id: str) -> dict:
    team = await db.teams.find_one({**ACTIVE_TEAM, "team_id": team_id})
    if not team:
        raise NotFoundError("Team not found")
    return team


async def list_active_teams(db: AsyncIOMotorDatabase) -> List[dict]:
    """Every non-deleted team, oldest first"""
    teams = await db.teams.find(ACTIVE_TEAM).sort("created_at", 1).to_list(length=None)
    return serialize_many(teams)


async def list_active_mentors(db: AsyncIOMotorDatabase) -> List[dict]:
    """Approved (or legacy, never reviewed) and active mentors, oldest first"""
    mentors = await db.users.find({
        "role": Role.MENTOR.value,
        "is_active": {"$ne": False},
        "$or": [{"approval_status": "approved"}, {"approval_status": {"$exists": False}}],
    }).sort("created_at", 1).to_list(length=None)

    return [
        {"user_id": m["user_id"], "full_name": m.get("full_name"), "email": m.get("email"),
         "expertise": m.get("expertise")}
        for m in mentors
    ]


# ==================== TEAM LIFECYCLE ====================

async def create_team(db: AsyncIOMotorDatabase, user: UserContext, data: dict) -> dict:
    if await find_user_team(db, user.user_id):
        raise ConflictError("You are already part of a team")

    now = datetime.utcnow()
    team = {
        "team_id": generate_id("TEAM"),
        "team_code": make_team_code(user.profile.get("department"), now),
        "team_name": data["team_name"].strip(),
        "project_title": data.get("project_title"),
        "description": data.get("description"),
        "domains": data.get("domains", []),
        "leader_id": user.user_id,
        "members": [{"user_id": user.user_id, "full_name": user.full_name, "role": "leader", "joined_at": now}],
        "mentor_id": None,
        "join_requests": [],
        "is_deleted": False,
        "created_at": now,
        "updated_at": now,
    }

    try:
        await db.teams.insert_one(team)
    except DuplicateKeyError:
        raise ConflictError("Team code collision, please retry")

    await notifier.emit_many([ADMIN_ROOM, SUPER_ADMIN_ROOM], "team-created", {
        "team_id": team["team_id"], "team_name": team["team_name"],
    })
    return serialize_doc(team)


async def get_my_team(db: AsyncIOMotorDatabase, user: UserContext) -> dict:
    team = await find_user_team(db, user.user_id)
    if not team:
        raise NotFoundError("You are not part of any team")
    return serialize_doc(team)


async def list_teams(
    db: AsyncIOMotorDatabase,
    search: Optional[str] = None,
    has_mentor: Optional[bool] = None
) -> List[dict]:
    query = dict(ACTIVE_TEAM)
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query["$or"] = [{"team_name": pattern}, {"team_code": pattern}, {"project_title": pattern}]
    if has_mentor is True:
        query["mentor_id"] = {"$ne": None}
    elif has_mentor is False:
        query["mentor_id"] = None

    teams = await db.teams.find(query).sort("created_at", -1).to_list(length=None)
    return serialize_many(teams)


async def request_to_join(db: AsyncIOMotorDatabase, user: UserContext, team_id: str) -> dict:
    team = await get_team(db, team_id)

    if await find_user_team(db, user.user_id):
        raise ConflictError("You are already part of a team")

    if any(r["user_id"] == user.user_id and r["status"] == "pending" for r in team.get("join_requests", [])):
        raise ConflictError("You have already requested to join this team")

    if len(team.get("members", [])) >= MAX_TEAM_SIZE:
        raise InvalidStateError("This team is already full")

    request = {
        "user_id": user.user_id,
        "full_name": user.full_name,
        "status": "pending",
        "requested_at": datetime.utcnow(),
    }
    await db.teams.update_one({"team_id": team_id}, {"$push": {"join_requests": request}})

    await notifier.emit(user_room(team["leader_id"]), "join-request", {
        "team_id": team_id, "user_id": user.user_id, "full_name": user.full_name,
    })
    return request


async def respond_to_join_request(
    db: AsyncIOMotorDatabase,
    leader: UserContext,
    team_id: str,
    user_id: str,
    approve: bool
) -> dict:
    team = await get_team(db, team_id)

    if team["leader_id"] != leader.user_id:
        raise ForbiddenError("Only the team leader can respond to join requests")

    pending = [r for r in team.get("join_requests", []) if r["user_id"] == user_id and r["status"] == "pending"]
    if not pending:
        raise NotFoundError("Join request not found")

    # The requester may have joined another team since asking
    taken = approve and await find_user_team(db, user_id) is not None

    now = datetime.utcnow()
    for r in team["join_requests"]:
        if r["user_id"] == user_id and r["status"] == "pending":
            r["status"] = "approved" if approve and not taken else "rejected"
            r["responded_at"] = now

    update = {"join_requests": team["join_requests"], "updated_at": now}

    if taken:
        await db.teams.update_one({"team_id": team_id}, {"$set": update})
        raise ConflictError("This student already joined another team")

    if approve:
        if len(team.get("members", [])) >= MAX_TEAM_SIZE:
            raise InvalidStateError("This team is already full")
        requester = await db.users.find_one({"user_id": user_id}) or {}
        team["members"].append({
            "user_id": user_id,
            "full_name": requester.get("full_name"),
            "role": "member",
            "joined_at": now,
        })
        update["members"] = team["members"]

    await db.teams.update_one({"team_id": team_id}, {"$set": update})
    team.update(update)

    await notifier.emit(user_room(user_id), "join-request-approved" if approve else "join-request-rejected", {
        "team_id": team_id, "team_name": team["team_name"],
    })
    return serialize_doc(team)


# ==================== MENTOR ASSIGNMENT ====================

async def _notify_mentor_assigned(team: dict, mentor_id: str):
    payload = {"team_id": team["team_id"], "team_name": team.get("team_name"), "mentor_id": mentor_id}
    rooms = [team_room(team["team_id"]), user_room(mentor_id)]
    rooms += [user_room(m["user_id"]) for m in team.get("members", [])]
    await notifier.emit_many(rooms, "mentor-assigned", payload)


async def assign_mentor(db: AsyncIOMotorDatabase, admin: UserContext, team_id: str, mentor_id: str) -> dict:
    team = await get_team(db, team_id)

    mentors = {m["user_id"] for m in await list_active_mentors(db)}
    if mentor_id not in mentors:
        raise NotFoundError("Mentor not found or not approved")

    await db.teams.update_one(
        {"team_id": team_id},
        {"$set": {"mentor_id": mentor_id, "updated_at": datetime.utcnow()}}
    )
    team["mentor_id"] = mentor_id

    await log_audit(db, admin, "assign_mentor", "team", team_id, {"mentor_id": mentor_id})
    await _notify_mentor_assigned(team, mentor_id)
    return serialize_doc(team)


async def distribute_mentors(db: AsyncIOMotorDatabase, admin: UserContext) -> dict:
    """Round-robin every team without a mentor over the approved mentors"""
    mentors = await list_active_mentors(db)
    if not mentors:
        raise InvalidStateError("No mentors available")

    teams = await db.teams.find({**ACTIVE_TEAM, "mentor_id": None}).sort("created_at", 1).to_list(length=None)
    if not teams:
        raise InvalidStateError("All teams already have a mentor")

    now = datetime.utcnow()
    assignments = []
    for index, team in enumerate(teams):
        mentor_id = mentors[index % len(mentors)]["user_id"]
        await db.teams.update_one(
            {"team_id": team["team_id"], "mentor_id": None},
            {"$set": {"mentor_id": mentor_id, "updated_at": now}}
        )
        team["mentor_id"] = mentor_id
        assignments.append({"team_id": team["team_id"], "mentor_id": mentor_id})
        await _notify_mentor_assigned(team, mentor_id)

    await log_audit(db, admin, "distribute_mentors", "team", "*", {"assigned": len(assignments)})
    await notifier.emit_many([ADMIN_ROOM, SUPER_ADMIN_ROOM], "mentors-distributed", {"assigned": len(assignments)})
    logger.info("Distributed %d teams over %d mentors", len(assignments), len(mentors))

    return {"assigned": len(assignments), "assignments": assignments}


async def get_mentor_teams(db: AsyncIOMotorDatabase, mentor_id: str) -> List[dict]:
    teams = await db.teams.find({**ACTIVE_TEAM, "mentor_id": mentor_id}).sort("created_at", 1).to_list(length=None)
    return serialize_many(teams)
