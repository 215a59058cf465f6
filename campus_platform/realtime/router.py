import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.core.auth_utils import extract_bearer_token
from campus_platform.core.database import get_db
from campus_platform.core.errors import AppError
from campus_platform.core.permissions import Role, UserContext, load_user_context
from campus_platform.realtime.manager import (
    notifier, ADMIN_ROOM, SUPER_ADMIN_ROOM, EXAM_MANAGEMENT_ROOM, ATTENDANCE_ROOM,
    user_room, team_room, mentor_room, community_room, milestone_chain_room,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])

LEAVE_EVENTS = {"leave-team": team_room, "leave-community": community_room}


async def _is_team_participant(db: AsyncIOMotorDatabase, user: UserContext, team_id: str) -> bool:
    if user.is_admin:
        return True
    team = await db.teams.find_one({"team_id": team_id, "is_deleted": {"$ne": True}})
    if not team:
        return False
    if team.get("mentor_id") == user.user_id:
        return True
    return any(m.get("user_id") == user.user_id for m in team.get("members", []))


async def resolve_join(db: AsyncIOMotorDatabase, user: UserContext, event: str, data) -> str:
    """
    Map a join event to a room name, or None when the caller may not join it
    """
    target = str(data) if data is not None else ""

    if event == "join-user-room":
        return user_room(user.user_id) if target == user.user_id else None
    if event == "join-admin":
        return ADMIN_ROOM if user.is_admin else None
    if event == "join-super-admin":
        return SUPER_ADMIN_ROOM if user.role == Role.SUPER_ADMIN.value else None
    if event == "join-exam-management":
        return EXAM_MANAGEMENT_ROOM if user.is_admin else None
    if event == "join-attendance":
        return ATTENDANCE_ROOM if user.is_staff else None
    if event == "join-mentor-exams":
        if user.role == Role.MENTOR.value and target == user.user_id:
            return mentor_room(target)
        return None
    if event == "join-team":
        if target and await _is_team_participant(db, user, target):
            return team_room(target)
        return None
    if event == "join-community":
        return community_room(target) if target else None
    if event == "join-milestone-room":
        return milestone_chain_room(target) if target else None
    return None


@router.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket, db: AsyncIOMotorDatabase = Depends(get_db)):
    # Token from header or query
    token = extract_bearer_token(websocket.headers.get("authorization"))
    if not token:
        token = websocket.query_params.get("token")

    try:
        user = await load_user_context(db, token)
    except AppError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await notifier.connect(websocket)

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"event": "error", "data": "Messages must be JSON"})
                continue
            event = message.get("event") if isinstance(message, dict) else None
            data = message.get("data") if isinstance(message, dict) else None

            if event in LEAVE_EVENTS:
                await notifier.leave(websocket, LEAVE_EVENTS[event](str(data)))
                await websocket.send_json({"event": "left", "data": data})
                continue

            room = await resolve_join(db, user, event, data)
            if room is None:
                await websocket.send_json({"event": "error", "data": f"Cannot handle '{event}'"})
                continue

            await notifier.join(websocket, room)
            await websocket.send_json({"event": "joined", "data": room})

    except WebSocketDisconnect:
        logger.debug("Socket for %s disconnected", user.user_id)
    finally:
        await notifier.disconnect(websocket)
