from datetime import datetime
from typing import List, Optional
import logging
import re

from fastapi import BackgroundTasks
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.auth.auth_service import public_user, get_user
from campus_platform.core.audit import log_audit
from campus_platform.core.errors import ConflictError, ForbiddenError, InvalidStateError
from campus_platform.core.permissions import Role, UserContext
from campus_platform.realtime.manager import notifier, ADMIN_ROOM, SUPER_ADMIN_ROOM, user_room
from campus_platform.services import email_service

logger = logging.getLogger(__name__)


# ==================== USER LISTING ====================

async def list_users(
    db: AsyncIOMotorDatabase,
    role: Optional[str] = None,
    approval_status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 200
) -> List[dict]:
    query = {}
    if role:
        query["role"] = role
    if approval_status:
        query["approval_status"] = approval_status
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query["$or"] = [{"full_name": pattern}, {"email": pattern}, {"id_number": pattern}]

    users = await db.users.find(query).sort("created_at", -1).limit(limit).to_list(length=limit)
    return [public_user(u) for u in users]


async def get_pending_users(db: AsyncIOMotorDatabase) -> List[dict]:
    return await list_users(db, approval_status="pending")


# ==================== APPROVAL ====================

async def approve_user(
    db: AsyncIOMotorDatabase,
    actor: UserContext,
    user_id: str,
    background_tasks: BackgroundTasks = None
) -> dict:
    user = await get_user(db, user_id)

    if user.get("approval_status") == "approved":
        raise ConflictError("User is already approved")

    now = datetime.utcnow()
    update = {
        "approval_status": "approved",
        "approved_by": actor.user_id,
        "approved_at": now,
        "is_verified": True,
        "updated_at": now,
    }
    await db.users.update_one({"user_id": user_id}, {"$set": update})
    user.update(update)

    await log_audit(db, actor, "approve_user", "user", user_id)
    logger.info("User %s approved by %s", user_id, actor.user_id)

    if background_tasks is not None and user.get("email"):
        subject, html, text = email_service.approval_email(user.get("full_name", ""))
        background_tasks.add_task(email_service.deliver_in_background, user["email"], subject, html, text)

    await notifier.emit(user_room(user_id), "user-approved", {"user_id": user_id})
    await notifier.emit_many([ADMIN_ROOM, SUPER_ADMIN_ROOM], "user-approved", {"user_id": user_id})

    return public_user(user)


async def reject_user(
    db: AsyncIOMotorDatabase,
    actor: UserContext,
    user_id: str,
    reason: Optional[str] = None,
    background_tasks: BackgroundTasks = None
) -> dict:
    user = await get_user(db, user_id)

    if user.get("approval_status") == "rejected":
        raise ConflictError("User is already rejected")

    now = datetime.utcnow()
    update = {
        "approval_status": "rejected",
        "rejection_reason": reason,
        "approved_by": actor.user_id,
        "approved_at": None,
        "updated_at": now,
    }
    await db.users.update_one({"user_id": user_id}, {"$set": update})
    user.update(update)

    await log_audit(db, actor, "reject_user", "user", user_id, {"reason": reason})

    if background_tasks is not None and user.get("email"):
        subject, html, text = email_service.rejection_email(user.get("full_name", ""), reason)
        background_tasks.add_task(email_service.deliver_in_background, user["email"], subject, html, text)

    await notifier.emit(user_room(user_id), "user-rejected", {"user_id": user_id, "reason": reason})
    return public_user(user)


async def toggle_active(db: AsyncIOMotorDatabase, actor: UserContext, user_id: str) -> dict:
    if user_id == actor.user_id:
        raise InvalidStateError("You cannot deactivate your own account")

    user = await get_user(db, user_id)
    if user.get("role") == Role.SUPER_ADMIN.value and actor.role != Role.SUPER_ADMIN.value:
        raise ForbiddenError("Only a super admin can change another super admin")

    is_active = not user.get("is_active", True)
    await db.users.update_one(
        {"user_id": user_id},
        {"$set": {"is_active": is_active, "updated_at": datetime.utcnow()}}
    )
    user["is_active"] = is_active

    await log_audit(db, actor, "activate_user" if is_active else "deactivate_user", "user", user_id)
    return public_user(user)


async def change_role(db: AsyncIOMotorDatabase, actor: UserContext, user_id: str, role: Role) -> dict:
    user = await get_user(db, user_id)
    role = Role(role).value

    if user.get("role") == role:
        raise ConflictError(f"User already has role {role}")

    await db.users.update_one(
        {"user_id": user_id},
        {"$set": {"role": role, "updated_at": datetime.utcnow()}}
    )
    await log_audit(db, actor, "change_role", "user", user_id, {"from": user.get("role"), "to": role})
    user["role"] = role
    return public_user(user)


# ==================== DASHBOARD ====================

async def dashboard_stats(db: AsyncIOMotorDatabase) -> dict:
    users_by_role = {}
    for role in Role:
        users_by_role[role.value] = await db.users.count_documents({"role": role.value})

    return {
        "users": users_by_role,
        "pending_approvals": await db.users.count_documents({"approval_status": "pending"}),
        "teams": await db.teams.count_documents({"is_deleted": {"$ne": True}}),
        "teams_without_mentor": await db.teams.count_documents({"is_deleted": {"$ne": True}, "mentor_id": None}),
        "milestone_chains": await db.milestone_chains.count_documents({}),
        "pending_submissions": await db.student_milestones.count_documents({"status": "submitted"}),
        "active_exam_schedules": await db.exam_schedules.count_documents({"status": "active"}),
    }
