from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from campus_platform.admin import admin_service as service
from campus_platform.core.audit import get_audit_trail
from campus_platform.core.database import get_db
from campus_platform.core.permissions import Role, UserContext, require_capability

router = APIRouter(prefix="/api/admin", tags=["Admin"])


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class RoleChange(BaseModel):
    role: Role


# ==================== USERS ====================

@router.get("/users")
async def list_users(
    role: Optional[Role] = None,
    approval_status: Optional[str] = None,
    search: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("user", "list"))
):
    users = await service.list_users(db, role.value if role else None, approval_status, search)
    return {"success": True, "count": len(users), "users": users}


@router.get("/users/pending")
async def pending_users(
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("user", "list"))
):
    users = await service.get_pending_users(db)
    return {"success": True, "count": len(users), "users": users}


@router.post("/users/{user_id}/approve")
async def approve_user(
    user_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("user", "approve"))
):
    user = await service.approve_user(db, admin, user_id, background_tasks)
    return {"success": True, "message": "User approved successfully", "user": user}


@router.post("/users/{user_id}/reject")
async def reject_user(
    user_id: str,
    background_tasks: BackgroundTasks,
    data: RejectRequest = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("user", "reject"))
):
    reason = data.reason if data else None
    user = await service.reject_user(db, admin, user_id, reason, background_tasks)
    return {"success": True, "message": "User rejected", "user": user}


@router.patch("/users/{user_id}/toggle-active")
async def toggle_active(
    user_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("user", "toggle_active"))
):
    user = await service.toggle_active(db, admin, user_id)
    state = "activated" if user["is_active"] else "deactivated"
    return {"success": True, "message": f"User {state}", "user": user}


@router.patch("/users/{user_id}/role")
async def change_role(
    user_id: str,
    data: RoleChange,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("user", "change_role"))
):
    user = await service.change_role(db, admin, user_id, data.role)
    return {"success": True, "message": "Role updated", "user": user}


# ==================== DASHBOARD / AUDIT ====================

@router.get("/dashboard")
async def dashboard(
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("user", "list"))
):
    return {"success": True, "stats": await service.dashboard_stats(db)}


@router.get("/audit-logs")
async def audit_logs(
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("user", "view_audit"))
):
    logs = await get_audit_trail(db, target_type, target_id, limit)
    return {"success": True, "count": len(logs), "logs": logs}
