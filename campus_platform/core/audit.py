from datetime import datetime
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field

from campus_platform.core.permissions import UserContext


class AuditLog(BaseModel):
    actor_user_id: str
    actor_role: str
    action: str
    target_type: str
    target_id: str
    metadata: dict = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


async def log_audit(
    db: AsyncIOMotorDatabase,
    actor: UserContext,
    action: str,
    target_type: str,
    target_id: str,
    metadata: dict = None
):
    """
    Log destructive or workflow-changing actions for auditability

    Args:
        actor: UserContext of the caller
        action: Action performed (e.g., 'publish_chain', 'distribute_teams')
        target_type: Resource type (e.g., 'milestone_chain', 'exam_schedule')
        target_id: ID of the resource
        metadata: Additional context (optional)
    """
    audit_log = AuditLog(
        actor_user_id=actor.user_id,
        actor_role=actor.role,
        action=action,
        target_type=target_type,
        target_id=target_id,
        metadata=metadata or {},
    )

    await db.audit_logs.insert_one(audit_log.model_dump())


async def get_audit_trail(
    db: AsyncIOMotorDatabase,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    limit: int = 100
):
    """Retrieve audit logs, newest first, with optional filters"""
    query = {}

    if target_type:
        query["target_type"] = target_type

    if target_id:
        query["target_id"] = target_id

    cursor = db.audit_logs.find(query).sort("timestamp", -1).limit(limit)
    logs = await cursor.to_list(length=limit)

    for log in logs:
        log.pop("_id", None)

    return logs
