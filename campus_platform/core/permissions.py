from enum import Enum
from typing import Dict, FrozenSet, Optional

from fastapi import Depends, Header
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.core.auth_utils import decode_access_token, extract_bearer_token
from campus_platform.core.database import get_db
from campus_platform.core.errors import AuthenticationError, ForbiddenError


class Role(str, Enum):
    STUDENT = "student"
    MENTOR = "mentor"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


ADMIN_ROLES = frozenset({Role.ADMIN.value, Role.SUPER_ADMIN.value})
STAFF_ROLES = frozenset({Role.MENTOR.value, Role.ADMIN.value, Role.SUPER_ADMIN.value})


# ==================== CAPABILITY TABLE ====================

_ADMIN_CAPS = {
    "milestone_chain": {"read", "create", "edit", "publish", "delete", "view_progress"},
    "milestone": {"read", "create", "edit", "delete", "view_stats"},
    "student_milestone": {"grade", "view_pending", "view_any"},
    "exam_schedule": {
        "create", "update", "delete", "distribute", "assign",
        "edit_slot", "delete_slot", "view_resources", "view_any",
    },
    "team": {"assign_mentor", "distribute_mentors", "view_all"},
    "user": {"approve", "reject", "list", "toggle_active", "view_audit"},
    "forum_post": {"create", "comment", "like", "moderate_delete"},
    "question_paper": {"parse"},
    "attendance": {"mark", "mark_future", "view", "report", "export", "list_students", "update", "delete"},
    "mentor_feedback": {"view", "list_all", "view_stats", "respond", "delete"},
}

CAPABILITIES: Dict[str, Dict[str, FrozenSet[str]]] = {
    resource: {
        Role.ADMIN.value: frozenset(actions),
        Role.SUPER_ADMIN.value: frozenset(actions),
    }
    for resource, actions in _ADMIN_CAPS.items()
}

CAPABILITIES["milestone_chain"][Role.STUDENT.value] = frozenset({"read"})
CAPABILITIES["milestone_chain"][Role.MENTOR.value] = frozenset({"read", "view_progress"})
CAPABILITIES["milestone"][Role.STUDENT.value] = frozenset({"read"})
CAPABILITIES["milestone"][Role.MENTOR.value] = frozenset({"read"})
CAPABILITIES["student_milestone"][Role.STUDENT.value] = frozenset({"start", "submit", "view_own"})
CAPABILITIES["student_milestone"][Role.MENTOR.value] = frozenset({"grade", "view_pending", "view_any"})
CAPABILITIES["exam_schedule"][Role.STUDENT.value] = frozenset({"view_team"})
CAPABILITIES["exam_schedule"][Role.MENTOR.value] = frozenset({"view_own_slots", "configure_own", "view_team"})
CAPABILITIES["team"][Role.STUDENT.value] = frozenset({"create", "join", "view_own"})
CAPABILITIES["team"][Role.MENTOR.value] = frozenset({"view_assigned"})
CAPABILITIES["forum_post"][Role.STUDENT.value] = frozenset({"create", "comment", "like"})
CAPABILITIES["forum_post"][Role.MENTOR.value] = frozenset({"create", "comment", "like"})
CAPABILITIES["question_paper"][Role.MENTOR.value] = frozenset({"parse"})
CAPABILITIES["attendance"][Role.STUDENT.value] = frozenset({"view_own"})
CAPABILITIES["attendance"][Role.MENTOR.value] = frozenset({"mark", "view", "report", "export", "list_students"})
CAPABILITIES["mentor_feedback"][Role.STUDENT.value] = frozenset({"submit", "check_eligibility"})
CAPABILITIES["user"][Role.SUPER_ADMIN.value] = CAPABILITIES["user"][Role.SUPER_ADMIN.value] | {"change_role"}

# Granted on top of the base set when the caller owns the target
OWNER_CAPABILITIES: Dict[str, Dict[str, FrozenSet[str]]] = {
    "exam_schedule": {
        Role.MENTOR.value: frozenset({"reschedule", "complete"}),
    },
    "forum_post": {
        role.value: frozenset({"edit", "delete"}) for role in Role
    },
    "student_milestone": {
        Role.STUDENT.value: frozenset({"view"}),
    },
    "attendance": {
        Role.STUDENT.value: frozenset({"view"}),
    },
    "mentor_feedback": {
        Role.MENTOR.value: frozenset({"view"}),
    },
}


def resolve_capabilities(role: str, resource: str, is_owner: bool = False) -> FrozenSet[str]:
    """
    Single source of truth for what a role may do on a resource.

    Unknown roles and resources resolve to an empty set.
    """
    role = role.value if isinstance(role, Role) else role
    actions = set(CAPABILITIES.get(resource, {}).get(role, frozenset()))
    if is_owner:
        actions |= OWNER_CAPABILITIES.get(resource, {}).get(role, frozenset())
    return frozenset(actions)


# ==================== USER CONTEXT ====================

class UserContext:
    """
    Authenticated caller, built from the users collection on every request
    """
    def __init__(self, user: dict):
        self.user_id = user["user_id"]
        self.role = user.get("role", Role.STUDENT.value)
        self.full_name = user.get("full_name")
        self.email = user.get("email")
        self.approval_status = user.get("approval_status")
        self.profile = user

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def can(self, resource: str, action: str, is_owner: bool = False) -> bool:
        return action in resolve_capabilities(self.role, resource, is_owner)

    def require(self, resource: str, action: str, is_owner: bool = False):
        if not self.can(resource, action, is_owner):
            raise ForbiddenError(
                "Access denied. You are not allowed to perform this action.",
                resource=resource,
                action=action,
            )


async def load_user_context(db: AsyncIOMotorDatabase, token: Optional[str]) -> UserContext:
    if not token:
        raise AuthenticationError("Not authorized, no token")

    payload = decode_access_token(token)
    user = await db.users.find_one({"user_id": payload["sub"]})

    if not user:
        raise AuthenticationError("User not found")
    if not user.get("is_active", True):
        raise AuthenticationError("Account is deactivated")

    return UserContext(user)


async def get_current_user(
    authorization: str = Header(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> UserContext:
    """
    Dependency: valid bearer token for an active user
    """
    return await load_user_context(db, extract_bearer_token(authorization))


def require_capability(resource: str, action: str):
    """Dependency factory gating a route on a non-ownership capability"""
    async def dependency(user: UserContext = Depends(get_current_user)) -> UserContext:
        user.require(resource, action)
        return user
    return dependency
