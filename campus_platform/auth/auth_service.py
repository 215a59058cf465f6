from datetime import datetime
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from campus_platform import config
from campus_platform.core.auth_utils import hash_password, verify_password, create_access_token
from campus_platform.core.database import generate_id
from campus_platform.core.errors import (
    AuthenticationError, ConflictError, ForbiddenError, NotFoundError
)
from campus_platform.core.permissions import Role
from campus_platform.realtime.manager import notifier, ADMIN_ROOM, SUPER_ADMIN_ROOM

logger = logging.getLogger(__name__)

APPROVAL_REQUIRED_ROLES = {Role.STUDENT.value, Role.MENTOR.value}


def public_user(user: dict) -> dict:
    """Strip storage-only fields before a user leaves the service"""
    if user is None:
        return None
    return {k: v for k, v in user.items() if k not in ("_id", "password_hash")}


async def find_user_by_login(db: AsyncIOMotorDatabase, email_or_phone: str) -> dict:
    value = email_or_phone.strip()
    return await db.users.find_one({"$or": [{"email": value.lower()}, {"phone": value}]})


async def get_user(db: AsyncIOMotorDatabase, user_id: str) -> dict:
    user = await db.users.find_one({"user_id": user_id})
    if not user:
        raise NotFoundError("User not found")
    return user


# ==================== SIGNUP / LOGIN ====================

async def signup(db: AsyncIOMotorDatabase, data: dict) -> dict:
    email = data["email"].strip().lower()
    phone = data["phone"].strip()

    existing = await db.users.find_one({"$or": [{"email": email}, {"phone": phone}]})
    if existing:
        raise ConflictError("User with this email or phone already exists")

    now = datetime.utcnow()
    user = {
        **{k: v for k, v in data.items() if k not in ("password", "email", "phone")},
        "user_id": generate_id("USR"),
        "email": email,
        "phone": phone,
        "password_hash": hash_password(data["password"]),
        "role": Role(data.get("role", Role.STUDENT)).value,
        "is_verified": False,
        "is_active": True,
        "approval_status": "pending",
        "approved_by": None,
        "approved_at": None,
        "last_login": None,
        "created_at": now,
        "updated_at": now,
    }

    try:
        await db.users.insert_one(user)
    except DuplicateKeyError:
        raise ConflictError("User with this email or phone already exists")

    logger.info("New %s signup %s awaiting approval", user["role"], user["user_id"])

    await notifier.emit_many([ADMIN_ROOM, SUPER_ADMIN_ROOM], "new-user-signup", {
        "user_id": user["user_id"],
        "full_name": user.get("full_name"),
        "role": user["role"],
    })

    return public_user(user)


async def login(db: AsyncIOMotorDatabase, email_or_phone: str, password: str) -> dict:
    user = await find_user_by_login(db, email_or_phone)

    if not user:
        raise AuthenticationError("Invalid credentials")

    if not user.get("is_active", True):
        raise ForbiddenError("Your account has been deactivated. Please contact the admin.")

    if not verify_password(password, user.get("password_hash")):
        raise AuthenticationError("Invalid credentials")

    ensure_approved(user)
    return await issue_session(db, user)


def ensure_approved(user: dict):
    status = user.get("approval_status", "approved")
    if user.get("role") in APPROVAL_REQUIRED_ROLES and status != "approved":
        message = (
            "Your registration was rejected. Please contact the admin."
            if status == "rejected"
            else "Your account is pending approval. Please wait for admin approval."
        )
        raise ForbiddenError(message, approval_status=status)


async def issue_session(db: AsyncIOMotorDatabase, user: dict) -> dict:
    now = datetime.utcnow()
    await db.users.update_one({"user_id": user["user_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now

    return {
        "token": create_access_token(user["user_id"], user.get("role")),
        "user": public_user(user),
    }


async def reset_password(db: AsyncIOMotorDatabase, email: str, new_password: str):
    result = await db.users.update_one(
        {"email": email.strip().lower()},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": datetime.utcnow()}}
    )
    if result.matched_count == 0:
        raise NotFoundError("No account found with this email")


async def ensure_super_admin(db: AsyncIOMotorDatabase):
    """Create the bootstrap super admin from the environment if it does not exist"""
    if not (config.SUPER_ADMIN_EMAIL and config.SUPER_ADMIN_PASSWORD):
        return

    email = config.SUPER_ADMIN_EMAIL.strip().lower()
    if await db.users.find_one({"email": email}):
        return

    now = datetime.utcnow()
    await db.users.insert_one({
        "user_id": generate_id("USR"),
        "full_name": "Super Admin",
        "email": email,
        "password_hash": hash_password(config.SUPER_ADMIN_PASSWORD),
        "role": Role.SUPER_ADMIN.value,
        "is_verified": True,
        "is_active": True,
        "approval_status": "approved",
        "created_at": now,
        "updated_at": now,
    })
    logger.info("Bootstrap super admin %s created", email)
