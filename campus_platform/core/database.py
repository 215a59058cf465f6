from typing import List
import logging
import secrets

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from campus_platform import config

logger = logging.getLogger(__name__)

client = AsyncIOMotorClient(config.MONGO_URL)
db = client[config.DATABASE_NAME]


async def get_db() -> AsyncIOMotorDatabase:
    """Database dependency"""
    return db


def generate_id(prefix: str) -> str:
    """Generate unique ID with prefix"""
    return f"{prefix}_{secrets.token_hex(8).upper()}"


def serialize_doc(doc: dict) -> dict:
    if doc is not None:
        doc.pop("_id", None)
    return doc


def serialize_many(docs: List[dict]) -> List[dict]:
    return [serialize_doc(doc) for doc in docs]


async def create_indexes(database: AsyncIOMotorDatabase):
    """
    Create database indexes
    Called during application startup
    """

    # Users
    await database.users.create_index("user_id", unique=True)
    await database.users.create_index("email", unique=True)
    await database.users.create_index("phone", unique=True, sparse=True)
    await database.users.create_index([("role", 1), ("approval_status", 1)])

    # OTP codes expire on their own
    await database.otp_codes.create_index("key", unique=True)
    await database.otp_codes.create_index("expires_at", expireAfterSeconds=0)

    # Teams
    await database.teams.create_index("team_id", unique=True)
    await database.teams.create_index("team_code", unique=True)
    await database.teams.create_index("members.user_id")
    await database.teams.create_index("mentor_id")

    # Milestone chains / milestones / progress
    await database.milestone_chains.create_index("chain_id", unique=True)
    await database.milestone_chains.create_index([("academic_year", 1), ("status", 1)])
    await database.milestones.create_index("milestone_id", unique=True)
    await database.milestones.create_index([("chain_id", 1), ("order", 1)], unique=True)
    await database.student_milestones.create_index("record_id", unique=True)
    await database.student_milestones.create_index([("student_id", 1), ("milestone_id", 1)], unique=True)
    await database.student_milestones.create_index([("student_id", 1), ("chain_id", 1)])
    await database.student_milestones.create_index("status")

    # Exam schedules
    await database.exam_schedules.create_index("schedule_id", unique=True)
    await database.exam_schedules.create_index("status")
    await database.exam_schedules.create_index("slots.mentor_id")
    await database.exam_schedules.create_index("mentor_schedules.mentor_id")

    # Forum
    await database.forum_posts.create_index("post_id", unique=True)
    await database.forum_posts.create_index([("category", 1), ("created_at", -1)])

    # Attendance / mentor feedback
    await database.attendance.create_index("attendance_id", unique=True)
    await database.attendance.create_index([("student_id", 1), ("date", 1)], unique=True)
    await database.attendance.create_index([("date", 1), ("department", 1), ("section", 1)])
    await database.mentor_feedback.create_index("feedback_id", unique=True)
    await database.mentor_feedback.create_index([("mentor_id", 1), ("student_id", 1)], unique=True)
    await database.mentor_feedback.create_index([("mentor_id", 1), ("created_at", -1)])

    # Audit logs
    await database.audit_logs.create_index([("target_type", 1), ("target_id", 1)])
    await database.audit_logs.create_index([("actor_user_id", 1), ("timestamp", -1)])

    logger.info("Database indexes created")
