from datetime import datetime
from typing import List, Optional
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from campus_platform import config
from campus_platform.attendance.attendance_models import ATTENDED
from campus_platform.core.audit import log_audit
from campus_platform.core.database import generate_id, serialize_doc, serialize_many
from campus_platform.core.errors import ConflictError, ForbiddenError, NotFoundError
from campus_platform.core.permissions import Role, UserContext
from campus_platform.feedback.feedback_models import MentorFeedback
from campus_platform.realtime.manager import notifier, ADMIN_ROOM

logger = logging.getLogger(__name__)

HIDDEN_STUDENT_FIELDS = ("student_id", "student_name", "student_roll_no")


# ==================== ELIGIBILITY ====================

async def check_eligibility(db: AsyncIOMotorDatabase, student_id: str) -> dict:
    """Students may rate mentors once their attendance reaches the configured share"""
    records = await db.attendance.find({"student_id": student_id}, {"status": 1}).to_list(length=None)
    threshold = config.FEEDBACK_MIN_ATTENDANCE_PERCENT

    if not records:
        return {
            "eligible": False,
            "attendance_percentage": 0.0,
            "total_classes": 0,
            "present_count": 0,
            "message": f"No attendance records found. You need at least {threshold:g}% attendance to submit feedback.",
        }

    present = sum(1 for r in records if r["status"] in ATTENDED)
    percentage = round(present / len(records) * 100, 1)
    eligible = percentage >= threshold

    return {
        "eligible": eligible,
        "attendance_percentage": percentage,
        "total_classes": len(records),
        "present_count": present,
        "message": "You are eligible to submit feedback" if eligible else
                   f"You need at least {threshold:g}% attendance to submit feedback. Your current attendance is {percentage}%",
    }


# ==================== SUBMIT ====================

async def submit_feedback(db: AsyncIOMotorDatabase, student: UserContext, data: dict) -> dict:
    mentor = await db.users.find_one({"user_id": data["mentor_id"], "role": Role.MENTOR.value})
    if not mentor:
        raise NotFoundError("Mentor not found")

    eligibility = await check_eligibility(db, student.user_id)
    if not eligibility["eligible"]:
        raise ForbiddenError(eligibility["message"], attendance_percentage=eligibility["attendance_percentage"])

    if await db.mentor_feedback.find_one({"mentor_id": data["mentor_id"], "student_id": student.user_id}):
        raise ConflictError("You have already submitted feedback for this mentor")

    feedback = MentorFeedback(
        feedback_id=generate_id("FBK"),
        student_id=student.user_id,
        student_name=student.full_name,
        student_roll_no=student.profile.get("id_number") or "N/A",
        attendance_percentage=eligibility["attendance_percentage"],
        **data
    ).model_dump()

    try:
        await db.mentor_feedback.insert_one(feedback)
    except DuplicateKeyError:
        raise ConflictError("You have already submitted feedback for this mentor")

    logger.info("Feedback %s for mentor %s submitted", feedback["feedback_id"], data["mentor_id"])
    await notifier.emit(ADMIN_ROOM, "new-mentor-feedback", {
        "feedback_id": feedback["feedback_id"],
        "mentor_name": mentor.get("full_name"),
        "student_name": "Anonymous" if feedback["is_anonymous"] else student.full_name,
        "rating": feedback["rating"],
    })
    return serialize_doc(feedback)


# ==================== VIEWS ====================

async def rating_statistics(db: AsyncIOMotorDatabase, mentor_id: str) -> dict:
    rows = await db.mentor_feedback.aggregate([
        {"$match": {"mentor_id": mentor_id}},
        {"$group": {
            "_id": "$mentor_id",
            "average_rating": {"$avg": "$rating"},
            "total_feedbacks": {"$sum": 1},
            "ratings": {"$push": "$rating"},
        }},
    ]).to_list(length=None)

    distribution = {rating: 0 for rating in range(1, 6)}
    if not rows:
        return {"average_rating": 0, "total_feedbacks": 0, "distribution": distribution}

    for rating in rows[0]["ratings"]:
        distribution[rating] += 1
    return {
        "average_rating": round(rows[0]["average_rating"], 1),
        "total_feedbacks": rows[0]["total_feedbacks"],
        "distribution": distribution,
    }


def _mask_anonymous(feedback: dict) -> dict:
    if feedback.get("is_anonymous"):
        for field in HIDDEN_STUDENT_FIELDS:
            feedback[field] = None
        feedback["student_name"] = "Anonymous"
    return feedback


async def get_mentor_feedback(db: AsyncIOMotorDatabase, viewer: UserContext, mentor_id: str) -> dict:
    """Admins see every field; a mentor reading their own feedback gets anonymous entries masked"""
    viewer.require("mentor_feedback", "view", is_owner=viewer.user_id == mentor_id)

    feedbacks = serialize_many(
        await db.mentor_feedback.find({"mentor_id": mentor_id}).sort("created_at", -1).to_list(length=None)
    )
    if not viewer.is_admin:
        feedbacks = [_mask_anonymous(f) for f in feedbacks]

    return {"feedbacks": feedbacks, "statistics": await rating_statistics(db, mentor_id)}


async def list_feedback(
    db: AsyncIOMotorDatabase,
    status: Optional[str] = None,
    rating: Optional[int] = None,
    mentor_id: Optional[str] = None
) -> List[dict]:
    query = {}
    if status:
        query["status"] = status
    if rating:
        query["rating"] = rating
    if mentor_id:
        query["mentor_id"] = mentor_id

    feedbacks = await db.mentor_feedback.find(query).sort("created_at", -1).to_list(length=None)
    return serialize_many(feedbacks)


async def mentor_statistics(db: AsyncIOMotorDatabase, mentor_id: str, recent: int = 5) -> dict:
    stats = await rating_statistics(db, mentor_id)
    latest = await db.mentor_feedback.find({"mentor_id": mentor_id}).sort("created_at", -1).limit(recent).to_list(length=None)
    return {**stats, "recent_feedbacks": serialize_many(latest)}


# ==================== ADMIN ====================

async def _get_feedback(db: AsyncIOMotorDatabase, feedback_id: str) -> dict:
    feedback = await db.mentor_feedback.find_one({"feedback_id": feedback_id})
    if not feedback:
        raise NotFoundError("Feedback not found")
    return feedback


async def respond_to_feedback(
    db: AsyncIOMotorDatabase,
    admin: UserContext,
    feedback_id: str,
    response: str,
    status: Optional[str] = None
) -> dict:
    feedback = await _get_feedback(db, feedback_id)

    now = datetime.utcnow()
    update = {
        "admin_response": response.strip(),
        "admin_response_by": admin.user_id,
        "admin_response_at": now,
        "updated_at": now,
    }
    if status:
        update["status"] = status

    await db.mentor_feedback.update_one({"feedback_id": feedback_id}, {"$set": update})
    feedback.update(update)

    await log_audit(db, admin, "respond_feedback", "mentor_feedback", feedback_id, {"status": feedback["status"]})
    return serialize_doc(feedback)


async def delete_feedback(db: AsyncIOMotorDatabase, admin: UserContext, feedback_id: str):
    result = await db.mentor_feedback.delete_one({"feedback_id": feedback_id})
    if result.deleted_count == 0:
        raise NotFoundError("Feedback not found")
    await log_audit(db, admin, "delete_feedback", "mentor_feedback", feedback_id)
