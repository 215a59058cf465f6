from typing import Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.core.database import get_db
from campus_platform.core.permissions import UserContext, get_current_user, require_capability
from campus_platform.feedback import feedback_service as service
from campus_platform.feedback.feedback_models import FeedbackStatus
from campus_platform.feedback.feedback_schemas import FeedbackCreate, FeedbackReply

router = APIRouter(prefix="/api/mentor-feedback", tags=["Mentor Feedback"])


@router.post("", status_code=201)
async def submit_feedback(
    data: FeedbackCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    student: UserContext = Depends(require_capability("mentor_feedback", "submit"))
):
    feedback = await service.submit_feedback(db, student, data.model_dump())
    return {"success": True, "message": "Feedback submitted successfully", "data": feedback}


@router.get("/check-eligibility")
async def check_eligibility(
    db: AsyncIOMotorDatabase = Depends(get_db),
    student: UserContext = Depends(require_capability("mentor_feedback", "check_eligibility"))
):
    return {"success": True, "data": await service.check_eligibility(db, student.user_id)}


@router.get("/all")
async def list_feedback(
    status: Optional[FeedbackStatus] = None,
    rating: Optional[int] = Query(None, ge=1, le=5),
    mentor_id: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("mentor_feedback", "list_all"))
):
    feedbacks = await service.list_feedback(db, status.value if status else None, rating, mentor_id)
    return {"success": True, "count": len(feedbacks), "data": feedbacks}


@router.get("/mentor/{mentor_id}")
async def mentor_feedback(
    mentor_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    return {"success": True, "data": await service.get_mentor_feedback(db, user, mentor_id)}


@router.get("/statistics/{mentor_id}")
async def mentor_statistics(
    mentor_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("mentor_feedback", "view_stats"))
):
    return {"success": True, "data": await service.mentor_statistics(db, mentor_id)}


@router.put("/{feedback_id}/respond")
async def respond_to_feedback(
    feedback_id: str,
    data: FeedbackReply,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("mentor_feedback", "respond"))
):
    feedback = await service.respond_to_feedback(db, admin, feedback_id, data.response, data.status)
    return {"success": True, "message": "Response submitted successfully", "data": feedback}


@router.delete("/{feedback_id}")
async def delete_feedback(
    feedback_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("mentor_feedback", "delete"))
):
    await service.delete_feedback(db, admin, feedback_id)
    return {"success": True, "message": "Feedback deleted successfully"}
