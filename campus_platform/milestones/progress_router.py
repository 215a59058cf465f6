from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.core.database import get_db
from campus_platform.core.permissions import UserContext, get_current_user, require_capability
from campus_platform.milestones import progress_service as service
from campus_platform.milestones.milestone_schemas import GradeRequest, QuizSubmission

router = APIRouter(prefix="/api/student-milestone", tags=["Student Milestones"])

# ==================== STUDENT ====================

@router.post("/{milestone_id}/start")
async def start_milestone(
    milestone_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    student: UserContext = Depends(require_capability("student_milestone", "start"))
):
    record = await service.start_milestone(db, student, milestone_id)
    return {"success": True, "message": "Milestone started", "student_milestone": record}


@router.post("/{milestone_id}/submit-assignment")
async def submit_assignment(
    milestone_id: str,
    files: List[UploadFile] = File(default=[]),
    text: Optional[str] = Form(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
    student: UserContext = Depends(require_capability("student_milestone", "submit"))
):
    record = await service.submit_assignment(db, student, milestone_id, files, text)
    return {"success": True, "message": "Assignment submitted successfully", "student_milestone": record}


@router.post("/{milestone_id}/submit-quiz")
async def submit_quiz(
    milestone_id: str,
    data: QuizSubmission,
    db: AsyncIOMotorDatabase = Depends(get_db),
    student: UserContext = Depends(require_capability("student_milestone", "submit"))
):
    answers = [a.model_dump() for a in data.answers]
    record = await service.submit_quiz(db, student, milestone_id, answers)
    return {
        "success": True,
        "message": "Quiz submitted. Your answers will be reviewed by a mentor.",
        "student_milestone": record,
    }


@router.get("/chain/{chain_id}/progress")
async def my_progress(
    chain_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    student: UserContext = Depends(require_capability("student_milestone", "view_own"))
):
    return {"success": True, **(await service.get_student_progress(db, student.user_id, chain_id))}

# ==================== STAFF ====================

@router.get("/chain/{chain_id}/progress/{student_id}")
async def student_progress(
    chain_id: str,
    student_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    staff: UserContext = Depends(require_capability("student_milestone", "view_any"))
):
    return {"success": True, **(await service.get_student_progress(db, student_id, chain_id))}


@router.get("/pending-submissions")
async def pending_submissions(
    milestone_id: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    staff: UserContext = Depends(require_capability("student_milestone", "view_pending"))
):
    submissions = await service.get_pending_submissions(db, milestone_id)
    return {"success": True, "count": len(submissions), "submissions": submissions}


@router.get("/submission/{record_id}")
async def get_submission(
    record_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    return {"success": True, "student_milestone": await service.get_submission(db, user, record_id)}


@router.post("/submission/{record_id}/grade")
async def grade_submission(
    record_id: str,
    data: GradeRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    grader: UserContext = Depends(require_capability("student_milestone", "grade"))
):
    record = await service.grade_submission(db, grader, record_id, data.model_dump())
    return {"success": True, "message": "Submission graded successfully", "student_milestone": record}
