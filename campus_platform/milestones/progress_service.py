from datetime import datetime
from typing import List, Optional
import logging
import os

from fastapi import UploadFile
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from campus_platform import config
from campus_platform.core.database import generate_id, serialize_doc, serialize_many
from campus_platform.core.errors import (
    ConflictError, InvalidStateError, NotFoundError, UpstreamFailure, ValidationError
)
from campus_platform.core.permissions import UserContext
from campus_platform.milestones import chain_service
from campus_platform.milestones.grading import (
    compute_percentage, grade_answers, letter_grade, quiz_time_exceeded
)
from campus_platform.milestones.milestone_models import (
    ProgressStatus, StudentMilestone, SubmissionEntry, SubmittedFile, TIMED_TYPES
)
from campus_platform.milestones.milestone_service import get_milestone_doc
from campus_platform.milestones.visibility import is_publicly_visible
from campus_platform.realtime.manager import notifier, ADMIN_ROOM, user_room
from campus_platform.services import storage

logger = logging.getLogger(__name__)

UPLOAD_FOLDER = "milestones/assignments"
FINAL_STATUSES = {ProgressStatus.SUBMITTED.value, ProgressStatus.COMPLETED.value, ProgressStatus.FAILED.value}


async def _published_milestone(db: AsyncIOMotorDatabase, milestone_id: str) -> dict:
    milestone = await db.milestones.find_one({"milestone_id": milestone_id})
    if not milestone:
        raise NotFoundError("Milestone not found or not published")
    chain = await chain_service.get_chain(db, milestone["chain_id"])
    if not is_publicly_visible(chain, milestone):
        raise NotFoundError("Milestone not found or not published")
    return milestone


def _ensure_open(milestone: dict, now: datetime):
    if now < milestone["start_date"]:
        raise InvalidStateError("This milestone has not started yet", starts_at=milestone["start_date"])


def _new_record(student_id: str, milestone: dict, now: datetime, **fields) -> dict:
    record = StudentMilestone(
        record_id=generate_id("SMP"),
        student_id=student_id,
        milestone_id=milestone["milestone_id"],
        chain_id=milestone["chain_id"],
        **fields
    )
    return record.model_dump()


async def get_record(db: AsyncIOMotorDatabase, student_id: str, milestone_id: str) -> Optional[dict]:
    return await db.student_milestones.find_one({"student_id": student_id, "milestone_id": milestone_id})


# ==================== START ====================

async def start_milestone(
    db: AsyncIOMotorDatabase,
    student: UserContext,
    milestone_id: str,
    now: datetime = None
) -> dict:
    """Idempotent: a second call returns the record created by the first"""
    now = now or datetime.utcnow()
    milestone = await _published_milestone(db, milestone_id)

    existing = await get_record(db, student.user_id, milestone_id)
    if existing:
        return serialize_doc(existing)

    _ensure_open(milestone, now)

    doc = _new_record(
        student.user_id, milestone, now,
        status=ProgressStatus.IN_PROGRESS,
        started_at=now,
        quiz_started_at=now if milestone["type"] in TIMED_TYPES else None,
        attempts=1,
    )

    try:
        await db.student_milestones.insert_one(doc)
    except DuplicateKeyError:
        # Lost a race against a concurrent start for the same pair
        return serialize_doc(await get_record(db, student.user_id, milestone_id))

    return serialize_doc(doc)


# ==================== ASSIGNMENT SUBMISSION ====================

def _allowed_types(milestone: dict) -> List[str]:
    types = milestone.get("submission_requirements", {}).get("file_types") or config.SUBMISSION_FILE_TYPES
    return [t.lower().lstrip(".") for t in types]


async def read_and_check_files(milestone: dict, files: List[UploadFile]) -> List[tuple]:
    """Validate every file before anything is uploaded. Returns [(filename, content)]."""
    requirements = milestone.get("submission_requirements", {})
    max_files = min(requirements.get("max_files") or 1, config.MAX_SUBMISSION_FILES)
    max_mb = min(requirements.get("max_file_size") or config.MAX_UPLOAD_MB, config.MAX_UPLOAD_MB)
    allowed = _allowed_types(milestone)

    if len(files) > max_files:
        raise ValidationError(f"You can upload at most {max_files} file(s) for this milestone")

    checked = []
    for upload in files:
        ext = os.path.splitext(upload.filename or "")[1].lower().lstrip(".")
        if ext not in allowed:
            raise ValidationError(f"File type .{ext} is not allowed", allowed_types=allowed)

        content = await upload.read()
        if len(content) > max_mb * 1024 * 1024:
            raise ValidationError(f"{upload.filename} is larger than {max_mb}MB")

        checked.append((upload.filename, content))
    return checked


async def _upload_all(files: List[tuple]) -> List[dict]:
    uploaded = []
    try:
        for filename, content in files:
            uploaded.append(await storage.upload_file(content, filename, UPLOAD_FOLDER))
    except UpstreamFailure:
        for stored in uploaded:
            try:
                await storage.delete_file(stored["public_id"], stored.get("resource_type"))
            except UpstreamFailure as e:
                logger.warning("Could not remove orphaned upload %s: %s", stored["public_id"], e.message)
        raise
    return uploaded


async def submit_assignment(
    db: AsyncIOMotorDatabase,
    student: UserContext,
    milestone_id: str,
    files: List[UploadFile],
    text: Optional[str] = None,
    now: datetime = None
) -> dict:
    now = now or datetime.utcnow()
    milestone = await _published_milestone(db, milestone_id)

    if milestone["type"] in TIMED_TYPES:
        raise InvalidStateError("Quizzes and exams are answered with submit-quiz")
    _ensure_open(milestone, now)

    existing = await get_record(db, student.user_id, milestone_id)
    if existing and existing["status"] == ProgressStatus.COMPLETED.value:
        raise InvalidStateError("This milestone has already been graded")

    files = files or []
    text = (text or "").strip() or None
    if not files and not text:
        raise ValidationError("Provide at least one file or a text response")

    checked = await read_and_check_files(milestone, files)
    uploaded = await _upload_all(checked)

    entry = SubmissionEntry(
        files=[SubmittedFile(**f, uploaded_at=now) for f in uploaded],
        text=text,
        submitted_at=now,
    ).model_dump()

    update = {
        "$push": {"submissions": entry},
        "$set": {"status": ProgressStatus.SUBMITTED.value, "updated_at": now},
    }
    if existing is None:
        doc = _new_record(student.user_id, milestone, now, started_at=now, attempts=1)
        for key in ("submissions", "status", "updated_at", "student_id", "milestone_id"):
            doc.pop(key)
        update["$setOnInsert"] = doc

    await db.student_milestones.update_one(
        {"student_id": student.user_id, "milestone_id": milestone_id},
        update,
        upsert=True
    )

    record = serialize_doc(await get_record(db, student.user_id, milestone_id))
    logger.info("Assignment submitted for %s by %s", milestone_id, student.user_id)

    await notifier.emit(ADMIN_ROOM, "assignment-submitted", {
        "record_id": record["record_id"],
        "milestone_id": milestone_id,
        "milestone_name": milestone["name"],
        "student_id": student.user_id,
        "student_name": student.full_name,
    })
    return record


# ==================== QUIZ SUBMISSION ====================

async def submit_quiz(
    db: AsyncIOMotorDatabase,
    student: UserContext,
    milestone_id: str,
    answers: List[dict],
    now: datetime = None
) -> dict:
    now = now or datetime.utcnow()
    milestone = await _published_milestone(db, milestone_id)

    if milestone["type"] not in TIMED_TYPES:
        raise InvalidStateError("This milestone is not a quiz or exam")

    record = await get_record(db, student.user_id, milestone_id)
    if not record or not record.get("quiz_started_at"):
        raise InvalidStateError("Milestone not started")
    if record["status"] in FINAL_STATUSES:
        raise ConflictError("This quiz has already been submitted")

    key = {"record_id": record["record_id"], "status": ProgressStatus.IN_PROGRESS.value}

    if quiz_time_exceeded(record["quiz_started_at"], milestone.get("duration"), now):
        await db.student_milestones.update_one(key, {"$set": {
            "status": ProgressStatus.FAILED.value,
            "quiz_submitted_at": now,
            "updated_at": now,
        }})
        raise InvalidStateError("Time limit exceeded", status=ProgressStatus.FAILED.value)

    graded, score, max_score = grade_answers(milestone.get("questions", []), answers)
    percentage = compute_percentage(score, max_score)
    auto_score = score if max_score > 0 else None

    result = await db.student_milestones.update_one(key, {"$set": {
        "answers": graded,
        "quiz_submitted_at": now,
        "status": ProgressStatus.SUBMITTED.value,
        "score": auto_score,
        "max_score": max_score if max_score > 0 else None,
        "percentage": percentage,
        "auto_graded_score": auto_score,
        "auto_graded_percentage": percentage,
        "updated_at": now,
    }})
    if result.matched_count == 0:
        raise ConflictError("This quiz has already been submitted")

    updated = serialize_doc(await get_record(db, student.user_id, milestone_id))

    await notifier.emit(ADMIN_ROOM, "quiz-submitted", {
        "record_id": updated["record_id"],
        "milestone_id": milestone_id,
        "student_id": student.user_id,
        "auto_graded_percentage": percentage,
    })
    return updated


# ==================== GRADING ====================

async def grade_submission(
    db: AsyncIOMotorDatabase,
    grader: UserContext,
    record_id: str,
    data: dict
) -> dict:
    record = await db.student_milestones.find_one({"record_id": record_id})
    if not record:
        raise NotFoundError("Submission not found")

    if record["status"] not in (ProgressStatus.SUBMITTED.value, ProgressStatus.COMPLETED.value):
        raise InvalidStateError("Only submitted work can be graded", status=record["status"])

    milestone = await get_milestone_doc(db, record["milestone_id"])

    score = data["score"]
    max_score = data.get("max_score")
    if max_score is None:
        max_score = record.get("max_score") if milestone["type"] in TIMED_TYPES else None
        max_score = max_score or milestone.get("max_marks")

    if not max_score or max_score <= 0:
        raise ValidationError("max_score must be greater than zero")
    if score > max_score:
        raise ValidationError("score cannot exceed max_score")

    now = datetime.utcnow()
    percentage = compute_percentage(score, max_score)
    update = {
        "score": score,
        "max_score": max_score,
        "percentage": percentage,
        "grade": data.get("grade") or letter_grade(percentage),
        "feedback": data.get("feedback"),
        "graded_by": grader.user_id,
        "graded_at": now,
        "status": ProgressStatus.COMPLETED.value,
        "completed_at": now,
        "updated_at": now,
    }
    await db.student_milestones.update_one({"record_id": record_id}, {"$set": update})
    record.update(update)

    logger.info("Submission %s graded %s/%s by %s", record_id, score, max_score, grader.user_id)

    await notifier.emit(user_room(record["student_id"]), "assignment-graded", {
        "record_id": record_id,
        "milestone_id": record["milestone_id"],
        "milestone_name": milestone["name"],
        "score": score,
        "max_score": max_score,
        "percentage": percentage,
        "grade": update["grade"],
    })
    return serialize_doc(record)


# ==================== QUERIES ====================

def summarize(records: List[dict]) -> dict:
    counts = {status.value: 0 for status in ProgressStatus}
    for record in records:
        counts[record["status"]] = counts.get(record["status"], 0) + 1

    percentages = [r["percentage"] for r in records if r.get("percentage") is not None]
    return {
        "total": len(records),
        **{status.replace("-", "_"): count for status, count in counts.items()},
        "average_score": round(sum(percentages) / len(percentages), 2) if percentages else None,
    }


async def get_student_progress(db: AsyncIOMotorDatabase, student_id: str, chain_id: str) -> dict:
    await chain_service.get_chain(db, chain_id)
    records = await db.student_milestones.find(
        {"student_id": student_id, "chain_id": chain_id}
    ).sort("created_at", 1).to_list(length=None)
    records = serialize_many(records)
    return {"student_id": student_id, "chain_id": chain_id, "progress": records, "stats": summarize(records)}


async def get_pending_submissions(db: AsyncIOMotorDatabase, milestone_id: Optional[str] = None) -> List[dict]:
    query = {"status": ProgressStatus.SUBMITTED.value}
    if milestone_id:
        query["milestone_id"] = milestone_id

    records = await db.student_milestones.find(query).sort("updated_at", -1).to_list(length=None)
    records = serialize_many(records)

    students = {
        u["user_id"]: u for u in await db.users.find(
            {"user_id": {"$in": list({r["student_id"] for r in records})}},
            {"user_id": 1, "full_name": 1, "email": 1, "id_number": 1}
        ).to_list(length=None)
    }
    for record in records:
        student = students.get(record["student_id"], {})
        record["student"] = {k: student.get(k) for k in ("user_id", "full_name", "email", "id_number")}
    return records


async def get_submission(db: AsyncIOMotorDatabase, user: UserContext, record_id: str) -> dict:
    record = await db.student_milestones.find_one({"record_id": record_id})
    if not record:
        raise NotFoundError("Submission not found")
    if not user.can("student_milestone", "view_any"):
        user.require("student_milestone", "view", is_owner=record["student_id"] == user.user_id)
    return serialize_doc(record)
