from datetime import datetime, timedelta
from typing import List, Optional
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from campus_platform.core.audit import log_audit
from campus_platform.core.database import generate_id, serialize_doc, serialize_many
from campus_platform.core.errors import (
    ConflictError, ForbiddenError, InvalidStateError, NotFoundError, ValidationError
)
from campus_platform.core.permissions import Role, UserContext
from campus_platform.milestones import chain_service
from campus_platform.milestones.milestone_models import (
    ChainStatus, Milestone, MilestoneStatus, ProgressStatus, Question, SubmissionRequirements
)
from campus_platform.milestones.visibility import (
    is_locked, is_publicly_visible, strip_answers, student_milestone_view
)

logger = logging.getLogger(__name__)

REPUBLISH_MESSAGE = "Chain has been unpublished - please republish to make changes visible to students."


async def get_milestone_doc(db: AsyncIOMotorDatabase, milestone_id: str) -> dict:
    milestone = await db.milestones.find_one({"milestone_id": milestone_id})
    if not milestone:
        raise NotFoundError("Milestone not found")
    return milestone


def _with_question_ids(questions: List[dict]) -> List[dict]:
    return [
        Question(**{**q, "question_id": q.get("question_id") or generate_id("QST")}).model_dump()
        for q in questions
    ]


async def _next_order(db: AsyncIOMotorDatabase, chain_id: str) -> int:
    last = await db.milestones.find_one({"chain_id": chain_id}, sort=[("order", -1)])
    return (last["order"] + 1) if last else 1


async def _ensure_order_free(db: AsyncIOMotorDatabase, chain_id: str, order: int, exclude: str = None):
    query = {"chain_id": chain_id, "order": order}
    if exclude:
        query["milestone_id"] = {"$ne": exclude}
    if await db.milestones.find_one(query):
        raise ConflictError(f"A milestone with order {order} already exists in this chain")


def earliest_published_start(now: datetime) -> datetime:
    """Start of the next UTC day"""
    return (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)


def _change_response(milestone: dict, reverted: bool, chain_status: str, action: str) -> dict:
    message = f"Milestone {action} successfully."
    if reverted:
        message = f"{message} {REPUBLISH_MESSAGE}"
    return {
        "milestone": serialize_doc(milestone),
        "requires_republish": reverted,
        "chain_status": chain_status,
        "message": message,
    }


# ==================== CREATE / UPDATE / DELETE ====================

async def create_milestone(db: AsyncIOMotorDatabase, user: UserContext, chain_id: str, data: dict) -> dict:
    chain = await chain_service.get_chain(db, chain_id)
    if chain["status"] == ChainStatus.ARCHIVED.value:
        raise InvalidStateError("Cannot add milestones to an archived chain")

    if data.get("order") is None:
        data["order"] = await _next_order(db, chain_id)
    else:
        await _ensure_order_free(db, chain_id, data["order"])

    # Live view goes stale before the new milestone exists
    reverted = await chain_service.mark_structure_changed(db, chain_id, user, total_delta=1)

    milestone = Milestone(
        milestone_id=generate_id("MIL"),
        chain_id=chain_id,
        created_by=user.user_id,
        last_edited_by=user.user_id,
        **{
            **data,
            "questions": _with_question_ids(data.get("questions") or []),
            "submission_requirements": data.get("submission_requirements") or SubmissionRequirements().model_dump(),
            "resources": data.get("resources") or [],
        }
    )
    doc = milestone.model_dump()

    try:
        await db.milestones.insert_one(doc)
    except DuplicateKeyError:
        await db.milestone_chains.update_one({"chain_id": chain_id}, {"$inc": {"total_milestones": -1}})
        raise ConflictError(f"A milestone with order {doc['order']} already exists in this chain")

    # A publish that slipped in between the revert and the insert
    reverted = await chain_service.revert_if_published(db, chain_id) or reverted

    logger.info("Milestone %s created in chain %s", doc["milestone_id"], chain_id)
    chain = await chain_service.get_chain(db, chain_id)
    return _change_response(doc, reverted, chain["status"], "created")


async def update_milestone(db: AsyncIOMotorDatabase, user: UserContext, milestone_id: str, patch: dict) -> dict:
    milestone = await get_milestone_doc(db, milestone_id)
    chain = await chain_service.get_chain(db, milestone["chain_id"])

    changes = {k: v for k, v in patch.items() if v is not None}
    if not changes:
        raise ValidationError("No fields to update")

    start = changes.get("start_date", milestone["start_date"])
    end = changes.get("end_date", milestone["end_date"])
    if end < start:
        raise ValidationError("End date must be on or after start date")

    dates_changed = (
        ("start_date" in changes and changes["start_date"] != milestone["start_date"])
        or ("end_date" in changes and changes["end_date"] != milestone["end_date"])
    )
    if chain["status"] == ChainStatus.PUBLISHED.value and dates_changed:
        earliest = earliest_published_start(datetime.utcnow())
        if start < earliest:
            raise InvalidStateError(
                "Dates of a milestone in a published chain can only move to start tomorrow or later",
                earliest_start=earliest,
            )

    if "order" in changes and changes["order"] != milestone["order"]:
        await _ensure_order_free(db, milestone["chain_id"], changes["order"], exclude=milestone_id)

    if "questions" in changes:
        changes["questions"] = _with_question_ids(changes["questions"])

    reverted = await chain_service.mark_structure_changed(db, milestone["chain_id"], user)

    changes["last_edited_by"] = user.user_id
    changes["updated_at"] = datetime.utcnow()

    try:
        await db.milestones.update_one({"milestone_id": milestone_id}, {"$set": changes})
    except DuplicateKeyError:
        raise ConflictError(f"A milestone with order {changes['order']} already exists in this chain")

    reverted = await chain_service.revert_if_published(db, milestone["chain_id"]) or reverted

    chain = await chain_service.get_chain(db, milestone["chain_id"])
    return _change_response(await get_milestone_doc(db, milestone_id), reverted, chain["status"], "updated")


async def delete_milestone(db: AsyncIOMotorDatabase, user: UserContext, milestone_id: str):
    milestone = await get_milestone_doc(db, milestone_id)
    chain = await chain_service.get_chain(db, milestone["chain_id"])

    if chain["status"] == ChainStatus.PUBLISHED.value:
        raise InvalidStateError("Cannot delete a milestone from a published chain")

    if await db.student_milestones.find_one({"milestone_id": milestone_id}):
        raise ConflictError("Cannot delete milestone with student submissions")

    await db.milestones.delete_one({"milestone_id": milestone_id})
    await chain_service.mark_structure_changed(db, milestone["chain_id"], user, total_delta=-1)
    await log_audit(db, user, "delete_milestone", "milestone", milestone_id, {"chain_id": milestone["chain_id"]})


# ==================== READ ====================

async def _progress_map(db: AsyncIOMotorDatabase, student_id: str, chain_id: str) -> dict:
    records = await db.student_milestones.find({"student_id": student_id, "chain_id": chain_id}).to_list(length=None)
    return {r["milestone_id"]: serialize_doc(r) for r in records}


async def get_milestones_by_chain(
    db: AsyncIOMotorDatabase,
    user: UserContext,
    chain_id: str,
    now: Optional[datetime] = None
) -> dict:
    now = now or datetime.utcnow()
    chain = await chain_service.get_chain(db, chain_id)

    if user.is_admin:
        milestones = await db.milestones.find({"chain_id": chain_id}).sort("order", 1).to_list(length=None)
        return {"chain": serialize_doc(chain), "milestones": serialize_many(milestones)}

    if chain["status"] != ChainStatus.PUBLISHED.value:
        return {"chain": serialize_doc(chain), "milestones": []}

    milestones = await db.milestones.find(
        {"chain_id": chain_id, "status": MilestoneStatus.PUBLISHED.value}
    ).sort("order", 1).to_list(length=None)
    milestones = serialize_many(milestones)

    if user.role == Role.STUDENT.value:
        progress = await _progress_map(db, user.user_id, chain_id)
        milestones = student_milestone_view(milestones, progress, now)

    return {"chain": serialize_doc(chain), "milestones": milestones}


async def get_milestone(db: AsyncIOMotorDatabase, user: UserContext, milestone_id: str, now: datetime = None) -> dict:
    now = now or datetime.utcnow()
    milestone = await get_milestone_doc(db, milestone_id)

    if user.is_admin:
        return serialize_doc(milestone)

    chain = await chain_service.get_chain(db, milestone["chain_id"])
    if not is_publicly_visible(chain, milestone):
        raise ForbiddenError("This milestone is not available yet")

    milestone = serialize_doc(milestone)
    if user.role != Role.STUDENT.value:
        return milestone

    progress = await db.student_milestones.find_one({"student_id": user.user_id, "milestone_id": milestone_id})
    locked = is_locked(milestone, progress, now)
    view = strip_answers(milestone, hide_questions=locked)
    view["is_locked"] = locked
    view["student_progress"] = serialize_doc(progress)
    return view


async def get_milestone_stats(db: AsyncIOMotorDatabase, milestone_id: str) -> dict:
    milestone = await get_milestone_doc(db, milestone_id)
    records = await db.student_milestones.find({"milestone_id": milestone_id}).to_list(length=None)

    counts = {status.value: 0 for status in ProgressStatus}
    for record in records:
        counts[record["status"]] = counts.get(record["status"], 0) + 1

    percentages = [r["percentage"] for r in records if r.get("percentage") is not None]
    return {
        "milestone_id": milestone_id,
        "name": milestone["name"],
        "total_students": len(records),
        "by_status": counts,
        "average_score": round(sum(percentages) / len(percentages), 2) if percentages else None,
    }
