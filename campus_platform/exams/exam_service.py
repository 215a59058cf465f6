from datetime import datetime
from typing import List, Optional
import logging
import random

from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.core.audit import log_audit
from campus_platform.core.database import generate_id, serialize_doc, serialize_many
from campus_platform.core.errors import (
    ConflictError, ForbiddenError, InvalidStateError, NotFoundError, ValidationError
)
from campus_platform.core.permissions import Role, UserContext
from campus_platform.exams import slot_distribution as dist
from campus_platform.exams.exam_models import (
    AssignmentType, ExamSchedule, ExamSettings, ExamSlot, ExamStatus, MentorSchedule, SlotStatus
)
from campus_platform.realtime.manager import notifier, EXAM_MANAGEMENT_ROOM, mentor_room, team_room
from campus_platform.teams.team_service import find_user_team, list_active_mentors, list_active_teams

logger = logging.getLogger(__name__)


# ==================== HELPERS ====================

async def get_schedule_doc(db: AsyncIOMotorDatabase, schedule_id: str) -> dict:
    schedule = await db.exam_schedules.find_one({"schedule_id": schedule_id})
    if not schedule:
        raise NotFoundError("Exam schedule not found")
    return schedule


async def _save(db: AsyncIOMotorDatabase, schedule: dict) -> dict:
    """
    Write the whole schedule back if nobody else saved it since it was read.
    Statistics are always recomputed from the slot lists.
    """
    version = schedule.get("version", 1)
    schedule["statistics"] = dist.compute_statistics(schedule)
    schedule["version"] = version + 1
    schedule["updated_at"] = datetime.utcnow()

    result = await db.exam_schedules.replace_one(
        {"schedule_id": schedule["schedule_id"], "version": version},
        schedule
    )
    if result.matched_count == 0:
        raise ConflictError("Exam schedule was modified by another request, please retry")
    return schedule


def _find_slot(schedule: dict, slot_id: str) -> dict:
    for slot in schedule.get("slots", []):
        if slot["slot_id"] == slot_id:
            return slot
    raise NotFoundError("Slot not found")


def _mentor_config(schedule: dict, mentor_id: str) -> Optional[dict]:
    for mentor_schedule in schedule.get("mentor_schedules", []):
        if mentor_schedule["mentor_id"] == mentor_id:
            return mentor_schedule
    return None


def _require_mentor_config(schedule: dict, mentor_id: str, message: str = "Mentor schedule not found") -> dict:
    mentor_schedule = _mentor_config(schedule, mentor_id)
    if mentor_schedule is None:
        raise NotFoundError(message)
    return mentor_schedule


def _ensure_within_window(schedule: dict, scheduled_date: datetime):
    if scheduled_date < schedule["start_date"] or scheduled_date > schedule["end_date"]:
        raise InvalidStateError("Date must be within exam schedule period")


def _slots_outside(schedule: dict, start: datetime, end: datetime) -> int:
    dates = [slot["scheduled_date"] for slot in schedule.get("slots", [])]
    for mentor_schedule in schedule.get("mentor_schedules", []):
        dates.append(mentor_schedule["schedule_date"])
    return sum(1 for d in dates if d < start or d > end)


def _summary(schedule: dict, *fields) -> dict:
    keys = ("schedule_id", "title", "exam_type", "start_date", "end_date") + fields
    return {k: schedule.get(k) for k in keys}


async def _ensure_team_exists(db: AsyncIOMotorDatabase, team_id: str):
    if not await db.teams.find_one({"team_id": team_id, "is_deleted": {"$ne": True}}):
        raise NotFoundError("Team not found")


# ==================== SCHEDULE CRUD ====================

async def create_schedule(db: AsyncIOMotorDatabase, admin: UserContext, data: dict) -> dict:
    schedule = ExamSchedule(
        schedule_id=generate_id("EXM"),
        created_by=admin.user_id,
        **data
    )
    doc = schedule.model_dump()
    await db.exam_schedules.insert_one(doc)
    logger.info("Exam schedule %s created by %s", schedule.schedule_id, admin.user_id)

    await notifier.broadcast("exam-schedule-created", {
        "schedule_id": schedule.schedule_id,
        "title": schedule.title,
        "created_by": {"id": admin.user_id, "name": admin.full_name, "role": admin.role},
    })
    return serialize_doc(doc)


async def list_schedules(
    db: AsyncIOMotorDatabase,
    status: Optional[str] = None,
    exam_type: Optional[str] = None
) -> List[dict]:
    query = {}
    if status:
        query["status"] = status
    if exam_type:
        query["exam_type"] = exam_type
    schedules = await db.exam_schedules.find(query).sort("start_date", -1).to_list(length=None)
    return serialize_many(schedules)


async def get_schedule(db: AsyncIOMotorDatabase, schedule_id: str) -> dict:
    return serialize_doc(await get_schedule_doc(db, schedule_id))


async def update_schedule(db: AsyncIOMotorDatabase, admin: UserContext, schedule_id: str, patch: dict) -> dict:
    schedule = await get_schedule_doc(db, schedule_id)

    changes = {k: v for k, v in patch.items() if v is not None}
    if not changes:
        raise ValidationError("No fields to update")

    if "settings" in changes:
        changes["settings"] = ExamSettings(**changes["settings"]).model_dump()

    start = changes.get("start_date", schedule["start_date"])
    end = changes.get("end_date", schedule["end_date"])
    if end < start:
        raise ValidationError("End date must be on or after start date")

    stranded = _slots_outside(schedule, start, end)
    if stranded:
        raise InvalidStateError(
            "Existing slots fall outside the new schedule period. Move or delete them first.",
            outside_slots=stranded
        )

    schedule.update(changes)
    await _save(db, schedule)
    await log_audit(db, admin, "update_exam_schedule", "exam_schedule", schedule_id, {"fields": sorted(changes)})
    return serialize_doc(schedule)


async def delete_schedule(db: AsyncIOMotorDatabase, admin: UserContext, schedule_id: str):
    schedule = await get_schedule_doc(db, schedule_id)
    await db.exam_schedules.delete_one({"schedule_id": schedule_id})

    await log_audit(db, admin, "delete_exam_schedule", "exam_schedule", schedule_id, {"title": schedule["title"]})
    await notifier.broadcast("exam-schedule-deleted", {"schedule_id": schedule_id})


# ==================== GLOBAL DISTRIBUTION ====================

async def random_distribute_teams(db: AsyncIOMotorDatabase, admin: UserContext, schedule_id: str) -> dict:
    """
    Replace the schedule-wide slot list with a round-robin layout of every
    team not already placed by a mentor's own schedule.
    """
    schedule = await get_schedule_doc(db, schedule_id)

    mentors = await list_active_mentors(db)
    if not mentors:
        raise InvalidStateError("No mentors available")

    teams = await list_active_teams(db)
    if not teams:
        raise InvalidStateError("No teams available")

    placed_by_mentors = dist.assigned_team_ids({"mentor_schedules": schedule.get("mentor_schedules", [])})
    team_ids = [t["team_id"] for t in teams if t["team_id"] not in placed_by_mentors]
    if not team_ids:
        raise InvalidStateError("No teams available")

    slots = dist.round_robin_slots(
        team_ids,
        [m["user_id"] for m in mentors],
        schedule["start_date"],
        schedule["duration"],
    )

    last_day = schedule["end_date"].replace(hour=0, minute=0, second=0, microsecond=0)
    overflow = [s for s in slots if s["scheduled_date"] > last_day]
    if overflow:
        raise InvalidStateError(
            f"{len(overflow)} of {len(slots)} slots fall after the schedule end date. "
            "Extend the end date or shorten the slot duration.",
            overflow_slots=len(overflow),
        )

    schedule["slots"] = [ExamSlot(**s).model_dump() for s in slots]
    schedule["assignment_type"] = AssignmentType.RANDOM.value
    schedule["status"] = ExamStatus.ACTIVE.value
    await _save(db, schedule)

    await log_audit(db, admin, "distribute_teams", "exam_schedule", schedule_id, {"slots": len(slots)})
    logger.info("Distributed %d teams over %d mentors for %s", len(slots), len(mentors), schedule_id)

    await notifier.broadcast("teams-distributed", {"schedule_id": schedule_id, "total_slots": len(slots)})
    return serialize_doc(schedule)


async def manual_assign_team(db: AsyncIOMotorDatabase, admin: UserContext, schedule_id: str, data: dict) -> dict:
    schedule = await get_schedule_doc(db, schedule_id)

    if not await db.users.find_one({"user_id": data["mentor_id"], "role": Role.MENTOR.value}):
        raise NotFoundError("Mentor not found")
    await _ensure_team_exists(db, data["team_id"])

    dist.parse_time(data["scheduled_time"])
    _ensure_within_window(schedule, data["scheduled_date"])
    dist.ensure_team_free(schedule, data["team_id"])

    slot = ExamSlot(
        slot_id=generate_id("SLOT"),
        **{**data, "duration": data.get("duration") or schedule["duration"]}
    ).model_dump()

    schedule.setdefault("slots", []).append(slot)
    schedule["assignment_type"] = AssignmentType.MANUAL.value
    await _save(db, schedule)

    await notifier.emit(mentor_room(data["mentor_id"]), "new-exam-slot", {"schedule_id": schedule_id, "slot": slot})
    await notifier.emit(team_room(data["team_id"]), "new-exam-slot", {"schedule_id": schedule_id, "slot": slot})
    return serialize_doc(schedule)


async def get_available_resources(db: AsyncIOMotorDatabase, schedule_id: str) -> dict:
    schedule = await get_schedule_doc(db, schedule_id)
    mentors = await list_active_mentors(db)
    teams = await list_active_teams(db)

    assigned = dist.assigned_team_ids(schedule)
    return {
        "mentors": mentors,
        "teams": teams,
        "unassigned_teams": [t for t in teams if t["team_id"] not in assigned],
        "assigned_count": len(assigned),
        "total_teams": len(teams),
    }


async def update_slot(
    db: AsyncIOMotorDatabase,
    admin: UserContext,
    schedule_id: str,
    slot_id: str,
    patch: dict
) -> dict:
    schedule = await get_schedule_doc(db, schedule_id)
    slot = _find_slot(schedule, slot_id)

    changes = {k: v for k, v in patch.items() if v is not None}
    if "scheduled_time" in changes:
        dist.parse_time(changes["scheduled_time"])
    if "scheduled_date" in changes:
        _ensure_within_window(schedule, changes["scheduled_date"])
    if "mentor_id" in changes and not await db.users.find_one(
        {"user_id": changes["mentor_id"], "role": Role.MENTOR.value}
    ):
        raise NotFoundError("Mentor not found")

    slot.update(changes)
    await _save(db, schedule)

    await notifier.emit(mentor_room(slot["mentor_id"]), "exam-rescheduled", {
        "schedule_id": schedule_id, "slot_id": slot_id,
    })
    return serialize_doc(schedule)


async def delete_slot(db: AsyncIOMotorDatabase, admin: UserContext, schedule_id: str, slot_id: str) -> dict:
    schedule = await get_schedule_doc(db, schedule_id)
    _find_slot(schedule, slot_id)

    # Gaps are left as they are
    schedule["slots"] = [s for s in schedule["slots"] if s["slot_id"] != slot_id]
    await _save(db, schedule)
    return serialize_doc(schedule)


# ==================== MENTOR: GLOBAL SLOTS ====================

async def get_mentor_slots(db: AsyncIOMotorDatabase, mentor: UserContext) -> List[dict]:
    schedules = await db.exam_schedules.find({
        "slots.mentor_id": mentor.user_id,
        "status": {"$in": [ExamStatus.ACTIVE.value, ExamStatus.DRAFT.value]},
    }).sort("start_date", 1).to_list(length=None)

    result = []
    for schedule in schedules:
        slots = [s for s in schedule["slots"] if s["mentor_id"] == mentor.user_id]
        if slots:
            result.append({"schedule": _summary(schedule, "settings"), "slots": slots})
    return result


def _own_slot(schedule: dict, slot_id: str, mentor: UserContext, action: str) -> dict:
    slot = _find_slot(schedule, slot_id)
    is_owner = slot["mentor_id"] == mentor.user_id
    if not mentor.can("exam_schedule", action, is_owner=is_owner):
        raise ForbiddenError(f"You can only {action} your own slots")
    return slot


async def reschedule_slot(
    db: AsyncIOMotorDatabase,
    mentor: UserContext,
    schedule_id: str,
    slot_id: str,
    data: dict
) -> dict:
    schedule = await get_schedule_doc(db, schedule_id)

    if not schedule.get("settings", {}).get("allow_mentor_reschedule", True):
        raise ForbiddenError("Mentor rescheduling is not allowed for this exam")

    slot = _own_slot(schedule, slot_id, mentor, "reschedule")

    dist.parse_time(data["scheduled_time"])
    _ensure_within_window(schedule, data["scheduled_date"])

    slot["scheduled_date"] = data["scheduled_date"]
    slot["scheduled_time"] = data["scheduled_time"]
    for field in ("venue", "meet_link", "notes"):
        if data.get(field):
            slot[field] = data[field]
    slot["status"] = SlotStatus.RESCHEDULED.value

    await _save(db, schedule)

    if slot.get("team_id"):
        await notifier.emit(team_room(slot["team_id"]), "exam-rescheduled", {
            "schedule_id": schedule_id,
            "slot_id": slot_id,
            "new_date": slot["scheduled_date"],
            "new_time": slot["scheduled_time"],
        })
    return slot


async def complete_slot(
    db: AsyncIOMotorDatabase,
    mentor: UserContext,
    schedule_id: str,
    slot_id: str,
    data: dict
) -> dict:
    schedule = await get_schedule_doc(db, schedule_id)
    slot = _own_slot(schedule, slot_id, mentor, "complete")

    slot["score"] = data.get("score")
    slot["feedback"] = data.get("feedback")
    slot["status"] = SlotStatus.COMPLETED.value
    await _save(db, schedule)

    if slot.get("team_id"):
        await notifier.emit(team_room(slot["team_id"]), "exam-completed", {
            "schedule_id": schedule_id, "slot_id": slot_id, "score": slot["score"],
        })
    return slot


# ==================== STUDENT ====================

async def get_team_schedule(db: AsyncIOMotorDatabase, student: UserContext) -> List[dict]:
    team = await find_user_team(db, student.user_id)
    if not team:
        raise NotFoundError("You are not part of any team")
    team_id = team["team_id"]

    schedules = await db.exam_schedules.find({
        "$or": [{"slots.team_id": team_id}, {"mentor_schedules.slots.team_id": team_id}],
        "status": {"$in": [ExamStatus.ACTIVE.value, ExamStatus.COMPLETED.value]},
    }).sort("start_date", 1).to_list(length=None)

    result = []
    for schedule in schedules:
        slots = [s for s in schedule.get("slots", []) if s.get("team_id") == team_id]
        for mentor_schedule in schedule.get("mentor_schedules", []):
            for slot in mentor_schedule["slots"]:
                if slot.get("team_id") == team_id:
                    slots.append({
                        **slot,
                        "mentor_id": mentor_schedule["mentor_id"],
                        "scheduled_date": mentor_schedule["schedule_date"],
                        "venue": mentor_schedule.get("venue"),
                        "meet_link": mentor_schedule.get("meet_link"),
                        "mode": mentor_schedule.get("mode"),
                    })
        if slots:
            result.append({"schedule": _summary(schedule, "duration"), "slots": slots})
    return result


# ==================== MENTOR SELF-SERVICE ====================

async def create_mentor_schedule(
    db: AsyncIOMotorDatabase,
    mentor: UserContext,
    schedule_id: str,
    data: dict
) -> dict:
    schedule = await get_schedule_doc(db, schedule_id)

    if _mentor_config(schedule, mentor.user_id) is not None:
        raise ConflictError("You already have a schedule for this exam. Use update instead.")
    _ensure_within_window(schedule, data["schedule_date"])

    needed, available = dist.check_mentor_capacity(
        data["total_teams"], data["team_duration"], data.get("buffer_time") or 0,
        data["start_time"], data["end_time"],
    )

    config_doc = MentorSchedule(mentor_id=mentor.user_id, **data).model_dump()
    schedule.setdefault("mentor_schedules", []).append(config_doc)
    await _save(db, schedule)

    logger.info("Mentor %s configured %d slots for %s", mentor.user_id, data["total_teams"], schedule_id)
    return {"schedule": config_doc, "available_time": available, "total_time_needed": needed}


async def update_mentor_schedule(
    db: AsyncIOMotorDatabase,
    mentor: UserContext,
    schedule_id: str,
    patch: dict
) -> dict:
    schedule = await get_schedule_doc(db, schedule_id)
    config_doc = _require_mentor_config(schedule, mentor.user_id, "Mentor schedule not found. Create one first.")

    if config_doc.get("is_scheduled") and config_doc.get("slots"):
        raise InvalidStateError(
            "Schedule already has team assignments. Please clear assignments before modifying configuration."
        )

    changes = {k: v for k, v in patch.items() if v is not None}
    merged = {**config_doc, **changes}
    _ensure_within_window(schedule, merged["schedule_date"])
    needed, available = dist.check_mentor_capacity(
        merged["total_teams"], merged["team_duration"], merged["buffer_time"],
        merged["start_time"], merged["end_time"],
    )

    config_doc.update(changes)
    await _save(db, schedule)
    return {"schedule": config_doc, "available_time": available, "total_time_needed": needed}


async def get_available_teams(db: AsyncIOMotorDatabase, mentor: UserContext, schedule_id: str) -> dict:
    schedule = await get_schedule_doc(db, schedule_id)
    teams = await list_active_teams(db)

    assigned = dist.assigned_team_ids(schedule)
    available = [t for t in teams if t["team_id"] not in assigned]
    return {
        "teams": available,
        "total_available": len(available),
        "total_assigned": len(assigned),
        "mentor_config": _mentor_config(schedule, mentor.user_id),
    }


async def distribute_to_mentor_slots(
    db: AsyncIOMotorDatabase,
    mentor: UserContext,
    schedule_id: str,
    rng: random.Random = None
) -> dict:
    """
    Fill the mentor's declared slots with a random pick from teams that hold
    no slot anywhere in the schedule.
    """
    rng = rng or random.Random()
    schedule = await get_schedule_doc(db, schedule_id)
    config_doc = _require_mentor_config(
        schedule, mentor.user_id, "Mentor schedule configuration not found. Create one first."
    )

    if config_doc.get("is_scheduled") and config_doc.get("slots"):
        raise InvalidStateError("Teams are already distributed. Clear the slots before distributing again.")

    wanted = config_doc["total_teams"]
    dist.check_mentor_capacity(
        wanted, config_doc["team_duration"], config_doc["buffer_time"],
        config_doc["start_time"], config_doc["end_time"],
    )

    assigned = dist.assigned_team_ids(schedule)
    available = [t["team_id"] for t in await list_active_teams(db) if t["team_id"] not in assigned]
    if len(available) < wanted:
        raise InvalidStateError(
            f"Not enough available teams. Need {wanted}, but only {len(available)} available.",
            needed=wanted,
            available=len(available),
        )

    rng.shuffle(available)
    config_doc["slots"] = dist.layout_mentor_slots(
        available[:wanted], config_doc["start_time"], config_doc["team_duration"], config_doc["buffer_time"]
    )
    config_doc["is_scheduled"] = True
    config_doc["scheduled_at"] = datetime.utcnow()
    await _save(db, schedule)

    for slot in config_doc["slots"]:
        await notifier.emit(team_room(slot["team_id"]), "new-exam-slot", {
            "schedule_id": schedule_id, "slot": slot, "mentor_id": mentor.user_id,
        })
    await notifier.emit(EXAM_MANAGEMENT_ROOM, "teams-distributed", {
        "schedule_id": schedule_id, "mentor_id": mentor.user_id, "total_slots": len(config_doc["slots"]),
    })
    return config_doc


async def edit_mentor_slot(
    db: AsyncIOMotorDatabase,
    mentor: UserContext,
    schedule_id: str,
    slot_id: str,
    data: dict
) -> dict:
    schedule = await get_schedule_doc(db, schedule_id)
    config_doc = _require_mentor_config(schedule, mentor.user_id)

    slot = next((s for s in config_doc["slots"] if s["slot_id"] == slot_id), None)
    if slot is None:
        raise NotFoundError("Slot not found")

    team_id = data.get("team_id")
    if team_id is not None:
        if team_id:
            await _ensure_team_exists(db, team_id)
            dist.ensure_team_free(schedule, team_id, exclude_slot_id=slot_id)
        slot["team_id"] = team_id or None

    for field in ("start_time", "end_time"):
        if data.get(field):
            dist.parse_time(data[field])
            slot[field] = data[field]
    if dist.parse_time(slot["end_time"]) <= dist.parse_time(slot["start_time"]):
        raise ValidationError("Slot end time must be after its start time")

    await _save(db, schedule)
    return slot


async def get_mentor_schedule(db: AsyncIOMotorDatabase, mentor: UserContext, schedule_id: str) -> dict:
    schedule = await get_schedule_doc(db, schedule_id)
    config_doc = _mentor_config(schedule, mentor.user_id)
    if config_doc is None:
        raise NotFoundError("Mentor schedule not found", has_schedule=False)

    team_ids = [s["team_id"] for s in config_doc["slots"] if s.get("team_id")]
    teams = await db.teams.find(
        {"team_id": {"$in": team_ids}},
        {"_id": 0, "team_id": 1, "team_name": 1, "team_code": 1, "project_title": 1, "members": 1}
    ).to_list(length=None)
    by_id = {t["team_id"]: t for t in teams}

    return {
        "schedule": {
            **config_doc,
            "slots": [{**s, "team": by_id.get(s.get("team_id"))} for s in config_doc["slots"]],
        },
        "exam_details": _summary(schedule),
    }


async def clear_mentor_slots(db: AsyncIOMotorDatabase, mentor: UserContext, schedule_id: str):
    schedule = await get_schedule_doc(db, schedule_id)
    config_doc = _require_mentor_config(schedule, mentor.user_id)

    config_doc["slots"] = []
    config_doc["is_scheduled"] = False
    config_doc["scheduled_at"] = None
    await _save(db, schedule)
