from typing import Optional

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from campus_platform.core.database import get_db
from campus_platform.core.permissions import UserContext, get_current_user, require_capability
from campus_platform.exams import exam_service as service
from campus_platform.exams.exam_models import ExamStatus, ExamType
from campus_platform.exams.exam_schemas import (
    CompleteRequest, ManualAssignment, MentorScheduleCreate, MentorScheduleUpdate,
    MentorSlotEdit, RescheduleRequest, ScheduleCreate, ScheduleUpdate, SlotUpdate
)

router = APIRouter(prefix="/api/exam-schedules", tags=["Exam Schedules"])

# ==================== STUDENT / MENTOR (static paths first) ====================

@router.get("/my-team-schedule")
async def my_team_schedule(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_capability("exam_schedule", "view_team"))
):
    team_schedule = await service.get_team_schedule(db, user)
    return {"success": True, "count": len(team_schedule), "team_schedule": team_schedule}


@router.get("/my-slots")
async def my_slots(
    db: AsyncIOMotorDatabase = Depends(get_db),
    mentor: UserContext = Depends(require_capability("exam_schedule", "view_own_slots"))
):
    mentor_slots = await service.get_mentor_slots(db, mentor)
    return {"success": True, "count": len(mentor_slots), "mentor_slots": mentor_slots}

# ==================== ADMIN ====================

@router.post("", status_code=201)
async def create_schedule(
    data: ScheduleCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("exam_schedule", "create"))
):
    schedule = await service.create_schedule(db, admin, data.model_dump())
    return {"success": True, "message": "Exam schedule created successfully", "exam_schedule": schedule}


@router.get("")
async def list_schedules(
    status: Optional[ExamStatus] = None,
    exam_type: Optional[ExamType] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    schedules = await service.list_schedules(
        db, status.value if status else None, exam_type.value if exam_type else None
    )
    return {"success": True, "count": len(schedules), "exam_schedules": schedules}


@router.get("/{schedule_id}")
async def get_schedule(
    schedule_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    return {"success": True, "exam_schedule": await service.get_schedule(db, schedule_id)}


@router.put("/{schedule_id}")
async def update_schedule(
    schedule_id: str,
    data: ScheduleUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("exam_schedule", "update"))
):
    schedule = await service.update_schedule(db, admin, schedule_id, data.model_dump(exclude_unset=True))
    return {"success": True, "message": "Exam schedule updated successfully", "exam_schedule": schedule}


@router.delete("/{schedule_id}")
async def delete_schedule(
    schedule_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("exam_schedule", "delete"))
):
    await service.delete_schedule(db, admin, schedule_id)
    return {"success": True, "message": "Exam schedule deleted successfully"}


@router.get("/{schedule_id}/available-resources")
async def available_resources(
    schedule_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("exam_schedule", "view_resources"))
):
    return {"success": True, **(await service.get_available_resources(db, schedule_id))}


@router.post("/{schedule_id}/distribute-random")
async def distribute_random(
    schedule_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("exam_schedule", "distribute"))
):
    schedule = await service.random_distribute_teams(db, admin, schedule_id)
    return {"success": True, "message": "Teams distributed successfully", "exam_schedule": schedule}


@router.post("/{schedule_id}/assign-manual")
async def assign_manual(
    schedule_id: str,
    data: ManualAssignment,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("exam_schedule", "assign"))
):
    schedule = await service.manual_assign_team(db, admin, schedule_id, data.model_dump())
    return {"success": True, "message": "Team assigned successfully", "exam_schedule": schedule}


@router.put("/{schedule_id}/slots/{slot_id}/update")
async def update_slot(
    schedule_id: str,
    slot_id: str,
    data: SlotUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("exam_schedule", "edit_slot"))
):
    schedule = await service.update_slot(db, admin, schedule_id, slot_id, data.model_dump(exclude_unset=True))
    return {"success": True, "message": "Slot updated successfully", "exam_schedule": schedule}


@router.delete("/{schedule_id}/slots/{slot_id}")
async def delete_slot(
    schedule_id: str,
    slot_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_capability("exam_schedule", "delete_slot"))
):
    schedule = await service.delete_slot(db, admin, schedule_id, slot_id)
    return {"success": True, "message": "Slot deleted successfully", "exam_schedule": schedule}

# ==================== MENTOR: OWN SLOTS ====================

@router.put("/{schedule_id}/slots/{slot_id}/reschedule")
async def reschedule_slot(
    schedule_id: str,
    slot_id: str,
    data: RescheduleRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mentor: UserContext = Depends(get_current_user)
):
    slot = await service.reschedule_slot(db, mentor, schedule_id, slot_id, data.model_dump())
    return {"success": True, "message": "Slot rescheduled successfully", "slot": slot}


@router.put("/{schedule_id}/slots/{slot_id}/complete")
async def complete_slot(
    schedule_id: str,
    slot_id: str,
    data: CompleteRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mentor: UserContext = Depends(get_current_user)
):
    slot = await service.complete_slot(db, mentor, schedule_id, slot_id, data.model_dump())
    return {"success": True, "message": "Exam slot completed successfully", "slot": slot}

# ==================== MENTOR SELF-SERVICE ====================

@router.post("/{schedule_id}/mentor-schedule", status_code=201)
async def create_mentor_schedule(
    schedule_id: str,
    data: MentorScheduleCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mentor: UserContext = Depends(require_capability("exam_schedule", "configure_own"))
):
    result = await service.create_mentor_schedule(db, mentor, schedule_id, data.model_dump())
    return {"success": True, "message": "Mentor schedule configuration created successfully", **result}


@router.put("/{schedule_id}/mentor-schedule")
async def update_mentor_schedule(
    schedule_id: str,
    data: MentorScheduleUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mentor: UserContext = Depends(require_capability("exam_schedule", "configure_own"))
):
    result = await service.update_mentor_schedule(db, mentor, schedule_id, data.model_dump(exclude_unset=True))
    return {"success": True, "message": "Mentor schedule updated successfully", **result}


@router.get("/{schedule_id}/mentor-schedule")
async def get_mentor_schedule(
    schedule_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mentor: UserContext = Depends(require_capability("exam_schedule", "configure_own"))
):
    return {"success": True, **(await service.get_mentor_schedule(db, mentor, schedule_id))}


@router.get("/{schedule_id}/available-teams")
async def available_teams(
    schedule_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mentor: UserContext = Depends(require_capability("exam_schedule", "configure_own"))
):
    return {"success": True, **(await service.get_available_teams(db, mentor, schedule_id))}


@router.post("/{schedule_id}/mentor-schedule/distribute-random")
async def distribute_to_my_slots(
    schedule_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mentor: UserContext = Depends(require_capability("exam_schedule", "configure_own"))
):
    schedule = await service.distribute_to_mentor_slots(db, mentor, schedule_id)
    return {"success": True, "message": "Teams distributed randomly to slots successfully", "schedule": schedule}


@router.put("/{schedule_id}/mentor-schedule/slot/{slot_id}")
async def edit_my_slot(
    schedule_id: str,
    slot_id: str,
    data: MentorSlotEdit,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mentor: UserContext = Depends(require_capability("exam_schedule", "configure_own"))
):
    slot = await service.edit_mentor_slot(db, mentor, schedule_id, slot_id, data.model_dump(exclude_unset=True))
    return {"success": True, "message": "Slot updated successfully", "slot": slot}


@router.delete("/{schedule_id}/mentor-schedule/slots")
async def clear_my_slots(
    schedule_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mentor: UserContext = Depends(require_capability("exam_schedule", "configure_own"))
):
    await service.clear_mentor_slots(db, mentor, schedule_id)
    return {"success": True, "message": "Schedule slots cleared successfully"}
