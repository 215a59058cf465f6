"""
Slot arithmetic for exam schedules.

Nothing in here touches the database. Times are "HH:MM" strings on a
24 hour clock, durations and buffers are minutes.
"""
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Set, Tuple
import re

from campus_platform import config
from campus_platform.core.database import generate_id
from campus_platform.core.errors import ConflictError, InvalidStateError, ValidationError
from campus_platform.exams.exam_models import SlotStatus

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_time(value: str) -> int:
    """'09:30' -> 570"""
    match = _TIME_RE.match(value or "")
    if not match:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")
    return hours * 60 + minutes


def format_time(total_minutes: int) -> str:
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def required_minutes(total_teams: int, team_duration: int, buffer_time: int) -> int:
    if total_teams <= 0:
        return 0
    return total_teams * team_duration + (total_teams - 1) * buffer_time


def check_mentor_capacity(
    total_teams: int,
    team_duration: int,
    buffer_time: int,
    start_time: str,
    end_time: str
) -> Tuple[int, int]:
    """
    Returns (total_time_needed, available_time) or raises InvalidStateError
    carrying both numbers when the window is too small.
    """
    needed = required_minutes(total_teams, team_duration, buffer_time)
    available = parse_time(end_time) - parse_time(start_time)

    if needed > available:
        raise InvalidStateError(
            f"Total time needed ({needed} min) exceeds available time ({available} min). "
            "Please adjust end time or reduce teams/duration.",
            total_time_needed=needed,
            available_time=available,
        )
    return needed, available


# ==================== GLOBAL ROUND-ROBIN ====================

def round_robin_slots(
    team_ids: List[str],
    mentor_ids: List[str],
    start_date: datetime,
    duration: int,
    day_start: str = config.EXAM_DAY_START,
    day_end: str = config.EXAM_DAY_END,
    buffer_minutes: int = config.EXAM_SLOT_BUFFER_MINUTES
) -> List[dict]:
    """
    Walk teams in the given order, the i-th team goes to mentor i % len(mentors).

    A running clock starts at day_start and advances by duration + buffer
    after every slot. When the next start would reach day_end the clock goes
    back to day_start on the following day.
    """
    if not mentor_ids:
        raise InvalidStateError("No mentors available")

    opening = parse_time(day_start)
    closing = parse_time(day_end)

    current_date = start_date.replace(hour=0, minute=0, second=0, microsecond=0)
    clock = opening
    slots = []

    for index, team_id in enumerate(team_ids):
        slots.append({
            "slot_id": generate_id("SLOT"),
            "mentor_id": mentor_ids[index % len(mentor_ids)],
            "team_id": team_id,
            "scheduled_date": current_date,
            "scheduled_time": format_time(clock),
            "duration": duration,
            "mode": "offline",
            "status": SlotStatus.SCHEDULED.value,
        })

        clock += duration + buffer_minutes
        if clock >= closing:
            current_date += timedelta(days=1)
            clock = opening

    return slots


# ==================== PER-MENTOR LAYOUT ====================

def layout_mentor_slots(team_ids: List[str], start_time: str, team_duration: int, buffer_time: int) -> List[dict]:
    """Back-to-back slots from start_time with buffer_time between them"""
    clock = parse_time(start_time)
    slots = []

    for number, team_id in enumerate(team_ids, start=1):
        end = clock + team_duration
        slots.append({
            "slot_id": generate_id("SLOT"),
            "slot_number": number,
            "team_id": team_id,
            "start_time": format_time(clock),
            "end_time": format_time(end),
            "status": SlotStatus.SCHEDULED.value,
        })
        clock = end + buffer_time

    return slots


# ==================== SCHEDULE-WIDE VIEWS ====================

def iter_all_slots(schedule: dict) -> Iterable[dict]:
    for slot in schedule.get("slots", []):
        yield slot
    for mentor_schedule in schedule.get("mentor_schedules", []):
        for slot in mentor_schedule.get("slots", []):
            yield slot


def assigned_team_ids(schedule: dict, exclude_slot_id: Optional[str] = None) -> Set[str]:
    """Teams holding a slot anywhere in the schedule, both slot lists included"""
    return {
        slot["team_id"]
        for slot in iter_all_slots(schedule)
        if slot.get("team_id") and slot.get("slot_id") != exclude_slot_id
    }


def ensure_team_free(schedule: dict, team_id: str, exclude_slot_id: Optional[str] = None):
    if team_id in assigned_team_ids(schedule, exclude_slot_id):
        raise ConflictError("This team is already assigned to another slot", team_id=team_id)


def compute_statistics(schedule: dict) -> dict:
    slots = list(iter_all_slots(schedule))
    return {
        "total_slots": len(slots),
        "scheduled_slots": sum(1 for s in slots if s.get("status") == SlotStatus.SCHEDULED.value),
        "completed_slots": sum(1 for s in slots if s.get("status") == SlotStatus.COMPLETED.value),
        "pending_slots": sum(1 for s in slots if not s.get("team_id")),
    }
