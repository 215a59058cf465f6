from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from campus_platform.milestones.milestone_models import StoredModel

# ==================== ENUMS ====================

class ExamType(str, Enum):
    PRESENTATION = "presentation"
    VIVA = "viva"
    DEMO = "demo"
    ASSESSMENT = "assessment"
    REVIEW = "review"

class ExamStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class AssignmentType(str, Enum):
    RANDOM = "random"
    MANUAL = "manual"

class SlotStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"

class SlotMode(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"

# ==================== DATABASE MODELS ====================

class ExamSlot(StoredModel):
    """Slot in the schedule-wide list, one mentor and (eventually) one team"""
    slot_id: str  # SLOT_XXXXXX
    mentor_id: str
    team_id: Optional[str] = None
    scheduled_date: datetime
    scheduled_time: str  # HH:MM
    duration: int = 30
    mode: SlotMode = SlotMode.OFFLINE
    venue: Optional[str] = None
    meet_link: Optional[str] = None
    status: SlotStatus = SlotStatus.SCHEDULED
    notes: Optional[str] = None
    score: Optional[float] = None
    feedback: Optional[str] = None
    is_confirmed: bool = False
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None


class MentorSlot(StoredModel):
    slot_id: str
    slot_number: int
    team_id: Optional[str] = None
    start_time: str
    end_time: str
    status: SlotStatus = SlotStatus.SCHEDULED


class MentorSchedule(StoredModel):
    """A mentor's self-declared capacity for one exam day"""
    mentor_id: str
    total_teams: int
    team_duration: int
    buffer_time: int = 0
    schedule_date: datetime
    start_time: str
    end_time: str
    venue: Optional[str] = None
    meet_link: Optional[str] = None
    mode: SlotMode = SlotMode.OFFLINE
    slots: List[MentorSlot] = Field(default_factory=list)
    is_scheduled: bool = False
    scheduled_at: Optional[datetime] = None


class ExamSettings(StoredModel):
    allow_mentor_reschedule: bool = True
    require_confirmation: bool = False
    auto_assign_teams: bool = False
    notify_before_days: int = 1


class ExamStatistics(StoredModel):
    total_slots: int = 0
    scheduled_slots: int = 0
    completed_slots: int = 0
    pending_slots: int = 0


class ExamSchedule(StoredModel):
    schedule_id: str  # EXM_XXXXXX
    title: str
    description: str
    exam_type: ExamType
    start_date: datetime
    end_date: datetime
    duration: int = 30  # minutes per team
    status: ExamStatus = ExamStatus.DRAFT
    assignment_type: AssignmentType = AssignmentType.MANUAL
    created_by: str
    settings: ExamSettings = Field(default_factory=ExamSettings)
    slots: List[ExamSlot] = Field(default_factory=list)
    mentor_schedules: List[MentorSchedule] = Field(default_factory=list)
    statistics: ExamStatistics = Field(default_factory=ExamStatistics)
    version: int = 1
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
