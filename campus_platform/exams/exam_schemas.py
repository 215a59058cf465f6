from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator, model_validator

from campus_platform.core.schemas import RequestModel
from campus_platform.exams.exam_models import ExamStatus, ExamType, SlotMode

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class SettingsIn(RequestModel):
    allow_mentor_reschedule: bool = True
    require_confirmation: bool = False
    auto_assign_teams: bool = False
    notify_before_days: int = Field(1, ge=0)


class ScheduleCreate(RequestModel):
    title: str = Field(..., min_length=3, max_length=150)
    description: str = Field(..., min_length=1)
    exam_type: ExamType
    start_date: datetime
    end_date: datetime
    duration: int = Field(30, gt=0, le=480)
    settings: SettingsIn = Field(default_factory=SettingsIn)

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class ScheduleUpdate(RequestModel):
    title: Optional[str] = Field(None, min_length=3, max_length=150)
    description: Optional[str] = None
    exam_type: Optional[ExamType] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    duration: Optional[int] = Field(None, gt=0, le=480)
    status: Optional[ExamStatus] = None
    settings: Optional[SettingsIn] = None

# ==================== GLOBAL SLOTS ====================

class ManualAssignment(RequestModel):
    mentor_id: str
    team_id: str
    scheduled_date: datetime
    scheduled_time: str = Field(..., pattern=TIME_PATTERN)
    duration: Optional[int] = Field(None, gt=0, le=480)
    mode: SlotMode = SlotMode.OFFLINE
    venue: Optional[str] = None
    meet_link: Optional[str] = None


class SlotUpdate(RequestModel):
    mentor_id: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    duration: Optional[int] = Field(None, gt=0, le=480)
    mode: Optional[SlotMode] = None
    venue: Optional[str] = None
    meet_link: Optional[str] = None


class RescheduleRequest(RequestModel):
    scheduled_date: datetime
    scheduled_time: str = Field(..., pattern=TIME_PATTERN)
    venue: Optional[str] = None
    meet_link: Optional[str] = None
    notes: Optional[str] = None


class CompleteRequest(RequestModel):
    score: Optional[float] = Field(None, ge=0)
    feedback: Optional[str] = None

# ==================== MENTOR SELF-SERVICE ====================

class MentorScheduleCreate(RequestModel):
    total_teams: int = Field(..., ge=1)
    team_duration: int = Field(..., gt=0)
    buffer_time: int = Field(0, ge=0)
    schedule_date: datetime
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: str = Field(..., pattern=TIME_PATTERN)
    venue: Optional[str] = None
    meet_link: Optional[str] = None
    mode: SlotMode = SlotMode.OFFLINE


class MentorScheduleUpdate(RequestModel):
    total_teams: Optional[int] = Field(None, ge=1)
    team_duration: Optional[int] = Field(None, gt=0)
    buffer_time: Optional[int] = Field(None, ge=0)
    schedule_date: Optional[datetime] = None
    start_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    venue: Optional[str] = None
    meet_link: Optional[str] = None
    mode: Optional[SlotMode] = None


class MentorSlotEdit(RequestModel):
    # An explicit empty string clears the team from the slot
    team_id: Optional[str] = None
    start_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)

    @field_validator("team_id")
    @classmethod
    def strip_team(cls, v):
        return v.strip() if isinstance(v, str) else v
