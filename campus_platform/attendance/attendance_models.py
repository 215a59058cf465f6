from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from campus_platform.milestones.milestone_models import StoredModel


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"

# Both count as attended
ATTENDED = (AttendanceStatus.PRESENT.value, AttendanceStatus.LATE.value)


class Modification(StoredModel):
    modified_by: str
    modified_at: datetime = Field(default_factory=datetime.utcnow)
    previous_status: Optional[AttendanceStatus] = None
    new_status: Optional[AttendanceStatus] = None
    reason: Optional[str] = None


class AttendanceRecord(StoredModel):
    """One student on one day; marking the same day again edits this record"""
    attendance_id: str  # ATT_XXXXXX
    student_id: str
    student_name: Optional[str] = None
    roll_no: str = "N/A"
    date: datetime  # midnight of the class day
    status: AttendanceStatus
    subject: str = ""
    department: str = "General"
    section: str = "A"
    year: str = "1"
    marked_by: str
    marked_by_name: Optional[str] = None
    marked_by_role: str
    remarks: str = ""
    modification_history: List[Modification] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_modified: datetime = Field(default_factory=datetime.utcnow)
