from datetime import datetime
from typing import List, Optional

from pydantic import Field

from campus_platform.attendance.attendance_models import AttendanceStatus
from campus_platform.core.schemas import RequestModel


class AttendanceEntry(RequestModel):
    student_id: str
    date: datetime
    status: AttendanceStatus
    subject: Optional[str] = Field(None, max_length=100)
    remarks: Optional[str] = Field(None, max_length=500)


class MarkAttendance(RequestModel):
    attendance_data: List[AttendanceEntry] = Field(..., min_length=1)


class AttendanceUpdate(RequestModel):
    status: Optional[AttendanceStatus] = None
    subject: Optional[str] = Field(None, max_length=100)
    remarks: Optional[str] = Field(None, max_length=500)
