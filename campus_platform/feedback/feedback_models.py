from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from campus_platform.milestones.milestone_models import StoredModel


class FeedbackStatus(str, Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    RESOLVED = "resolved"


class MentorFeedback(StoredModel):
    """A student's rating of a mentor, at most one per pair"""
    feedback_id: str  # FBK_XXXXXX
    mentor_id: str
    student_id: str
    student_name: Optional[str] = None
    student_roll_no: str = "N/A"
    rating: int = Field(..., ge=1, le=5)
    comment: str
    attendance_percentage: float
    is_anonymous: bool = False
    status: FeedbackStatus = FeedbackStatus.PENDING
    admin_response: Optional[str] = None
    admin_response_by: Optional[str] = None
    admin_response_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
