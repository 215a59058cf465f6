from typing import Optional

from pydantic import Field, field_validator

from campus_platform.core.schemas import RequestModel
from campus_platform.feedback.feedback_models import FeedbackStatus


class FeedbackCreate(RequestModel):
    mentor_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=1000)
    is_anonymous: bool = False

    @field_validator("comment")
    @classmethod
    def strip_comment(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("comment cannot be blank")
        return v


class FeedbackReply(RequestModel):
    response: str = Field(..., min_length=1, max_length=2000)
    status: Optional[FeedbackStatus] = None
