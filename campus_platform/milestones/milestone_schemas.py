from datetime import datetime
from typing import Any, List, Optional

from pydantic import Field, model_validator

from campus_platform.core.schemas import RequestModel
from campus_platform.milestones.milestone_models import (
    ChainStatus, CohortYear, MilestoneType, QuestionType
)

# ==================== CHAINS ====================

class ChainCreate(RequestModel):
    name: str = Field(..., min_length=3, max_length=150)
    description: Optional[str] = None
    academic_year: str = Field(..., min_length=4, max_length=20)
    year: CohortYear
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class ChainUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=3, max_length=150)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None

# ==================== MILESTONES ====================

class QuestionIn(RequestModel):
    question_id: Optional[str] = None
    question: str = Field(..., min_length=1)
    type: QuestionType = QuestionType.MULTIPLE_CHOICE
    options: List[str] = Field(default_factory=list)
    correct_answer: Optional[Any] = None
    points: float = Field(1, gt=0)


class SubmissionRequirementsIn(RequestModel):
    file_types: List[str] = Field(default_factory=list)
    max_file_size: float = Field(10, gt=0, le=10)
    max_files: int = Field(1, ge=1, le=5)
    description: Optional[str] = None


class ResourceIn(RequestModel):
    name: str
    url: str
    type: Optional[str] = None


class MilestoneCreate(RequestModel):
    name: str = Field(..., min_length=2, max_length=150)
    description: Optional[str] = None
    type: MilestoneType
    start_date: datetime
    end_date: datetime
    order: Optional[int] = Field(None, ge=1)
    submission_requirements: Optional[SubmissionRequirementsIn] = None
    max_marks: float = Field(10, gt=0)
    questions: List[QuestionIn] = Field(default_factory=list)
    duration: Optional[int] = Field(None, ge=1)
    passing_score: Optional[float] = Field(None, ge=0)
    instructions: Optional[str] = None
    resources: List[ResourceIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class MilestoneUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=2, max_length=150)
    description: Optional[str] = None
    type: Optional[MilestoneType] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    order: Optional[int] = Field(None, ge=1)
    submission_requirements: Optional[SubmissionRequirementsIn] = None
    max_marks: Optional[float] = Field(None, gt=0)
    questions: Optional[List[QuestionIn]] = None
    duration: Optional[int] = Field(None, ge=1)
    passing_score: Optional[float] = Field(None, ge=0)
    instructions: Optional[str] = None
    resources: Optional[List[ResourceIn]] = None

# ==================== STUDENT PROGRESS ====================

class AnswerIn(RequestModel):
    question_id: str
    answer: Optional[Any] = None


class QuizSubmission(RequestModel):
    answers: List[AnswerIn] = Field(default_factory=list)


class GradeRequest(RequestModel):
    score: float = Field(..., ge=0)
    max_score: Optional[float] = None
    grade: Optional[str] = Field(None, max_length=5)
    feedback: Optional[str] = None


class ChainFilter(RequestModel):
    status: Optional[ChainStatus] = None
    academic_year: Optional[str] = None
