from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# ==================== ENUMS ====================

class ChainStatus(str, Enum):
    EDITING = "editing"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    ARCHIVED = "archived"

class CohortYear(str, Enum):
    FIRST = "1st"
    SECOND = "2nd"
    THIRD = "3rd"
    FOURTH = "4th"

class MilestoneType(str, Enum):
    ASSIGNMENT = "assignment"
    QUIZ = "quiz"
    EXAM = "exam"
    PROJECT = "project"
    TASK = "task"
    OTHER = "other"

class MilestoneStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"

class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"
    ESSAY = "essay"

class ProgressStatus(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    FAILED = "failed"


TIMED_TYPES = {MilestoneType.QUIZ.value, MilestoneType.EXAM.value}
AUTO_GRADED_TYPES = {QuestionType.MULTIPLE_CHOICE.value, QuestionType.TRUE_FALSE.value}

# ==================== DATABASE MODELS ====================

class StoredModel(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class ChainEditor(StoredModel):
    user_id: str
    full_name: Optional[str] = None
    last_edited_at: datetime = Field(default_factory=datetime.utcnow)


class MilestoneChain(StoredModel):
    chain_id: str  # CHN_XXXXXX
    name: str
    description: Optional[str] = None
    academic_year: str  # e.g. "2024-2025"
    year: CohortYear
    start_date: datetime
    end_date: datetime
    status: ChainStatus = ChainStatus.EDITING
    created_by: str
    published_by: Optional[str] = None
    published_at: Optional[datetime] = None
    editors: List[ChainEditor] = Field(default_factory=list)
    total_milestones: int = 0
    published_milestones: int = 0
    is_active: bool = True
    version: int = 1  # bumped by every structural change, publish is conditional on it
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Question(StoredModel):
    question_id: str  # QST_XXXXXX
    question: str
    type: QuestionType = QuestionType.MULTIPLE_CHOICE
    options: List[str] = Field(default_factory=list)
    correct_answer: Optional[Any] = None
    points: float = 1


class SubmissionRequirements(StoredModel):
    file_types: List[str] = Field(default_factory=list)
    max_file_size: float = 10  # MB
    max_files: int = 1
    description: Optional[str] = None


class MilestoneResource(StoredModel):
    name: str
    url: str
    type: Optional[str] = None


class Milestone(StoredModel):
    milestone_id: str  # MIL_XXXXXX
    chain_id: str
    name: str
    description: Optional[str] = None
    type: MilestoneType
    start_date: datetime
    end_date: datetime
    order: int
    status: MilestoneStatus = MilestoneStatus.DRAFT
    submission_requirements: SubmissionRequirements = Field(default_factory=SubmissionRequirements)
    max_marks: float = 10
    questions: List[Question] = Field(default_factory=list)
    duration: Optional[int] = None  # minutes, quiz/exam only
    passing_score: Optional[float] = None
    instructions: Optional[str] = None
    resources: List[MilestoneResource] = Field(default_factory=list)
    created_by: str
    last_edited_by: Optional[str] = None
    published_by: Optional[str] = None
    published_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SubmittedFile(StoredModel):
    filename: str
    url: str
    public_id: Optional[str] = None
    resource_type: Optional[str] = None
    size: int = 0
    uploaded_at: datetime = Field(default_factory=datetime.utcnow)


class SubmissionEntry(StoredModel):
    files: List[SubmittedFile] = Field(default_factory=list)
    text: Optional[str] = None
    submitted_at: datetime = Field(default_factory=datetime.utcnow)


class GradedAnswer(StoredModel):
    question_id: str
    answer: Optional[Any] = None
    is_correct: Optional[bool] = None  # None for questions that need a human
    points: Optional[float] = None


class StudentMilestone(StoredModel):
    record_id: str  # SMP_XXXXXX
    student_id: str
    milestone_id: str
    chain_id: str
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    submissions: List[SubmissionEntry] = Field(default_factory=list)
    answers: List[GradedAnswer] = Field(default_factory=list)
    quiz_started_at: Optional[datetime] = None
    quiz_submitted_at: Optional[datetime] = None
    score: Optional[float] = None
    max_score: Optional[float] = None
    percentage: Optional[float] = None
    grade: Optional[str] = None
    feedback: Optional[str] = None
    graded_by: Optional[str] = None
    graded_at: Optional[datetime] = None
    auto_graded_score: Optional[float] = None
    auto_graded_percentage: Optional[float] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    attempts: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
