from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class PostCategory(str, Enum):
    GENERAL = "general"
    TECHNICAL = "technical"
    PROJECT = "project"
    EVENTS = "events"
    CAREER = "career"
    HELP = "help"
    ANNOUNCEMENT = "announcement"
    OTHER = "other"


class PostCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=1, max_length=10000)
    category: PostCategory = PostCategory.GENERAL
    tags: List[str] = Field(default_factory=list)


class PostUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=10000)
    category: Optional[PostCategory] = None
    tags: Optional[List[str]] = None


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
