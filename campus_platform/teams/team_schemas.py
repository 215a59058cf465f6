from typing import List, Optional

from pydantic import BaseModel, Field


class TeamCreate(BaseModel):
    team_name: str = Field(..., min_length=2, max_length=100)
    project_title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    domains: List[str] = Field(default_factory=list)


class JoinDecision(BaseModel):
    user_id: str
    approve: bool = True


class MentorAssignment(BaseModel):
    mentor_id: str
