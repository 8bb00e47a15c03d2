"""Poll Pydantic schemas."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class PollOptionIn(BaseModel):
    text: str
    order: Optional[int] = None


class PollUpsert(BaseModel):
    user_fid: int
    question: str
    poll_type: str = "ranking"
    options: List[PollOptionIn] = Field(default_factory=list)
    choices: Optional[List[str]] = None
    slug: Optional[str] = None


class PollSubmit(BaseModel):
    user_fid: int
    rankings: Optional[List[int]] = None
    choices: Optional[Dict[str, str]] = None
    allocations: Optional[Dict[str, int]] = None
