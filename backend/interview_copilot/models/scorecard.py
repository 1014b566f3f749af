from __future__ import annotations

from datetime import datetime
from typing import List, Optional
import json
from sqlmodel import SQLModel, Field


SCORE_DIMENSIONS = (
    "technical",
    "communication",
    "experience",
    "attitude",
    "strategic",
    "leadership",
    "english",
)


class Scorecard(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    interview_id: int = Field(index=True, unique=True, foreign_key="interview.id")

    technical: Optional[int] = None
    communication: Optional[int] = None
    experience: Optional[int] = None
    attitude: Optional[int] = None
    strategic: Optional[int] = None
    leadership: Optional[int] = None
    english: Optional[int] = None

    overall_score: Optional[int] = None
    recommendation: str = Field(default="maybe")  # hire|no_hire|maybe
    strengths_json: str = Field(default="[]")
    weaknesses_json: str = Field(default="[]")
    summary: str = Field(default="")
    notes: str = Field(default="")
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def strengths(self) -> List[str]:
        return _load_list(self.strengths_json)

    def weaknesses(self) -> List[str]:
        return _load_list(self.weaknesses_json)


def _load_list(raw: Optional[str]) -> List[str]:
    try:
        data = json.loads(raw or "[]")
    except ValueError:
        return []
    return [str(x) for x in data] if isinstance(data, list) else []
