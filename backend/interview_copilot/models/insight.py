from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional
import json
from sqlmodel import SQLModel, Field


INSIGHT_TYPES = ("red-flag", "green-flag", "suggestion", "note", "contradiction")
INSIGHT_SEVERITIES = ("critical", "warning", "info", "success")


class Insight(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    interview_id: int = Field(index=True, foreign_key="interview.id")
    type: str = Field(default="note", index=True)  # one of INSIGHT_TYPES
    severity: str = Field(default="info")  # one of INSIGHT_SEVERITIES
    content: str = Field(default="")
    suggestion: Optional[str] = None
    topic: Optional[str] = None
    evidence: Optional[str] = None
    response_quality: Optional[int] = None  # 1-10
    sentiment: Optional[str] = None
    running_scores_json: Optional[str] = None  # JSON object, dimension -> 1-10
    used: bool = Field(default=False)  # flipped by the reviewer only
    timestamp: datetime = Field(default_factory=datetime.utcnow, index=True)

    def running_scores(self) -> Dict[str, int]:
        if not self.running_scores_json:
            return {}
        try:
            data = json.loads(self.running_scores_json)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
