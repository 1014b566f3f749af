from __future__ import annotations

from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field


class TranscriptEntry(SQLModel, table=True):
    __tablename__ = "transcript_entry"

    id: Optional[int] = Field(default=None, primary_key=True)
    interview_id: int = Field(index=True, foreign_key="interview.id")
    timestamp: datetime = Field(default_factory=datetime.utcnow, index=True)
    text: str
    speaker_id: str = Field(index=True)  # diarized label, e.g. "speaker_0"
    speaker_role: Optional[str] = None  # host|guest once roles are assigned
    confidence: Optional[float] = None

    def label(self) -> str:
        if self.speaker_role == "host":
            return "Interviewer"
        if self.speaker_role == "guest":
            return "Candidate"
        return self.speaker_id or "Unknown"

    def render(self) -> str:
        return f"[{self.label()}] {self.text}"
