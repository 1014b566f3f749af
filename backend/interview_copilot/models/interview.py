from __future__ import annotations

from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field


class Interview(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    candidate_name: str = Field(default="Unknown")
    position: str = Field(default="Unknown")
    status: str = Field(default="scheduled", index=True)  # scheduled|live|completed|failed
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    # Diarized speaker ids resolved to interviewer/candidate, assigned once
    roles_host: Optional[str] = None
    roles_guest: Optional[str] = None
    roles_assigned: bool = Field(default=False)

    def role_for(self, speaker_id: str) -> Optional[str]:
        if not self.roles_assigned:
            return None
        if speaker_id == self.roles_host:
            return "host"
        if speaker_id == self.roles_guest:
            return "guest"
        return None

    def elapsed_minutes(self, now: Optional[datetime] = None) -> int:
        if self.started_at is None:
            return 0
        delta = (now or datetime.utcnow()) - self.started_at
        return max(0, int(delta.total_seconds() // 60))
