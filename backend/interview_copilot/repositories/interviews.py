from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional
from sqlalchemy import update
from sqlmodel import Session, col, select

from interview_copilot.errors import InterviewNotFoundError
from interview_copilot.models.interview import Interview


class InterviewsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, interview: Interview) -> Interview:
        self.session.add(interview)
        self.session.commit()
        self.session.refresh(interview)
        return interview

    def get(self, interview_id: int) -> Optional[Interview]:
        return self.session.get(Interview, interview_id)

    def require(self, interview_id: int) -> Interview:
        interview = self.get(interview_id)
        if interview is None:
            raise InterviewNotFoundError(interview_id)
        return interview

    def list(self, limit: int = 50, offset: int = 0, status: Optional[str] = None) -> list[Interview]:
        statement = select(Interview)
        if status:
            statement = statement.where(Interview.status == status)
        statement = statement.order_by(Interview.created_at.desc()).limit(limit).offset(offset)
        return list(self.session.exec(statement))

    def list_by_ids(self, interview_ids: Iterable[int]) -> list[Interview]:
        statement = select(Interview).where(col(Interview.id).in_(list(interview_ids)))
        return list(self.session.exec(statement))

    def update(self, interview: Interview) -> Interview:
        self.session.add(interview)
        self.session.commit()
        self.session.refresh(interview)
        return interview

    def mark_live(self, interview_id: int) -> Interview:
        interview = self.require(interview_id)
        interview.status = "live"
        interview.failure_reason = None
        if interview.started_at is None:
            interview.started_at = datetime.utcnow()
        return self.update(interview)

    def mark_completed(self, interview_id: int) -> Interview:
        interview = self.require(interview_id)
        interview.status = "completed"
        interview.completed_at = interview.completed_at or datetime.utcnow()
        return self.update(interview)

    def mark_failed(self, interview_id: int, reason: str) -> Interview:
        interview = self.require(interview_id)
        interview.status = "failed"
        interview.failure_reason = reason
        return self.update(interview)

    def assign_roles(self, interview_id: int, host: str, guest: str) -> bool:
        """Store the role map once. Returns False when roles were already assigned."""
        self.require(interview_id)
        statement = (
            update(Interview)
            .where(Interview.id == interview_id)
            .where(Interview.roles_assigned == False)  # noqa: E712
            .values(roles_host=host, roles_guest=guest, roles_assigned=True)
        )
        result = self.session.execute(statement)
        self.session.commit()
        self.session.expire_all()
        return bool(result.rowcount)
