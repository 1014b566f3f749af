from __future__ import annotations

from typing import Optional
from sqlmodel import Session, select

from interview_copilot.models.insight import Insight


class InsightsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, insight: Insight) -> Insight:
        self.session.add(insight)
        self.session.commit()
        self.session.refresh(insight)
        return insight

    def get(self, interview_id: int, insight_id: int) -> Optional[Insight]:
        insight = self.session.get(Insight, insight_id)
        if insight is None or insight.interview_id != interview_id:
            return None
        return insight

    def list_by_interview(self, interview_id: int, after_id: Optional[int] = None) -> list[Insight]:
        """Insights in arrival order."""
        statement = select(Insight).where(Insight.interview_id == interview_id)
        if after_id is not None:
            statement = statement.where(Insight.id > after_id)
        statement = statement.order_by(Insight.timestamp.asc(), Insight.id.asc())
        return list(self.session.exec(statement))

    def latest(self, interview_id: int, limit: int = 1) -> list[Insight]:
        """Most recent insights first."""
        statement = (
            select(Insight)
            .where(Insight.interview_id == interview_id)
            .order_by(Insight.timestamp.desc(), Insight.id.desc())
            .limit(limit)
        )
        return list(self.session.exec(statement))

    def count_for_interview(self, interview_id: int) -> int:
        return len(self.list_by_interview(interview_id))

    def set_used(self, insight: Insight, used: bool) -> Insight:
        insight.used = used
        return self.add(insight)
