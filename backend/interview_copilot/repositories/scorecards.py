from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Optional
from sqlmodel import Session, col, select

from interview_copilot.models.scorecard import Scorecard


class ScorecardsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def upsert_for_interview(self, interview_id: int, values: Dict[str, Any]) -> Scorecard:
        existing = self.get_by_interview(interview_id)
        if existing is None:
            scorecard = Scorecard(interview_id=interview_id, **values)
            self.session.add(scorecard)
            self.session.commit()
            self.session.refresh(scorecard)
            return scorecard
        for key, value in values.items():
            setattr(existing, key, value)
        existing.updated_at = datetime.utcnow()
        self.session.add(existing)
        self.session.commit()
        self.session.refresh(existing)
        return existing

    def get_by_interview(self, interview_id: int) -> Optional[Scorecard]:
        statement = select(Scorecard).where(Scorecard.interview_id == interview_id)
        return self.session.exec(statement).first()

    def by_interviews(self, interview_ids: Iterable[int]) -> Dict[int, Scorecard]:
        statement = select(Scorecard).where(col(Scorecard.interview_id).in_(list(interview_ids)))
        return {s.interview_id: s for s in self.session.exec(statement)}
