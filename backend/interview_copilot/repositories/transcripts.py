from __future__ import annotations

from typing import Iterable, Optional
from sqlalchemy import func, update
from sqlmodel import Session, select

from interview_copilot.models.transcript_entry import TranscriptEntry


class TranscriptsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entry: TranscriptEntry) -> TranscriptEntry:
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def add_entries(self, entries: Iterable[TranscriptEntry]) -> list[TranscriptEntry]:
        saved = []
        for entry in entries:
            self.session.add(entry)
            saved.append(entry)
        self.session.commit()
        for entry in saved:
            self.session.refresh(entry)
        return saved

    def list_by_interview(self, interview_id: int, limit: Optional[int] = None) -> list[TranscriptEntry]:
        """Entries in chronological order, optionally only the earliest `limit`."""
        statement = (
            select(TranscriptEntry)
            .where(TranscriptEntry.interview_id == interview_id)
            .order_by(TranscriptEntry.timestamp.asc(), TranscriptEntry.id.asc())
        )
        if limit is not None:
            statement = statement.limit(limit)
        return list(self.session.exec(statement))

    def list_recent(self, interview_id: int, limit: int) -> list[TranscriptEntry]:
        """The latest `limit` entries, returned oldest first."""
        if limit <= 0:
            return []
        statement = (
            select(TranscriptEntry)
            .where(TranscriptEntry.interview_id == interview_id)
            .order_by(TranscriptEntry.timestamp.desc(), TranscriptEntry.id.desc())
            .limit(limit)
        )
        rows = list(self.session.exec(statement))
        rows.reverse()
        return rows

    def count_for_interview(self, interview_id: int) -> int:
        statement = select(func.count()).select_from(TranscriptEntry).where(
            TranscriptEntry.interview_id == interview_id
        )
        return int(self.session.exec(statement).one())

    def backfill_role(self, interview_id: int, speaker_id: str, role: str) -> int:
        statement = (
            update(TranscriptEntry)
            .where(TranscriptEntry.interview_id == interview_id)
            .where(TranscriptEntry.speaker_id == speaker_id)
            .values(speaker_role=role)
        )
        result = self.session.execute(statement)
        self.session.commit()
        return int(result.rowcount or 0)
