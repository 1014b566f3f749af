"""Differential analysis state: what the deep analyzer already reported.

The state is derived from the most recent insight rows of an interview, so
the insight log itself is the only store. The window size (how many recent
insights make up the state) is configurable; the default is one.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from sqlmodel import Session

from interview_copilot.models.insight import Insight
from interview_copilot.repositories.insights import InsightsRepository

logger = logging.getLogger("interview_copilot.state")

BEGINNING_OF_INTERVIEW = "This is the beginning of the interview. No previous analysis."


@dataclass
class InsightDraft:
    type: str = "note"
    severity: str = "info"
    content: str = ""
    suggestion: Optional[str] = None
    topic: Optional[str] = None
    evidence: Optional[str] = None
    response_quality: Optional[int] = None
    sentiment: Optional[str] = None
    running_scores: Dict[str, int] = field(default_factory=dict)

    def to_insight(self, interview_id: int) -> Insight:
        return Insight(
            interview_id=interview_id,
            type=self.type,
            severity=self.severity,
            content=self.content,
            suggestion=self.suggestion,
            topic=self.topic,
            evidence=self.evidence,
            response_quality=self.response_quality,
            sentiment=self.sentiment,
            running_scores_json=json.dumps(self.running_scores) if self.running_scores else None,
        )


@dataclass
class AnalysisState:
    sentiment: Optional[str] = None
    topic: Optional[str] = None
    running_scores: Dict[str, int] = field(default_factory=dict)
    last_content_summary: Optional[str] = None
    red_flags: List[str] = field(default_factory=list)
    # Older insights inside the window, oldest first, rendered "[type] content"
    recent: List[str] = field(default_factory=list)
    is_beginning: bool = False

    @classmethod
    def beginning(cls) -> "AnalysisState":
        return cls(is_beginning=True)

    @classmethod
    def from_insights(cls, insights: Sequence[Insight]) -> "AnalysisState":
        """Build the state from insights ordered most recent first."""
        if not insights:
            return cls.beginning()
        latest = insights[0]
        red_flags = [i.content for i in reversed(insights) if i.type == "red-flag" and i.content]
        return cls(
            sentiment=latest.sentiment,
            topic=latest.topic,
            running_scores=latest.running_scores(),
            last_content_summary=latest.content or None,
            red_flags=red_flags,
            recent=[f"[{i.type}] {i.content}" for i in reversed(insights[1:])],
        )

    def render(self) -> str:
        if self.is_beginning:
            return BEGINNING_OF_INTERVIEW
        lines = [
            "Previous analysis state:",
            f"Sentiment: {self.sentiment or 'unknown'}",
            f"Red flags so far: {json.dumps(self.red_flags)}",
            f"Topics covered: {self.topic or 'none'}",
            f"Running scores: {json.dumps(self.running_scores)}",
            f"Last summary: {self.last_content_summary or 'none'}",
        ]
        if self.recent:
            lines.append("Earlier insights:")
            lines.extend(self.recent)
        return "\n".join(lines)


class AnalysisStateStore(Protocol):
    def load_latest(self, interview_id: int) -> AnalysisState:
        ...

    def append(self, interview_id: int, draft: InsightDraft) -> Insight:
        ...


class SqlAnalysisStateStore:
    """State read from, and appended to, the insight table."""

    def __init__(self, session_factory: Callable[[], Session], window: int = 1) -> None:
        self.session_factory = session_factory
        self.window = max(1, int(window))

    def load_latest(self, interview_id: int) -> AnalysisState:
        with self.session_factory() as session:
            insights = InsightsRepository(session).latest(interview_id, limit=self.window)
            return AnalysisState.from_insights(insights)

    def append(self, interview_id: int, draft: InsightDraft) -> Insight:
        with self.session_factory() as session:
            insight = InsightsRepository(session).add(draft.to_insight(interview_id))
        logger.info(
            "Insight stored",
            extra={"interview_id": interview_id, "insight_id": insight.id, "type": insight.type},
        )
        return insight


class InMemoryAnalysisStateStore:
    def __init__(self, window: int = 1) -> None:
        self.window = max(1, int(window))
        self.insights: Dict[int, List[Insight]] = {}
        self._next_id = 1

    def load_latest(self, interview_id: int) -> AnalysisState:
        rows = self.insights.get(interview_id, [])
        return AnalysisState.from_insights(list(reversed(rows[-self.window:])))

    def append(self, interview_id: int, draft: InsightDraft) -> Insight:
        insight = draft.to_insight(interview_id)
        insight.id = self._next_id
        insight.timestamp = datetime.utcnow()
        self._next_id += 1
        self.insights.setdefault(interview_id, []).append(insight)
        return insight
