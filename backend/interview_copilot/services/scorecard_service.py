from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlmodel import Session

from interview_copilot.errors import ClassifierError, MissingDataError, ScorecardParseError
from interview_copilot.models.insight import Insight
from interview_copilot.models.scorecard import SCORE_DIMENSIONS, Scorecard
from interview_copilot.repositories.insights import InsightsRepository
from interview_copilot.repositories.interviews import InterviewsRepository
from interview_copilot.repositories.scorecards import ScorecardsRepository
from interview_copilot.repositories.transcripts import TranscriptsRepository
from interview_copilot.services.deep_analyzer import clamp_score
from interview_copilot.services.llm_client import ChatClient, call_classifier, parse_json_response
from interview_copilot.services.prompt_manager import SCORECARD_SYSTEM, build_scorecard_prompt

logger = logging.getLogger("interview_copilot.scorecard")

RECOMMENDATIONS = ("hire", "no_hire", "maybe")


def normalize_recommendation(value: Any) -> str:
    rec = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
    return rec if rec in RECOMMENDATIONS else "maybe"


def partition_insights(insights: List[Insight]) -> Dict[str, List[Tuple[str, Optional[str]]]]:
    groups: Dict[str, List[Tuple[str, Optional[str]]]] = {
        "red_flags": [],
        "green_flags": [],
        "contradictions": [],
        "other": [],
    }
    for insight in insights:
        key = {
            "red-flag": "red_flags",
            "green-flag": "green_flags",
            "contradiction": "contradictions",
        }.get(insight.type, "other")
        groups[key].append((insight.content, insight.evidence))
    return groups


def flatten_point(item: Any) -> str:
    """Render a strength/weakness as text; objects become `point: "quote"`."""
    if not isinstance(item, dict):
        return str(item).strip()
    point = next((item[k] for k in ("point", "text", "content", "description") if item.get(k)), "")
    quote = next((item[k] for k in ("quote", "evidence") if item.get(k)), "")
    point, quote = str(point).strip(), str(quote).strip().strip('"')
    if point and quote:
        return f'{point}: "{quote}"'
    return point or (f'"{quote}"' if quote else json.dumps(item, ensure_ascii=False))


def parse_scorecard(data: Dict[str, Any], raw: str = "") -> Dict[str, Any]:
    """Validate a scorecard reply and map it to Scorecard column values."""
    scores = data.get("scores")
    if not isinstance(scores, dict):
        raise ScorecardParseError("Scorecard output has no 'scores' object", raw=raw)

    values: Dict[str, Any] = {dim: clamp_score(scores.get(dim)) for dim in SCORE_DIMENSIONS}
    overall = clamp_score(data.get("overall_score"))
    if overall is None:
        present = [v for v in values.values() if v is not None]
        if not present:
            raise ScorecardParseError("Scorecard output has no usable scores", raw=raw)
        overall = clamp_score(sum(present) / len(present))

    strengths = data.get("strengths") or []
    weaknesses = data.get("weaknesses") or []
    if not isinstance(strengths, list) or not isinstance(weaknesses, list):
        raise ScorecardParseError("'strengths' and 'weaknesses' must be lists", raw=raw)

    values.update(
        overall_score=overall,
        recommendation=normalize_recommendation(data.get("recommendation")),
        strengths_json=json.dumps([flatten_point(s) for s in strengths], ensure_ascii=False),
        weaknesses_json=json.dumps([flatten_point(w) for w in weaknesses], ensure_ascii=False),
        summary=str(data.get("summary") or ""),
        notes=str(data.get("notes") or ""),
    )
    return values


class ScorecardSynthesizer:
    """Final full-transcript reduction into one scorecard per interview."""

    def __init__(
        self,
        client: ChatClient,
        session_factory: Callable[[], Session],
        timeout: float = 180.0,
        max_tokens: int = 4096,
    ) -> None:
        self.client = client
        self.session_factory = session_factory
        self.timeout = timeout
        self.max_tokens = max_tokens

    async def synthesize(self, interview_id: int) -> Scorecard:
        with self.session_factory() as session:
            interview = InterviewsRepository(session).require(interview_id)
            entries = TranscriptsRepository(session).list_by_interview(interview_id)
            if not entries:
                raise MissingDataError(f"Interview {interview_id} has no transcript")
            insights = InsightsRepository(session).list_by_interview(interview_id)
            lines = [e.render() for e in entries]
            candidate_name, position = interview.candidate_name, interview.position

        groups = partition_insights(insights)
        prompt = build_scorecard_prompt(
            candidate_name,
            position,
            lines,
            red_flags=groups["red_flags"],
            green_flags=groups["green_flags"],
            contradictions=groups["contradictions"],
            other_notes=groups["other"],
        )
        raw = await call_classifier(
            self.client, SCORECARD_SYSTEM, prompt, timeout=self.timeout, max_tokens=self.max_tokens
        )
        try:
            data = parse_json_response(raw)
        except ClassifierError as e:
            raise ScorecardParseError(f"Failed to parse scorecard: {e}", raw=raw) from e
        values = parse_scorecard(data, raw)

        with self.session_factory() as session:
            scorecard = ScorecardsRepository(session).upsert_for_interview(interview_id, values)
            InterviewsRepository(session).mark_completed(interview_id)
            session.refresh(scorecard)

        logger.info(
            "Scorecard generated",
            extra={
                "interview_id": interview_id,
                "overall_score": scorecard.overall_score,
                "recommendation": scorecard.recommendation,
            },
        )
        return scorecard
