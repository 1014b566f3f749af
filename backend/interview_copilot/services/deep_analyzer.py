"""Tier 2: deep analysis of an escalated chunk against the differential state."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from interview_copilot.errors import ClassifierError
from interview_copilot.models.insight import INSIGHT_SEVERITIES, INSIGHT_TYPES
from interview_copilot.services.analysis_state import AnalysisState, InsightDraft
from interview_copilot.services.llm_client import ChatClient, call_classifier, parse_json_response
from interview_copilot.services.prompt_manager import (
    ANALYSIS_SYSTEM,
    AnalysisPromptContext,
    build_analysis_prompt,
)

logger = logging.getLogger("interview_copilot.analysis")

RUNNING_SCORE_KEYS = ("technical", "communication", "experience")


@dataclass
class AnalysisRequest:
    chunk_text: str
    escalation_reason: str = ""
    topic: Optional[str] = None
    candidate_name: str = "Unknown"
    position: str = "Unknown"
    minutes: int = 0
    recent_transcript: List[str] = field(default_factory=list)
    state: AnalysisState = field(default_factory=AnalysisState.beginning)
    # Every insight emitted so far, rendered "[type] content"
    existing_insights: List[str] = field(default_factory=list)


def clamp_score(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return None
    return max(1, min(10, number))


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == "null":
        return None
    return text


def normalize_type(value: Any) -> str:
    kind = str(value or "").strip().lower().replace("_", "-")
    return kind if kind in INSIGHT_TYPES else "note"


def normalize_severity(value: Any) -> str:
    severity = str(value or "").strip().lower()
    return severity if severity in INSIGHT_SEVERITIES else "info"


def normalize_evidence(value: Any, chunk_text: str) -> Optional[str]:
    """Keep evidence only when it is quoted verbatim from the chunk."""
    evidence = _clean_text(value)
    if evidence is None:
        return None
    evidence = evidence.strip("\"'“”")
    if evidence and evidence in chunk_text:
        return evidence
    return None


def normalize_insight(item: Dict[str, Any], chunk_text: str, default_topic: Optional[str] = None) -> InsightDraft:
    scores = item.get("score") or item.get("running_scores") or {}
    running: Dict[str, int] = {}
    if isinstance(scores, dict):
        for key in RUNNING_SCORE_KEYS:
            clamped = clamp_score(scores.get(key))
            if clamped is not None:
                running[key] = clamped
    quality = item.get("response_quality", item.get("responseQuality"))
    return InsightDraft(
        type=normalize_type(item.get("type")),
        severity=normalize_severity(item.get("severity")),
        content=_clean_text(item.get("content")) or "",
        suggestion=_clean_text(item.get("suggestion")),
        topic=_clean_text(item.get("topic")) or default_topic,
        evidence=normalize_evidence(item.get("evidence"), chunk_text),
        response_quality=clamp_score(quality),
        sentiment=_clean_text(item.get("sentiment")),
        running_scores=running,
    )


def fallback_insight(error: BaseException, topic: Optional[str] = None) -> InsightDraft:
    """The note persisted when deep analysis fails, so the batch is not lost."""
    return InsightDraft(
        type="note",
        severity="info",
        content=f"Deep analysis failed: {error}",
        topic=topic or "analysis-error",
    )


class DeepAnalyzer:
    def __init__(self, client: ChatClient, timeout: float = 30.0, max_tokens: Optional[int] = None) -> None:
        self.client = client
        self.timeout = timeout
        self.max_tokens = max_tokens

    async def analyze(self, request: AnalysisRequest) -> List[InsightDraft]:
        """Return zero or more insights for the chunk; raises ClassifierError."""
        prompt = build_analysis_prompt(
            request.chunk_text,
            AnalysisPromptContext(
                candidate_name=request.candidate_name,
                position=request.position,
                minutes=request.minutes,
                escalation_reason=request.escalation_reason,
                previous_state=request.state.render(),
                recent_transcript=list(request.recent_transcript),
                existing_insights=list(request.existing_insights),
            ),
        )
        raw = await call_classifier(
            self.client, ANALYSIS_SYSTEM, prompt, timeout=self.timeout, max_tokens=self.max_tokens
        )
        data = parse_json_response(raw)

        items = data.get("insights")
        if items is None and ("type" in data or "content" in data):
            # A single bare insight object
            items = [data]
        if not isinstance(items, list):
            raise ClassifierError("Deep analysis output has no 'insights' list")

        drafts = [
            normalize_insight(item, request.chunk_text, default_topic=request.topic)
            for item in items
            if isinstance(item, dict)
        ]
        drafts = [d for d in drafts if d.content]
        logger.info("Deep analysis produced %d insight(s)", len(drafts))
        return drafts
