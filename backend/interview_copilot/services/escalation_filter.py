"""Tier 1: cheap per-chunk classifier that gates the deep analyzer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from interview_copilot.errors import ClassifierError
from interview_copilot.services.llm_client import ChatClient, call_classifier, parse_json_response
from interview_copilot.services.prompt_manager import (
    ESCALATION_SYSTEM,
    EscalationPromptContext,
    build_escalation_prompt,
)

logger = logging.getLogger("interview_copilot.escalation")

ESCALATION_SEVERITIES = ("high", "medium", "low", "none")


@dataclass
class EscalationDecision:
    escalate: bool
    reason: str
    quick_note: Optional[str] = None
    severity: str = "none"
    topic: Optional[str] = None

    @classmethod
    def fail_closed(cls, reason: str) -> "EscalationDecision":
        return cls(escalate=False, reason=reason, severity="none")

    @classmethod
    def from_payload(cls, data: dict) -> "EscalationDecision":
        severity = str(data.get("severity") or "none").lower()
        if severity not in ESCALATION_SEVERITIES:
            severity = "none"
        escalate = data.get("escalate")
        if isinstance(escalate, str):
            escalate = escalate.strip().lower() == "true"
        return cls(
            escalate=bool(escalate),
            reason=str(data.get("reason") or ""),
            quick_note=_optional_str(data.get("quick_note") or data.get("quickNote")),
            severity=severity,
            topic=_optional_str(data.get("topic")),
        )


@dataclass
class EscalationContext:
    candidate_name: str = "Unknown"
    position: str = "Unknown"
    minutes: int = 0
    recent_context: List[str] = field(default_factory=list)
    insights_so_far: int = 0


def _optional_str(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == "null":
        return None
    return text


class EscalationFilter:
    """Decides whether a chunk deserves a deep analysis call.

    `evaluate` never raises: every failure of the underlying classifier
    (error, timeout, bad JSON) turns into a non-escalating decision.
    """

    def __init__(self, client: ChatClient, timeout: float = 30.0, max_tokens: Optional[int] = None) -> None:
        self.client = client
        self.timeout = timeout
        self.max_tokens = max_tokens

    async def evaluate(self, chunk_text: str, context: EscalationContext) -> EscalationDecision:
        prompt = build_escalation_prompt(
            chunk_text,
            EscalationPromptContext(
                candidate_name=context.candidate_name,
                position=context.position,
                minutes=context.minutes,
                recent_context=list(context.recent_context),
                insights_so_far=context.insights_so_far,
            ),
        )
        try:
            raw = await call_classifier(
                self.client, ESCALATION_SYSTEM, prompt, timeout=self.timeout, max_tokens=self.max_tokens
            )
            decision = EscalationDecision.from_payload(parse_json_response(raw))
        except ClassifierError as e:
            logger.warning("Escalation filter failed, not escalating: %s", e)
            return EscalationDecision.fail_closed(f"escalation filter failed: {e}")
        except Exception as e:
            logger.exception("Unexpected escalation filter error")
            return EscalationDecision.fail_closed(f"escalation filter failed: {e}")
        logger.info(
            "Escalation decision",
            extra={"escalate": decision.escalate, "severity": decision.severity, "topic": decision.topic},
        )
        return decision
