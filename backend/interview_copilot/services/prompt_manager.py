"""Prompt templates for the escalation, analysis, role and scorecard calls."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence

NO_RECENT_CONTEXT = "(start of interview)"
NO_EXISTING_INSIGHTS = "(none yet)"


ESCALATION_SYSTEM = """You are the constant monitor of a live technical interview.
You receive each transcript fragment in real time. Your job is to think about
what the candidate says and decide whether it deserves a deep analysis.

## Your role
- Follow the whole transcript and keep context in mind
- Judge relevance yourself (no keyword matching, no fixed rules)
- When something interesting happens, flag it for deep analysis

## What to look for
- Answers to strategic questions (test coverage, production bugs, why automate)
- Signs of professional maturity or the lack of it
- Contradictions or evasive answers
- Moments where the candidate shows (or does not show) business vision
- Attitude towards collaboration, learning and ownership
- Subtle red flags that would not show up as keywords

## What to ignore
- Small talk, greetings, logistics
- Clear direct answers that need no analysis
- Topics that were already analyzed

## Response format
ALWAYS answer with valid JSON:
{
  "escalate": true/false,
  "reason": "short explanation of why to escalate or not",
  "quick_note": "quick observation if any, or null",
  "severity": "high/medium/low/none",
  "topic": "detected topic or null"
}

If escalate=true a stronger model will analyze the fragment in depth.
Be selective but do not miss anything important."""


ANALYSIS_SYSTEM = """You are the senior analyst of a live technical interview.
You receive the interview context and one fragment that was flagged as relevant.
Analyze ONLY what is new in this fragment, in context of the previous analysis state.

## Response format
ALWAYS answer with valid JSON:
{
  "insights": [
    {
      "type": "red-flag" | "green-flag" | "suggestion" | "note" | "contradiction",
      "severity": "critical" | "warning" | "info" | "success",
      "content": "clear, specific description of what you detected",
      "suggestion": "follow-up question the interviewer can ask, or null",
      "topic": "topic category",
      "evidence": "exact quote from the fragment that supports the insight",
      "response_quality": 1-10,
      "sentiment": "positive" | "negative" | "neutral" | "evasive",
      "score": {"technical": 1-10, "communication": 1-10, "experience": 1-10}
    }
  ]
}

## Rules
- Be evidence-based. "evidence" must be copied verbatim from the fragment.
- Be specific: "Candidate said X, which indicates Y" beats "weak answer".
- Suggestions must be concrete questions the interviewer can ask.
- Do not repeat insights that were already generated (see the list).
- Score reflects the cumulative assessment, not just this fragment.
- A fragment can produce several insights, or none if it was escalated by mistake.
- JSON only, no markdown."""


ROLE_SYSTEM = """You identify speaker roles in interview transcripts.
Answer with JSON only."""


SCORECARD_SYSTEM = """You generate the final scorecard of a technical interview.
Answer with JSON only, no markdown."""


@dataclass
class EscalationPromptContext:
    candidate_name: str = "Unknown"
    position: str = "Unknown"
    minutes: int = 0
    recent_context: List[str] = field(default_factory=list)
    insights_so_far: int = 0


@dataclass
class AnalysisPromptContext:
    candidate_name: str = "Unknown"
    position: str = "Unknown"
    minutes: int = 0
    escalation_reason: str = ""
    previous_state: str = ""
    recent_transcript: List[str] = field(default_factory=list)
    existing_insights: List[str] = field(default_factory=list)


def build_escalation_prompt(chunk_text: str, ctx: EscalationPromptContext) -> str:
    recent = "\n".join(ctx.recent_context) if ctx.recent_context else NO_RECENT_CONTEXT
    return (
        "## State\n"
        f"Candidate: {ctx.candidate_name} ({ctx.position})\n"
        f"Minute: {ctx.minutes}\n"
        f"Insights generated so far: {ctx.insights_so_far}\n\n"
        "## Recent context\n"
        f"{recent}\n\n"
        "## New fragment\n"
        f"{chunk_text}"
    )


def build_analysis_prompt(chunk_text: str, ctx: AnalysisPromptContext) -> str:
    recent = "\n".join(ctx.recent_transcript) if ctx.recent_transcript else NO_RECENT_CONTEXT
    existing = "\n".join(ctx.existing_insights) if ctx.existing_insights else NO_EXISTING_INSIGHTS
    return (
        "## Candidate\n"
        f"{ctx.candidate_name} - {ctx.position}\n"
        f"Minute {ctx.minutes} of the interview\n\n"
        "## Why it was escalated\n"
        f"{ctx.escalation_reason or 'n/a'}\n\n"
        "## Previous analysis state\n"
        f"{ctx.previous_state}\n\n"
        "## Recent transcript (context)\n"
        f"{recent}\n\n"
        "## Fragment to analyze\n"
        f"{chunk_text}\n\n"
        "## Insights already generated (do not repeat)\n"
        f"{existing}"
    )


def build_role_prompt(lines: Sequence[str]) -> str:
    return (
        "These are the first minutes of a technical interview.\n"
        "Identify who is the interviewer (asks questions) and who is the candidate (answers).\n\n"
        + "\n".join(lines)
        + '\n\nRespond JSON only: {"host": "speaker_X", "guest": "speaker_Y"}'
    )


def _flag_lines(items: Sequence[tuple[str, str | None]], with_evidence: bool = True) -> str:
    if not items:
        return "None"
    if not with_evidence:
        return "\n".join(f"- {content}" for content, _ in items)
    return "\n".join(f'- {content} (evidence: "{evidence or "n/a"}")' for content, evidence in items)


def build_scorecard_prompt(
    candidate_name: str,
    position: str,
    transcript_lines: Sequence[str],
    red_flags: Sequence[tuple[str, str | None]],
    green_flags: Sequence[tuple[str, str | None]],
    contradictions: Sequence[tuple[str, str | None]],
    other_notes: Sequence[tuple[str, str | None]] = (),
) -> str:
    other = ""
    if other_notes:
        other = f"\nOther observations ({len(other_notes)}):\n{_flag_lines(other_notes, with_evidence=False)}\n"
    return f"""You are generating a final scorecard for a technical interview.

Candidate: {candidate_name}
Role: {position}
Duration: {len(transcript_lines)} transcript segments

Red flags detected during interview ({len(red_flags)}):
{_flag_lines(red_flags)}

Green flags detected during interview ({len(green_flags)}):
{_flag_lines(green_flags)}

Contradictions detected ({len(contradictions)}):
{_flag_lines(contradictions, with_evidence=False)}
{other}
Full transcript:
{chr(10).join(transcript_lines)}

Generate a comprehensive scorecard. Respond in JSON:
{{
  "overall_score": 1-10,
  "recommendation": "hire|no_hire|maybe",
  "scores": {{
    "attitude": 1-10,
    "communication": 1-10,
    "technical": 1-10,
    "strategic": 1-10,
    "leadership": 1-10,
    "english": 1-10
  }},
  "strengths": ["strength with evidence quote", ...],
  "weaknesses": ["weakness with evidence quote", ...],
  "summary": "3-4 sentence executive summary",
  "notes": "additional observations for the hiring manager"
}}

Rules:
- Base ALL scores on evidence from the transcript
- Every strength/weakness MUST include a quote from the transcript
- Be fair: distinguish between "doesn't know" and "didn't express well"
- Don't penalize for nervousness or accent
- The recommendation is a suggestion, not a decision
- JSON only, no markdown."""
