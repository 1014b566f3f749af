import asyncio

import pytest

from interview_copilot.errors import ClassifierError
from interview_copilot.services.escalation_filter import EscalationContext, EscalationFilter

from fakes import FakeChatClient, slow_response

CHUNK = "[Candidate] We aim for 100% automated coverage on everything."


def _evaluate(client, timeout=1.0, context=None):
    filt = EscalationFilter(client, timeout=timeout)
    return asyncio.run(filt.evaluate(CHUNK, context or EscalationContext()))


def test_escalating_decision_is_parsed():
    client = FakeChatClient(
        [
            '```json\n{"escalate": true, "reason": "coverage claim", "quick_note": "check ROI",'
            ' "severity": "high", "topic": "coverage"}\n```'
        ]
    )

    decision = _evaluate(client)

    assert decision.escalate is True
    assert decision.reason == "coverage claim"
    assert decision.quick_note == "check ROI"
    assert decision.severity == "high"
    assert decision.topic == "coverage"


def test_prompt_carries_rolling_context():
    client = FakeChatClient([{"escalate": False, "reason": "small talk", "severity": "none"}])
    context = EscalationContext(
        candidate_name="Ada",
        position="QA Engineer",
        minutes=7,
        recent_context=["[Interviewer] How do you pick what to automate?"],
        insights_so_far=3,
    )

    decision = _evaluate(client, context=context)

    assert decision.escalate is False
    user = client.request_history[0]["user"]
    assert "Ada (QA Engineer)" in user
    assert "Minute: 7" in user
    assert "Insights generated so far: 3" in user
    assert "How do you pick what to automate?" in user
    assert CHUNK in user


def test_unknown_severity_becomes_none():
    decision = _evaluate(FakeChatClient([{"escalate": True, "reason": "r", "severity": "urgent"}]))
    assert decision.escalate is True
    assert decision.severity == "none"


@pytest.mark.parametrize(
    "response",
    [
        ClassifierError("provider down"),
        RuntimeError("boom"),
        "I cannot answer that",
        "[true]",
    ],
)
def test_failures_fail_closed(response):
    decision = _evaluate(FakeChatClient([response]))

    assert decision.escalate is False
    assert decision.severity == "none"
    assert decision.quick_note is None
    assert "failed" in decision.reason


def test_timeout_fails_closed():
    decision = _evaluate(FakeChatClient([slow_response(0.5, {"escalate": True})]), timeout=0.05)

    assert decision.escalate is False
    assert decision.severity == "none"
