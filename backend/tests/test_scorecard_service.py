import asyncio

import pytest
from sqlmodel import select

from interview_copilot.errors import InterviewNotFoundError, MissingDataError, ScorecardParseError
from interview_copilot.models.scorecard import Scorecard
from interview_copilot.repositories.interviews import InterviewsRepository
from interview_copilot.services.analysis_state import InsightDraft, SqlAnalysisStateStore
from interview_copilot.services.scorecard_service import ScorecardSynthesizer, flatten_point, normalize_recommendation

from fakes import FakeChatClient

TRANSCRIPT = [
    ("speaker_0", "Would you aim for full automated coverage?"),
    ("speaker_1", "No, I would weigh the ROI of each suite first."),
]


def _reply(**overrides):
    data = {
        "overall_score": 8,
        "recommendation": "hire",
        "scores": {
            "attitude": 8,
            "communication": 7,
            "technical": 9,
            "strategic": 8,
            "leadership": 6,
            "english": 12,
        },
        "strengths": ['Thinks in ROI: "I would weigh the ROI of each suite first."'],
        "weaknesses": [],
        "summary": "Strong candidate.",
        "notes": "Ask about leadership.",
    }
    data.update(overrides)
    return data


def _scorecards(session):
    return list(session.exec(select(Scorecard)))


def test_synthesizes_and_marks_completed(session_factory, interview_id, add_entries, session):
    add_entries(interview_id, TRANSCRIPT)
    store = SqlAnalysisStateStore(session_factory)
    store.append(interview_id, InsightDraft(type="green-flag", content="Weighs ROI", evidence="weigh the ROI"))
    store.append(interview_id, InsightDraft(type="red-flag", content="Vague on CI"))
    client = FakeChatClient([_reply()])

    scorecard = asyncio.run(ScorecardSynthesizer(client, session_factory).synthesize(interview_id))

    assert scorecard.overall_score == 8
    assert scorecard.recommendation == "hire"
    assert scorecard.english == 10
    assert scorecard.technical == 9
    assert scorecard.strengths() == ['Thinks in ROI: "I would weigh the ROI of each suite first."']
    interview = InterviewsRepository(session).require(interview_id)
    assert interview.status == "completed"
    assert interview.completed_at is not None

    request = client.request_history[0]
    assert request["max_tokens"] == 4096
    assert "[speaker_1] No, I would weigh the ROI" in request["user"]
    assert '- Weighs ROI (evidence: "weigh the ROI")' in request["user"]
    assert "Red flags detected during interview (1)" in request["user"]


def test_second_run_overwrites_the_same_row(session_factory, interview_id, add_entries, session):
    add_entries(interview_id, TRANSCRIPT)
    client = FakeChatClient([_reply(), _reply(overall_score=4, recommendation="No Hire")])
    synthesizer = ScorecardSynthesizer(client, session_factory)

    first = asyncio.run(synthesizer.synthesize(interview_id))
    second = asyncio.run(synthesizer.synthesize(interview_id))

    rows = _scorecards(session)
    assert len(rows) == 1
    assert first.id == second.id
    assert rows[0].overall_score == 4
    assert rows[0].recommendation == "no_hire"


def test_missing_interview(session_factory):
    with pytest.raises(InterviewNotFoundError):
        asyncio.run(ScorecardSynthesizer(FakeChatClient(), session_factory).synthesize(999))


def test_empty_transcript_is_missing_data(session_factory, interview_id):
    client = FakeChatClient([_reply()])

    with pytest.raises(MissingDataError):
        asyncio.run(ScorecardSynthesizer(client, session_factory).synthesize(interview_id))
    assert client.call_count == 0


@pytest.mark.parametrize(
    "reply",
    [
        "Overall a decent interview.",
        {"overall_score": 7, "recommendation": "hire"},
        _reply(strengths="one big string"),
        {"scores": {"technical": "n/a"}},
    ],
)
def test_unusable_output_writes_nothing(session_factory, interview_id, add_entries, session, reply):
    add_entries(interview_id, TRANSCRIPT)

    with pytest.raises(ScorecardParseError):
        asyncio.run(ScorecardSynthesizer(FakeChatClient([reply]), session_factory).synthesize(interview_id))

    assert _scorecards(session) == []
    assert InterviewsRepository(session).require(interview_id).status == "scheduled"


def test_overall_is_derived_when_missing(session_factory, interview_id, add_entries):
    add_entries(interview_id, TRANSCRIPT)
    reply = _reply(overall_score=None, scores={"technical": 6, "communication": 8})

    scorecard = asyncio.run(ScorecardSynthesizer(FakeChatClient([reply]), session_factory).synthesize(interview_id))

    assert scorecard.overall_score == 7


@pytest.mark.parametrize(
    "value, expected",
    [("hire", "hire"), ("No Hire", "no_hire"), ("no-hire", "no_hire"), ("strong yes", "maybe"), (None, "maybe")],
)
def test_normalize_recommendation(value, expected):
    assert normalize_recommendation(value) == expected


def test_structured_points_are_stored_as_text(session_factory, interview_id, add_entries):
    add_entries(interview_id, TRANSCRIPT)
    reply = _reply(
        strengths=[{"point": "Thinks in ROI", "quote": '"I would weigh the ROI of each suite first."'}],
        weaknesses=[{"point": "No leadership examples"}, "Vague on CI"],
    )

    scorecard = asyncio.run(ScorecardSynthesizer(FakeChatClient([reply]), session_factory).synthesize(interview_id))

    assert scorecard.strengths() == ['Thinks in ROI: "I would weigh the ROI of each suite first."']
    assert scorecard.weaknesses() == ["No leadership examples", "Vague on CI"]


def test_flatten_point_without_known_keys_keeps_json():
    assert flatten_point({"area": "testing"}) == '{"area": "testing"}'
    assert flatten_point({"evidence": "we ship daily"}) == '"we ship daily"'
