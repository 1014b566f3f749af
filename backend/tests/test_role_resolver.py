import asyncio

from interview_copilot.errors import ClassifierError
from interview_copilot.repositories.interviews import InterviewsRepository
from interview_copilot.repositories.transcripts import TranscriptsRepository
from interview_copilot.services.role_resolver import RoleMap, RoleResolver

from fakes import FakeChatClient

OPENING = [
    ("speaker_0", "Thanks for joining, can you introduce yourself?"),
    ("speaker_1", "Sure, I have five years in QA automation."),
    ("speaker_0", "What would you automate first?"),
    ("speaker_1", "Regression suites that run on every merge."),
    ("speaker_0", "Why those?"),
]


def _roles(session_factory, interview_id):
    with session_factory() as s:
        interview = InterviewsRepository(s).require(interview_id)
        entries = TranscriptsRepository(s).list_by_interview(interview_id)
        return interview, entries


def test_does_not_run_below_threshold_then_runs_once(session_factory, interview_id, add_entries):
    client = FakeChatClient([{"host": "speaker_0", "guest": "speaker_1"}])
    resolver = RoleResolver(client, session_factory, threshold=5)

    add_entries(interview_id, OPENING[:4])
    assert asyncio.run(resolver.maybe_resolve(interview_id)) is None
    assert client.call_count == 0

    add_entries(interview_id, OPENING[4:])
    result = asyncio.run(resolver.maybe_resolve(interview_id))

    assert result == RoleMap(host="speaker_0", guest="speaker_1")
    assert client.call_count == 1
    interview, entries = _roles(session_factory, interview_id)
    assert interview.roles_assigned
    assert (interview.roles_host, interview.roles_guest) == ("speaker_0", "speaker_1")
    assert [e.speaker_role for e in entries] == ["host", "guest", "host", "guest", "host"]


def test_second_call_is_a_no_op(session_factory, interview_id, add_entries):
    client = FakeChatClient([{"host": "speaker_0", "guest": "speaker_1"}, {"host": "speaker_1", "guest": "speaker_0"}])
    resolver = RoleResolver(client, session_factory)
    add_entries(interview_id, OPENING)

    asyncio.run(resolver.maybe_resolve(interview_id))
    assert asyncio.run(resolver.maybe_resolve(interview_id)) is None

    assert client.call_count == 1
    interview, _ = _roles(session_factory, interview_id)
    assert interview.roles_host == "speaker_0"


def test_concurrent_calls_resolve_once(session_factory, interview_id, add_entries):
    client = FakeChatClient([{"host": "speaker_0", "guest": "speaker_1"}] * 3)
    resolver = RoleResolver(client, session_factory)
    add_entries(interview_id, OPENING)

    async def scenario():
        return await asyncio.gather(*(resolver.maybe_resolve(interview_id) for _ in range(3)))

    results = asyncio.run(scenario())

    assert results.count(None) == 2
    assert client.call_count == 1


def test_sample_is_the_earliest_entries(session_factory, interview_id, add_entries):
    client = FakeChatClient([{"host": "speaker_0", "guest": "speaker_1"}])
    resolver = RoleResolver(client, session_factory, sample_size=2)
    add_entries(interview_id, OPENING)

    asyncio.run(resolver.maybe_resolve(interview_id))

    prompt = client.request_history[0]["user"]
    assert "[speaker_0] Thanks for joining" in prompt
    assert "[speaker_1] Sure, I have five years" in prompt
    assert "What would you automate first?" not in prompt
    assert client.request_history[0]["max_tokens"] == 100


def test_unusable_answers_leave_roles_unassigned_and_retry(session_factory, interview_id, add_entries):
    client = FakeChatClient(
        [
            ClassifierError("provider down"),
            {"host": "speaker_0", "guest": "speaker_0"},
            {"host": "speaker_0", "guest": "speaker_7"},
            "not json",
            {"host": "speaker_0", "guest": "speaker_1"},
        ]
    )
    resolver = RoleResolver(client, session_factory)
    add_entries(interview_id, OPENING)

    for _ in range(4):
        assert asyncio.run(resolver.maybe_resolve(interview_id)) is None
        interview, entries = _roles(session_factory, interview_id)
        assert not interview.roles_assigned
        assert all(e.speaker_role is None for e in entries)

    assert asyncio.run(resolver.maybe_resolve(interview_id)) == RoleMap("speaker_0", "speaker_1")
    assert client.call_count == 5


def test_roles_label_new_entries_inline(session_factory, interview_id, add_entries):
    resolver = RoleResolver(FakeChatClient([{"host": "speaker_0", "guest": "speaker_1"}]), session_factory)
    add_entries(interview_id, OPENING)
    asyncio.run(resolver.maybe_resolve(interview_id))

    interview, _ = _roles(session_factory, interview_id)
    assert interview.role_for("speaker_1") == "guest"
    assert interview.role_for("speaker_9") is None
