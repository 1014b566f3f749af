import asyncio

import pytest

from interview_copilot.errors import SessionClosedError
from interview_copilot.repositories.interviews import InterviewsRepository
from interview_copilot.repositories.transcripts import TranscriptsRepository
from interview_copilot.services.capture_service import SessionManager
from interview_copilot.services.segmenter import RecognitionWord

from fakes import FakeChatClient

SKIP = {"escalate": False, "reason": "small talk", "severity": "none"}


def _manager(session_factory, fast=None, deep=None):
    fast = fast or FakeChatClient([SKIP] * 10)
    deep = deep or FakeChatClient()
    return SessionManager(session_factory, client_factory=lambda ps: (fast, deep))


def _words(speaker, text, is_final=True):
    return [RecognitionWord(text=t, speaker_id=speaker, confidence=0.8, is_final=is_final) for t in text.split()]


def _interview(session_factory, interview_id):
    with session_factory() as s:
        return InterviewsRepository(s).require(interview_id)


def test_stop_flushes_short_tail_and_completes(session_factory, interview_id):
    manager = _manager(session_factory)

    async def scenario():
        await manager.start(interview_id)
        assert _interview(session_factory, interview_id).status == "live"
        assert manager.ingest_words(interview_id, _words("speaker_0", "ok thanks")) == 1
        assert manager.get_status(interview_id).pending_words == 2
        return await manager.stop(interview_id)

    assert asyncio.run(scenario()) is True

    with session_factory() as s:
        entries = TranscriptsRepository(s).list_by_interview(interview_id)
    assert [(e.speaker_id, e.text) for e in entries] == [("speaker_0", "ok thanks")]
    assert _interview(session_factory, interview_id).status == "completed"
    assert manager.get(interview_id) is None
    assert manager.get_status(interview_id).status == "idle"


def test_interim_words_are_not_buffered(session_factory, interview_id):
    manager = _manager(session_factory)

    async def scenario():
        await manager.start(interview_id)
        count = manager.ingest_words(interview_id, _words("speaker_1", "maybe we", is_final=False))
        pending = manager.get_status(interview_id).pending_words
        await manager.stop(interview_id)
        return count, pending

    assert asyncio.run(scenario()) == (0, 0)


def test_start_is_idempotent(session_factory, interview_id):
    manager = _manager(session_factory)

    async def scenario():
        first = await manager.start(interview_id)
        second = await manager.start(interview_id)
        await manager.stop(interview_id)
        return first is second

    assert asyncio.run(scenario())


def test_failure_marks_interview_and_rejects_input(session_factory, interview_id):
    manager = _manager(session_factory)

    async def scenario():
        await manager.start(interview_id)
        await manager.fail(interview_id, "Recognition stream disconnected")
        with pytest.raises(SessionClosedError):
            manager.ingest_words(interview_id, _words("speaker_0", "hello"))
        return await manager.stop(interview_id)

    assert asyncio.run(scenario()) is False
    interview = _interview(session_factory, interview_id)
    assert interview.status == "failed"


def test_stop_without_session(session_factory, interview_id):
    assert asyncio.run(_manager(session_factory).stop(interview_id)) is False


class FakeStream:
    """Recognition stream yielding scripted word lists, then ending or raising."""

    def __init__(self, batches=(), error=None, hold_open=False):
        self.batches = list(batches)
        self.error = error
        self.hold_open = hold_open
        self.sent = []
        self.connected = False
        self.closed = False
        self._released = asyncio.Event()

    async def connect(self):
        self.connected = True

    async def send(self, chunk):
        self.sent.append(chunk)

    async def results(self):
        for words in self.batches:
            yield words
        if self.error is not None:
            raise self.error
        if self.hold_open:
            await self._released.wait()

    async def close(self):
        self.closed = True
        self._released.set()


def _attach_and_wait(manager, interview_id):
    async def scenario():
        await manager.start(interview_id)
        await manager.attach_recognition(interview_id)
        await manager.get(interview_id).reader_task

    asyncio.run(scenario())


def test_start_with_misconfigured_provider_does_not_go_live(session_factory, interview_id):
    def broken_clients(ps):
        raise ValueError("Hosted provider needs an API key")

    manager = SessionManager(session_factory, client_factory=broken_clients)

    with pytest.raises(ValueError):
        asyncio.run(manager.start(interview_id))

    assert _interview(session_factory, interview_id).status == "scheduled"
    assert manager.get(interview_id) is None


def test_recognition_disconnect_fails_the_interview(session_factory, interview_id):
    stream = FakeStream(batches=[_words("speaker_1", "I write the tests first")])
    manager = SessionManager(
        session_factory,
        client_factory=lambda ps: (FakeChatClient([SKIP] * 5), FakeChatClient()),
        recognition_factory=lambda: stream,
    )

    _attach_and_wait(manager, interview_id)

    interview = _interview(session_factory, interview_id)
    assert interview.status == "failed"
    assert interview.failure_reason == "Recognition stream disconnected"
    assert stream.connected and stream.closed
    with session_factory() as s:
        entries = TranscriptsRepository(s).list_by_interview(interview_id)
    assert [e.text for e in entries] == ["I write the tests first"]
    assert manager.get(interview_id) is None
    with pytest.raises(SessionClosedError):
        manager.ingest_words(interview_id, _words("speaker_1", "still there?"))


def test_recognition_error_records_the_cause(session_factory, interview_id):
    stream = FakeStream(error=RuntimeError("socket reset"))
    manager = _manager(session_factory)
    manager._recognition_factory = lambda: stream

    _attach_and_wait(manager, interview_id)

    interview = _interview(session_factory, interview_id)
    assert interview.status == "failed"
    assert interview.failure_reason == "Recognition error: socket reset"
    assert stream.closed


def test_stop_closes_recognition_without_failing(session_factory, interview_id):
    stream = FakeStream(hold_open=True)
    manager = SessionManager(
        session_factory,
        client_factory=lambda ps: (FakeChatClient([SKIP] * 5), FakeChatClient()),
        recognition_factory=lambda: stream,
    )

    async def scenario():
        await manager.start(interview_id)
        await manager.attach_recognition(interview_id)
        await manager.ingest_audio(interview_id, b"\x1a\x45")
        assert manager.get_status(interview_id).recognition_connected
        return await manager.stop(interview_id)

    assert asyncio.run(scenario()) is True
    assert stream.sent == [b"\x1a\x45"]
    assert stream.closed
    interview = _interview(session_factory, interview_id)
    assert interview.status == "completed"
    assert interview.failure_reason is None
