"""Lifecycle of live capture sessions, one per interview.

A session owns the aggregation buffer, its flush timer, the analysis
pipeline and, when audio is streamed through the backend, the recognition
connection. Stopping a session force-flushes the buffer and waits for the
pipeline to finish every queued batch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from sqlmodel import Session

from interview_copilot.config import Settings
from interview_copilot.errors import SessionClosedError
from interview_copilot.models.app_settings import PipelineSettingsModel
from interview_copilot.repositories.interviews import InterviewsRepository
from interview_copilot.repositories.settings import get_pipeline_settings
from interview_copilot.services.aggregation_buffer import AggregationBuffer
from interview_copilot.services.analysis_pipeline import InterviewPipeline
from interview_copilot.services.analysis_state import SqlAnalysisStateStore
from interview_copilot.services.deep_analyzer import DeepAnalyzer
from interview_copilot.services.escalation_filter import EscalationFilter
from interview_copilot.services.llm_client import ChatClient, build_chat_client
from interview_copilot.services.recognition import DeepgramStream
from interview_copilot.services.role_resolver import RoleResolver
from interview_copilot.services.segmenter import RecognitionWord, segment_words

logger = logging.getLogger("interview_copilot.capture")

ClientFactory = Callable[[PipelineSettingsModel], Tuple[ChatClient, ChatClient]]
RecognitionFactory = Callable[[], DeepgramStream]


@dataclass
class CaptureSession:
    interview_id: int
    buffer: AggregationBuffer
    pipeline: InterviewPipeline
    timer_task: Optional[asyncio.Task] = None
    recognition: Optional[DeepgramStream] = None
    reader_task: Optional[asyncio.Task] = None
    failed: bool = False


@dataclass
class SessionStatus:
    status: str = "idle"  # idle|live|stopping
    pending_words: int = 0
    queued_batches: int = 0
    batches_processed: int = 0
    recognition_connected: bool = False


class SessionManager:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Optional[Settings] = None,
        client_factory: Optional[ClientFactory] = None,
        recognition_factory: Optional[RecognitionFactory] = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or Settings()
        self._client_factory = client_factory or self._default_clients
        self._recognition_factory = recognition_factory or (lambda: DeepgramStream.from_settings(self.settings))
        self._sessions: Dict[int, CaptureSession] = {}
        self._stopping: Dict[int, bool] = {}

    def _default_clients(self, ps: PipelineSettingsModel) -> Tuple[ChatClient, ChatClient]:
        timeout = ps.analysis.classifier_timeout_seconds
        fast = build_chat_client(ps.fast, self.settings, ps.llm_device, timeout)
        deep = build_chat_client(ps.deep, self.settings, ps.llm_device, timeout)
        return fast, deep

    def get(self, interview_id: int) -> Optional[CaptureSession]:
        return self._sessions.get(interview_id)

    def require(self, interview_id: int) -> CaptureSession:
        session = self._sessions.get(interview_id)
        if session is None or session.failed or session.buffer.closed:
            raise SessionClosedError(f"No live capture session for interview {interview_id}")
        return session

    def get_status(self, interview_id: int) -> SessionStatus:
        session = self._sessions.get(interview_id)
        if session is None:
            return SessionStatus()
        return SessionStatus(
            status="stopping" if self._stopping.get(interview_id) else "live",
            pending_words=session.buffer.pending_words,
            queued_batches=session.pipeline.pending,
            batches_processed=session.pipeline.batches_processed,
            recognition_connected=session.recognition is not None,
        )

    async def start(self, interview_id: int) -> CaptureSession:
        existing = self._sessions.get(interview_id)
        if existing is not None:
            return existing

        with self.session_factory() as db:
            InterviewsRepository(db).require(interview_id)
            ps = get_pipeline_settings(db)
        # Raises on misconfigured providers; the interview is not live yet
        fast, deep = self._client_factory(ps)
        analysis = ps.analysis
        timeout = analysis.classifier_timeout_seconds

        pipeline = InterviewPipeline(
            interview_id,
            self.session_factory,
            escalation=EscalationFilter(fast, timeout=timeout, max_tokens=ps.fast.max_tokens),
            analyzer=DeepAnalyzer(deep, timeout=timeout, max_tokens=ps.deep.max_tokens),
            state_store=SqlAnalysisStateStore(self.session_factory, window=analysis.state_window),
            role_resolver=RoleResolver(
                fast,
                self.session_factory,
                threshold=analysis.role_threshold,
                sample_size=analysis.role_sample_size,
                timeout=timeout,
            ),
            settings=analysis,
        )
        buffer = AggregationBuffer(
            interview_id,
            pipeline.submit,
            window_seconds=analysis.buffer_window_seconds,
            min_words=analysis.min_words,
        )
        session = CaptureSession(interview_id=interview_id, buffer=buffer, pipeline=pipeline)
        with self.session_factory() as db:
            InterviewsRepository(db).mark_live(interview_id)
        pipeline.start()
        session.timer_task = asyncio.create_task(buffer.run(), name=f"buffer-timer-{interview_id}")
        self._sessions[interview_id] = session
        logger.info("Capture session started", extra={"interview_id": interview_id})
        return session

    def ingest_words(self, interview_id: int, words: Iterable[RecognitionWord]) -> int:
        """Segment finalized words and buffer them. Returns the segment count."""
        session = self.require(interview_id)
        count = 0
        for segment in segment_words(w for w in words if w.is_final):
            session.buffer.add(segment)
            count += 1
        return count

    async def attach_recognition(self, interview_id: int) -> DeepgramStream:
        session = self.require(interview_id)
        if session.recognition is not None:
            return session.recognition
        stream = self._recognition_factory()
        await stream.connect()
        session.recognition = stream
        session.reader_task = asyncio.create_task(
            self._read_recognition(interview_id, stream), name=f"recognition-{interview_id}"
        )
        return stream

    async def ingest_audio(self, interview_id: int, chunk: bytes) -> None:
        session = self.require(interview_id)
        if session.recognition is None:
            raise SessionClosedError(f"Interview {interview_id} has no recognition stream")
        await session.recognition.send(chunk)

    async def _read_recognition(self, interview_id: int, stream: DeepgramStream) -> None:
        try:
            async for words in stream.results():
                self.ingest_words(interview_id, words)
        except asyncio.CancelledError:
            raise
        except SessionClosedError:
            return
        except Exception as e:
            logger.exception("Recognition stream failed for interview %s", interview_id)
            await self.fail(interview_id, f"Recognition error: {e}")
            return
        if not self._stopping.get(interview_id):
            await self.fail(interview_id, "Recognition stream disconnected")

    async def fail(self, interview_id: int, reason: str) -> None:
        """Capture broke upstream: surface it and stop buffering."""
        session = self._sessions.get(interview_id)
        if session is None or session.failed:
            return
        session.failed = True
        logger.error("Capture session failed", extra={"interview_id": interview_id, "reason": reason})
        with self.session_factory() as db:
            InterviewsRepository(db).mark_failed(interview_id, reason)
        await self._shutdown(session)
        self._sessions.pop(interview_id, None)

    async def stop(self, interview_id: int) -> bool:
        """Flush, analyze what is queued, release connections. False if not running."""
        session = self._sessions.get(interview_id)
        if session is None:
            return False
        self._stopping[interview_id] = True
        try:
            await self._shutdown(session)
            if not session.failed:
                with self.session_factory() as db:
                    InterviewsRepository(db).mark_completed(interview_id)
        finally:
            self._sessions.pop(interview_id, None)
            self._stopping.pop(interview_id, None)
        logger.info("Capture session stopped", extra={"interview_id": interview_id})
        return True

    async def _shutdown(self, session: CaptureSession) -> None:
        if session.timer_task is not None:
            session.timer_task.cancel()
        session.buffer.close()
        if session.recognition is not None:
            stream, session.recognition = session.recognition, None
            await stream.close()
        if session.reader_task is not None and session.reader_task is not asyncio.current_task():
            session.reader_task.cancel()
        await session.pipeline.drain()

    async def shutdown_all(self) -> None:
        for interview_id in list(self._sessions):
            await self.stop(interview_id)
