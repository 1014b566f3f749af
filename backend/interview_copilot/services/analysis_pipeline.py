"""Per-interview analysis worker.

Every flushed batch of an interview goes through one mailbox and one worker
task: transcript persistence, the role check, the escalation filter and the
deep analyzer run strictly in batch order. The deep analyzer therefore always
reads the state written by the previous call for the same interview.
Different interviews have separate pipelines and run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from sqlmodel import Session

from interview_copilot.errors import ClassifierError, SessionClosedError
from interview_copilot.models.app_settings import AnalysisSettings
from interview_copilot.models.insight import Insight
from interview_copilot.models.interview import Interview
from interview_copilot.models.transcript_entry import TranscriptEntry
from interview_copilot.repositories.insights import InsightsRepository
from interview_copilot.repositories.interviews import InterviewsRepository
from interview_copilot.repositories.transcripts import TranscriptsRepository
from interview_copilot.services.analysis_state import AnalysisStateStore
from interview_copilot.services.deep_analyzer import AnalysisRequest, DeepAnalyzer, fallback_insight
from interview_copilot.services.escalation_filter import EscalationContext, EscalationFilter
from interview_copilot.services.role_resolver import RoleResolver
from interview_copilot.services.segmenter import UtteranceSegment

logger = logging.getLogger("interview_copilot.pipeline")


def speaker_label(interview: Interview, speaker_id: str) -> str:
    role = interview.role_for(speaker_id)
    if role == "host":
        return "Interviewer"
    if role == "guest":
        return "Candidate"
    return speaker_id or "Unknown"


class InterviewPipeline:
    def __init__(
        self,
        interview_id: int,
        session_factory: Callable[[], Session],
        escalation: EscalationFilter,
        analyzer: DeepAnalyzer,
        state_store: AnalysisStateStore,
        role_resolver: RoleResolver,
        settings: Optional[AnalysisSettings] = None,
    ) -> None:
        self.interview_id = interview_id
        self.session_factory = session_factory
        self.escalation = escalation
        self.analyzer = analyzer
        self.state_store = state_store
        self.role_resolver = role_resolver
        self.settings = settings or AnalysisSettings()
        self._queue: "asyncio.Queue[Optional[List[UtteranceSegment]]]" = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._worker: Optional[asyncio.Task] = None
        self._closed = False
        self.batches_processed = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._worker is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._worker = self._loop.create_task(self._run(), name=f"interview-pipeline-{self.interview_id}")

    def submit(self, batch: Sequence[UtteranceSegment]) -> None:
        """Queue a flushed batch without waiting for its analysis."""
        if self._closed:
            raise SessionClosedError(f"Pipeline for interview {self.interview_id} is closed")
        items = list(batch)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self._loop is None or running is self._loop:
            self._queue.put_nowait(items)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, items)

    async def drain(self) -> None:
        """Stop accepting batches and wait until every queued batch is analyzed."""
        if self._closed:
            if self._worker is not None:
                await self._worker
            return
        self._closed = True
        self._queue.put_nowait(None)
        if self._worker is not None:
            await self._worker

    async def _run(self) -> None:
        while True:
            batch = await self._queue.get()
            try:
                if batch is None:
                    return
                await self.process_batch(batch)
            except Exception:
                logger.exception("Failed to process batch for interview %s", self.interview_id)
            finally:
                self._queue.task_done()

    async def process_batch(self, batch: Sequence[UtteranceSegment]) -> List[Insight]:
        if not batch:
            return []
        context_size = max(self.settings.recent_context_size, self.settings.escalation_context_size)
        with self.session_factory() as session:
            interview = InterviewsRepository(session).require(self.interview_id)
            transcripts = TranscriptsRepository(session)
            context_lines = [e.render() for e in transcripts.list_recent(self.interview_id, context_size)]
            transcripts.add_entries(
                TranscriptEntry(
                    interview_id=self.interview_id,
                    text=segment.text,
                    speaker_id=segment.speaker_id,
                    speaker_role=interview.role_for(segment.speaker_id),
                    confidence=segment.confidence,
                )
                for segment in batch
            )

        try:
            await self.role_resolver.maybe_resolve(self.interview_id)
        except ClassifierError as e:
            logger.warning("Role check failed for interview %s: %s", self.interview_id, e)

        with self.session_factory() as session:
            interview = InterviewsRepository(session).require(self.interview_id)

        if self.settings.analyze_per_segment:
            chunks = [[segment] for segment in batch]
        else:
            chunks = [list(batch)]

        stored: List[Insight] = []
        for chunk in chunks:
            lines = [f"[{speaker_label(interview, s.speaker_id)}] {s.text}" for s in chunk]
            stored.extend(await self.analyze_chunk(interview, "\n".join(lines), context_lines))
            context_lines = (context_lines + lines)[-context_size:] if context_size else []

        self.batches_processed += 1
        return stored

    async def analyze_chunk(self, interview: Interview, chunk_text: str, context_lines: List[str]) -> List[Insight]:
        with self.session_factory() as session:
            existing = [f"[{i.type}] {i.content}" for i in InsightsRepository(session).list_by_interview(self.interview_id)]

        esc_size = self.settings.escalation_context_size
        decision = await self.escalation.evaluate(
            chunk_text,
            EscalationContext(
                candidate_name=interview.candidate_name,
                position=interview.position,
                minutes=interview.elapsed_minutes(),
                recent_context=context_lines[-esc_size:] if esc_size else [],
                insights_so_far=len(existing),
            ),
        )
        if not decision.escalate:
            return []

        state = self.state_store.load_latest(self.interview_id)
        recent_size = self.settings.recent_context_size
        request = AnalysisRequest(
            chunk_text=chunk_text,
            escalation_reason=decision.reason,
            topic=decision.topic,
            candidate_name=interview.candidate_name,
            position=interview.position,
            minutes=interview.elapsed_minutes(),
            recent_transcript=context_lines[-recent_size:] if recent_size else [],
            state=state,
            existing_insights=existing,
        )
        try:
            drafts = await self.analyzer.analyze(request)
        except ClassifierError as e:
            logger.warning("Deep analysis failed for interview %s: %s", self.interview_id, e)
            drafts = [fallback_insight(e, decision.topic)]
        return [self.state_store.append(self.interview_id, draft) for draft in drafts]
