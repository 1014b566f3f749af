"""Per-interview batching of utterance segments ahead of analysis."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable, List, Optional

from interview_copilot.errors import SessionClosedError
from interview_copilot.services.segmenter import UtteranceSegment

logger = logging.getLogger("interview_copilot.buffer")

BatchCallback = Callable[[List[UtteranceSegment]], None]


class AggregationBuffer:
    """Accumulates segments and releases them as one ordered batch.

    Flushes are periodic: the deadline is `window_seconds` after the previous
    flush (or creation), whatever arrived in between. A non-forced flush below
    `min_words` drops the batch. `close()` forces a final flush and rejects
    further segments. `on_batch` is called while the lock is held, so it must
    only hand the batch off (e.g. put it on a queue).
    """

    def __init__(
        self,
        interview_id: int,
        on_batch: BatchCallback,
        window_seconds: float = 15.0,
        min_words: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interview_id = interview_id
        self.window_seconds = window_seconds
        self.min_words = min_words
        self._on_batch = on_batch
        self._clock = clock
        self._lock = threading.RLock()
        self._queue: List[UtteranceSegment] = []
        self._last_flush = clock()
        self._closed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_words(self) -> int:
        with self._lock:
            return sum(s.word_count for s in self._queue)

    def add(self, segment: UtteranceSegment) -> None:
        with self._lock:
            if self._closed:
                raise SessionClosedError(f"Buffer for interview {self.interview_id} is closed")
            self._queue.append(segment)

    def seconds_until_due(self) -> float:
        with self._lock:
            return max(0.0, self._last_flush + self.window_seconds - self._clock())

    def flush(self, force: bool = False) -> Optional[List[UtteranceSegment]]:
        """Empty the queue; emit the batch unless it is too small.

        Returns the emitted batch, or None when nothing was emitted.
        """
        with self._lock:
            batch = self._queue
            self._queue = []
            self._last_flush = self._clock()
            if not batch:
                return None
            total_words = sum(s.word_count for s in batch)
            if not force and total_words < self.min_words:
                logger.debug(
                    "Discarding small batch",
                    extra={"interview_id": self.interview_id, "words": total_words, "segments": len(batch)},
                )
                return None
            logger.info(
                "Flushing batch",
                extra={"interview_id": self.interview_id, "words": total_words, "segments": len(batch), "forced": force},
            )
            self._on_batch(batch)
            return batch

    def close(self) -> Optional[List[UtteranceSegment]]:
        """Final flush on session stop; the minimum word count does not apply."""
        with self._lock:
            if self._closed:
                return None
            self._closed = True
            return self.flush(force=True)

    async def run(self) -> None:
        """Timer loop; cancel it or close the buffer to end it."""
        while not self._closed:
            await asyncio.sleep(self.seconds_until_due())
            if self._closed:
                break
            if self.seconds_until_due() <= 0:
                self.flush()
