"""Group diarized recognition words into same-speaker utterance segments."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional


@dataclass(frozen=True)
class RecognitionWord:
    """One word of a finalized recognition result."""
    text: str
    speaker_id: str
    confidence: float = 1.0
    is_final: bool = True
    # Punctuated/cased form when the recognizer provides one
    punctuated_text: Optional[str] = None

    @property
    def display_text(self) -> str:
        return self.punctuated_text or self.text


@dataclass(frozen=True)
class UtteranceSegment:
    speaker_id: str
    text: str
    confidence: float

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    def render(self) -> str:
        return f"[{self.speaker_id}] {self.text}"


def segment_words(words: Iterable[RecognitionWord]) -> Iterator[UtteranceSegment]:
    """Yield maximal runs of consecutive words sharing a speaker id.

    Segment confidence is the minimum over its words. Each call is
    independent: runs are never merged across recognition results.
    """
    speaker: Optional[str] = None
    parts: List[str] = []
    confidence = 1.0
    for word in words:
        if parts and word.speaker_id != speaker:
            yield UtteranceSegment(speaker_id=speaker or "", text=" ".join(parts), confidence=confidence)
            parts = []
        if not parts:
            speaker = word.speaker_id
            confidence = word.confidence
        else:
            confidence = min(confidence, word.confidence)
        parts.append(word.display_text)
    if parts:
        yield UtteranceSegment(speaker_id=speaker or "", text=" ".join(parts), confidence=confidence)
