"""Streaming speech recognition over the Deepgram live websocket API."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Union
from urllib.parse import urlencode

import websockets

from interview_copilot.config import Settings
from interview_copilot.services.segmenter import RecognitionWord

logger = logging.getLogger("interview_copilot.recognition")

# Browser capture sends 48 kHz opus in webm containers
DEFAULT_PARAMS: Dict[str, str] = {
    "smart_format": "true",
    "diarize": "true",
    "interim_results": "false",
    "utterance_end_ms": "1500",
    "vad_events": "true",
    "encoding": "opus",
    "container": "webm",
    "sample_rate": "48000",
}


def speaker_label(speaker: Any) -> str:
    return f"speaker_{speaker if speaker is not None else 0}"


def parse_results_message(payload: Union[str, bytes, Dict[str, Any]]) -> Optional[List[RecognitionWord]]:
    """Map one recognizer message to finalized words.

    Returns None for anything that is not a final transcription result
    (interim results, VAD and utterance-end events, metadata).
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError:
            logger.debug("Ignoring non-JSON recognition message")
            return None
    if not isinstance(payload, dict):
        return None
    if payload.get("type") != "Results" or not payload.get("is_final"):
        return None
    alternatives = (payload.get("channel") or {}).get("alternatives") or []
    if not alternatives:
        return []
    words = []
    for w in alternatives[0].get("words") or []:
        text = w.get("word")
        if not text:
            continue
        words.append(
            RecognitionWord(
                text=str(text),
                speaker_id=speaker_label(w.get("speaker")),
                confidence=float(w.get("confidence", 1.0)),
                is_final=True,
                punctuated_text=w.get("punctuated_word"),
            )
        )
    return words


class DeepgramStream:
    """One live recognition connection. Disconnects end the stream for good."""

    def __init__(self, api_key: str, url: str, model: str = "nova-3", language: str = "en") -> None:
        self.api_key = api_key
        self.url = url
        self.model = model
        self.language = language
        self._ws = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeepgramStream":
        if not settings.deepgram_api_key:
            raise RuntimeError("Deepgram API key is not configured (IC_DEEPGRAM_API_KEY)")
        return cls(
            api_key=settings.deepgram_api_key,
            url=settings.deepgram_url,
            model=settings.deepgram_model,
            language=settings.deepgram_language,
        )

    @property
    def endpoint(self) -> str:
        params = dict(DEFAULT_PARAMS, model=self.model, language=self.language)
        return f"{self.url}?{urlencode(params)}"

    async def connect(self) -> None:
        self._ws = await websockets.connect(
            self.endpoint,
            additional_headers={"Authorization": f"Token {self.api_key}"},
        )
        logger.info("Recognition stream connected", extra={"model": self.model, "language": self.language})

    async def send(self, chunk: bytes) -> None:
        if self._ws is None:
            raise RuntimeError("Recognition stream is not connected")
        await self._ws.send(chunk)

    async def results(self) -> AsyncIterator[List[RecognitionWord]]:
        """Yield finalized word lists until the connection closes.

        A close with an error code is raised as websockets.ConnectionClosedError.
        """
        if self._ws is None:
            raise RuntimeError("Recognition stream is not connected")
        async for message in self._ws:
            words = parse_results_message(message)
            if words:
                yield words

    async def close(self) -> None:
        if self._ws is None:
            return
        ws, self._ws = self._ws, None
        try:
            await ws.send(json.dumps({"type": "CloseStream"}))
        except websockets.ConnectionClosed:
            pass
        await ws.close()
        logger.info("Recognition stream closed")
