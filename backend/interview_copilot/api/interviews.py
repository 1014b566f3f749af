from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field
from sqlmodel import Session

from interview_copilot.deps import get_scorecard_synthesizer, get_session, get_session_manager
from interview_copilot.errors import SessionClosedError
from interview_copilot.models.insight import Insight
from interview_copilot.models.interview import Interview
from interview_copilot.models.scorecard import SCORE_DIMENSIONS, Scorecard
from interview_copilot.models.transcript_entry import TranscriptEntry
from interview_copilot.repositories.insights import InsightsRepository
from interview_copilot.repositories.interviews import InterviewsRepository
from interview_copilot.repositories.scorecards import ScorecardsRepository
from interview_copilot.repositories.transcripts import TranscriptsRepository
from interview_copilot.services.capture_service import SessionManager
from interview_copilot.services.deep_analyzer import clamp_score
from interview_copilot.services.recognition import parse_results_message
from interview_copilot.services.scorecard_service import ScorecardSynthesizer, normalize_recommendation
from interview_copilot.services.segmenter import RecognitionWord

logger = logging.getLogger("interview_copilot.api")


router = APIRouter(prefix="/interviews", tags=["interviews"])


class CreateInterviewRequest(BaseModel):
    candidate_name: Optional[str] = None
    position: Optional[str] = None


class UpdateInterviewRequest(BaseModel):
    candidate_name: Optional[str] = None
    position: Optional[str] = None


class StartRequest(BaseModel):
    # Open a backend-side recognition stream for audio sent over the websocket
    recognition: bool = False


class WordIn(BaseModel):
    text: str
    speaker_id: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    is_final: bool = True
    punctuated_text: Optional[str] = None


class RecognitionRequest(BaseModel):
    words: List[WordIn] = Field(default_factory=list)
    # A raw recognizer message relayed as-is by the capture front end
    message: Optional[Dict[str, Any]] = None


class MarkUsedRequest(BaseModel):
    used: bool = True


class ScorecardUpdate(BaseModel):
    technical: Optional[int] = None
    communication: Optional[int] = None
    experience: Optional[int] = None
    attitude: Optional[int] = None
    strategic: Optional[int] = None
    leadership: Optional[int] = None
    english: Optional[int] = None
    overall_score: Optional[int] = None
    recommendation: Optional[str] = None
    strengths: Optional[List[str]] = None
    weaknesses: Optional[List[str]] = None
    summary: Optional[str] = None
    notes: Optional[str] = None


def _require_interview(session: Session, interview_id: int) -> Interview:
    interview = InterviewsRepository(session).get(interview_id)
    if interview is None:
        raise HTTPException(status_code=404, detail="Interview not found")
    return interview


def _scorecard_payload(scorecard: Optional[Scorecard]) -> Optional[Dict[str, Any]]:
    if scorecard is None:
        return None
    data = scorecard.dict(exclude={"strengths_json", "weaknesses_json"})
    data["strengths"] = scorecard.strengths()
    data["weaknesses"] = scorecard.weaknesses()
    return data


@router.post("")
def create_interview(body: CreateInterviewRequest, session: Session = Depends(get_session)) -> Interview:
    interview = Interview(
        candidate_name=body.candidate_name or "Unknown",
        position=body.position or "Unknown",
    )
    return InterviewsRepository(session).create(interview)


@router.get("")
def list_interviews(
    limit: int = 50, offset: int = 0, status: Optional[str] = None, session: Session = Depends(get_session)
) -> List[Interview]:
    return InterviewsRepository(session).list(limit=limit, offset=offset, status=status)


@router.get("/scorecards/compare")
def compare_scorecards(ids: Optional[str] = None, session: Session = Depends(get_session)) -> Dict[str, Any]:
    """Side-by-side dimension scores for several interviews (`?ids=1,2,3`)."""
    if not ids:
        raise HTTPException(status_code=400, detail="Missing ids parameter")
    try:
        interview_ids = [int(part.strip()) for part in ids.split(",")]
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid interview IDs")

    interviews = {i.id: i for i in InterviewsRepository(session).list_by_ids(interview_ids)}
    scorecards = ScorecardsRepository(session).by_interviews(interview_ids)
    candidates: List[Dict[str, Any]] = []
    for interview_id in dict.fromkeys(interview_ids):
        interview = interviews.get(interview_id)
        if interview is None:
            continue
        scorecard = scorecards.get(interview_id)
        candidates.append(
            {
                "id": interview_id,
                "name": interview.candidate_name or f"Interview {interview_id}",
                "status": interview.status,
                "scorecard": (
                    {dim: getattr(scorecard, dim) for dim in SCORE_DIMENSIONS} if scorecard is not None else None
                ),
            }
        )
    return {"candidates": candidates}


@router.get("/{interview_id}")
def get_interview_detail(
    interview_id: int,
    session: Session = Depends(get_session),
    manager: SessionManager = Depends(get_session_manager),
) -> Dict[str, Any]:
    interview = _require_interview(session, interview_id)
    scorecard = ScorecardsRepository(session).get_by_interview(interview_id)
    return {
        "interview": interview,
        "capture": asdict(manager.get_status(interview_id)),
        "scorecard": _scorecard_payload(scorecard),
    }


@router.put("/{interview_id}")
def update_interview(interview_id: int, body: UpdateInterviewRequest, session: Session = Depends(get_session)) -> Interview:
    repo = InterviewsRepository(session)
    interview = _require_interview(session, interview_id)
    if body.candidate_name is not None:
        interview.candidate_name = body.candidate_name
    if body.position is not None:
        interview.position = body.position
    return repo.update(interview)


@router.post("/{interview_id}/start")
async def start_interview(
    interview_id: int,
    body: Optional[StartRequest] = None,
    session: Session = Depends(get_session),
    manager: SessionManager = Depends(get_session_manager),
) -> Dict[str, Any]:
    _require_interview(session, interview_id)
    try:
        await manager.start(interview_id)
    except ValueError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if body is not None and body.recognition:
        try:
            await manager.attach_recognition(interview_id)
        except Exception as e:
            logger.exception("Could not open recognition stream for interview %s", interview_id)
            await manager.fail(interview_id, f"Recognition unavailable: {e}")
            raise HTTPException(status_code=502, detail=f"Recognition unavailable: {e}")
    return {"interview_id": interview_id, "status": "live"}


@router.post("/{interview_id}/stop")
async def stop_interview(
    interview_id: int,
    scorecard: bool = False,
    session: Session = Depends(get_session),
    manager: SessionManager = Depends(get_session_manager),
) -> Dict[str, Any]:
    _require_interview(session, interview_id)
    stopped = await manager.stop(interview_id)
    result: Dict[str, Any] = {"ok": True, "stopped": stopped}
    if scorecard:
        synthesizer = get_scorecard_synthesizer()
        result["scorecard"] = _scorecard_payload(await synthesizer.synthesize(interview_id))
    session.expire_all()
    result["interview"] = _require_interview(session, interview_id)
    return result


@router.post("/{interview_id}/recognition")
async def post_recognition(
    interview_id: int,
    body: RecognitionRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> Dict[str, Any]:
    words = [RecognitionWord(**w.dict()) for w in body.words]
    if body.message is not None:
        words.extend(parse_results_message(body.message) or [])
    segments = manager.ingest_words(interview_id, words)
    return {"ok": True, "segments": segments}


@router.websocket("/{interview_id}/audio")
async def stream_audio(
    websocket: WebSocket, interview_id: int, manager: SessionManager = Depends(get_session_manager)
) -> None:
    await websocket.accept()
    try:
        await manager.attach_recognition(interview_id)
    except SessionClosedError as e:
        await websocket.close(code=4409, reason=str(e))
        return
    except Exception as e:
        logger.exception("Could not open recognition stream for interview %s", interview_id)
        await manager.fail(interview_id, f"Recognition unavailable: {e}")
        await websocket.close(code=1011, reason="Recognition unavailable")
        return
    try:
        while True:
            chunk = await websocket.receive_bytes()
            await manager.ingest_audio(interview_id, chunk)
    except WebSocketDisconnect:
        logger.info("Audio websocket closed for interview %s", interview_id)
    except SessionClosedError as e:
        await websocket.close(code=4409, reason=str(e))


@router.get("/{interview_id}/transcript")
def get_transcript(interview_id: int, session: Session = Depends(get_session)) -> List[TranscriptEntry]:
    _require_interview(session, interview_id)
    return TranscriptsRepository(session).list_by_interview(interview_id)


@router.get("/{interview_id}/insights")
def list_insights(
    interview_id: int, after_id: Optional[int] = None, session: Session = Depends(get_session)
) -> List[Insight]:
    _require_interview(session, interview_id)
    return InsightsRepository(session).list_by_interview(interview_id, after_id=after_id)


@router.post("/{interview_id}/insights/{insight_id}/used")
def mark_insight_used(
    interview_id: int,
    insight_id: int,
    body: Optional[MarkUsedRequest] = None,
    session: Session = Depends(get_session),
) -> Insight:
    repo = InsightsRepository(session)
    insight = repo.get(interview_id, insight_id)
    if insight is None:
        raise HTTPException(status_code=404, detail="Insight not found")
    return repo.set_used(insight, body.used if body is not None else True)


@router.get("/{interview_id}/stats")
def get_stats(interview_id: int, session: Session = Depends(get_session)) -> Dict[str, Any]:
    _require_interview(session, interview_id)
    insights = InsightsRepository(session).list_by_interview(interview_id)
    topics: List[str] = []
    for insight in insights:
        if insight.topic and insight.topic not in topics:
            topics.append(insight.topic)
    return {
        "red_flag_count": sum(1 for i in insights if i.type == "red-flag"),
        "green_flag_count": sum(1 for i in insights if i.type == "green-flag"),
        "suggestion_count": sum(1 for i in insights if i.type == "suggestion"),
        "contradiction_count": sum(1 for i in insights if i.type == "contradiction"),
        "topics_covered": topics,
        "total_insights": len(insights),
    }


@router.get("/{interview_id}/scorecard")
def get_scorecard(interview_id: int, session: Session = Depends(get_session)) -> Optional[Dict[str, Any]]:
    _require_interview(session, interview_id)
    return _scorecard_payload(ScorecardsRepository(session).get_by_interview(interview_id))


@router.post("/{interview_id}/scorecard")
async def generate_scorecard(
    interview_id: int,
    synthesizer: ScorecardSynthesizer = Depends(get_scorecard_synthesizer),
) -> Dict[str, Any]:
    scorecard = await synthesizer.synthesize(interview_id)
    return {"ok": True, "scorecard": _scorecard_payload(scorecard)}


@router.put("/{interview_id}/scorecard")
def update_scorecard(
    interview_id: int, body: ScorecardUpdate, session: Session = Depends(get_session)
) -> Optional[Dict[str, Any]]:
    _require_interview(session, interview_id)
    raw = body.dict(exclude_none=True)
    values: Dict[str, Any] = {}
    for key, value in raw.items():
        if key in ("strengths", "weaknesses"):
            values[f"{key}_json"] = json.dumps(value, ensure_ascii=False)
        elif key == "recommendation":
            values[key] = normalize_recommendation(value)
        elif key in ("summary", "notes"):
            values[key] = value
        else:
            values[key] = clamp_score(value)
    scorecard = ScorecardsRepository(session).upsert_for_interview(interview_id, values)
    return _scorecard_payload(scorecard)
