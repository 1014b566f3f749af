from __future__ import annotations

from typing import Iterator, Optional

from fastapi import HTTPException
from sqlmodel import Session

from interview_copilot.config import Settings
from interview_copilot.models.base import engine
from interview_copilot.repositories.settings import get_pipeline_settings
from interview_copilot.services.capture_service import SessionManager
from interview_copilot.services.llm_client import build_chat_client
from interview_copilot.services.scorecard_service import ScorecardSynthesizer

_session_manager: Optional[SessionManager] = None


def session_factory() -> Session:
    return Session(engine)


def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session


def get_session_manager() -> SessionManager:
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager(session_factory, Settings())
    return _session_manager


def get_scorecard_synthesizer() -> ScorecardSynthesizer:
    with Session(engine) as session:
        ps = get_pipeline_settings(session)
    try:
        client = build_chat_client(ps.deep, Settings(), ps.llm_device, ps.scorecard_timeout_seconds)
    except ValueError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return ScorecardSynthesizer(
        client,
        session_factory,
        timeout=ps.scorecard_timeout_seconds,
        max_tokens=ps.scorecard_max_tokens,
    )
