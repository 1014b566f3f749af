from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from sqlmodel import Session

from interview_copilot.deps import get_session
from interview_copilot.models.app_settings import AnalysisSettings, ClassifierSettings
from interview_copilot.repositories.settings import get_pipeline_settings, save_pipeline_settings


router = APIRouter(prefix="/settings", tags=["settings"])


class SettingsUpdate(BaseModel):
    analysis: Optional[Dict[str, Any]] = None
    fast: Optional[ClassifierSettings] = None
    deep: Optional[ClassifierSettings] = None
    scorecard_max_tokens: Optional[int] = None
    scorecard_timeout_seconds: Optional[float] = None
    llm_device: Optional[str] = None


@router.get("")
def read_settings(session: Session = Depends(get_session)) -> Dict[str, Any]:
    return get_pipeline_settings(session).to_dict()


@router.get("/defaults")
def read_default_settings() -> Dict[str, Any]:
    return {"analysis": AnalysisSettings().dict()}


@router.post("")
def update_settings(body: SettingsUpdate, session: Session = Depends(get_session)) -> Dict[str, Any]:
    # Partial update; values are merged over the stored document.
    # Changes apply to capture sessions started afterwards.
    raw = body.dict(exclude_none=True)
    try:
        return save_pipeline_settings(session, raw)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
