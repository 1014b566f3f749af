from __future__ import annotations

from typing import Any, Dict, Optional
from datetime import datetime
import json
import logging

from pydantic import ValidationError
from sqlmodel import Session, select

from interview_copilot.models.setting import Setting
from interview_copilot.models.app_settings import (
    PipelineSettingsModel,
    migrate_settings_dict,
    deep_merge_dict,
)

logger = logging.getLogger("interview_copilot.settings")


DEFAULT_SETTINGS: Dict[str, Any] = PipelineSettingsModel().to_dict()


PIPELINE_SETTINGS_KEY = "pipeline_settings"


def _defaults() -> Dict[str, Any]:
    return json.loads(json.dumps(DEFAULT_SETTINGS))


def _load_json_or_default(value_json: Optional[str]) -> Dict[str, Any]:
    if not value_json:
        return _defaults()
    try:
        parsed = json.loads(value_json)
        # migrate legacy keys
        migrated = migrate_settings_dict(parsed)
        # deep-merge defaults to ensure new fields exist
        merged = deep_merge_dict(_defaults(), migrated)
        # validate with Pydantic to coerce and ensure types
        return PipelineSettingsModel(**merged).to_dict()
    except (ValueError, ValidationError):
        logger.warning("Stored pipeline settings are invalid; using defaults")
        return _defaults()


def get_pipeline_settings(session: Session) -> PipelineSettingsModel:
    stmt = select(Setting).where(Setting.key == PIPELINE_SETTINGS_KEY)
    row = session.exec(stmt).first()
    return PipelineSettingsModel(**_load_json_or_default(row.value_json if row else None))


def save_pipeline_settings(session: Session, settings_data: Dict[str, Any]) -> Dict[str, Any]:
    """Merge a partial settings patch into the stored document.

    Raises pydantic.ValidationError when the merged result is invalid.
    """
    current = get_pipeline_settings(session).to_dict()
    incoming = migrate_settings_dict(settings_data)
    merged = deep_merge_dict(current, incoming)
    normalized = PipelineSettingsModel(**merged).to_dict()
    payload = json.dumps(normalized, ensure_ascii=False)
    stmt = select(Setting).where(Setting.key == PIPELINE_SETTINGS_KEY)
    row = session.exec(stmt).first()
    if row is None:
        row = Setting(key=PIPELINE_SETTINGS_KEY, value_json=payload)
        session.add(row)
    else:
        row.value_json = payload
        row.updated_at = datetime.utcnow()
        session.add(row)
    session.commit()
    return normalized
