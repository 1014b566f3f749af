from __future__ import annotations

from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field


class Setting(SQLModel, table=True):
    """Key/value row holding a JSON settings document."""

    key: str = Field(primary_key=True)
    value_json: Optional[str] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)
