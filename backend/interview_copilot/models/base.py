from __future__ import annotations

from typing import Optional

from sqlmodel import SQLModel, create_engine
from sqlalchemy.engine import Engine
from interview_copilot.config import Settings

_settings = Settings()

# SQLite with WAL enabled
engine: Engine = create_engine(
    f"sqlite:///{_settings.database_path}", connect_args={"check_same_thread": False}
)


def init_db(target: Optional[Engine] = None) -> None:
    # Table modules register themselves on SQLModel.metadata at import time
    from interview_copilot.models import insight, interview, scorecard, setting, transcript_entry  # noqa: F401

    bind = target or engine
    if bind.dialect.name == "sqlite" and bind.url.database not in (None, "", ":memory:"):
        with bind.begin() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL;")
            conn.exec_driver_sql("PRAGMA synchronous=NORMAL;")
    SQLModel.metadata.create_all(bind)
