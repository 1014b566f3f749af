from __future__ import annotations

from pathlib import Path
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings
import os


def _base_dir() -> Path:
    root = os.getenv("APPDATA") or str(Path.home() / ".local" / "share")
    return Path(root) / "InterviewCopilot"


class Settings(BaseSettings):
    app_name: str = "Interview Copilot"
    app_author: str = "InterviewCopilot"

    # Base roaming app data dir (e.g., %APPDATA%\InterviewCopilot)
    appdata_dir: Path = Field(default_factory=_base_dir)
    data_dir: Path = Field(default_factory=lambda: _base_dir() / "data")
    models_dir: Path = Field(default_factory=lambda: _base_dir() / "models")
    logs_dir: Path = Field(default_factory=lambda: _base_dir() / "logs")

    database_path: Path = Field(default_factory=lambda: _base_dir() / "data" / "interview_copilot.db")

    # Streaming speech recognition (Deepgram live endpoint)
    deepgram_api_key: Optional[str] = None
    deepgram_url: str = "wss://api.deepgram.com/v1/listen"
    deepgram_model: str = "nova-3"
    deepgram_language: str = "en"

    host: str = "127.0.0.1"
    port: int = 8000

    class Config:
        env_prefix = "IC_"
        case_sensitive = False

    def ensure_dirs(self) -> None:
        for d in [self.appdata_dir, self.data_dir, self.models_dir, self.logs_dir]:
            d.mkdir(parents=True, exist_ok=True)
