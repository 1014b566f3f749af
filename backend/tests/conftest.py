import os
import tempfile
from pathlib import Path

# Keep app data of the module-level engine out of the user's profile
_TMP = Path(tempfile.mkdtemp(prefix="interview-copilot-tests-"))
os.environ.setdefault("IC_APPDATA_DIR", str(_TMP))
os.environ.setdefault("IC_DATA_DIR", str(_TMP / "data"))
os.environ.setdefault("IC_MODELS_DIR", str(_TMP / "models"))
os.environ.setdefault("IC_LOGS_DIR", str(_TMP / "logs"))
os.environ.setdefault("IC_DATABASE_PATH", str(_TMP / "data" / "test.db"))
(_TMP / "data").mkdir(parents=True, exist_ok=True)

import pytest  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, create_engine  # noqa: E402

from interview_copilot.models.base import init_db  # noqa: E402
from interview_copilot.models.interview import Interview  # noqa: E402
from interview_copilot.models.transcript_entry import TranscriptEntry  # noqa: E402
from interview_copilot.repositories.interviews import InterviewsRepository  # noqa: E402
from interview_copilot.repositories.transcripts import TranscriptsRepository  # noqa: E402


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return lambda: Session(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def interview_id(session_factory) -> int:
    with session_factory() as s:
        interview = InterviewsRepository(s).create(
            Interview(candidate_name="Ada Lovelace", position="QA Automation Engineer")
        )
        return interview.id


@pytest.fixture
def add_entries(session_factory):
    def _add(interview_id: int, lines):
        """Store (speaker_id, text) pairs in order."""
        with session_factory() as s:
            TranscriptsRepository(s).add_entries(
                TranscriptEntry(interview_id=interview_id, speaker_id=speaker, text=text) for speaker, text in lines
            )

    return _add
