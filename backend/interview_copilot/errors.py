"""Exception types shared by the analysis pipeline and the API layer."""

from __future__ import annotations


class ClassifierError(RuntimeError):
    """A classifier call failed or returned output we could not use."""


class ClassifierTimeoutError(ClassifierError):
    """A classifier call did not return within its time budget."""


class InterviewNotFoundError(LookupError):
    def __init__(self, interview_id: int) -> None:
        super().__init__(f"Interview {interview_id} not found")
        self.interview_id = interview_id


class MissingDataError(RuntimeError):
    """Prerequisite data for an operation is absent (e.g. empty transcript)."""


class ScorecardParseError(ValueError):
    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class SessionClosedError(RuntimeError):
    """Raised when writing into a capture session that was stopped or failed."""
