from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from sqlmodel import Session

from interview_copilot.errors import ClassifierError
from interview_copilot.repositories.interviews import InterviewsRepository
from interview_copilot.repositories.transcripts import TranscriptsRepository
from interview_copilot.services.llm_client import ChatClient, call_classifier, parse_json_response
from interview_copilot.services.prompt_manager import ROLE_SYSTEM, build_role_prompt

logger = logging.getLogger("interview_copilot.roles")


@dataclass(frozen=True)
class RoleMap:
    host: str
    guest: str


class RoleResolver:
    """One-time mapping of diarized speaker ids to interviewer and candidate.

    Runs once the interview has `threshold` transcript entries and no roles
    yet. A failed attempt leaves the interview untouched so a later check can
    retry; a successful one backfills the role onto every existing entry.
    """

    def __init__(
        self,
        client: ChatClient,
        session_factory: Callable[[], Session],
        threshold: int = 5,
        sample_size: int = 10,
        timeout: float = 30.0,
        max_tokens: int = 100,
    ) -> None:
        self.client = client
        self.session_factory = session_factory
        self.threshold = threshold
        self.sample_size = sample_size
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, interview_id: int) -> asyncio.Lock:
        if interview_id not in self._locks:
            self._locks[interview_id] = asyncio.Lock()
        return self._locks[interview_id]

    async def maybe_resolve(self, interview_id: int) -> Optional[RoleMap]:
        async with self._lock_for(interview_id):
            with self.session_factory() as session:
                interview = InterviewsRepository(session).require(interview_id)
                if interview.roles_assigned:
                    return None
                transcripts = TranscriptsRepository(session)
                if transcripts.count_for_interview(interview_id) < self.threshold:
                    return None
                sample = transcripts.list_by_interview(interview_id, limit=self.sample_size)
                lines = [f"[{e.speaker_id}] {e.text}" for e in sample]
                speakers = {e.speaker_id for e in sample}

            try:
                raw = await call_classifier(
                    self.client, ROLE_SYSTEM, build_role_prompt(lines), timeout=self.timeout, max_tokens=self.max_tokens
                )
                roles = parse_json_response(raw)
            except ClassifierError as e:
                logger.warning("Role detection failed for interview %s: %s", interview_id, e)
                return None

            host = str(roles.get("host") or "").strip()
            guest = str(roles.get("guest") or "").strip()
            if not host or not guest or host == guest or host not in speakers or guest not in speakers:
                logger.warning(
                    "Role detection gave an unusable answer",
                    extra={"interview_id": interview_id, "host": host, "guest": guest},
                )
                return None

            with self.session_factory() as session:
                if not InterviewsRepository(session).assign_roles(interview_id, host, guest):
                    return None
                transcripts = TranscriptsRepository(session)
                updated = transcripts.backfill_role(interview_id, host, "host")
                updated += transcripts.backfill_role(interview_id, guest, "guest")

            logger.info(
                "Roles assigned",
                extra={"interview_id": interview_id, "host": host, "guest": guest, "backfilled": updated},
            )
            return RoleMap(host=host, guest=guest)
