"""In-memory registry of live sessions."""

from __future__ import annotations

from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
import random
import time
from typing import Callable, Iterator

from pace_app.constants.session_constants import (
    DEFAULT_CHART_TYPE,
    DEFAULT_PRESENTER_MODE,
    DEFAULT_THEME,
    SESSION_CODE_ALPHABET,
    SESSION_CODE_LENGTH,
    SESSION_NOT_FOUND_MESSAGE,
)
from pace_app.core.errors import NotFound
from pace_app.core.models import PresenterMode, Role
from pace_app.core.services.participant_roster import ParticipantRoster
from pace_app.core.services.question_collection import QuestionCollection


@dataclass(slots=True)
class SessionRecord:
    """One live session. Questions and participants are disjoint slices owned by their services."""

    code: str
    controller_credential: str
    presenter_credential: str
    credentials_hashed: bool
    created_at: float
    theme: str = DEFAULT_THEME
    deadline: str | None = None
    audience_link_visible: bool = False
    controller_connection_id: str | None = None
    presenter_connection_ids: set[str] = field(default_factory=set)
    questions: QuestionCollection = field(default_factory=QuestionCollection)
    participants: ParticipantRoster = field(default_factory=ParticipantRoster)
    presenter_mode: PresenterMode = field(
        default_factory=lambda: PresenterMode(mode=DEFAULT_PRESENTER_MODE, chart_type=DEFAULT_CHART_TYPE)
    )
    audience_view: list[str] = field(default_factory=list)
    created_by: str | None = None

    def credential_for(self, role: Role) -> str:
        if role is Role.CONTROLLER:
            return self.controller_credential
        if role is Role.PRESENTER:
            return self.presenter_credential
        raise ValueError(f"Role {role.value} has no session credential.")

    def roster_payload(self) -> dict[str, object]:
        total = self.questions.get_question_count()
        return {"users": self.participants.to_payload(total), "totalQuestions": total}


class SessionRegistry:
    """Owns the code -> record map; nothing else reaches into it directly."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self._sessions: dict[str, SessionRecord] = {}
        self._clock = clock
        self._rng = rng or random.SystemRandom()
        self._in_flight: Counter[str] = Counter()

    def create(
        self,
        controller_credential: str,
        presenter_credential: str,
        credentials_hashed: bool,
        theme: str | None = None,
        deadline: str | None = None,
        created_by: str | None = None,
    ) -> SessionRecord:
        record = SessionRecord(
            code=self._generate_code(),
            controller_credential=controller_credential,
            presenter_credential=presenter_credential,
            credentials_hashed=credentials_hashed,
            created_at=self._clock(),
            theme=theme or DEFAULT_THEME,
            deadline=deadline,
            created_by=created_by,
        )
        self._sessions[record.code] = record
        return record

    def lookup(self, code: str | None) -> SessionRecord:
        record = self._sessions.get(code) if code else None
        if record is None:
            raise NotFound(SESSION_NOT_FOUND_MESSAGE)
        return record

    def find(self, code: str | None) -> SessionRecord | None:
        return self._sessions.get(code) if code else None

    def remove(self, code: str) -> SessionRecord | None:
        self._in_flight.pop(code, None)
        return self._sessions.pop(code, None)

    def get_session_count(self) -> int:
        return len(self._sessions)

    @contextmanager
    def in_flight(self, code: str | None) -> Iterator[None]:
        """Mark a session as busy so the expiry sweep leaves it alone until the block exits."""
        if not code:
            yield
            return
        self._in_flight[code] += 1
        try:
            yield
        finally:
            remaining = self._in_flight.get(code, 0) - 1
            if remaining > 0:
                self._in_flight[code] = remaining
            else:
                self._in_flight.pop(code, None)

    def pop_expired(self, timeout_seconds: float) -> list[SessionRecord]:
        """Remove and return every idle session older than ``timeout_seconds``."""
        if timeout_seconds <= 0:
            return []
        now = self._clock()
        expired = [
            record
            for record in self._sessions.values()
            if now - record.created_at > timeout_seconds and record.code not in self._in_flight
        ]
        for record in expired:
            del self._sessions[record.code]
        return expired

    def _generate_code(self) -> str:
        while True:
            code = "".join(self._rng.choice(SESSION_CODE_ALPHABET) for _ in range(SESSION_CODE_LENGTH))
            if code not in self._sessions:
                return code
