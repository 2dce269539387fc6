"""Domain models for the session coordination engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    CONTROLLER = "controller"
    PRESENTER = "presenter"
    AUDIENCE = "audience"


class QuestionType(str, Enum):
    SINGLE_SELECT = "single_select"
    MULTI_SELECT = "multi_select"
    YES_NO = "yes_no"
    SHORT_TEXT = "short_text"
    LONG_TEXT = "long_text"
    NUMERIC = "numeric"

    @property
    def is_select(self) -> bool:
        return self in (QuestionType.SINGLE_SELECT, QuestionType.MULTI_SELECT)


class ParticipantStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DISCONNECTED = "disconnected"


@dataclass(slots=True)
class QuestionOption:
    id: str
    text: str

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text}


@dataclass(slots=True)
class QuestionTimer:
    """Advisory countdown; the server only exposes it, never enforces it."""

    duration_seconds: int
    show_to_audience: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {"duration": self.duration_seconds, "showToAudience": self.show_to_audience}


@dataclass(slots=True)
class SkipPolicy:
    skippable: bool = False
    allow_skip_after: int | None = None
    auto_skip_after: int | None = None

    def allows_manual_skip(self, failed_attempts: int) -> bool:
        if self.skippable:
            return True
        return self.allow_skip_after is not None and failed_attempts >= self.allow_skip_after

    def triggers_auto_skip(self, failed_attempts: int) -> bool:
        return self.auto_skip_after is not None and failed_attempts >= self.auto_skip_after

    def to_payload(self) -> dict[str, Any]:
        return {
            "skippable": self.skippable,
            "allowSkipAfter": self.allow_skip_after,
            "autoSkipAfter": self.auto_skip_after,
        }


@dataclass(slots=True)
class AnswerPolicy:
    accept_multiple: bool = False
    require_all: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {"acceptMultiple": self.accept_multiple, "requireAll": self.require_all}


@dataclass(slots=True)
class Question:
    """One element of a session's curriculum. ``id`` never changes once issued."""

    id: int
    text: str
    question_type: QuestionType
    correct_answer: list[str]
    options: list[QuestionOption] | None = None
    media: dict[str, Any] | None = None
    char_limit: int | None = None
    timer: QuestionTimer | None = None
    skip_policy: SkipPolicy = field(default_factory=SkipPolicy)
    answer_policy: AnswerPolicy = field(default_factory=AnswerPolicy)
    created_at: datetime = field(default_factory=utc_now)

    def to_payload(self, include_answer: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "questionType": self.question_type.value,
            "options": [option.to_payload() for option in self.options] if self.options is not None else None,
            "media": self.media,
            "charLimit": self.char_limit,
            "timer": self.timer.to_payload() if self.timer else None,
            "skipConfig": self.skip_policy.to_payload(),
            "answerConfig": self.answer_policy.to_payload(),
            "createdAt": self.created_at.isoformat(),
        }
        if include_answer:
            payload["correctAnswer"] = list(self.correct_answer)
        return payload


@dataclass(slots=True)
class Participant:
    """An audience member. ``connection_id`` changes across reconnections."""

    connection_id: str
    display_name: str
    credential: str
    status: ParticipantStatus = ParticipantStatus.PENDING
    progress: int = 0
    # Status to restore when a disconnected participant comes back.
    live_status: ParticipantStatus = ParticipantStatus.PENDING
    failed_attempts: dict[int, int] = field(default_factory=dict)
    joined_at: datetime = field(default_factory=utc_now)

    @property
    def name_key(self) -> str:
        return self.display_name.casefold()

    def to_payload(self, total_questions: int) -> dict[str, Any]:
        return {
            "id": self.connection_id,
            "name": self.display_name,
            "status": self.status.value,
            "progress": min(self.progress, total_questions),
        }


@dataclass(slots=True)
class PresenterMode:
    mode: str
    chart_type: str
    show_rank_position: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {"mode": self.mode, "chartType": self.chart_type, "showRankPosition": self.show_rank_position}
