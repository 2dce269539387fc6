"""Payload schemas for inbound real-time events.

Every event gets its own model; wire names are camelCase. The names used by the
earlier browser client (``password``, ``userIdToApprove``, ``newQuestionOrder``,
...) are accepted as aliases so old clients keep working.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from pace_app.constants.session_constants import DEFAULT_CHART_TYPE
from pace_app.core.errors import Malformed
from pace_app.core.models import AnswerPolicy, QuestionTimer, QuestionType, SkipPolicy
from pace_app.core.services.question_collection import QuestionDraft

_LEGACY_QUESTION_TYPES = {
    "number": QuestionType.NUMERIC,
    "integer": QuestionType.NUMERIC,
    "yesno": QuestionType.YES_NO,
}


def _alias(*names: str) -> Any:
    return Field(default=None, validation_alias=AliasChoices(*names))


class EventPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SessionPayload(EventPayload):
    session_code: str = Field(validation_alias=AliasChoices("sessionCode", "session_code"))

    @field_validator("session_code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        return value.strip().upper()


# --- Questions ---


class OptionPayload(EventPayload):
    id: str | None = None
    text: str


class TimerPayload(EventPayload):
    duration: int
    show_to_audience: bool = Field(default=False, validation_alias=AliasChoices("showToAudience", "show_to_audience"))


class SkipConfigPayload(EventPayload):
    skippable: bool = False
    allow_skip_after: int | None = _alias("allowSkipAfter", "allow_skip_after")
    auto_skip_after: int | None = _alias("autoSkipAfter", "auto_skip_after")
    auto_skip_on_wrong: bool = Field(default=False, validation_alias=AliasChoices("autoSkipOnWrong", "auto_skip_on_wrong"))

    def to_policy(self, skippable: bool | None = None) -> SkipPolicy:
        auto_skip_after = self.auto_skip_after
        if auto_skip_after is None and self.auto_skip_on_wrong:
            auto_skip_after = 1
        return SkipPolicy(
            skippable=self.skippable or bool(skippable),
            allow_skip_after=self.allow_skip_after,
            auto_skip_after=auto_skip_after,
        )


class AnswerConfigPayload(EventPayload):
    accept_multiple: bool = Field(default=False, validation_alias=AliasChoices("acceptMultiple", "accept_multiple"))
    require_all: bool = Field(default=False, validation_alias=AliasChoices("requireAll", "require_all"))


class QuestionPayload(EventPayload):
    text: str | None = None
    question_type: str | None = _alias("questionType", "question_type", "type")
    options: list[OptionPayload | str] | None = None
    correct_answer: list[int | str] | int | str | None = _alias("correctAnswer", "correct_answer")
    media: dict[str, Any] | None = None
    image_url: str | None = _alias("imageUrl", "image_url")
    media_url: str | None = _alias("mediaUrl", "media_url")
    char_limit: int | None = _alias("charLimit", "char_limit")
    timer: TimerPayload | None = None
    skippable: bool | None = None
    skip_config: SkipConfigPayload | None = _alias("skipConfig", "skip_config")
    answer_config: AnswerConfigPayload | None = _alias("answerConfig", "answer_config")

    def to_draft(self) -> QuestionDraft:
        fields = self.draft_fields()
        if "text" not in fields or "question_type" not in fields:
            raise Malformed("A question needs text and a question type.")
        return QuestionDraft(**fields)

    def draft_fields(self) -> dict[str, Any]:
        """Translate the fields the client actually sent into ``QuestionDraft`` fields."""
        sent = self.model_fields_set
        fields: dict[str, Any] = {}
        if "text" in sent:
            fields["text"] = self.text or ""
        if "question_type" in sent:
            fields["question_type"] = self._resolve_type()
        if "options" in sent:
            fields["options"] = None if self.options is None else [
                (None, option) if isinstance(option, str) else (option.id, option.text) for option in self.options
            ]
        if "correct_answer" in sent:
            raw = self.correct_answer
            fields["correct_answer"] = [] if raw is None else (list(raw) if isinstance(raw, list) else [raw])
        if sent & {"media", "image_url", "media_url"}:
            fields["media"] = self._resolve_media()
        if "char_limit" in sent:
            fields["char_limit"] = self.char_limit
        if "timer" in sent:
            fields["timer"] = (
                QuestionTimer(duration_seconds=self.timer.duration, show_to_audience=self.timer.show_to_audience)
                if self.timer
                else None
            )
        if sent & {"skip_config", "skippable"}:
            fields["skip_policy"] = (self.skip_config or SkipConfigPayload()).to_policy(self.skippable)
        if "answer_config" in sent:
            config = self.answer_config or AnswerConfigPayload()
            fields["answer_policy"] = AnswerPolicy(
                accept_multiple=config.accept_multiple,
                require_all=config.require_all,
            )
        return fields

    def _resolve_type(self) -> QuestionType:
        raw = (self.question_type or "").strip().lower()
        if raw == "options":
            accept_multiple = bool(self.answer_config and self.answer_config.accept_multiple)
            return QuestionType.MULTI_SELECT if accept_multiple else QuestionType.SINGLE_SELECT
        if raw in _LEGACY_QUESTION_TYPES:
            return _LEGACY_QUESTION_TYPES[raw]
        try:
            return QuestionType(raw)
        except ValueError as exc:
            raise Malformed(f"Unknown question type '{self.question_type}'.") from exc

    def _resolve_media(self) -> dict[str, Any] | None:
        if self.media:
            return dict(self.media)
        media = {key: value for key, value in (("imageUrl", self.image_url), ("mediaUrl", self.media_url)) if value}
        return media or None


# --- Session lifecycle ---


class CreateSessionPayload(EventPayload):
    controller_secret: str | None = _alias("controllerSecret", "controllerPassword", "controller_secret")
    presenter_secret: str | None = _alias("presenterSecret", "presenterPassword", "presenter_secret")
    theme: str | None = None
    deadline: str | None = None
    imported_questions: list[QuestionPayload] | None = _alias("importedQuestions", "imported_questions")


class JoinAdminSessionPayload(SessionPayload):
    secret: str | None = _alias("secret", "password")
    role: Literal["controller", "presenter"]


class RequestJoinPayload(SessionPayload):
    name: str | None = None
    secret: str | None = _alias("secret", "password")


# --- Participant administration ---


class TargetParticipantPayload(SessionPayload):
    target_connection_id: str = Field(
        validation_alias=AliasChoices(
            "targetConnectionId",
            "target_connection_id",
            "userId",
            "userIdToApprove",
            "userIdToReject",
            "userIdToRemove",
            "userIdToReset",
        )
    )


# --- Question collection ---


class CreateQuestionPayload(SessionPayload):
    question: QuestionPayload


class EditQuestionPayload(SessionPayload):
    question_id: int = Field(validation_alias=AliasChoices("questionId", "question_id"))
    updated_question: QuestionPayload = Field(validation_alias=AliasChoices("updatedQuestion", "updated_question", "patch"))


class DeleteQuestionPayload(SessionPayload):
    question_id: int = Field(validation_alias=AliasChoices("questionId", "question_id"))


class ReorderQuestionsPayload(SessionPayload):
    ordered_ids: list[int] = Field(
        validation_alias=AliasChoices("newOrderedIds", "orderedIds", "ordered_ids", "newQuestionOrder")
    )

    @field_validator("ordered_ids", mode="before")
    @classmethod
    def _extract_ids(cls, value: Any) -> Any:
        # Older clients send the full question objects in their new order.
        if isinstance(value, list):
            return [item.get("id") if isinstance(item, dict) else item for item in value if item is not None]
        return value


# --- Answers ---


class SubmitAnswerPayload(SessionPayload):
    question_id: int = Field(validation_alias=AliasChoices("questionId", "question_id"))
    answer: Any = None


# --- Session settings ---


class ChangeThemePayload(SessionPayload):
    theme: str


class ToggleAudienceUrlPayload(SessionPayload):
    visible: bool


class ChangePresenterModePayload(SessionPayload):
    mode: str
    chart_type: str = Field(default=DEFAULT_CHART_TYPE, validation_alias=AliasChoices("chartType", "chart_type"))
    show_rank_position: bool = Field(
        default=False, validation_alias=AliasChoices("showRankPosition", "show_rank_position")
    )


class ChangeAudienceViewPayload(SessionPayload):
    allowed_views: list[str] = Field(validation_alias=AliasChoices("allowedViews", "allowed_views"))


def describe_validation_error(exc: ValidationError) -> str:
    """Collapse a pydantic error into a short field-level message."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "__root__")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(messages) or "Invalid payload."
