"""Service for managing a session's ordered, stably-identified questions."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from pace_app.constants.session_constants import DEFAULT_SHORT_TEXT_CHAR_LIMIT
from pace_app.core.errors import Malformed, NotFound
from pace_app.core.models import (
    AnswerPolicy,
    Question,
    QuestionOption,
    QuestionTimer,
    QuestionType,
    SkipPolicy,
)

_YES_NO_VALUES = {"yes", "no"}


@dataclass(slots=True)
class QuestionDraft:
    """Unvalidated question fields as supplied by the controller."""

    text: str
    question_type: QuestionType
    correct_answer: list[str | int] = field(default_factory=list)
    options: list[tuple[str | None, str]] | None = None
    media: dict[str, Any] | None = None
    char_limit: int | None = None
    timer: QuestionTimer | None = None
    skip_policy: SkipPolicy = field(default_factory=SkipPolicy)
    answer_policy: AnswerPolicy = field(default_factory=AnswerPolicy)

    @classmethod
    def from_question(cls, question: Question) -> "QuestionDraft":
        options = None
        if question.options is not None:
            options = [(option.id, option.text) for option in question.options]
        return cls(
            text=question.text,
            question_type=question.question_type,
            correct_answer=list(question.correct_answer),
            options=options,
            media=question.media,
            char_limit=question.char_limit,
            timer=question.timer,
            skip_policy=question.skip_policy,
            answer_policy=question.answer_policy,
        )


class QuestionCollection:
    """Owns the question sequence of one session.

    Ids come from a monotonic counter and are never derived from position, so
    deleting or reordering never causes two questions to share an id.
    """

    def __init__(self) -> None:
        self._questions: list[Question] = []
        self._next_question_id: int = 0

    @property
    def next_question_id(self) -> int:
        return self._next_question_id

    def get_questions(self) -> list[Question]:
        return list(self._questions)

    def get_question_count(self) -> int:
        return len(self._questions)

    def get_question(self, question_id: int) -> Question:
        for question in self._questions:
            if question.id == question_id:
                return question
        raise NotFound(f"Question {question_id} not found.")

    def question_at(self, position: int) -> Question | None:
        if 0 <= position < len(self._questions):
            return self._questions[position]
        return None

    def create(self, draft: QuestionDraft) -> Question:
        question = self._prepare_question(draft, question_id=self._next_question_id)
        self._next_question_id += 1
        self._questions.append(question)
        return question

    def edit(self, question_id: int, changes: dict[str, Any]) -> Question:
        """Apply a partial update; id and creation time are preserved."""
        existing = self.get_question(question_id)
        unknown = set(changes) - set(QuestionDraft.__dataclass_fields__)
        if unknown:
            raise Malformed(f"Unknown question fields: {', '.join(sorted(unknown))}.")
        draft = replace(QuestionDraft.from_question(existing), **changes)
        updated = self._prepare_question(draft, question_id=existing.id)
        updated.created_at = existing.created_at
        self._questions[self._questions.index(existing)] = updated
        return updated

    def delete(self, question_id: int) -> Question:
        question = self.get_question(question_id)
        self._questions.remove(question)
        return question

    def reorder(self, ordered_ids: list[int]) -> list[Question]:
        """Adopt the client's order, ignoring unknown or repeated ids.

        Questions the client left out keep their relative order after the
        supplied ones so a stale client list can never drop a question.
        """
        by_id = {question.id: question for question in self._questions}
        reordered: list[Question] = []
        seen: set[int] = set()
        for question_id in ordered_ids:
            if question_id in by_id and question_id not in seen:
                reordered.append(by_id[question_id])
                seen.add(question_id)
        reordered.extend(question for question in self._questions if question.id not in seen)
        self._questions = reordered
        return self.get_questions()

    def clear(self) -> None:
        self._questions = []

    def to_payload(self, include_answers: bool = True) -> list[dict[str, Any]]:
        return [question.to_payload(include_answer=include_answers) for question in self._questions]

    def _prepare_question(self, draft: QuestionDraft, question_id: int) -> Question:
        """Validate and normalize a draft before storage."""
        text = (draft.text or "").strip()
        if not text:
            raise Malformed("Question text must not be empty.")

        question_type = draft.question_type
        options: list[QuestionOption] | None = None
        if question_type.is_select:
            options = self._normalize_options(draft.options)
            correct = self._resolve_option_answers(draft.correct_answer, options)
        elif question_type is QuestionType.YES_NO:
            correct = self._normalize_yes_no(draft.correct_answer)
        elif question_type is QuestionType.NUMERIC:
            correct = self._normalize_numeric(draft.correct_answer)
        else:
            correct = self._normalize_text_answers(draft.correct_answer)

        char_limit = None
        if question_type is QuestionType.SHORT_TEXT:
            char_limit = draft.char_limit or DEFAULT_SHORT_TEXT_CHAR_LIMIT
        elif question_type is QuestionType.LONG_TEXT:
            char_limit = draft.char_limit
        if char_limit is not None and char_limit <= 0:
            raise Malformed("Character limit must be a positive integer.")

        if draft.timer is not None and draft.timer.duration_seconds <= 0:
            raise Malformed("Timer duration must be a positive number of seconds.")

        self._validate_skip_policy(draft.skip_policy)
        answer_policy = draft.answer_policy if question_type is QuestionType.MULTI_SELECT else AnswerPolicy()

        return Question(
            id=question_id,
            text=text,
            question_type=question_type,
            correct_answer=correct,
            options=options,
            media=draft.media,
            char_limit=char_limit,
            timer=draft.timer,
            skip_policy=draft.skip_policy,
            answer_policy=answer_policy,
        )

    @staticmethod
    def _normalize_options(raw_options: list[tuple[str | None, str]] | None) -> list[QuestionOption]:
        cleaned = [(option_id, text.strip()) for option_id, text in raw_options or [] if text and text.strip()]
        if len(cleaned) < 2:
            raise Malformed("Select questions need at least two options.")

        taken = {option_id for option_id, _ in cleaned if option_id}
        if len(taken) != len([option_id for option_id, _ in cleaned if option_id]):
            raise Malformed("Option ids must be unique within a question.")

        options: list[QuestionOption] = []
        counter = 0
        for option_id, text in cleaned:
            if not option_id:
                while f"opt{counter}" in taken:
                    counter += 1
                option_id = f"opt{counter}"
                taken.add(option_id)
            options.append(QuestionOption(id=option_id, text=text))
        return options

    @staticmethod
    def _resolve_option_answers(raw: list[str | int], options: list[QuestionOption]) -> list[str]:
        option_ids = [option.id for option in options]
        resolved: list[str] = []
        for entry in raw:
            if isinstance(entry, int) and not isinstance(entry, bool):
                if not 0 <= entry < len(option_ids):
                    raise Malformed(f"Correct option index {entry} is out of range.")
                entry = option_ids[entry]
            if entry not in option_ids:
                raise Malformed(f"Correct answer '{entry}' is not one of the options.")
            if entry not in resolved:
                resolved.append(entry)
        if not resolved:
            raise Malformed("Select at least one correct option.")
        return resolved

    @staticmethod
    def _normalize_yes_no(raw: list[str | int]) -> list[str]:
        values = []
        for entry in raw:
            value = str(entry).strip().casefold()
            if value not in _YES_NO_VALUES:
                raise Malformed("Yes/no answers must be 'yes' or 'no'.")
            if value not in values:
                values.append(value)
        if not values:
            raise Malformed("A yes/no question needs a correct answer.")
        return values

    @staticmethod
    def _normalize_numeric(raw: list[str | int]) -> list[str]:
        values = []
        for entry in raw:
            text = str(entry).strip()
            try:
                float(text)
            except ValueError as exc:
                raise Malformed(f"'{text}' is not a number.") from exc
            values.append(text)
        if not values:
            raise Malformed("A numeric question needs a correct answer.")
        return values

    @staticmethod
    def _normalize_text_answers(raw: list[str | int]) -> list[str]:
        values = [str(entry).strip() for entry in raw if str(entry).strip()]
        if not values:
            raise Malformed("A text question needs at least one accepted answer.")
        return values

    @staticmethod
    def _validate_skip_policy(policy: SkipPolicy) -> None:
        for threshold in (policy.allow_skip_after, policy.auto_skip_after):
            if threshold is not None and threshold <= 0:
                raise Malformed("Skip thresholds must be positive integers.")
