"""Sequential answer validation and progress advancement."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any

from pace_app.constants.session_constants import SKIP_SENTINEL
from pace_app.core.models import Participant, ParticipantStatus, Question, QuestionType
from pace_app.core.services.question_collection import QuestionCollection


@dataclass(slots=True)
class AnswerOutcome:
    """Result of one accepted submission."""

    question_id: int
    correct: bool
    progress: int
    next_question: Question | None = None
    skipped: bool = False
    auto_skipped: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"correct": self.correct}
        if self.correct:
            payload["nextQuestion"] = (
                self.next_question.to_payload(include_answer=False) if self.next_question else None
            )
            payload["skipped"] = self.skipped or self.auto_skipped
        return payload


def is_correct_answer(question: Question, answer: Any) -> bool:
    """Compare a submitted answer against the question's accepted answers."""
    if question.question_type.is_select:
        submitted = _as_value_set(answer)
        if not submitted:
            return False
        correct = set(question.correct_answer)
        if question.question_type is QuestionType.SINGLE_SELECT:
            return len(submitted) == 1 and submitted <= correct
        policy = question.answer_policy
        if policy.accept_multiple and not policy.require_all:
            return bool(submitted & correct)
        return submitted == correct

    value = _as_single_value(answer)
    if value is None:
        return False
    if question.question_type is QuestionType.NUMERIC:
        return _numeric_match(value, question.correct_answer)
    normalized = value.strip().casefold()
    return any(normalized == accepted.strip().casefold() for accepted in question.correct_answer)


class AnswerEvaluator:
    """Checks a participant's submission against the question currently due for them.

    ``progress`` counts completed questions, so the due question is the one at
    position ``progress``. A submission naming any other question id is stale
    and ignored.
    """

    def submit(
        self,
        participant: Participant | None,
        questions: QuestionCollection,
        question_id: int,
        answer: Any,
    ) -> AnswerOutcome | None:
        if participant is None or participant.status is not ParticipantStatus.APPROVED:
            return None
        due = questions.question_at(participant.progress)
        if due is None or due.id != question_id:
            return None

        failed = participant.failed_attempts.get(due.id, 0)
        if answer == SKIP_SENTINEL:
            if not due.skip_policy.allows_manual_skip(failed):
                return None
            return self._advance(participant, questions, due, skipped=True)

        if is_correct_answer(due, answer):
            return self._advance(participant, questions, due)

        failed += 1
        participant.failed_attempts[due.id] = failed
        if due.skip_policy.triggers_auto_skip(failed):
            return self._advance(participant, questions, due, auto_skipped=True)
        return AnswerOutcome(question_id=due.id, correct=False, progress=participant.progress)

    @staticmethod
    def _advance(
        participant: Participant,
        questions: QuestionCollection,
        question: Question,
        skipped: bool = False,
        auto_skipped: bool = False,
    ) -> AnswerOutcome:
        participant.progress += 1
        participant.failed_attempts.pop(question.id, None)
        return AnswerOutcome(
            question_id=question.id,
            correct=True,
            progress=participant.progress,
            next_question=questions.question_at(participant.progress),
            skipped=skipped,
            auto_skipped=auto_skipped,
        )


def _as_value_set(answer: Any) -> set[str]:
    if isinstance(answer, (list, tuple, set)):
        return {str(item) for item in answer if str(item)}
    if answer is None or answer == "":
        return set()
    return {str(answer)}


def _as_single_value(answer: Any) -> str | None:
    if isinstance(answer, (list, tuple)):
        if len(answer) != 1:
            return None
        answer = answer[0]
    if answer is None or isinstance(answer, (dict, bool)):
        return None
    return str(answer)


def _numeric_match(value: str, accepted: list[str]) -> bool:
    try:
        submitted = float(value.strip().replace(",", "."))
    except ValueError:
        return False
    return any(math.isclose(submitted, float(candidate), rel_tol=1e-9, abs_tol=1e-9) for candidate in accepted)
