"""Tests for answer checking and sequential progression."""

import pytest

from pace_app.constants.session_constants import SKIP_SENTINEL
from pace_app.core.models import AnswerPolicy, Participant, ParticipantStatus, QuestionType, SkipPolicy
from pace_app.core.services.answer_evaluator import AnswerEvaluator, is_correct_answer
from pace_app.core.services.question_collection import QuestionCollection, QuestionDraft

from conftest import short_text, single_select


def _approved(name: str = "Ana") -> Participant:
    return Participant(
        connection_id=f"sid-{name}",
        display_name=name,
        credential="pw",
        status=ParticipantStatus.APPROVED,
        live_status=ParticipantStatus.APPROVED,
    )


def _build(*drafts: QuestionDraft) -> QuestionCollection:
    collection = QuestionCollection()
    for draft in drafts:
        collection.create(draft)
    return collection


class TestIsCorrectAnswer:
    def test_single_select_requires_exactly_the_correct_option(self):
        question = _build(single_select(correct=1)).get_question(0)
        assert is_correct_answer(question, "opt1")
        assert is_correct_answer(question, ["opt1"])
        assert not is_correct_answer(question, "opt0")
        assert not is_correct_answer(question, ["opt0", "opt1"])

    def test_multi_select_requires_all_by_default(self):
        draft = QuestionDraft(
            text="Primes",
            question_type=QuestionType.MULTI_SELECT,
            options=[(None, "2"), (None, "3"), (None, "4")],
            correct_answer=[0, 1],
        )
        question = _build(draft).get_question(0)
        assert is_correct_answer(question, ["opt1", "opt0"])
        assert not is_correct_answer(question, ["opt0"])
        assert not is_correct_answer(question, ["opt0", "opt1", "opt2"])

    def test_multi_select_accepting_any_correct_option(self):
        draft = QuestionDraft(
            text="Any prime",
            question_type=QuestionType.MULTI_SELECT,
            options=[(None, "2"), (None, "3"), (None, "4")],
            correct_answer=[0, 1],
            answer_policy=AnswerPolicy(accept_multiple=True),
        )
        question = _build(draft).get_question(0)
        assert is_correct_answer(question, ["opt0"])
        assert not is_correct_answer(question, ["opt2"])

    def test_text_answers_ignore_case_and_whitespace(self):
        question = _build(short_text(answers=("Paris", "Paname"))).get_question(0)
        assert is_correct_answer(question, "  paris ")
        assert is_correct_answer(question, "PANAME")
        assert not is_correct_answer(question, "Lyon")
        assert not is_correct_answer(question, None)

    def test_numeric_answers_compare_as_numbers(self):
        draft = QuestionDraft(text="Pi to two places", question_type=QuestionType.NUMERIC, correct_answer=["3.14"])
        question = _build(draft).get_question(0)
        assert is_correct_answer(question, "3.140")
        assert is_correct_answer(question, "3,14")
        assert is_correct_answer(question, 3.14)
        assert not is_correct_answer(question, "three")

    def test_yes_no(self):
        draft = QuestionDraft(text="Is water wet?", question_type=QuestionType.YES_NO, correct_answer=["Yes"])
        question = _build(draft).get_question(0)
        assert is_correct_answer(question, "YES")
        assert not is_correct_answer(question, "no")


class TestSubmit:
    def test_correct_answer_advances_to_next_question(self):
        questions = _build(single_select(), short_text())
        participant = _approved()
        outcome = AnswerEvaluator().submit(participant, questions, 0, "opt0")
        assert outcome.correct
        assert participant.progress == 1
        assert outcome.next_question.id == 1
        assert "correctAnswer" not in outcome.to_payload()["nextQuestion"]

    def test_completing_the_last_question(self):
        questions = _build(single_select())
        participant = _approved()
        outcome = AnswerEvaluator().submit(participant, questions, 0, "opt0")
        assert outcome.to_payload() == {"correct": True, "nextQuestion": None, "skipped": False}
        assert participant.progress == 1

    def test_wrong_answer_keeps_progress(self):
        questions = _build(single_select())
        participant = _approved()
        outcome = AnswerEvaluator().submit(participant, questions, 0, "opt1")
        assert outcome.to_payload() == {"correct": False}
        assert participant.progress == 0
        assert participant.failed_attempts == {0: 1}

    def test_stale_question_id_is_ignored(self):
        questions = _build(single_select(), single_select())
        participant = _approved()
        evaluator = AnswerEvaluator()
        assert evaluator.submit(participant, questions, 1, "opt0") is None
        assert evaluator.submit(participant, questions, 0, "opt0") is not None
        assert evaluator.submit(participant, questions, 0, "opt0") is None
        assert participant.progress == 1

    def test_pending_participant_cannot_answer(self):
        questions = _build(single_select())
        participant = _approved()
        participant.status = ParticipantStatus.PENDING
        assert AnswerEvaluator().submit(participant, questions, 0, "opt0") is None
        assert participant.progress == 0

    def test_nothing_due_after_completion_or_deletion(self):
        questions = _build(single_select())
        participant = _approved()
        participant.progress = 1
        assert AnswerEvaluator().submit(participant, questions, 0, "opt0") is None
        assert AnswerEvaluator().submit(None, questions, 0, "opt0") is None


class TestSkipping:
    def test_skip_refused_without_permission(self):
        questions = _build(single_select())
        participant = _approved()
        assert AnswerEvaluator().submit(participant, questions, 0, SKIP_SENTINEL) is None
        assert participant.progress == 0

    def test_skippable_question(self):
        draft = single_select()
        draft.skip_policy = SkipPolicy(skippable=True)
        questions = _build(draft)
        participant = _approved()
        outcome = AnswerEvaluator().submit(participant, questions, 0, SKIP_SENTINEL)
        assert outcome.to_payload()["skipped"] is True
        assert participant.progress == 1

    def test_skip_unlocked_after_failed_attempts(self):
        draft = single_select()
        draft.skip_policy = SkipPolicy(allow_skip_after=2)
        questions = _build(draft)
        participant = _approved()
        evaluator = AnswerEvaluator()

        evaluator.submit(participant, questions, 0, "opt1")
        assert evaluator.submit(participant, questions, 0, SKIP_SENTINEL) is None
        evaluator.submit(participant, questions, 0, "opt1")
        assert evaluator.submit(participant, questions, 0, SKIP_SENTINEL).skipped
        assert participant.failed_attempts == {}

    @pytest.mark.parametrize("threshold", [1, 3])
    def test_auto_skip_after_failed_attempts(self, threshold):
        draft = single_select()
        draft.skip_policy = SkipPolicy(auto_skip_after=threshold)
        questions = _build(draft)
        participant = _approved()
        evaluator = AnswerEvaluator()

        for _ in range(threshold - 1):
            assert evaluator.submit(participant, questions, 0, "opt1").correct is False
        outcome = evaluator.submit(participant, questions, 0, "opt1")
        assert outcome.correct and outcome.auto_skipped
        assert participant.progress == 1
