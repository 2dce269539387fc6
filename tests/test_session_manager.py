"""Tests for the session facade: lifecycle, joining, answering and expiry."""

import asyncio
import re

import pytest

from pace_app.config import Settings
from pace_app.core.errors import AuthenticationFailure, Malformed, NotFound, PolicyViolation
from pace_app.core.models import ParticipantStatus, QuestionType, Role
from pace_app.core.services.question_collection import QuestionDraft
from pace_app.core.services.session_registry import SessionRegistry
from pace_app.core.session_manager import JoinResult, SessionManager

from conftest import PausedCredentialGate, short_text, single_select


async def _session(manager, **kwargs):
    return await manager.create_session("ctrl-pw", "pres-pw", origin="10.0.0.1", **kwargs)


async def _approved_participant(manager, code, sid="sid-ana", name="Ana"):
    await manager.request_join(code, name, "secret", sid)
    return manager.approve(code, sid)


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_code_format_and_defaults(self, manager):
        record = await _session(manager)
        assert re.fullmatch(r"[A-Z0-9]{6}", record.code)
        assert record.questions.get_question_count() == 0
        assert record.participants.get_participant_count() == 0
        assert manager.lookup(record.code) is record

    @pytest.mark.asyncio
    @pytest.mark.parametrize("controller, presenter", [(None, "pres-pw"), ("ctrl-pw", ""), ("abc", "pres-pw")])
    async def test_invalid_secrets_are_rejected(self, manager, controller, presenter):
        with pytest.raises(Malformed):
            await manager.create_session(controller, presenter)
        assert manager.registry.get_session_count() == 0

    @pytest.mark.asyncio
    async def test_imported_questions_get_fresh_ids(self, manager):
        record = await _session(manager, imported_questions=[single_select(), short_text()])
        assert [q.id for q in record.questions.get_questions()] == [0, 1]
        assert record.questions.next_question_id == 2

    @pytest.mark.asyncio
    async def test_invalid_import_creates_nothing(self, manager):
        broken = QuestionDraft(text="", question_type=QuestionType.SHORT_TEXT, correct_answer=["x"])
        with pytest.raises(Malformed):
            await _session(manager, imported_questions=[single_select(), broken])
        assert manager.registry.get_session_count() == 0

    @pytest.mark.asyncio
    async def test_hashed_credentials_when_enabled(self, clock):
        settings = Settings(_env_file=None, enable_password_hashing=True, enable_rate_limiting=False)
        manager = SessionManager(settings, registry=SessionRegistry(clock=clock))
        record = await _session(manager)
        assert record.credentials_hashed
        assert record.controller_credential != "ctrl-pw"
        assert await manager.authenticate(record.code, Role.CONTROLLER, "ctrl-pw") is record


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_role_secrets_are_distinct(self, manager):
        record = await _session(manager)
        assert await manager.authenticate(record.code, Role.PRESENTER, "pres-pw") is record
        with pytest.raises(AuthenticationFailure):
            await manager.authenticate(record.code, Role.CONTROLLER, "pres-pw")

    @pytest.mark.asyncio
    async def test_unknown_session(self, manager):
        with pytest.raises(NotFound):
            await manager.authenticate("ZZZZZZ", Role.CONTROLLER, "ctrl-pw")

    @pytest.mark.asyncio
    async def test_controller_displacement(self, manager):
        record = await _session(manager)
        assert manager.attach_controller(record, "sid-1") is None
        assert manager.attach_controller(record, "sid-2") == "sid-1"
        assert record.controller_connection_id == "sid-2"
        with pytest.raises(PolicyViolation):
            manager.require_controller(record.code, "sid-1")

    @pytest.mark.asyncio
    async def test_presenter_limit(self, clock):
        settings = Settings(_env_file=None, max_presenters=1, enable_rate_limiting=False)
        manager = SessionManager(settings, registry=SessionRegistry(clock=clock))
        record = await _session(manager)
        manager.attach_presenter(record, "sid-p1")
        manager.attach_presenter(record, "sid-p1")
        with pytest.raises(PolicyViolation):
            manager.attach_presenter(record, "sid-p2")


class TestRequestJoin:
    @pytest.mark.asyncio
    async def test_new_name_is_pending(self, manager):
        record = await _session(manager)
        outcome = await manager.request_join(record.code, "Ana", "secret", "sid-1")
        assert outcome.result is JoinResult.PENDING
        assert outcome.participant.status is ParticipantStatus.PENDING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name, secret", [("A", "secret"), ("   ", "secret"), ("Ana", ""), ("Ana", None)])
    async def test_invalid_join_input(self, manager, name, secret):
        record = await _session(manager)
        with pytest.raises(Malformed):
            await manager.request_join(record.code, name, secret, "sid-1")

    @pytest.mark.asyncio
    async def test_reconnect_keeps_progress_without_duplicates(self, manager):
        record = await _session(manager, imported_questions=[single_select(), single_select()])
        participant = await _approved_participant(manager, record.code, sid="sid-1")
        participant.progress = 1
        manager.mark_disconnected(record.code, "sid-1", Role.AUDIENCE)

        outcome = await manager.request_join(record.code, "ana", "secret", "sid-2")
        assert outcome.result is JoinResult.RECONNECTED
        assert outcome.participant is participant
        assert outcome.previous_connection_id == "sid-1"
        assert participant.status is ParticipantStatus.APPROVED
        assert participant.progress == 1
        assert list(record.participants.to_payload(2)) == ["sid-2"]

    @pytest.mark.asyncio
    async def test_wrong_secret_leaves_state_unchanged(self, manager):
        record = await _session(manager)
        participant = await _approved_participant(manager, record.code, sid="sid-1")
        with pytest.raises(AuthenticationFailure):
            await manager.request_join(record.code, "Ana", "guess", "sid-2")
        assert record.participants.find("sid-1") is participant
        assert record.participants.find("sid-2") is None
        assert participant.status is ParticipantStatus.APPROVED

    @pytest.mark.asyncio
    async def test_connection_cannot_switch_names(self, manager):
        record = await _session(manager)
        await manager.request_join(record.code, "Ana", "secret", "sid-1")
        with pytest.raises(PolicyViolation):
            await manager.request_join(record.code, "Ben", "secret", "sid-1")


class TestAnswers:
    @pytest.mark.asyncio
    async def test_deletion_does_not_alter_stored_progress(self, manager):
        record = await _session(manager, imported_questions=[single_select()])
        participant = await _approved_participant(manager, record.code)
        outcome = manager.submit_answer(record.code, participant.connection_id, 0, "opt0")
        assert outcome.correct and outcome.next_question is None

        manager.delete_question(record.code, 0)
        assert participant.progress == 1
        assert record.roster_payload()["users"][participant.connection_id]["progress"] == 0
        assert record.roster_payload()["totalQuestions"] == 0

    @pytest.mark.asyncio
    async def test_clamped_progress_picks_up_new_questions(self, manager):
        record = await _session(manager, imported_questions=[single_select(), single_select()])
        participant = await _approved_participant(manager, record.code)
        manager.submit_answer(record.code, participant.connection_id, 0, "opt0")
        manager.submit_answer(record.code, participant.connection_id, 1, "opt0")
        manager.delete_question(record.code, 1)

        manager.create_question(record.code, short_text())
        assert manager.current_question(record, participant) is None
        manager.create_question(record.code, short_text())
        assert manager.current_question(record, participant).id == 3

    @pytest.mark.asyncio
    async def test_submit_to_missing_session(self, manager):
        assert manager.submit_answer("NOPE00", "sid", 0, "x") is None


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_end_session(self, manager):
        record = await _session(manager)
        manager.end_session(record.code)
        with pytest.raises(NotFound):
            manager.lookup(record.code)
        with pytest.raises(NotFound):
            manager.end_session(record.code)

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired_idle_sessions(self, manager, clock):
        old = await _session(manager)
        clock.advance(400)
        busy = await _session(manager)
        clock.advance(300)
        fresh = await _session(manager)
        clock.advance(1)

        with manager.registry.in_flight(busy.code):
            clock.advance(300)
            expired = manager.sweep_expired()

        assert [record.code for record in expired] == [old.code]
        assert manager.registry.find(busy.code) is busy
        assert manager.registry.find(fresh.code) is fresh
        assert [record.code for record in manager.sweep_expired()] == [busy.code]

    @pytest.mark.asyncio
    async def test_zero_timeout_disables_expiry(self, clock):
        settings = Settings(_env_file=None, session_timeout_minutes=0, enable_rate_limiting=False)
        manager = SessionManager(settings, registry=SessionRegistry(clock=clock))
        await _session(manager)
        clock.advance(10**9)
        assert manager.sweep_expired() == []


class TestStateAfterCredentialCheck:
    @pytest.fixture
    def gate(self):
        return PausedCredentialGate()

    @pytest.fixture
    def gated_manager(self, settings, clock, gate):
        return SessionManager(settings, registry=SessionRegistry(clock=clock), gate=gate)

    @pytest.mark.asyncio
    async def test_session_ended_during_authentication(self, gated_manager, gate):
        record = await _session(gated_manager)
        gate.paused = True
        pending = asyncio.create_task(gated_manager.authenticate(record.code, Role.CONTROLLER, "ctrl-pw"))
        await gate.entered.wait()

        gated_manager.end_session(record.code)
        gate.release.set()
        with pytest.raises(NotFound):
            await pending

    @pytest.mark.asyncio
    async def test_session_ended_during_new_join(self, gated_manager, gate):
        record = await _session(gated_manager)
        gate.paused = True
        pending = asyncio.create_task(gated_manager.request_join(record.code, "Ana", "secret", "sid-1"))
        await gate.entered.wait()

        gated_manager.end_session(record.code)
        gate.release.set()
        with pytest.raises(NotFound):
            await pending
        assert record.participants.get_participant_count() == 0

    @pytest.mark.asyncio
    async def test_identity_removed_during_reconnect_check(self, gated_manager, gate):
        record = await _session(gated_manager)
        old = await _approved_participant(gated_manager, record.code, sid="sid-1")
        old.progress = 1
        gated_manager.mark_disconnected(record.code, "sid-1", Role.AUDIENCE)

        gate.paused = True
        pending = asyncio.create_task(gated_manager.request_join(record.code, "Ana", "secret", "sid-2"))
        await gate.entered.wait()
        gated_manager.remove(record.code, "sid-1")
        gate.release.set()

        outcome = await pending
        assert outcome.result is JoinResult.PENDING
        assert outcome.participant is not old
        assert outcome.participant.progress == 0
        assert record.participants.find("sid-1") is None
        assert [p.connection_id for p in record.participants.get_participants()] == ["sid-2"]
        assert old.status is ParticipantStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_name_taken_while_new_join_was_hashing(self, gated_manager, gate):
        record = await _session(gated_manager)
        gate.paused = True
        pending = asyncio.create_task(gated_manager.request_join(record.code, "Ana", "secret", "sid-1"))
        await gate.entered.wait()

        gate.paused = False
        await gated_manager.request_join(record.code, "ana", "other", "sid-2")
        gate.release.set()
        with pytest.raises(AuthenticationFailure):
            await pending
        assert [p.connection_id for p in record.participants.get_participants()] == ["sid-2"]


class TestReconnectTakeover:
    @pytest.mark.asyncio
    async def test_live_previous_connection_is_reported(self, manager):
        record = await _session(manager)
        await _approved_participant(manager, record.code, sid="sid-1")
        outcome = await manager.request_join(record.code, "Ana", "secret", "sid-2")
        assert outcome.previous_connection_id == "sid-1"

    @pytest.mark.asyncio
    async def test_disconnected_previous_connection_is_left_alone(self, manager):
        record = await _session(manager)
        await _approved_participant(manager, record.code, sid="sid-1")
        manager.mark_disconnected(record.code, "sid-1", Role.AUDIENCE)
        outcome = await manager.request_join(record.code, "Ana", "secret", "sid-2")
        assert outcome.result is JoinResult.RECONNECTED
        assert outcome.previous_connection_id is None

    @pytest.mark.asyncio
    async def test_abandoned_new_join_frees_the_name(self, manager):
        record = await _session(manager)
        outcome = await manager.request_join(record.code, "Ana", "secret", "sid-1")
        assert manager.abandon_join(record.code, outcome) is outcome.participant
        assert record.participants.find_by_name("Ana") is None

    @pytest.mark.asyncio
    async def test_abandoned_reconnect_returns_to_disconnected(self, manager):
        record = await _session(manager)
        await _approved_participant(manager, record.code, sid="sid-1")
        manager.mark_disconnected(record.code, "sid-1", Role.AUDIENCE)
        outcome = await manager.request_join(record.code, "Ana", "secret", "sid-2")

        manager.abandon_join(record.code, outcome)
        participant = record.participants.find("sid-2")
        assert participant.status is ParticipantStatus.DISCONNECTED
        assert participant.live_status is ParticipantStatus.APPROVED
