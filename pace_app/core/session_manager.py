"""Business logic for live sessions shared by the socket layer and the HTTP surface."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any

from pace_app.config import Settings
from pace_app.constants.session_constants import (
    MIN_DISPLAY_NAME_LENGTH,
    MIN_ROLE_SECRET_LENGTH,
    NAME_IN_USE_MESSAGE,
    WRONG_SECRET_MESSAGE,
)
from pace_app.core.errors import AuthenticationFailure, Malformed, NotFound, PolicyViolation
from pace_app.core.models import Participant, ParticipantStatus, PresenterMode, Question, Role
from pace_app.core.services.answer_evaluator import AnswerEvaluator, AnswerOutcome
from pace_app.core.services.credential_gate import (
    CredentialGate,
    PasslibCredentialHasher,
    PlainCredentialHasher,
    RateLimiter,
)
from pace_app.core.services.question_collection import QuestionDraft
from pace_app.core.services.session_registry import SessionRecord, SessionRegistry

logger = logging.getLogger(__name__)


class JoinResult(str, Enum):
    PENDING = "pending"
    RECONNECTED = "reconnected"


@dataclass(slots=True)
class JoinOutcome:
    result: JoinResult
    participant: Participant
    # Connection the identity was attached to before a reconnection, if different.
    previous_connection_id: str | None = None


class SessionManager:
    """Facade over the registry, credential gate, rate limiter and per-session services."""

    def __init__(
        self,
        settings: Settings,
        registry: SessionRegistry | None = None,
        gate: CredentialGate | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._settings = settings
        self._registry = registry or SessionRegistry()
        if gate is None:
            hasher = PasslibCredentialHasher() if settings.enable_password_hashing else PlainCredentialHasher()
            gate = CredentialGate(hasher)
        self._gate = gate
        self._rate_limiter = rate_limiter or RateLimiter(
            max_attempts=settings.rate_limit_max_attempts,
            window_seconds=settings.rate_limit_window_seconds,
            enabled=settings.enable_rate_limiting,
        )
        self._evaluator = AnswerEvaluator()

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def hashing_enabled(self) -> bool:
        return self._gate.hashing_enabled

    # --- Credential Gate ---

    def check_rate(self, origin: str | None) -> None:
        if origin:
            self._rate_limiter.check(origin)

    def _reset_rate(self, origin: str | None) -> None:
        if origin:
            self._rate_limiter.reset(origin)

    async def create_session(
        self,
        controller_secret: str | None,
        presenter_secret: str | None,
        theme: str | None = None,
        deadline: str | None = None,
        origin: str | None = None,
        imported_questions: list[QuestionDraft] | None = None,
    ) -> SessionRecord:
        if not controller_secret or not presenter_secret:
            raise Malformed("Controller and presenter passwords are required.")
        if len(controller_secret) < MIN_ROLE_SECRET_LENGTH or len(presenter_secret) < MIN_ROLE_SECRET_LENGTH:
            raise Malformed(f"Passwords must have at least {MIN_ROLE_SECRET_LENGTH} characters.")

        hashed = self._gate.hashing_enabled
        controller_credential = await self._gate.protect(controller_secret)
        presenter_credential = await self._gate.protect(presenter_secret)
        record = self._registry.create(
            controller_credential=controller_credential,
            presenter_credential=presenter_credential,
            credentials_hashed=hashed,
            theme=theme,
            deadline=deadline,
            created_by=origin,
        )
        try:
            for draft in imported_questions or []:
                record.questions.create(draft)
        except Malformed:
            self._registry.remove(record.code)
            raise

        self._reset_rate(origin)
        _log_action(record.code, "created", f"({record.questions.get_question_count()} imported questions)")
        return record

    def lookup(self, code: str | None) -> SessionRecord:
        return self._registry.lookup(code)

    async def authenticate(self, code: str, role: Role, secret: str | None, origin: str | None = None) -> SessionRecord:
        record = self._registry.lookup(code)
        matches = await self._gate.verify(secret, record.credential_for(role), record.credentials_hashed)
        # The session may have ended while the comparison was running.
        record = self._registry.lookup(code)
        if not matches:
            logger.warning("Wrong %s password for session %s", role.value, code)
            raise AuthenticationFailure(WRONG_SECRET_MESSAGE)
        self._reset_rate(origin)
        return record

    # --- Role attachment ---

    def attach_controller(self, record: SessionRecord, connection_id: str) -> str | None:
        """Make ``connection_id`` the controller; return the displaced connection, if any."""
        previous = record.controller_connection_id
        record.controller_connection_id = connection_id
        _log_action(record.code, "controller connected")
        if previous is not None and previous != connection_id:
            logger.warning("Controller of session %s displaced by a new connection", record.code)
            return previous
        return None

    def attach_presenter(self, record: SessionRecord, connection_id: str) -> None:
        limit = self._settings.max_presenters
        if (
            limit is not None
            and connection_id not in record.presenter_connection_ids
            and len(record.presenter_connection_ids) >= limit
        ):
            raise PolicyViolation("This session already has the maximum number of presenters.")
        record.presenter_connection_ids.add(connection_id)
        _log_action(record.code, "presenter connected")

    def require_controller(self, code: str | None, connection_id: str) -> SessionRecord:
        record = self._registry.lookup(code)
        if record.controller_connection_id != connection_id:
            raise PolicyViolation("Only the session controller can do that.")
        return record

    def mark_disconnected(self, code: str | None, connection_id: str, role: Role | None) -> Participant | None:
        """Record a transport-level disconnect. Returns the participant whose status changed."""
        record = self._registry.find(code)
        if record is None:
            return None
        if role is Role.CONTROLLER:
            if record.controller_connection_id == connection_id:
                record.controller_connection_id = None
                _log_action(record.code, "controller disconnected")
            return None
        if role is Role.PRESENTER:
            record.presenter_connection_ids.discard(connection_id)
            return None
        participant = record.participants.mark_disconnected(connection_id)
        if participant is not None:
            _log_action(record.code, f"participant '{participant.display_name}' disconnected")
        return participant

    # --- Participant State Machine ---

    async def request_join(
        self,
        code: str,
        name: str | None,
        secret: str | None,
        connection_id: str,
        origin: str | None = None,
    ) -> JoinOutcome:
        display_name = (name or "").strip()
        if len(display_name) < MIN_DISPLAY_NAME_LENGTH:
            raise Malformed("Please enter a valid name.")
        if not secret:
            raise Malformed("Please choose a password so you can reconnect later.")

        record = self._registry.lookup(code)
        current = record.participants.find(connection_id)
        if current is not None and current.name_key != display_name.casefold():
            raise PolicyViolation("This connection already joined under another name.")

        existing = record.participants.find_by_name(display_name)
        if existing is not None:
            matches = await self._gate.verify(secret, existing.credential, record.credentials_hashed)
            record = self._registry.lookup(code)
            if record.participants.find_by_name(display_name) is existing:
                if not matches:
                    logger.warning("Rejected reconnection attempt for a taken name in session %s", code)
                    raise AuthenticationFailure(NAME_IN_USE_MESSAGE)
                # A disconnected identity has no live socket left to take over.
                was_live = existing.status is not ParticipantStatus.DISCONNECTED
                previous = record.participants.reconnect(existing, connection_id)
                self._reset_rate(origin)
                _log_action(code, f"participant '{existing.display_name}' reconnected ({existing.status.value})")
                return JoinOutcome(
                    result=JoinResult.RECONNECTED,
                    participant=existing,
                    previous_connection_id=previous if was_live and previous != connection_id else None,
                )

        credential = await self._gate.protect(secret, hashed=record.credentials_hashed)
        record = self._registry.lookup(code)
        try:
            participant = record.participants.add_pending(connection_id, display_name, credential)
        except PolicyViolation as exc:
            raise AuthenticationFailure(NAME_IN_USE_MESSAGE) from exc
        self._reset_rate(origin)
        _log_action(code, f"join request from '{participant.display_name}'")
        return JoinOutcome(result=JoinResult.PENDING, participant=participant)

    def abandon_join(self, code: str, outcome: JoinOutcome) -> Participant | None:
        """Undo a join whose connection closed before it completed.

        A new request is dropped so its name is free again; a reconnected
        identity goes back to disconnected. Returns the participant if the
        roster changed.
        """
        record = self._registry.find(code)
        participant = outcome.participant
        if record is None or record.participants.find(participant.connection_id) is not participant:
            return None
        if outcome.result is JoinResult.PENDING:
            record.participants.reject(participant.connection_id)
            _log_action(code, f"join request from '{participant.display_name}' dropped, connection closed")
            return participant
        return record.participants.mark_disconnected(participant.connection_id)

    def approve(self, code: str, connection_id: str) -> Participant:
        participant = self._registry.lookup(code).participants.approve(connection_id)
        _log_action(code, f"participant '{participant.display_name}' approved")
        return participant

    def reject(self, code: str, connection_id: str) -> Participant:
        participant = self._registry.lookup(code).participants.reject(connection_id)
        _log_action(code, f"participant '{participant.display_name}' rejected")
        return participant

    def remove(self, code: str, connection_id: str) -> Participant:
        participant = self._registry.lookup(code).participants.remove(connection_id)
        _log_action(code, f"participant '{participant.display_name}' removed")
        return participant

    def reset_progress(self, code: str, connection_id: str | None = None) -> list[Participant]:
        participants = self._registry.lookup(code).participants.reset_progress(connection_id)
        target = "all participants" if connection_id is None else f"'{participants[0].display_name}'"
        _log_action(code, f"progress reset for {target}")
        return participants

    def current_question(self, record: SessionRecord, participant: Participant) -> Question | None:
        if participant.status is not ParticipantStatus.APPROVED:
            return None
        return record.questions.question_at(participant.progress)

    # --- Question Collection ---

    def create_question(self, code: str, draft: QuestionDraft) -> Question:
        question = self._registry.lookup(code).questions.create(draft)
        _log_action(code, f"question #{question.id} created")
        return question

    def edit_question(self, code: str, question_id: int, changes: dict[str, Any]) -> Question:
        question = self._registry.lookup(code).questions.edit(question_id, changes)
        _log_action(code, f"question #{question_id} edited")
        return question

    def delete_question(self, code: str, question_id: int) -> Question:
        question = self._registry.lookup(code).questions.delete(question_id)
        _log_action(code, f"question #{question_id} deleted")
        return question

    def reorder_questions(self, code: str, ordered_ids: list[int]) -> list[Question]:
        questions = self._registry.lookup(code).questions.reorder(ordered_ids)
        _log_action(code, "questions reordered", str([question.id for question in questions]))
        return questions

    # --- Answer Evaluator ---

    def submit_answer(self, code: str | None, connection_id: str, question_id: int, answer: Any) -> AnswerOutcome | None:
        record = self._registry.find(code)
        if record is None:
            return None
        participant = record.participants.find(connection_id)
        outcome = self._evaluator.submit(participant, record.questions, question_id, answer)
        if outcome is not None and outcome.correct:
            _log_action(record.code, f"progress of '{participant.display_name}' is now {outcome.progress}")
        return outcome

    # --- Session settings ---

    def change_theme(self, code: str, theme: str) -> None:
        self._registry.lookup(code).theme = theme
        _log_action(code, f"theme changed to '{theme}'")

    def set_audience_link_visible(self, code: str, visible: bool) -> None:
        self._registry.lookup(code).audience_link_visible = visible
        _log_action(code, f"audience link visible: {visible}")

    def change_presenter_mode(self, code: str, mode: PresenterMode) -> None:
        self._registry.lookup(code).presenter_mode = mode
        _log_action(code, f"presenter mode changed to '{mode.mode}'")

    def change_audience_view(self, code: str, allowed_views: list[str]) -> None:
        self._registry.lookup(code).audience_view = list(allowed_views)
        _log_action(code, "audience views changed", str(allowed_views))

    # --- Lifecycle ---

    def end_session(self, code: str) -> SessionRecord:
        record = self._registry.remove(code)
        if record is None:
            raise NotFound("Session not found.")
        record.participants.clear()
        _log_action(code, "ended by the controller")
        return record

    def sweep_expired(self) -> list[SessionRecord]:
        expired = self._registry.pop_expired(self._settings.session_timeout_seconds)
        for record in expired:
            _log_action(record.code, "expired")
        if expired:
            logger.warning("%d expired session(s) removed", len(expired))
        self._rate_limiter.prune()
        return expired


def _log_action(code: str, action: str, details: str = "") -> None:
    logger.info("[session %s] %s%s", code, action, f" {details}" if details else "")
