"""Socket.IO event handlers wiring the transport to ``SessionManager``.

Each handler validates its payload, applies the mutation through the manager and
pushes the resulting state through ``BroadcastRouter``. Handlers that answer a
request return an ack dict; the others drop failures after logging them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError
import socketio

from pace_app.constants.session_constants import (
    CONTROLLER_DISPLACED_MESSAGE,
    GENERIC_ERROR_MESSAGE,
    PENDING_APPROVAL_MESSAGE,
    RECONNECTED_MESSAGE,
    REJECTED_MESSAGE,
    REMOVED_MESSAGE,
    SESSION_ENDED_MESSAGE,
    SESSION_EXPIRED_MESSAGE,
    SESSION_TAKEN_OVER_MESSAGE,
)
from pace_app.core.errors import Malformed, PolicyViolation, SessionError
from pace_app.core.models import ParticipantStatus, PresenterMode, Role
from pace_app.core.session_manager import JoinResult, SessionManager
from pace_app.core.services.session_registry import SessionRecord
from pace_app.server import schemas
from pace_app.server.broadcast import BroadcastRouter, Target

logger = logging.getLogger(__name__)

Handler = Callable[[str, dict[str, Any]], Awaitable[Any]]


def _extract_origin(environ: dict[str, Any], trust_forwarded_for: bool = False) -> str | None:
    """Client address from a Socket.IO environ.

    The ASGI scope is authoritative: engine.io's ASGI driver fills ``REMOTE_ADDR``
    with a placeholder. ``X-Forwarded-For`` is only honoured behind a trusted proxy.
    """
    if trust_forwarded_for:
        forwarded = environ.get("HTTP_X_FORWARDED_FOR")
        if isinstance(forwarded, str) and forwarded.strip():
            return forwarded.split(",")[0].strip()
    scope = environ.get("asgi.scope")
    if isinstance(scope, dict):
        client = scope.get("client")
        if client:
            return str(client[0])
    remote = environ.get("REMOTE_ADDR")
    if isinstance(remote, str) and remote:
        return remote
    return None


class SessionEventHandlers:
    """Registers every session event on a Socket.IO server."""

    ACKNOWLEDGED_EVENTS = frozenset(
        {"createSession", "joinAdminSession", "requestJoin", "createQuestion", "editQuestion"}
    )

    def __init__(self, sio: socketio.AsyncServer, manager: SessionManager) -> None:
        self._sio = sio
        self._manager = manager
        self._router = BroadcastRouter(sio)

    def register(self) -> None:
        self._sio.on("connect", self.on_connect)
        self._sio.on("disconnect", self.on_disconnect)
        events: dict[str, Handler] = {
            "createSession": self.create_session,
            "joinAdminSession": self.join_admin_session,
            "requestJoin": self.request_join,
            "approveUser": self.approve_user,
            "rejectUser": self.reject_user,
            "removeUser": self.remove_user,
            "resetUserProgress": self.reset_user_progress,
            "resetAllUsersProgress": self.reset_all_users_progress,
            "createQuestion": self.create_question,
            "editQuestion": self.edit_question,
            "deleteQuestion": self.delete_question,
            "reorderQuestions": self.reorder_questions,
            "submitAnswer": self.submit_answer,
            "changeTheme": self.change_theme,
            "toggleAudienceUrl": self.toggle_audience_url,
            "changePresenterMode": self.change_presenter_mode,
            "changeAudienceView": self.change_audience_view,
            "endSession": self.end_session,
        }
        for event, handler in events.items():
            self._sio.on(event, self._guard(event, handler))

    def _guard(self, event: str, handler: Handler) -> Callable[..., Awaitable[Any]]:
        acknowledged = event in self.ACKNOWLEDGED_EVENTS

        async def dispatch(sid: str, data: Any = None) -> Any:
            return await self.dispatch(event, handler, sid, data, acknowledged)

        return dispatch

    async def dispatch(self, event: str, handler: Handler, sid: str, data: Any, acknowledged: bool) -> Any:
        """Run one handler, containing every failure to this event."""
        try:
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise Malformed("Event payload must be an object.")
            return await handler(sid, data)
        except ValidationError as exc:
            error: SessionError = Malformed(schemas.describe_validation_error(exc))
        except SessionError as exc:
            error = exc
        except Exception:
            logger.exception("Unhandled error while handling %s from %s", event, sid)
            if acknowledged:
                return {"success": False, "message": GENERIC_ERROR_MESSAGE, "code": "internal_error"}
            return None
        if acknowledged:
            return error.to_ack()
        logger.debug("Dropped %s from %s: %s", event, sid, error.message)
        return None

    # --- Connection lifecycle ---

    async def on_connect(self, sid: str, environ: dict[str, Any], auth: Any = None) -> None:
        origin = _extract_origin(environ, self._manager.settings.trust_forwarded_for)
        await self._sio.save_session(sid, {"origin": origin})
        logger.info("Client connected: %s (%s)", sid, origin)

    async def on_disconnect(self, sid: str, reason: Any = None) -> None:
        attachment = await self._attachment(sid)
        code = attachment.get("session_code")
        role = _role_of(attachment)
        with self._manager.registry.in_flight(code):
            participant = self._manager.mark_disconnected(code, sid, role)
            if participant is not None:
                await self._broadcast_roster(self._manager.lookup(code))
        logger.info("Client disconnected: %s", sid)

    async def _attachment(self, sid: str) -> dict[str, Any]:
        try:
            session = await self._sio.get_session(sid)
        except KeyError:
            return {}
        return session if isinstance(session, dict) else {}

    async def _is_connected(self, sid: str) -> bool:
        try:
            await self._sio.get_session(sid)
        except KeyError:
            return False
        return True

    async def _attach(self, sid: str, code: str, role: Role) -> None:
        attachment = await self._attachment(sid)
        previous_code = attachment.get("session_code")
        previous_role = _role_of(attachment)
        if previous_code and (previous_code != code or previous_role is not role):
            participant = self._manager.mark_disconnected(previous_code, sid, previous_role)
            await self._router.detach(sid, previous_code, previous_role)
            if participant is not None:
                await self._broadcast_roster(self._manager.lookup(previous_code))
        attachment.update({"session_code": code, "role": role.value})
        await self._sio.save_session(sid, attachment)
        await self._router.attach(sid, code, role)

    # --- Session lifecycle ---

    async def create_session(self, sid: str, data: dict[str, Any]) -> dict[str, Any]:
        origin = (await self._attachment(sid)).get("origin")
        self._manager.check_rate(origin)
        payload = schemas.CreateSessionPayload.model_validate(data)
        drafts = [question.to_draft() for question in payload.imported_questions or []]
        record = await self._manager.create_session(
            controller_secret=payload.controller_secret,
            presenter_secret=payload.presenter_secret,
            theme=payload.theme,
            deadline=payload.deadline,
            origin=origin,
            imported_questions=drafts,
        )
        return {"success": True, "sessionCode": record.code}

    async def join_admin_session(self, sid: str, data: dict[str, Any]) -> dict[str, Any]:
        origin = (await self._attachment(sid)).get("origin")
        self._manager.check_rate(origin)
        payload = schemas.JoinAdminSessionPayload.model_validate(data)
        role = Role(payload.role)
        record = await self._manager.authenticate(payload.session_code, role, payload.secret, origin)
        code = record.code

        with self._manager.registry.in_flight(code):
            displaced = None
            if role is Role.CONTROLLER:
                displaced = self._manager.attach_controller(record, sid)
            else:
                self._manager.attach_presenter(record, sid)
            await self._attach(sid, code, role)
            if displaced is not None:
                await self._router.emit_to_connection(
                    displaced, "controllerDisplaced", {"message": CONTROLLER_DISPLACED_MESSAGE}
                )
                await self._router.disconnect(displaced)
            await self._router.emit_to_connection(
                sid, "questionsUpdated", {"questions": record.questions.to_payload()}
            )

        roster = record.roster_payload()
        return {
            "success": True,
            "role": role.value,
            "users": roster["users"],
            "totalQuestions": roster["totalQuestions"],
            "questions": record.questions.to_payload(),
            "theme": record.theme,
            "deadline": record.deadline,
            "isAudienceUrlVisible": record.audience_link_visible,
            "presenterMode": record.presenter_mode.to_payload(),
            "audienceView": list(record.audience_view),
        }

    async def end_session(self, sid: str, data: dict[str, Any]) -> None:
        payload = schemas.SessionPayload.model_validate(data)
        record = self._manager.require_controller(payload.session_code, sid)
        with self._manager.registry.in_flight(record.code):
            await self._router.emit_to_role(
                record.code, Target.EVERYONE, "sessionEnded", {"message": SESSION_ENDED_MESSAGE}
            )
            self._manager.end_session(record.code)
            await self._router.close_session(record.code)

    async def sweep_expired_sessions(self) -> list[SessionRecord]:
        expired = self._manager.sweep_expired()
        for record in expired:
            await self._router.emit_to_role(
                record.code, Target.EVERYONE, "sessionEnded", {"message": SESSION_EXPIRED_MESSAGE}
            )
            await self._router.close_session(record.code)
        return expired

    async def run_expiry_sweep(self) -> None:
        interval = self._manager.settings.session_cleanup_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_expired_sessions()
            except Exception:
                logger.exception("Session expiry sweep failed")

    # --- Participant admission ---

    async def request_join(self, sid: str, data: dict[str, Any]) -> dict[str, Any]:
        origin = (await self._attachment(sid)).get("origin")
        self._manager.check_rate(origin)
        payload = schemas.RequestJoinPayload.model_validate(data)
        outcome = await self._manager.request_join(
            payload.session_code, payload.name, payload.secret, sid, origin
        )
        if not await self._is_connected(sid):
            with self._manager.registry.in_flight(payload.session_code):
                changed = self._manager.abandon_join(payload.session_code, outcome)
                if changed is not None and outcome.result is JoinResult.RECONNECTED:
                    await self._broadcast_roster(self._manager.lookup(payload.session_code))
            raise PolicyViolation("The connection closed before the join completed.")
        record = self._manager.lookup(payload.session_code)
        participant = outcome.participant

        with self._manager.registry.in_flight(record.code):
            await self._attach(sid, record.code, Role.AUDIENCE)
            if outcome.previous_connection_id is not None:
                await self._router.emit_to_connection(
                    outcome.previous_connection_id, "sessionTakenOver", {"message": SESSION_TAKEN_OVER_MESSAGE}
                )
                await self._router.disconnect(outcome.previous_connection_id)

            total = record.questions.get_question_count()
            if outcome.result is JoinResult.PENDING:
                await self._router.emit_to_role(
                    record.code, Target.CONTROLLER, "userRequestedJoin", participant.to_payload(total)
                )
            elif participant.status is ParticipantStatus.APPROVED:
                question = self._manager.current_question(record, participant)
                await self._router.emit_to_connection(
                    sid,
                    "joinApproved",
                    {
                        "firstQuestion": question.to_payload(include_answer=False) if question else None,
                        "totalQuestions": total,
                        "progress": min(participant.progress, total),
                        "reconnected": True,
                    },
                )
            await self._broadcast_roster(record)

        message = PENDING_APPROVAL_MESSAGE if outcome.result is JoinResult.PENDING else RECONNECTED_MESSAGE
        return {
            "success": True,
            "message": message,
            "result": outcome.result.value,
            "status": participant.status.value,
        }

    async def approve_user(self, sid: str, data: dict[str, Any]) -> None:
        payload = schemas.TargetParticipantPayload.model_validate(data)
        record = self._manager.require_controller(payload.session_code, sid)
        with self._manager.registry.in_flight(record.code):
            participant = self._manager.approve(record.code, payload.target_connection_id)
            question = self._manager.current_question(record, participant)
            await self._router.emit_to_connection(
                participant.connection_id,
                "joinApproved",
                {
                    "firstQuestion": question.to_payload(include_answer=False) if question else None,
                    "totalQuestions": record.questions.get_question_count(),
                },
            )
            await self._broadcast_roster(record)

    async def reject_user(self, sid: str, data: dict[str, Any]) -> None:
        payload = schemas.TargetParticipantPayload.model_validate(data)
        record = self._manager.require_controller(payload.session_code, sid)
        with self._manager.registry.in_flight(record.code):
            participant = self._manager.reject(record.code, payload.target_connection_id)
            await self._broadcast_roster(record)
            await self._router.emit_to_connection(
                participant.connection_id, "joinRejected", {"message": REJECTED_MESSAGE}
            )
            await self._router.disconnect(participant.connection_id)

    async def remove_user(self, sid: str, data: dict[str, Any]) -> None:
        payload = schemas.TargetParticipantPayload.model_validate(data)
        record = self._manager.require_controller(payload.session_code, sid)
        with self._manager.registry.in_flight(record.code):
            participant = self._manager.remove(record.code, payload.target_connection_id)
            await self._broadcast_roster(record)
            if participant.status is not ParticipantStatus.DISCONNECTED:
                await self._router.emit_to_connection(
                    participant.connection_id, "userRemoved", {"message": REMOVED_MESSAGE}
                )
                await self._router.disconnect(participant.connection_id)

    async def reset_user_progress(self, sid: str, data: dict[str, Any]) -> None:
        payload = schemas.TargetParticipantPayload.model_validate(data)
        await self._reset_progress(sid, payload.session_code, payload.target_connection_id)

    async def reset_all_users_progress(self, sid: str, data: dict[str, Any]) -> None:
        payload = schemas.SessionPayload.model_validate(data)
        await self._reset_progress(sid, payload.session_code, None)

    async def _reset_progress(self, sid: str, code: str, target: str | None) -> None:
        record = self._manager.require_controller(code, sid)
        with self._manager.registry.in_flight(record.code):
            participants = self._manager.reset_progress(record.code, target)
            first = record.questions.question_at(0)
            for participant in participants:
                if participant.status is ParticipantStatus.APPROVED:
                    await self._router.emit_to_connection(
                        participant.connection_id,
                        "progressReset",
                        {
                            "question": first.to_payload(include_answer=False) if first else None,
                            "totalQuestions": record.questions.get_question_count(),
                        },
                    )
            await self._broadcast_roster(record)

    # --- Question collection ---

    async def create_question(self, sid: str, data: dict[str, Any]) -> dict[str, Any]:
        payload = schemas.CreateQuestionPayload.model_validate(data)
        record = self._manager.require_controller(payload.session_code, sid)
        draft = payload.question.to_draft()
        with self._manager.registry.in_flight(record.code):
            question = self._manager.create_question(record.code, draft)
            await self._broadcast_questions(record)
        return {"success": True, "questionId": question.id}

    async def edit_question(self, sid: str, data: dict[str, Any]) -> dict[str, Any]:
        payload = schemas.EditQuestionPayload.model_validate(data)
        record = self._manager.require_controller(payload.session_code, sid)
        changes = payload.updated_question.draft_fields()
        with self._manager.registry.in_flight(record.code):
            question = self._manager.edit_question(record.code, payload.question_id, changes)
            await self._broadcast_questions(record)
        return {"success": True, "questionId": question.id}

    async def delete_question(self, sid: str, data: dict[str, Any]) -> None:
        payload = schemas.DeleteQuestionPayload.model_validate(data)
        record = self._manager.require_controller(payload.session_code, sid)
        with self._manager.registry.in_flight(record.code):
            self._manager.delete_question(record.code, payload.question_id)
            await self._broadcast_questions(record)
            # Clamped progress values may have changed.
            await self._broadcast_roster(record)

    async def reorder_questions(self, sid: str, data: dict[str, Any]) -> None:
        payload = schemas.ReorderQuestionsPayload.model_validate(data)
        record = self._manager.require_controller(payload.session_code, sid)
        with self._manager.registry.in_flight(record.code):
            self._manager.reorder_questions(record.code, payload.ordered_ids)
            await self._broadcast_questions(record)

    # --- Answers ---

    async def submit_answer(self, sid: str, data: dict[str, Any]) -> None:
        payload = schemas.SubmitAnswerPayload.model_validate(data)
        attachment = await self._attachment(sid)
        if attachment.get("session_code") != payload.session_code or _role_of(attachment) is not Role.AUDIENCE:
            raise PolicyViolation("Only participants of this session can answer.")
        with self._manager.registry.in_flight(payload.session_code):
            outcome = self._manager.submit_answer(payload.session_code, sid, payload.question_id, payload.answer)
            if outcome is None:
                return
            await self._router.emit_to_connection(sid, "answerResult", outcome.to_payload())
            if outcome.correct:
                await self._broadcast_roster(self._manager.lookup(payload.session_code))

    # --- Session settings ---

    async def change_theme(self, sid: str, data: dict[str, Any]) -> None:
        payload = schemas.ChangeThemePayload.model_validate(data)
        record = self._manager.require_controller(payload.session_code, sid)
        with self._manager.registry.in_flight(record.code):
            self._manager.change_theme(record.code, payload.theme)
            await self._router.emit_to_role(record.code, Target.EVERYONE, "themeChanged", {"theme": payload.theme})

    async def toggle_audience_url(self, sid: str, data: dict[str, Any]) -> None:
        payload = schemas.ToggleAudienceUrlPayload.model_validate(data)
        record = self._manager.require_controller(payload.session_code, sid)
        with self._manager.registry.in_flight(record.code):
            self._manager.set_audience_link_visible(record.code, payload.visible)
            await self._router.emit_to_role(
                record.code, Target.EVERYONE, "audienceUrlVisibilityChanged", {"visible": payload.visible}
            )

    async def change_presenter_mode(self, sid: str, data: dict[str, Any]) -> None:
        payload = schemas.ChangePresenterModePayload.model_validate(data)
        record = self._manager.require_controller(payload.session_code, sid)
        mode = PresenterMode(
            mode=payload.mode,
            chart_type=payload.chart_type,
            show_rank_position=payload.show_rank_position,
        )
        with self._manager.registry.in_flight(record.code):
            self._manager.change_presenter_mode(record.code, mode)
            await self._router.emit_to_role(record.code, Target.EVERYONE, "presenterModeChanged", mode.to_payload())

    async def change_audience_view(self, sid: str, data: dict[str, Any]) -> None:
        payload = schemas.ChangeAudienceViewPayload.model_validate(data)
        record = self._manager.require_controller(payload.session_code, sid)
        with self._manager.registry.in_flight(record.code):
            self._manager.change_audience_view(record.code, payload.allowed_views)
            await self._router.emit_to_role(
                record.code, Target.EVERYONE, "audienceViewChanged", {"allowedViews": list(payload.allowed_views)}
            )

    # --- Broadcast helpers ---

    async def _broadcast_roster(self, record: SessionRecord) -> None:
        await self._router.emit_to_role(record.code, Target.STAFF, "userListUpdated", record.roster_payload())

    async def _broadcast_questions(self, record: SessionRecord) -> None:
        await self._router.emit_to_role(
            record.code, Target.STAFF, "questionsUpdated", {"questions": record.questions.to_payload()}
        )
        await self._router.emit_to_role(
            record.code,
            Target.AUDIENCE,
            "questionsUpdated",
            {"questions": record.questions.to_payload(include_answers=False)},
        )


def _role_of(attachment: dict[str, Any]) -> Role | None:
    role = attachment.get("role")
    return Role(role) if role else None
