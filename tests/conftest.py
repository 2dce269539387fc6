"""Shared fixtures: a recording Socket.IO double, a controllable clock, and wired services."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any

from engineio.async_drivers.asgi import translate_request
import pytest

from pace_app.config import Settings
from pace_app.core.models import QuestionType
from pace_app.core.services.credential_gate import CredentialGate, PlainCredentialHasher
from pace_app.core.services.question_collection import QuestionDraft
from pace_app.core.services.session_registry import SessionRegistry
from pace_app.core.session_manager import SessionManager
from pace_app.server.socket_events import SessionEventHandlers


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def asgi_environ(address: str, headers: dict[str, str] | None = None) -> dict[str, Any]:
    """Build the environ engine.io hands to ``connect`` for a polling handshake from ``address``."""
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/socket.io/",
        "query_string": b"EIO=4&transport=polling",
        "headers": [(name.lower().encode(), value.encode()) for name, value in (headers or {}).items()],
        "client": (address, 50000),
    }

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"", "more_body": False}

    async def send(message: dict[str, Any]) -> None:
        return None

    return await translate_request(scope, receive, send)


class PausedCredentialGate(CredentialGate):
    """Plain gate whose ``verify``/``protect`` block until ``release`` is set, once ``paused``."""

    def __init__(self) -> None:
        super().__init__(PlainCredentialHasher())
        self.paused = False
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def _pause(self) -> None:
        if not self.paused:
            return
        self.entered.set()
        await self.release.wait()

    async def protect(self, secret: str, hashed: bool = True) -> str:
        await self._pause()
        return await super().protect(secret, hashed)

    async def verify(self, secret: str | None, stored: str, hashed: bool) -> bool:
        await self._pause()
        return await super().verify(secret, stored, hashed)


class FakeSocketServer:
    """Lightweight stand-in for ``socketio.AsyncServer`` that records deliveries per connection."""

    def __init__(self) -> None:
        self.handlers: dict[str, Any] = {}
        self.sessions: dict[str, dict[str, Any]] = {}
        self.rooms: dict[str, set[str]] = defaultdict(set)
        self.inbox: dict[str, list[tuple[str, Any]]] = defaultdict(list)
        self.disconnected: list[str] = []

    # --- server API used by the application ---

    def on(self, event: str, handler: Any = None) -> None:
        self.handlers[event] = handler

    async def save_session(self, sid: str, session: dict[str, Any]) -> None:
        self.sessions[sid] = dict(session)

    async def get_session(self, sid: str) -> dict[str, Any]:
        return self.sessions[sid]

    async def enter_room(self, sid: str, room: str) -> None:
        self.rooms[room].add(sid)

    async def leave_room(self, sid: str, room: str) -> None:
        self.rooms.get(room, set()).discard(sid)

    async def close_room(self, room: str) -> None:
        self.rooms.pop(room, None)

    async def emit(self, event: str, data: Any = None, to: Any = None, room: Any = None) -> None:
        target = to if to is not None else room
        targets = target if isinstance(target, list) else [target]
        recipients: set[str] = set()
        for name in targets:
            if name in self.rooms:
                recipients |= self.rooms[name]
            elif name in self.sessions:
                recipients.add(name)
        for sid in sorted(recipients):
            self.inbox[sid].append((event, data))

    async def disconnect(self, sid: str) -> None:
        if sid not in self.sessions:
            return
        handler = self.handlers.get("disconnect")
        if handler is not None:
            await handler(sid, "server disconnect")
        for members in self.rooms.values():
            members.discard(sid)
        del self.sessions[sid]
        self.disconnected.append(sid)

    # --- client-side helpers for tests ---

    async def connect(self, sid: str, address: str = "10.0.0.1", headers: dict[str, str] | None = None) -> None:
        environ = await asgi_environ(address, headers)
        await self.handlers["connect"](sid, environ)

    async def call(self, sid: str, event: str, data: Any = None) -> Any:
        return await self.handlers[event](sid, data)

    def received(self, sid: str, event: str) -> list[Any]:
        return [data for name, data in self.inbox[sid] if name == event]

    def last(self, sid: str, event: str) -> Any:
        messages = self.received(sid, event)
        return messages[-1] if messages else None

    def clear_inbox(self) -> None:
        self.inbox.clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        enable_rate_limiting=False,
        enable_password_hashing=False,
        session_timeout_minutes=10,
    )


@pytest.fixture
def manager(settings: Settings, clock: FakeClock) -> SessionManager:
    return SessionManager(settings, registry=SessionRegistry(clock=clock))


@pytest.fixture
def sio() -> FakeSocketServer:
    return FakeSocketServer()


@pytest.fixture
def handlers(sio: FakeSocketServer, manager: SessionManager) -> SessionEventHandlers:
    event_handlers = SessionEventHandlers(sio, manager)
    event_handlers.register()
    return event_handlers


def single_select(text: str = "Pick one", options: tuple[str, ...] = ("Red", "Blue"), correct: int = 0) -> QuestionDraft:
    return QuestionDraft(
        text=text,
        question_type=QuestionType.SINGLE_SELECT,
        options=[(None, option) for option in options],
        correct_answer=[correct],
    )


def short_text(text: str = "Capital of France?", answers: tuple[str, ...] = ("Paris",)) -> QuestionDraft:
    return QuestionDraft(text=text, question_type=QuestionType.SHORT_TEXT, correct_answer=list(answers))
