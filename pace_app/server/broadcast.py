"""Role-scoped delivery on top of Socket.IO rooms.

Every attached connection joins two rooms: the session room and the room of its
role inside that session. Role subsets map onto those rooms; a single
participant is addressed by its connection id.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import socketio

from pace_app.core.models import Role


class Target(str, Enum):
    CONTROLLER = "controller"
    PRESENTERS = "presenters"
    STAFF = "staff"
    AUDIENCE = "audience"
    EVERYONE = "everyone"


_TARGET_ROLES: dict[Target, tuple[Role, ...]] = {
    Target.CONTROLLER: (Role.CONTROLLER,),
    Target.PRESENTERS: (Role.PRESENTER,),
    Target.STAFF: (Role.CONTROLLER, Role.PRESENTER),
    Target.AUDIENCE: (Role.AUDIENCE,),
}


def room_for_session(code: str) -> str:
    return f"session_{code}"


def room_for_role(code: str, role: Role) -> str:
    return f"session_{code}_{role.value}"


class BroadcastRouter:
    """Maps a session plus role subset onto the transport's room and unicast primitives."""

    def __init__(self, sio: socketio.AsyncServer) -> None:
        self._sio = sio

    async def attach(self, connection_id: str, code: str, role: Role) -> None:
        await self._sio.enter_room(connection_id, room_for_session(code))
        await self._sio.enter_room(connection_id, room_for_role(code, role))

    async def detach(self, connection_id: str, code: str, role: Role) -> None:
        await self._sio.leave_room(connection_id, room_for_session(code))
        await self._sio.leave_room(connection_id, room_for_role(code, role))

    async def emit_to_role(self, code: str, target: Target, event: str, payload: Any) -> None:
        if target is Target.EVERYONE:
            await self._sio.emit(event, payload, to=room_for_session(code))
            return
        rooms = [room_for_role(code, role) for role in _TARGET_ROLES[target]]
        await self._sio.emit(event, payload, to=rooms if len(rooms) > 1 else rooms[0])

    async def emit_to_connection(self, connection_id: str, event: str, payload: Any) -> None:
        await self._sio.emit(event, payload, to=connection_id)

    async def disconnect(self, connection_id: str) -> None:
        await self._sio.disconnect(connection_id)

    async def close_session(self, code: str) -> None:
        await self._sio.close_room(room_for_session(code))
        for role in Role:
            await self._sio.close_room(room_for_role(code, role))
