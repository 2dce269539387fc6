"""ASGI application: Socket.IO session events in front of a FastAPI HTTP surface."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
import logging
from typing import AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
import socketio
import uvicorn

from pace_app.constants.about import APP_ABOUT_TEXT, APP_LICENSE, APP_NAME, APP_VERSION
from pace_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT, SOCKETIO_PATH
from pace_app.core.errors import NotFound
from pace_app.core.session_exporter import export_session_csv, export_session_json
from pace_app.core.session_manager import SessionManager
from pace_app.server.socket_events import SessionEventHandlers

logger = logging.getLogger(__name__)

_EXPORT_FORMATS = {
    "json": ("application/json", export_session_json),
    "csv": ("text/csv", export_session_csv),
}


def _get_session_manager_dependency(session_manager: SessionManager):
    def dependency() -> SessionManager:
        return session_manager

    return dependency


def create_api_app(session_manager: SessionManager, handlers: SessionEventHandlers | None = None) -> FastAPI:
    """Create the FastAPI app; when ``handlers`` is given its expiry sweep runs for the app's lifetime."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        sweep = asyncio.create_task(handlers.run_expiry_sweep()) if handlers is not None else None
        try:
            yield
        finally:
            if sweep is not None:
                sweep.cancel()
                with suppress(asyncio.CancelledError):
                    await sweep

    app = FastAPI(
        title=f"{APP_NAME} API",
        description=APP_ABOUT_TEXT,
        version=APP_VERSION,
        license_info={"name": APP_LICENSE},
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=session_manager.settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    manager_dep = _get_session_manager_dependency(session_manager)

    @app.get("/health")
    def health(manager: SessionManager = Depends(manager_dep)) -> dict[str, object]:
        return {
            "status": "ok",
            "environment": manager.settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "activeSessions": manager.registry.get_session_count(),
        }

    @app.get("/api/export/{session_code}/{export_format}")
    def export_session(
        session_code: str,
        export_format: str,
        manager: SessionManager = Depends(manager_dep),
    ) -> Response:
        if export_format not in _EXPORT_FORMATS:
            raise HTTPException(status_code=400, detail="Invalid format (use json or csv).")
        try:
            record = manager.lookup(session_code.upper())
        except NotFound as exc:
            raise HTTPException(status_code=404, detail=exc.message) from exc
        media_type, render = _EXPORT_FORMATS[export_format]
        return Response(
            content=render(record),
            media_type=media_type,
            headers={"Content-Disposition": f'attachment; filename="session-{record.code}.{export_format}"'},
        )

    return app


def _socketio_origins(origins: list[str]) -> str | list[str]:
    return "*" if "*" in origins else origins


def create_asgi_app(session_manager: SessionManager) -> socketio.ASGIApp:
    """Wire a Socket.IO server and the FastAPI app around one ``SessionManager``."""
    sio = socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=_socketio_origins(session_manager.settings.cors_origins),
        logger=False,
        engineio_logger=False,
    )
    handlers = SessionEventHandlers(sio, session_manager)
    handlers.register()
    api = create_api_app(session_manager, handlers)
    return socketio.ASGIApp(sio, other_asgi_app=api, socketio_path=SOCKETIO_PATH)


def start_api_server(
    session_manager: SessionManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> None:
    """Run the combined ASGI app in the foreground until interrupted."""
    app = create_asgi_app(session_manager)
    config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_level=session_manager.settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    server.run()
