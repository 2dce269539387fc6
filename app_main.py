"""Application entry point for the PaceQuiz session server."""

from __future__ import annotations

from pace_app.config import load_settings
from pace_app.core.session_manager import SessionManager
from pace_app.server.api_server import start_api_server
from pace_app.utils.logging_config import configure_logging


def main() -> None:
    """Load settings, initialize logging and serve until interrupted."""
    settings = load_settings()
    logger = configure_logging(settings.log_level)

    session_manager = SessionManager(settings)
    timeout = settings.session_timeout_seconds
    logger.info("Starting PaceQuiz session server")
    logger.info("Environment: %s", settings.environment)
    logger.info("URL: http://%s:%s", settings.host, settings.port)
    logger.info("Password hashing: %s", "on" if session_manager.hashing_enabled else "off")
    logger.info("Rate limiting: %s", "on" if settings.enable_rate_limiting else "off")
    logger.info("Session timeout: %s", f"{timeout:.0f}s" if timeout > 0 else "never")

    start_api_server(session_manager=session_manager, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
