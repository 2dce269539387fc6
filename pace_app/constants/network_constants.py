"""Network configuration constants for the session server."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 3000
SOCKETIO_PATH: str = "socket.io"
DEFAULT_CORS_ORIGINS: str = "*"
