"""Session-related constants shared by the core services and the socket layer."""

SESSION_CODE_LENGTH: int = 6
SESSION_CODE_ALPHABET: str = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
MIN_ROLE_SECRET_LENGTH: int = 4
MIN_DISPLAY_NAME_LENGTH: int = 2

SKIP_SENTINEL: str = "__SKIP__"
DEFAULT_THEME: str = "light"
DEFAULT_PRESENTER_MODE: str = "progress"
DEFAULT_CHART_TYPE: str = "bar"
DEFAULT_SHORT_TEXT_CHAR_LIMIT: int = 25

DEFAULT_SESSION_TIMEOUT_MINUTES: int = 1440
DEFAULT_CLEANUP_INTERVAL_SECONDS: int = 300
DEFAULT_RATE_LIMIT_MAX_ATTEMPTS: int = 5
DEFAULT_RATE_LIMIT_WINDOW_SECONDS: int = 60

PENDING_APPROVAL_MESSAGE: str = "Waiting for the controller to approve you..."
RECONNECTED_MESSAGE: str = "Welcome back!"
NAME_IN_USE_MESSAGE: str = "Name already in use with a different password."
WRONG_SECRET_MESSAGE: str = "Incorrect password."
SESSION_NOT_FOUND_MESSAGE: str = "Session not found."
RATE_LIMITED_MESSAGE: str = "Too many attempts. Please wait a moment and try again."
REJECTED_MESSAGE: str = "Your request to join was declined by the controller."
REMOVED_MESSAGE: str = "You were removed from the session by the controller."
CONTROLLER_DISPLACED_MESSAGE: str = "Another controller connected to this session."
SESSION_TAKEN_OVER_MESSAGE: str = "You joined this session from another device."
SESSION_ENDED_MESSAGE: str = "The session was ended by the controller."
SESSION_EXPIRED_MESSAGE: str = "The session expired."
GENERIC_ERROR_MESSAGE: str = "Something went wrong. Please try again."
