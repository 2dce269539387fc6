"""Error taxonomy shared by the core services and the socket layer."""

from __future__ import annotations


class SessionError(Exception):
    """Base class for expected, user-visible failures. Never fatal to the process."""

    code = "session_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_ack(self) -> dict[str, object]:
        return {"success": False, "message": self.message, "code": self.code}


class AuthenticationFailure(SessionError):
    code = "auth_failed"


class NotFound(SessionError):
    code = "not_found"


class PolicyViolation(SessionError):
    code = "policy_violation"


class RateLimited(SessionError):
    code = "rate_limited"


class Malformed(SessionError):
    code = "malformed"
