"""Error taxonomy for the session lifecycle.

Every error carries a stable `error-<area>-<n>` code in its message so that log lines and
Sentry events can be grouped without including request data.
"""

from typing import Any, Dict, List, Optional


class SessionLifecycleException(Exception):
    """Base class for all session lifecycle errors."""

    status: int = 500


class ValidationError(SessionLifecycleException):
    """
    Malformed or out-of-bounds input.

    Always local to the request boundary. The issues list describes which fields failed and
    why, and never includes the raw submitted value.
    """

    status = 400

    def __init__(self, message: str, issues: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.issues = issues or []

    @staticmethod
    def invalid_content_type() -> "ValidationError":
        return ValidationError("error-validation-1000 Invalid content type")

    @staticmethod
    def invalid_body(issues: List[Dict[str, Any]]) -> "ValidationError":
        return ValidationError("error-validation-1001 Invalid request data", issues)


class RateLimitExceeded(SessionLifecycleException):
    """The client exhausted its quota for the current window."""

    status = 429

    def __init__(self, reset_time: int, limit: int, remaining: int = 0):
        super().__init__("error-rate-limit-2000 Rate limit exceeded")
        self.reset_time = reset_time
        self.limit = limit
        self.remaining = remaining


class NotFound(SessionLifecycleException):
    """The target session does not exist."""

    status = 404

    @staticmethod
    def session() -> "NotFound":
        return NotFound("error-not-found-3000 Session not found")


class UpstreamFailure(SessionLifecycleException):
    """
    An external capability failed: the identity provider, the profile service or the
    session API as seen from the client.

    Always recoverable. An upstream failure must never abort an otherwise successful
    authentication.
    """

    status = 502

    @staticmethod
    def provider(operation: str) -> "UpstreamFailure":
        return UpstreamFailure(f"error-upstream-4000 Identity provider {operation} failed")

    @staticmethod
    def session_api(endpoint: str, status: int) -> "UpstreamFailure":
        return UpstreamFailure(
            f"error-upstream-4001 Session API {endpoint} responded {status}"
        )

    @staticmethod
    def unreachable(endpoint: str) -> "UpstreamFailure":
        return UpstreamFailure(f"error-upstream-4002 Session API {endpoint} unreachable")


class PersistenceFailure(SessionLifecycleException):
    """The data store is unreachable or rejected a write."""

    status = 500

    @staticmethod
    def identity_upsert() -> "PersistenceFailure":
        return PersistenceFailure("error-persistence-5000 Identity upsert failed")


class Unauthorized(SessionLifecycleException):
    """A protected request did not present a usable session."""

    status = 401

    def __init__(self, message: str, reason: str = "Invalid or expired session"):
        super().__init__(message)
        self.reason = reason

    @staticmethod
    def session_missing() -> "Unauthorized":
        return Unauthorized("error-gateway-6000 Session required", "Session required")

    @staticmethod
    def session_malformed() -> "Unauthorized":
        return Unauthorized("error-gateway-6001 Malformed session id")

    @staticmethod
    def session_not_found() -> "Unauthorized":
        return Unauthorized("error-gateway-6002 No active session found")

    @staticmethod
    def session_expired() -> "Unauthorized":
        return Unauthorized("error-gateway-6003 Session has expired")
