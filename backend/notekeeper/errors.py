"""Error taxonomy shared by the store, the auth gate and the note service.

Every error carries a stable machine-readable ``code`` and the HTTP status
the API layer maps it to, so callers can tell the kinds apart without
parsing messages.
"""

from typing import Any, Dict, Optional


class NotekeeperError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(NotekeeperError):
    """Malformed or missing input; ``field`` names the offending field."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class AuthError(NotekeeperError):
    """Bad credentials or an unusable token.

    The message is always one of two generic strings so that the cause
    (unknown e-mail, wrong password, social-only account, bad signature,
    expiry) cannot be told apart from outside.
    """

    code = "AUTH_ERROR"
    status_code = 401

    INVALID_CREDENTIALS = "Invalid credentials"
    INVALID_TOKEN = "Invalid or expired token"


class ForbiddenError(NotekeeperError):
    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFoundError(NotekeeperError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, resource_id: Any = None):
        super().__init__(
            f"{resource} not found",
            {"resource": resource.lower(), "id": str(resource_id)} if resource_id is not None else None,
        )
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(NotekeeperError):
    code = "CONFLICT"
    status_code = 409

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class ServiceUnavailableError(NotekeeperError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 503
