"""
Service-layer exceptions.

Every failure a caller can act on is raised as a subclass of
`ChatServiceError`. Each class fixes the HTTP status and the machine-readable
`code` used in the response envelope; `detail` carries the human message.
The exception handlers in `letschat.main` turn them into::

    {"success": false, "error": {"code": <code>, "message": <detail>}}
"""


class ChatServiceError(Exception):
    """Base class of all expected service failures."""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationFailed(ChatServiceError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationFailed(ChatServiceError):
    status_code = 401
    code = "AUTHENTICATION_FAILED"


class PermissionDenied(ChatServiceError):
    status_code = 403
    code = "FORBIDDEN"


class NotFound(ChatServiceError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(ChatServiceError):
    status_code = 409
    code = "CONFLICT"


class EncryptionKeyMissing(ChatServiceError):
    """A conversation key could not be obtained for an encrypt/decrypt operation."""

    status_code = 500
    code = "ENCRYPTION_KEY_MISSING"
