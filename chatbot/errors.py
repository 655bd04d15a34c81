"""
Service error taxonomy.

Every error raised across a component boundary is a `ServiceError` subclass that
carries the HTTP status the API layer maps it to. Messages are safe to return to
clients: they never include store details or stack traces.
"""

from __future__ import annotations


class ServiceError(Exception):
    status_code: int = 500
    default_detail: str = "Server error"

    def __init__(self, detail: str | None = None, *, status_code: int | None = None) -> None:
        self.detail = detail or self.default_detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.detail)

    @property
    def code(self) -> str:
        return type(self).__name__


class ValidationError(ServiceError):
    status_code = 400
    default_detail = "Invalid request"


class DuplicateIdentity(ServiceError):
    status_code = 409
    default_detail = "Email already registered"


class InvalidCredentials(ServiceError):
    # Unknown address and wrong password share this error on purpose.
    status_code = 401
    default_detail = "Invalid credentials"


class NotVerified(ServiceError):
    status_code = 403
    default_detail = "Please verify your email first"


class InvalidOrExpiredCode(ServiceError):
    # Missing, expired and mismatched codes share this error on purpose.
    status_code = 400
    default_detail = "Invalid or expired OTP"


class NotFound(ServiceError):
    status_code = 404
    default_detail = "Not found"


class AlreadyVerified(ServiceError):
    status_code = 400
    default_detail = "Email already verified"


class Unauthorized(ServiceError):
    status_code = 401
    default_detail = "Unauthorized"


class RateLimited(ServiceError):
    status_code = 429
    default_detail = "Too many attempts. Please try again later."


class UpstreamFailure(ServiceError):
    status_code = 502
    default_detail = "Upstream service unavailable"


class StoreFailure(ServiceError):
    status_code = 503
    default_detail = "Storage unavailable"


class NotConfigured(ServiceError):
    status_code = 503
    default_detail = "Service not configured"
