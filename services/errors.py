"""
Error taxonomy shared by the services and mapped to HTTP by api/errors.py.

Services raise these instead of calling flask.abort so they stay usable
outside a request context (CLI, tests, workers).
"""
from __future__ import annotations


class ServiceError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "An unexpected error occurred"

    def __init__(self, message: str | None = None, details: dict | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class BadRequest(ServiceError):
    status_code = 400
    code = "BAD_REQUEST"
    default_message = "Bad request"


class Unauthorized(ServiceError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "Unauthorized"


class Forbidden(ServiceError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Forbidden"


class NotFound(ServiceError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class Conflict(ServiceError):
    status_code = 409
    code = "CONFLICT"
    default_message = "Conflict"


class InternalError(ServiceError):
    pass


# OTP flow
class InvalidOtp(BadRequest):
    default_message = "Invalid OTP"


class ExpiredOtp(BadRequest):
    default_message = "OTP has expired"


class ResetNotVerified(BadRequest):
    default_message = "Please verify OTP first"


# collaborators
class ProviderTokenError(Unauthorized):
    default_message = "Invalid identity provider token"


class MailDeliveryError(InternalError):
    default_message = "Failed to send email"
