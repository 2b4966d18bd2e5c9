"""
Typed errors raised by services and models.

Each class carries the HTTP status the boundary layer answers with, so
blueprints never choose status codes for failures themselves.
"""


class ApiError(Exception):
    status_code = 500
    default_message = 'Internal server error'

    def __init__(self, message: str | None = None, errors=None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {'success': False, 'message': self.message}
        if self.errors:
            payload['errors'] = self.errors
        return payload


class ValidationError(ApiError, ValueError):
    status_code = 400
    default_message = 'Validation failed'


class InvalidStateError(ApiError):
    status_code = 400
    default_message = 'Operation not allowed in the current state'


class UnauthorizedError(ApiError):
    status_code = 401
    default_message = 'Invalid credentials'


class InvalidTokenError(UnauthorizedError):
    default_message = 'Authentication failed: invalid or expired token'


class ForbiddenError(ApiError):
    status_code = 403
    default_message = 'Access denied'


class NotFoundError(ApiError):
    status_code = 404
    default_message = 'Resource not found'


class ConflictError(ApiError):
    status_code = 409
    default_message = 'Resource already exists'


class InternalError(ApiError):
    status_code = 500


class TransientError(ApiError):
    """Storage was unreachable or timed out; the caller may retry."""

    status_code = 503
    default_message = 'Service temporarily unavailable, please retry'

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload['retryable'] = True
        return payload
