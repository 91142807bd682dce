from typing import Optional


class CoordinatorError(Exception):
    """Base class for every error the session engine reports to callers."""

    status_code = 500
    default_code = 'error'

    def __init__(self, message: str, code: str = None, details: Optional[dict] = None):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            'error': self.message,
            'kind': type(self).__name__,
            'code': self.code,
            'details': self.details,
        }


class ValidationError(CoordinatorError):
    """Bad input shape or range."""
    status_code = 400
    default_code = 'invalid_input'


class PreconditionError(CoordinatorError):
    """Operation already performed, or its precondition is unmet."""
    status_code = 409
    default_code = 'precondition_failed'


class IsolationViolation(CoordinatorError):
    """A write tried to link rows from two different sessions."""
    status_code = 403
    default_code = 'session_mismatch'


class NotFoundError(CoordinatorError):
    status_code = 404
    default_code = 'not_found'
