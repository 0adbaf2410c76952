"""
Error taxonomy for the forecast engine.

Every error carries an HTTP status so the route layer can turn it into a
JSON response without knowing which subsystem raised it.
"""


class ForecastEngineError(Exception):
    """Base exception for forecast engine errors."""

    status_code = 500
    default_message = "An error occurred in the forecast engine"

    def __init__(self, message=None, code=None, details=None):
        self.message = message or self.default_message
        self.code = code
        self.details = details
        super().__init__(self.message)

    def __str__(self):
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self):
        """Convert the exception to a response body."""
        error_dict = {
            'error': self.__class__.__name__,
            'message': self.message,
            'status_code': self.status_code,
        }
        if self.code:
            error_dict['code'] = self.code
        if self.details:
            error_dict['details'] = self.details
        return error_dict


class ValidationError(ForecastEngineError):
    """Malformed or out-of-range input, rejected before any computation."""

    status_code = 400
    default_message = "Validation error"

    def __init__(self, message=None, field=None, details=None):
        self.field = field
        if field:
            details = dict(details or {}, field=field)
        super().__init__(message, 'VALIDATION_ERROR', details)


class ConfigurationInvariantError(ValidationError):
    """Bucket settings that break the distribution or coverage invariants."""

    default_message = "Configuration invariant violated"

    def __init__(self, message=None, field=None, details=None):
        super().__init__(message, field, details)
        self.code = 'CONFIGURATION_INVARIANT'


class InsufficientDataError(ForecastEngineError):
    """Not enough input data to produce a meaningful result."""

    status_code = 422
    default_message = "Insufficient data"

    def __init__(self, message=None, details=None):
        super().__init__(message, 'INSUFFICIENT_DATA', details)


class EmptyInventoryError(InsufficientDataError):
    """No sellable inventory records remain after filtering."""

    default_message = "No valid inventory records to value"


class NotFoundError(ForecastEngineError):
    status_code = 404
    default_message = "Not found"

    def __init__(self, message=None, details=None):
        super().__init__(message, 'NOT_FOUND', details)


class ConflictError(ForecastEngineError):
    """Write contention on the forecast document after exhausting retries."""

    status_code = 503
    default_message = "Forecast document is being updated concurrently, try again"

    def __init__(self, message=None, details=None):
        super().__init__(message, 'CONFLICT', details)
