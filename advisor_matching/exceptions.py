"""
Error taxonomy for the matching engine.

Every engine failure is an EngineError carrying a stable ``code`` and a
``retryable`` flag so callers (API layer, scheduled loops, flows) can decide
whether to retry without inspecting messages.
"""

from typing import Any, Dict


class EngineError(Exception):
    """Base class for all matching engine errors."""

    code = 'engine_error'
    retryable = False

    def __init__(self, message: str = '', **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context


class ValidationError(EngineError):
    """Malformed or missing identifiers or payload fields."""

    code = 'validation_error'


class NotFoundError(EngineError):
    """Unknown match, provider or client."""

    code = 'not_found'


class InsufficientDataError(EngineError):
    """Sample below the minimum required for a computation."""

    code = 'insufficient_data'

    def __init__(self, message: str = '', sample_size: int = 0, required: int = 0, **context):
        super().__init__(message, sample_size=sample_size, required=required, **context)
        self.sample_size = sample_size
        self.required = required


class StoreError(EngineError):
    """The outcome store could not complete a read or write."""

    code = 'store_error'
    retryable = True


class ComputationError(EngineError):
    """A numeric computation ended in an unusable state (NaN, zero variance)."""

    code = 'computation_error'


def error_response(exc: Exception) -> Dict[str, Any]:
    """
    Build the response payload for a failed engine call.

    Unknown exceptions are reported as a non-retryable internal error so a
    failure never looks like a valid zero score.
    """
    if isinstance(exc, EngineError):
        code, message, retryable = exc.code, exc.message, exc.retryable
    else:
        code, message, retryable = 'internal_error', str(exc) or exc.__class__.__name__, False
    return {
        'success': False,
        'error': {
            'code': code,
            'message': message,
            'retryable': retryable,
        },
    }
