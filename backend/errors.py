"""Domain errors raised by the attendance pipeline.

HTTP status mapping lives in ``backend.main``; routers keep raising
``HTTPException`` for plain request validation.
"""


class RollcallError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500


class PreconditionError(RollcallError):
    """The requested action cannot start in the current session state."""

    status_code = 400


class ModelNotReadyError(PreconditionError):
    """Face detection/recognition models are not loaded."""

    status_code = 503


class CameraError(RollcallError):
    """Raised when camera acquisition or reads fail."""

    status_code = 503


class PersistenceError(RollcallError):
    """The attendance document store rejected a write."""

    status_code = 500
