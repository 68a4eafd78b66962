"""
Work session error taxonomy.

Every error carries a stable `code` and the HTTP status the API layer
maps it to. Nothing here is raised after a partial write: write phases
roll back before these propagate.
"""

from typing import Optional


class WorkSessionError(Exception):
    """Base class for engine errors surfaced to callers."""

    code = "WORK_SESSION_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WorkSessionError):
    """Malformed input enum or range; rejected before any persistence."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(WorkSessionError):
    """Unknown session, evidence pack, or a stage the session does not have."""

    code = "NOT_FOUND"
    status_code = 404


class ConflictError(WorkSessionError):
    """Session already terminal, or a stage transition out of sequence."""

    code = "CONFLICT"
    status_code = 409


class RetryableError(WorkSessionError):
    """Collaborator timeout, rate limit, or a concurrent write won the race.

    Nothing was committed; the caller may retry the same call.
    """

    code = "RETRYABLE"
    status_code = 503
    retryable = True

    def __init__(self, message: str, retry_after: int = 2):
        super().__init__(message)
        self.retry_after = retry_after


class SchemaError(WorkSessionError):
    """Collaborator output did not match the expected structure."""

    code = "SCHEMA_ERROR"
    status_code = 502

    def __init__(self, message: str, raw_text: Optional[str] = None):
        super().__init__(message)
        self.raw_text = raw_text


class GenerationError(WorkSessionError):
    """Non-retryable collaborator failure (bad request, auth, ...)."""

    code = "GENERATION_ERROR"
    status_code = 502
