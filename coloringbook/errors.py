"""Exception taxonomy shared by the job runners and the HTTP layer."""

from typing import Any, List, Optional


class ColoringBookError(Exception):
    """Base class for all service errors."""


class ValidationError(ColoringBookError):
    """Malformed or missing input. Raised before anything is persisted."""

    def __init__(self, message: str, reasons: Optional[List[str]] = None):
        super().__init__(message)
        self.reasons = reasons or [message]


class NotFoundError(ColoringBookError):
    """Unknown job id, or a job that belongs to another owner."""


class ForbiddenError(ColoringBookError):
    """Caller tried to act on behalf of a different user."""


class UpstreamGenerationError(ColoringBookError):
    """The external image-generation service failed for one unit of work."""


class PersistenceError(ColoringBookError):
    """A job store or file store operation failed.

    ``job`` optionally carries the in-memory state the caller was trying to
    persist, so it can still be reported as a best-effort response.
    """

    def __init__(self, message: str, job: Any = None):
        super().__init__(message)
        self.job = job
