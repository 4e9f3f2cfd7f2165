"""
Coach Error Taxonomy

Every failure the core can report to a caller carries a stable machine code,
the HTTP status it maps to outside of a stream, and optional details that are
merged into the JSON error body.
"""

from typing import Any, Dict, Optional


class CoachError(Exception):
    """Base class for all reportable coach failures."""

    code: str = "coach_error"
    status_code: int = 400

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message or self.code)
        self.message = message or self.code
        if code is not None:
            self.code = code
        self.details = details or {}
        self.headers = headers or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        body.update(self.details)
        return body


class QuotaExceeded(CoachError):
    """Monthly cap reached. Not retryable until the reset instant."""

    code = "monthly_quota_exceeded"
    status_code = 429


class RateLimited(CoachError):
    """Short-window throttling. Retryable after `retryAfter` seconds."""

    code = "rate_limit_exceeded"
    status_code = 429


class ValidationFailed(CoachError):
    """A candidate (or request) failed structural or business checks."""

    code = "coach_validation_failed"
    status_code = 422


class SalvageFailed(ValidationFailed):
    """The malformed-output recovery could not rebuild a valid candidate."""


class VersionConflict(CoachError):
    """Optimistic-concurrency mismatch. Re-read and retry explicitly."""

    code = "version_conflict"
    status_code = 409


class NotFound(CoachError):
    """Session or draft missing, or not owned by the caller."""

    code = "not_found"
    status_code = 404


class InvalidStepTransition(CoachError):
    """A step change that the sequencer does not sanction."""

    code = "invalid_step_transition"
    status_code = 409
