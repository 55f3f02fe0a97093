"""
Error taxonomy for the analysis pipeline.

AnalysisError subclasses are caller-facing: each carries an HTTP status,
a short error label, a user-facing message and separate diagnostic details.
RemoteServiceError is raised at the Gemini client boundary and never
reaches the caller directly.
"""
from typing import Optional


class AnalysisError(Exception):
    status_code = 500
    error = "Failed to analyze medical data"

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        retry_after: Optional[int] = None,
        upgrade_info: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.retry_after = retry_after
        self.upgrade_info = upgrade_info


class SubmissionValidationError(AnalysisError):
    """Bad input. The caller must fix it; never retried."""
    status_code = 400

    def __init__(self, error: str, message: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message or error, details=details)
        self.error = error


class RateLimitedError(AnalysisError):
    status_code = 429
    error = "Rate limit exceeded"


class ServiceUnavailableError(AnalysisError):
    status_code = 503
    error = "AI service temporarily unavailable"


class UpstreamServerError(AnalysisError):
    """Gemini kept answering 5xx until the retry ceiling."""
    status_code = 500


class FatalAnalysisError(AnalysisError):
    status_code = 500


class RemoteServiceError(Exception):
    """HTTP-level failure reported by the generative model service."""

    def __init__(
        self,
        status_code: int,
        message: str,
        retry_delay_seconds: Optional[float] = None,
        quota_ids: tuple[str, ...] = (),
    ):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.retry_delay_seconds = retry_delay_seconds
        self.quota_ids = tuple(quota_ids)

    def __repr__(self) -> str:
        return f"RemoteServiceError(status_code={self.status_code}, message={self.message!r})"
