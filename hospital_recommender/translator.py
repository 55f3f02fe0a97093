"""
Maps the terminal invocation outcome to what the caller sees.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi.responses import JSONResponse

from .errors import (
    AnalysisError,
    FatalAnalysisError,
    RateLimitedError,
    ServiceUnavailableError,
    UpstreamServerError,
)
from .models import (
    AnalysisPrompt,
    AnalysisResponse,
    AnalysisResult,
    ErrorResponse,
    PatientSummary,
)
from .resilient_invoker import (
    DEFAULT_RATE_LIMIT_RETRY_AFTER_S,
    SERVICE_UNAVAILABLE_RETRY_AFTER_S,
    InvocationResult,
    Outcome,
)

DAILY_QUOTA_MESSAGE = (
    "You have exceeded your daily quota. Please try again tomorrow "
    "or upgrade your plan for higher limits."
)
RATE_LIMIT_DETAILS = (
    "Free tier has limited requests. Consider upgrading to a paid plan for higher limits."
)
UPGRADE_INFO = (
    "Visit https://ai.google.dev/pricing to see paid tier options with higher rate limits."
)
SERVICE_UNAVAILABLE_MESSAGE = (
    "The Gemini API is currently experiencing high demand. Please try again in 1-2 minutes."
)
GENERIC_FAILURE_MESSAGE = (
    "We could not analyze the medical data right now. Please try again later."
)


def _error_detail(result: InvocationResult) -> Optional[str]:
    if result.error is None:
        return None
    return getattr(result.error, "message", None) or str(result.error) or type(result.error).__name__


def to_analysis_error(result: InvocationResult) -> AnalysisError:
    """The caller-facing error for a failed invocation."""
    detail = _error_detail(result)

    if result.outcome == Outcome.RATE_LIMITED:
        retry_after = result.retry_after_seconds or DEFAULT_RATE_LIMIT_RETRY_AFTER_S
        if result.daily_quota:
            message = DAILY_QUOTA_MESSAGE
        else:
            minutes = max(1, -(-retry_after // 60))
            message = f"Rate limit exceeded. Please wait {minutes} minutes before trying again."
        return RateLimitedError(
            message,
            details=RATE_LIMIT_DETAILS,
            retry_after=retry_after,
            upgrade_info=UPGRADE_INFO,
        )

    if result.outcome == Outcome.SERVICE_UNAVAILABLE:
        return ServiceUnavailableError(
            SERVICE_UNAVAILABLE_MESSAGE,
            details=detail,
            retry_after=result.retry_after_seconds or SERVICE_UNAVAILABLE_RETRY_AFTER_S,
        )

    if result.outcome == Outcome.SERVER_ERROR:
        return UpstreamServerError(GENERIC_FAILURE_MESSAGE, details=detail)

    return FatalAnalysisError(GENERIC_FAILURE_MESSAGE, details=detail)


def to_analysis_result(
    result: InvocationResult,
    prompt: AnalysisPrompt,
    files_uploaded: int,
) -> AnalysisResult:
    return AnalysisResult(
        analysis_text=result.text or "",
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        files_uploaded=files_uploaded,
        files_analyzed=len(prompt.images),
    )


def success_response(result: AnalysisResult, patient_name: str) -> JSONResponse:
    body = AnalysisResponse(
        analysis=result.analysis_text,
        timestamp=result.timestamp,
        patientInfo=PatientSummary(
            name=patient_name,
            filesUploaded=result.files_uploaded,
            filesAnalyzed=result.files_analyzed,
        ),
    )
    return JSONResponse(body.model_dump(), status_code=200)


def error_response(error: AnalysisError) -> JSONResponse:
    headers = None
    if error.retry_after is not None:
        headers = {"Retry-After": str(error.retry_after)}
    body = ErrorResponse(
        error=error.error,
        message=error.message,
        details=error.details,
        retryAfter=error.retry_after,
        upgradeInfo=error.upgrade_info,
    )
    return JSONResponse(body.model_dump(exclude_none=True), status_code=error.status_code, headers=headers)


def method_not_allowed_response() -> JSONResponse:
    body = ErrorResponse(error="Method not allowed")
    return JSONResponse(body.model_dump(exclude_none=True), status_code=405, headers={"Allow": "POST"})
