"""
Hospital Recommender - FastAPI Backend

Accepts a patient's medical reports plus metadata, asks Gemini for a
condition analysis and the three best-suited hospitals, and returns the
answer.

Endpoints:
  - POST /api/analyze-medical-data  multipart: `files` (1+), `data` (JSON)
  - GET  /health
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .errors import AnalysisError, FatalAnalysisError, SubmissionValidationError
from .gemini_client import GeminiClient
from .models import load_form_data, parse_submission_data
from .pipeline import analyze_submission
from .resilient_invoker import ResilientInvoker
from .structured_logging import log_request, set_request_id, setup_logging
from .translator import (
    GENERIC_FAILURE_MESSAGE,
    error_response,
    method_not_allowed_response,
    success_response,
)
from .uploads import request_storage

logger = logging.getLogger(__name__)

ANALYZE_PATH = "/api/analyze-medical-data"


def build_invoker(settings: Settings) -> ResilientInvoker:
    client = GeminiClient(
        api_key=settings.gemini_api_key,
        fast_model=settings.fast_model,
        capable_model=settings.capable_model,
        timeout_seconds=settings.timeout_seconds,
    )
    return ResilientInvoker(
        client,
        max_attempts=settings.max_retries,
        base_delay_ms=settings.retry_base_delay_ms,
        tier=settings.model_tier,
        escalate_after=settings.escalate_after,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and build the Gemini invoker on startup."""
    settings = get_settings()
    setup_logging(settings.log_level, use_json=settings.log_json)
    logger.info("Starting hospital recommendation service...")

    try:
        app.state.invoker = build_invoker(settings)
    except RuntimeError as e:
        logger.warning(f"Gemini not available: {e}")
        logger.warning("Analysis requests will fail until GEMINI_API_KEY is set.")
        app.state.invoker = None

    logger.info("Ready to serve requests.")
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="Hospital Recommender",
    description="Gemini-powered hospital recommendations from medical reports",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = set_request_id(request.headers.get("X-Request-ID"))
    start_time = time.time()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    log_request(
        request.method,
        request.url.path,
        response.status_code,
        (time.time() - start_time) * 1000,
        client_ip=request.client.host if request.client else None,
    )
    return response


@app.exception_handler(RequestValidationError)
async def form_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    return error_response(SubmissionValidationError(
        "Invalid form data format",
        details=str(first.get("msg", "Malformed multipart request")),
    ))


def get_invoker(request: Request) -> Optional[ResilientInvoker]:
    return getattr(request.app.state, "invoker", None)


@app.get("/health")
async def health_check(settings: Settings = Depends(get_settings)):
    return {
        "status": "healthy",
        "gemini_configured": bool(settings.gemini_api_key),
        "model_tier": settings.model_tier,
        "models": {"fast": settings.fast_model, "capable": settings.capable_model},
        "max_retries": settings.max_retries,
        "retry_base_delay_ms": settings.retry_base_delay_ms,
    }


@app.post(ANALYZE_PATH)
async def analyze_medical_data(
    files: Optional[list[UploadFile]] = File(None),
    data: Optional[str] = Form(None),
    invoker: Optional[ResilientInvoker] = Depends(get_invoker),
    settings: Settings = Depends(get_settings),
):
    """Analyze uploaded medical reports and recommend hospitals."""
    try:
        payload = load_form_data(data)
        if not files:
            raise SubmissionValidationError("At least one medical report file is required")
        submission = parse_submission_data(payload)
    except SubmissionValidationError as e:
        logger.warning(f"Rejected submission: {e.error}")
        return error_response(e)

    logger.info(
        f"Analyzing {len(files)} file(s): {', '.join(f.filename or 'unnamed' for f in files)}"
    )

    try:
        async with request_storage(files, settings.upload_dir, settings.max_upload_bytes) as uploads:
            if invoker is None:
                raise FatalAnalysisError(
                    GENERIC_FAILURE_MESSAGE,
                    details="Gemini client is not configured (missing API key)",
                )
            result = await analyze_submission(submission, uploads, invoker)
    except AnalysisError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error in analyze-medical-data: {e}")
        return error_response(FatalAnalysisError(GENERIC_FAILURE_MESSAGE, details=str(e)))

    return success_response(result, submission.patient_info.name)


@app.api_route(ANALYZE_PATH, methods=["GET", "PUT", "PATCH", "DELETE", "OPTIONS"], include_in_schema=False)
async def analyze_wrong_method():
    return method_not_allowed_response()


def run():
    import uvicorn
    uvicorn.run("hospital_recommender.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
