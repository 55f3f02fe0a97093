"""
Gemini client boundary.

The invoker only depends on the GenerativeClient protocol. GeminiClient
implements it on google-genai and turns google-genai API errors into
RemoteServiceError, pulling the retry hint and quota identifiers out of the
google.rpc detail records.
"""
import base64
import logging
import re
from typing import Any, Optional, Protocol, Sequence

from google import genai
from google.genai import errors, types

from .config import DEFAULT_TIMEOUT_SECONDS
from .errors import RemoteServiceError
from .models import ImageAttachment

logger = logging.getLogger(__name__)

RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"
QUOTA_FAILURE_TYPE = "type.googleapis.com/google.rpc.QuotaFailure"

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*s\s*$")


class GenerativeClient(Protocol):
    async def generate(
        self,
        prompt: str,
        attachments: Sequence[ImageAttachment] = (),
        tier: str = "fast",
    ) -> str:
        """Return the model's text, or raise RemoteServiceError."""
        ...


def parse_retry_delay(value: Any) -> Optional[float]:
    """Parse a protobuf duration string such as "31s" into seconds."""
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None
    match = _DURATION_RE.match(value)
    return float(match.group(1)) if match else None


def error_detail_records(payload: Any) -> list[dict]:
    """Collect google.rpc detail records from an error response body."""
    if isinstance(payload, list):
        payload = payload[0] if payload else {}
    if not isinstance(payload, dict):
        return []
    error = payload.get("error", payload)
    if not isinstance(error, dict):
        return []
    details = error.get("details") or []
    return [d for d in details if isinstance(d, dict)]


def to_remote_service_error(exc: errors.APIError) -> RemoteServiceError:
    records = error_detail_records(getattr(exc, "details", None))

    retry_delay = None
    quota_ids = []
    for record in records:
        record_type = record.get("@type")
        if record_type == RETRY_INFO_TYPE and retry_delay is None:
            retry_delay = parse_retry_delay(record.get("retryDelay"))
        elif record_type == QUOTA_FAILURE_TYPE:
            for violation in record.get("violations") or []:
                quota_id = violation.get("quotaId") if isinstance(violation, dict) else None
                if quota_id:
                    quota_ids.append(quota_id)

    status_code = exc.code if isinstance(exc.code, int) else 500
    message = exc.message or str(exc)
    return RemoteServiceError(
        status_code=status_code,
        message=message,
        retry_delay_seconds=retry_delay,
        quota_ids=tuple(quota_ids),
    )


class GeminiClient:
    """google-genai backed GenerativeClient with one model name per tier."""

    def __init__(
        self,
        api_key: Optional[str],
        fast_model: str,
        capable_model: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        if not api_key:
            raise RuntimeError(
                "No Gemini API key found. Set GEMINI_API_KEY or GOOGLE_API_KEY "
                "environment variable."
            )
        self._models = {"fast": fast_model, "capable": capable_model}
        timeout_ms = int(timeout_seconds * 1000)
        self.client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=timeout_ms),
        )
        logger.info(
            f"Gemini client initialized (fast={fast_model}, capable={capable_model}, "
            f"timeout: {timeout_seconds}s)"
        )

    def model_name(self, tier: str) -> str:
        return self._models.get(tier, self._models["fast"])

    async def generate(
        self,
        prompt: str,
        attachments: Sequence[ImageAttachment] = (),
        tier: str = "fast",
    ) -> str:
        if attachments:
            contents = [prompt] + [
                types.Part.from_bytes(data=base64.b64decode(a.data), mime_type=a.mime_type)
                for a in attachments
            ]
        else:
            contents = prompt

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_name(tier),
                contents=contents,
            )
        except errors.APIError as e:
            raise to_remote_service_error(e) from e

        return response.text or ""
