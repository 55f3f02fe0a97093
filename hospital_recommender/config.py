"""
Configuration for the hospital recommendation service.

All settings come from environment variables (optionally loaded from a
.env file) and are read once into a frozen Settings object.
"""
import logging
import os
import tempfile
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MiB per file
DEFAULT_FAST_MODEL = "gemini-2.5-flash"
DEFAULT_CAPABLE_MODEL = "gemini-2.5-pro"
DEFAULT_TIMEOUT_SECONDS = 180.0


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


@dataclass(frozen=True)
class Settings:
    gemini_api_key: Optional[str] = None
    fast_model: str = DEFAULT_FAST_MODEL
    capable_model: str = DEFAULT_CAPABLE_MODEL
    model_tier: str = "fast"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = 3
    retry_base_delay_ms: int = 5000  # rate-limit-aware base delay
    escalate_after: Optional[int] = None
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    upload_dir: str = field(default_factory=tempfile.gettempdir)
    cors_origins: tuple[str, ...] = ("http://localhost:3000",)
    log_json: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        tier = os.getenv("GEMINI_MODEL_TIER", "fast").strip().lower()
        if tier not in ("fast", "capable"):
            logger.warning(f"Unknown GEMINI_MODEL_TIER={tier!r}, using 'fast'")
            tier = "fast"
        origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")
        return cls(
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
            fast_model=os.getenv("GEMINI_FAST_MODEL", DEFAULT_FAST_MODEL),
            capable_model=os.getenv("GEMINI_CAPABLE_MODEL", DEFAULT_CAPABLE_MODEL),
            model_tier=tier,
            timeout_seconds=_env_float("GEMINI_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            max_retries=max(1, _env_int("MAX_RETRIES", 3)),
            retry_base_delay_ms=max(0, _env_int("RETRY_BASE_DELAY_MS", 5000)),
            escalate_after=_env_int("ESCALATE_AFTER", None),
            max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", MAX_UPLOAD_BYTES),
            upload_dir=os.getenv("UPLOAD_DIR") or tempfile.gettempdir(),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            log_json=_env_bool("LOG_JSON", True),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings singleton, read from the environment on first use."""
    return Settings.from_env()
