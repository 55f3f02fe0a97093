"""
Resilient Gemini invocation.

One logical call per request, retried on transient failures:

  attempting(tier, i) --success--------------------------> done(success)
  attempting(tier, i) --transient, attempts left--> backoff --> attempting(tier', i+1)
  attempting(tier, i) --transient, exhausted | fatal------> done(failure)

Transient failures are 429 (rate limited), 503 (unavailable) and any other
5xx. The wait before attempt i+1 is base_delay * 2**i; for 429 the service's
RetryInfo hint wins when it is longer. Waits are awaited, never spun, so
they only suspend the request that is backing off.
"""
import asyncio
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

from .errors import RemoteServiceError
from .gemini_client import GenerativeClient
from .models import AnalysisPrompt
from .structured_logging import StructuredLogger

logger = StructuredLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_MS = 1000
RATE_LIMIT_AWARE_BASE_DELAY_MS = 5000
DEFAULT_RATE_LIMIT_RETRY_AFTER_S = 300  # 5 minutes
SERVICE_UNAVAILABLE_RETRY_AFTER_S = 120


class ModelTier(str, Enum):
    FAST = "fast"
    CAPABLE = "capable"


class Outcome(str, Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rateLimited"
    SERVICE_UNAVAILABLE = "serviceUnavailable"
    SERVER_ERROR = "serverError"
    FATAL = "fatal"


TRANSIENT_OUTCOMES = {Outcome.RATE_LIMITED, Outcome.SERVICE_UNAVAILABLE, Outcome.SERVER_ERROR}


@dataclass(frozen=True)
class InvocationAttempt:
    attempt_index: int
    tier: ModelTier
    outcome: Outcome
    status_code: Optional[int] = None
    delay_ms: Optional[int] = None  # wait scheduled after this attempt


@dataclass
class InvocationResult:
    outcome: Outcome
    text: Optional[str] = None
    attempts: list[InvocationAttempt] = field(default_factory=list)
    error: Optional[BaseException] = None
    retry_after_seconds: Optional[int] = None
    daily_quota: bool = False

    @property
    def succeeded(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    @property
    def call_count(self) -> int:
        return len(self.attempts)


def classify_failure(exc: BaseException) -> Outcome:
    if isinstance(exc, RemoteServiceError):
        if exc.status_code == 429:
            return Outcome.RATE_LIMITED
        if exc.status_code == 503:
            return Outcome.SERVICE_UNAVAILABLE
        if exc.status_code >= 500:
            return Outcome.SERVER_ERROR
    return Outcome.FATAL


def backoff_delay_ms(base_delay_ms: int, attempt_index: int) -> int:
    return base_delay_ms * (2 ** attempt_index)


def retry_delay_ms(exc: BaseException, outcome: Outcome, base_delay_ms: int, attempt_index: int) -> int:
    """Wait before the next attempt, honoring the service hint for 429s."""
    delay = backoff_delay_ms(base_delay_ms, attempt_index)
    if outcome == Outcome.RATE_LIMITED:
        hint = getattr(exc, "retry_delay_seconds", None)
        if hint is not None:
            delay = max(int(hint * 1000), delay)
    return delay


def is_daily_quota(exc: BaseException) -> bool:
    """Best-effort: a quota id mentioning Day/Daily means a per-day limit."""
    quota_ids = getattr(exc, "quota_ids", ()) or ()
    return any("Day" in q or "Daily" in q for q in quota_ids)


class ResilientInvoker:
    """Calls a GenerativeClient with bounded, exponentially backed-off retries.

    Args:
        client: Anything implementing GenerativeClient
        max_attempts: Total number of calls allowed per request
        base_delay_ms: Base of the exponential backoff
        tier: Model tier for the first attempt
        escalate_after: Switch to the capable tier after this many
            consecutive transient failures on the fast tier (None: never)
        sleep: Awaitable sleep taking seconds; injectable for tests
    """

    def __init__(
        self,
        client: GenerativeClient,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        tier: ModelTier = ModelTier.FAST,
        escalate_after: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = client
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.tier = ModelTier(tier)
        self.escalate_after = escalate_after
        self._sleep = sleep

    def next_tier(self, tier: ModelTier, same_tier_failures: int) -> ModelTier:
        if (
            self.escalate_after
            and tier == ModelTier.FAST
            and same_tier_failures >= self.escalate_after
        ):
            return ModelTier.CAPABLE
        return tier

    async def invoke(self, prompt: AnalysisPrompt) -> InvocationResult:
        attempts: list[InvocationAttempt] = []
        tier = self.tier
        same_tier_failures = 0
        attempt_index = 0

        while True:
            try:
                text = await self.client.generate(prompt.text, prompt.images, tier=tier.value)
            except Exception as e:
                outcome = classify_failure(e)
                status_code = getattr(e, "status_code", None)
                delay_ms = retry_delay_ms(e, outcome, self.base_delay_ms, attempt_index)
                attempts_left = attempt_index < self.max_attempts - 1

                if outcome in TRANSIENT_OUTCOMES and attempts_left:
                    attempts.append(InvocationAttempt(attempt_index, tier, outcome, status_code, delay_ms))
                    logger.warning(
                        f"Gemini {outcome.value}, retrying in {delay_ms}ms",
                        attempt=attempt_index + 1,
                        max_attempts=self.max_attempts,
                        tier=tier.value,
                        outcome=outcome.value,
                        status_code=status_code,
                        delay_ms=delay_ms,
                    )
                    await self._sleep(delay_ms / 1000)
                    same_tier_failures += 1
                    new_tier = self.next_tier(tier, same_tier_failures)
                    if new_tier != tier:
                        logger.info("Escalating model tier", from_tier=tier.value, to_tier=new_tier.value)
                        tier = new_tier
                        same_tier_failures = 0
                    attempt_index += 1
                    continue

                attempts.append(InvocationAttempt(attempt_index, tier, outcome, status_code))
                return self._failure(outcome, e, attempts, delay_ms)

            attempts.append(InvocationAttempt(attempt_index, tier, Outcome.SUCCESS))
            if attempt_index:
                logger.info(
                    "Gemini call succeeded after retries",
                    attempts=attempt_index + 1,
                    tier=tier.value,
                    outcome=Outcome.SUCCESS.value,
                )
            return InvocationResult(outcome=Outcome.SUCCESS, text=text, attempts=attempts)

    def _failure(
        self,
        outcome: Outcome,
        exc: Exception,
        attempts: list[InvocationAttempt],
        last_delay_ms: int,
    ) -> InvocationResult:
        result = InvocationResult(outcome=outcome, attempts=attempts, error=exc)

        if outcome == Outcome.RATE_LIMITED:
            hint = getattr(exc, "retry_delay_seconds", None)
            suggested = hint if hint is not None else DEFAULT_RATE_LIMIT_RETRY_AFTER_S
            result.retry_after_seconds = int(math.ceil(max(suggested, last_delay_ms / 1000)))
            result.daily_quota = is_daily_quota(exc)
        elif outcome == Outcome.SERVICE_UNAVAILABLE:
            result.retry_after_seconds = SERVICE_UNAVAILABLE_RETRY_AFTER_S

        log = logger.error if outcome == Outcome.FATAL else logger.warning
        log(
            f"Gemini call failed: {exc}",
            attempts=len(attempts),
            tier=attempts[-1].tier.value,
            outcome=outcome.value,
            status_code=getattr(exc, "status_code", None),
            retry_after_seconds=result.retry_after_seconds,
        )
        return result
