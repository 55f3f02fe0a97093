"""Tests for the retry/backoff state machine, against a scripted fake client."""
import asyncio
import json
import logging

import pytest

from hospital_recommender.errors import RemoteServiceError
from hospital_recommender.models import AnalysisPrompt, ImageAttachment
from hospital_recommender.resilient_invoker import (
    InvocationResult,
    ModelTier,
    Outcome,
    ResilientInvoker,
    backoff_delay_ms,
    classify_failure,
    is_daily_quota,
    retry_delay_ms,
)
from hospital_recommender.structured_logging import JSONFormatter

from conftest import FakeGeminiClient, rate_limited, unavailable

PROMPT = AnalysisPrompt(text="recommend hospitals")


def _invoke(client, sleep, **kwargs) -> InvocationResult:
    invoker = ResilientInvoker(client, sleep=sleep, **kwargs)
    return asyncio.run(invoker.invoke(PROMPT))


class TestClassifyFailure:
    """Test classify_failure."""

    def test_429(self):
        assert classify_failure(rate_limited()) == Outcome.RATE_LIMITED

    def test_503(self):
        assert classify_failure(unavailable()) == Outcome.SERVICE_UNAVAILABLE

    @pytest.mark.parametrize("status", [500, 502, 504])
    def test_other_5xx(self, status):
        assert classify_failure(RemoteServiceError(status, "boom")) == Outcome.SERVER_ERROR

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_other_4xx_fatal(self, status):
        assert classify_failure(RemoteServiceError(status, "bad")) == Outcome.FATAL

    def test_non_http_exception_fatal(self):
        assert classify_failure(ConnectionError("reset")) == Outcome.FATAL
        assert classify_failure(ValueError("parse")) == Outcome.FATAL


class TestDelays:
    """Test backoff arithmetic."""

    def test_exponential(self):
        assert [backoff_delay_ms(1000, i) for i in range(4)] == [1000, 2000, 4000, 8000]

    def test_rate_limit_hint_wins_when_longer(self):
        assert retry_delay_ms(rate_limited(retry_delay=31), Outcome.RATE_LIMITED, 1000, 0) == 31000

    def test_backoff_wins_when_longer(self):
        assert retry_delay_ms(rate_limited(retry_delay=1), Outcome.RATE_LIMITED, 5000, 1) == 10000

    def test_hint_ignored_for_503(self):
        exc = RemoteServiceError(503, "busy", retry_delay_seconds=60)
        assert retry_delay_ms(exc, Outcome.SERVICE_UNAVAILABLE, 1000, 0) == 1000

    def test_daily_quota_markers(self):
        assert is_daily_quota(rate_limited(quota_ids=["GenerateRequestsPerDayPerProjectPerModel-FreeTier"]))
        assert is_daily_quota(rate_limited(quota_ids=["DailyLimit"]))
        assert not is_daily_quota(rate_limited(quota_ids=["GenerateRequestsPerMinutePerProjectPerModel"]))
        assert not is_daily_quota(rate_limited())


class TestResilientInvoker:
    """Test ResilientInvoker.invoke."""

    def test_first_try_success(self, sleep):
        client = FakeGeminiClient(["analysis"])
        result = _invoke(client, sleep)
        assert result.succeeded
        assert result.text == "analysis"
        assert result.call_count == 1
        assert sleep.delays == []

    def test_429_429_success(self, sleep):
        client = FakeGeminiClient([rate_limited(), rate_limited(), "analysis"])
        result = _invoke(client, sleep, base_delay_ms=1000)
        assert result.succeeded
        assert result.text == "analysis"
        assert len(client.calls) == 3
        assert [a.outcome for a in result.attempts] == [
            Outcome.RATE_LIMITED, Outcome.RATE_LIMITED, Outcome.SUCCESS,
        ]
        assert sleep.delays == [1.0, 2.0]

    def test_429_uses_retry_hint(self, sleep):
        client = FakeGeminiClient([rate_limited(retry_delay=31), "analysis"])
        result = _invoke(client, sleep, base_delay_ms=5000)
        assert result.succeeded
        assert sleep.delays == [31.0]

    def test_429_exhausted_with_hint(self, sleep):
        client = FakeGeminiClient([rate_limited(retry_delay=31)] * 3)
        result = _invoke(client, sleep, base_delay_ms=1000)
        assert result.outcome == Outcome.RATE_LIMITED
        assert len(client.calls) == 3
        assert len(sleep.delays) == 2
        assert result.retry_after_seconds == 31
        assert result.daily_quota is False

    def test_429_exhausted_backoff_larger_than_hint(self, sleep):
        client = FakeGeminiClient([rate_limited(retry_delay=2)] * 3)
        result = _invoke(client, sleep, base_delay_ms=5000)
        # last computed backoff: 5000 * 2**2 ms
        assert result.retry_after_seconds == 20

    def test_429_exhausted_without_hint_defaults(self, sleep):
        client = FakeGeminiClient([rate_limited()] * 3)
        result = _invoke(client, sleep)
        assert result.retry_after_seconds == 300

    def test_429_daily_quota_flag(self, sleep):
        err = rate_limited(retry_delay=10, quota_ids=["GenerateRequestsPerDayPerProjectPerModel-FreeTier"])
        result = _invoke(FakeGeminiClient([err] * 3), sleep)
        assert result.outcome == Outcome.RATE_LIMITED
        assert result.daily_quota is True

    def test_503_exhausted(self, sleep):
        client = FakeGeminiClient([unavailable()] * 3)
        result = _invoke(client, sleep, base_delay_ms=1000)
        assert result.outcome == Outcome.SERVICE_UNAVAILABLE
        assert len(client.calls) == 3
        assert sleep.delays == [1.0, 2.0]
        assert result.retry_after_seconds == 120

    def test_5xx_retried_then_success(self, sleep):
        client = FakeGeminiClient([RemoteServiceError(500, "internal"), "analysis"])
        result = _invoke(client, sleep)
        assert result.succeeded
        assert len(client.calls) == 2

    def test_5xx_exhausted(self, sleep):
        client = FakeGeminiClient([RemoteServiceError(502, "bad gateway")] * 3)
        result = _invoke(client, sleep)
        assert result.outcome == Outcome.SERVER_ERROR
        assert result.retry_after_seconds is None

    def test_4xx_not_retried(self, sleep):
        client = FakeGeminiClient([RemoteServiceError(400, "API key not valid"), "never"])
        result = _invoke(client, sleep)
        assert result.outcome == Outcome.FATAL
        assert len(client.calls) == 1
        assert sleep.delays == []

    def test_non_http_error_not_retried(self, sleep):
        client = FakeGeminiClient([ConnectionError("connection reset"), "never"])
        result = _invoke(client, sleep)
        assert result.outcome == Outcome.FATAL
        assert isinstance(result.error, ConnectionError)
        assert len(client.calls) == 1

    def test_configurable_ceiling(self, sleep):
        client = FakeGeminiClient([unavailable()] * 5 + ["analysis"])
        result = _invoke(client, sleep, max_attempts=5)
        assert result.outcome == Outcome.SERVICE_UNAVAILABLE
        assert len(client.calls) == 5

    def test_single_attempt_never_sleeps(self, sleep):
        result = _invoke(FakeGeminiClient([rate_limited(retry_delay=5)]), sleep, max_attempts=1)
        assert result.outcome == Outcome.RATE_LIMITED
        assert sleep.delays == []

    def test_invalid_ceiling(self):
        with pytest.raises(ValueError):
            ResilientInvoker(FakeGeminiClient([]), max_attempts=0)

    def test_stays_on_configured_tier(self, sleep):
        client = FakeGeminiClient([rate_limited(), rate_limited(), "analysis"])
        _invoke(client, sleep)
        assert [c["tier"] for c in client.calls] == ["fast", "fast", "fast"]

    def test_capable_tier_selected(self, sleep):
        client = FakeGeminiClient(["analysis"])
        _invoke(client, sleep, tier=ModelTier.CAPABLE)
        assert client.calls[0]["tier"] == "capable"

    def test_escalates_after_failures(self, sleep):
        client = FakeGeminiClient([unavailable(), unavailable(), "analysis"])
        result = _invoke(client, sleep, escalate_after=2)
        assert [c["tier"] for c in client.calls] == ["fast", "fast", "capable"]
        assert result.attempts[-1].tier == ModelTier.CAPABLE

    def test_attachments_passed_through(self, sleep):
        client = FakeGeminiClient(["analysis"])
        prompt = AnalysisPrompt(text="t", images=(ImageAttachment("AAAA", "image/png"),))
        invoker = ResilientInvoker(client, sleep=sleep)
        asyncio.run(invoker.invoke(prompt))
        assert client.calls[0]["attachments"] == [ImageAttachment("AAAA", "image/png")]

    def test_backoff_does_not_block_other_requests(self):
        """A request backing off must not stall a concurrent one."""
        async def scenario():
            slow = ResilientInvoker(FakeGeminiClient([unavailable(), "slow"]), base_delay_ms=200)
            fast = ResilientInvoker(FakeGeminiClient(["fast"]))
            loop = asyncio.get_running_loop()
            finished = {}

            async def run(name, invoker):
                await invoker.invoke(PROMPT)
                finished[name] = loop.time()

            await asyncio.gather(run("slow", slow), run("fast", fast))
            return finished

        finished = asyncio.run(scenario())
        assert finished["fast"] < finished["slow"]


def _invoker_lines(caplog):
    records = [r for r in caplog.records if r.name == "hospital_recommender.resilient_invoker"]
    return [json.loads(JSONFormatter().format(r)) for r in records]


class TestInvocationLogging:
    """Attempts are logged with structured fields under "data"."""

    def test_retry_attempt_fields(self, sleep, caplog):
        caplog.set_level(logging.INFO, logger="hospital_recommender.resilient_invoker")
        _invoke(FakeGeminiClient([rate_limited(retry_delay=31), "analysis"]), sleep)

        retry, done = _invoker_lines(caplog)
        assert retry["level"] == "WARNING"
        assert retry["data"] == {
            "attempt": 1,
            "max_attempts": 3,
            "tier": "fast",
            "outcome": "rateLimited",
            "status_code": 429,
            "delay_ms": 31000,
        }
        assert done["data"] == {"attempts": 2, "tier": "fast", "outcome": "success"}

    def test_exhausted_result_fields(self, sleep, caplog):
        caplog.set_level(logging.INFO, logger="hospital_recommender.resilient_invoker")
        _invoke(FakeGeminiClient([unavailable()] * 3), sleep)

        lines = _invoker_lines(caplog)
        assert [line["data"]["attempt"] for line in lines[:-1]] == [1, 2]
        final = lines[-1]["data"]
        assert final["attempts"] == 3
        assert final["outcome"] == "serviceUnavailable"
        assert final["status_code"] == 503
        assert final["retry_after_seconds"] == 120
