"""
Tests for the retry policy.
"""

import asyncio
import random

import pytest

from scrapers.errors import ErrorKind, HttpStatusError, IncompleteDataError
from scrapers.retry import KIND_BASE_DELAYS, RetryPolicy


def make_policy(sleep, **kwargs):
    kwargs.setdefault("rng", random.Random(7))
    return RetryPolicy(sleep=sleep, **kwargs)


def failing(error_factory, calls):
    """Attempt function that records indices and always raises."""
    async def attempt_fn(attempt):
        calls.append(attempt)
        raise error_factory()
    return attempt_fn


class TestExecute:
    """Test the attempt state machine."""

    def test_first_attempt_success(self, sleep):
        """A successful first attempt returns without sleeping."""
        policy = make_policy(sleep)

        async def attempt_fn(attempt):
            return f"ok-{attempt}"

        assert asyncio.run(policy.execute(attempt_fn)) == "ok-0"
        assert sleep.delays == []

    def test_retries_until_success(self, sleep):
        """Attempt indices are passed in order until one succeeds."""
        policy = make_policy(sleep, max_retries=2)
        calls = []

        async def attempt_fn(attempt):
            calls.append(attempt)
            if attempt < 2:
                raise Exception("net::ERR_CONNECTION_RESET")
            return "done"

        assert asyncio.run(policy.execute(attempt_fn)) == "done"
        assert calls == [0, 1, 2]
        assert len(sleep.delays) == 2

    def test_navigation_exhausts_after_max_retries(self, sleep):
        """Always-eligible kinds run max_retries + 1 attempts, then rethrow."""
        policy = make_policy(sleep, max_retries=2)
        calls = []

        with pytest.raises(Exception, match="Navigation timeout"):
            asyncio.run(policy.execute(failing(lambda: Exception("Navigation timeout of 15000ms exceeded"), calls)))

        assert calls == [0, 1, 2]
        assert len(sleep.delays) == 2

    @pytest.mark.parametrize("max_retries", [0, 2, 5])
    def test_client_error_never_retried(self, sleep, max_retries):
        """Client errors rethrow on the first failure whatever max_retries is."""
        policy = make_policy(sleep, max_retries=max_retries)
        calls = []

        with pytest.raises(HttpStatusError):
            asyncio.run(policy.execute(failing(lambda: HttpStatusError(404), calls)))

        assert calls == [0]
        assert sleep.delays == []

    def test_bot_detection_retried_once(self, sleep):
        """Bot detection is eligible only at attempt 0: two attempts in total."""
        policy = make_policy(sleep, max_retries=2)
        calls = []

        with pytest.raises(Exception, match="Access denied"):
            asyncio.run(policy.execute(failing(lambda: Exception("Access denied"), calls)))

        assert calls == [0, 1]
        assert len(sleep.delays) == 1

    def test_parsing_retried_twice(self, sleep):
        """Parsing failures are eligible while attempt < 2."""
        policy = make_policy(sleep, max_retries=5)
        calls = []

        with pytest.raises(IncompleteDataError):
            asyncio.run(policy.execute(failing(IncompleteDataError, calls)))

        assert calls == [0, 1, 2]

    def test_unknown_retried_once(self, sleep):
        policy = make_policy(sleep, max_retries=5)
        calls = []

        with pytest.raises(Exception):
            asyncio.run(policy.execute(failing(lambda: Exception("weird"), calls)))

        assert calls == [0, 1]

    def test_max_retries_override(self, sleep):
        """The per-call max_retries wins over the policy default."""
        policy = make_policy(sleep, max_retries=5)
        calls = []

        with pytest.raises(Exception):
            asyncio.run(policy.execute(failing(lambda: Exception("socket hang up"), calls), max_retries=1))

        assert calls == [0, 1]

    def test_on_failure_receives_kind(self, sleep):
        """on_failure is told the attempt index and classified kind."""
        policy = make_policy(sleep, max_retries=1)
        failures = []

        with pytest.raises(Exception):
            asyncio.run(policy.execute(
                failing(lambda: Exception("503 Service Unavailable"), []),
                on_failure=lambda attempt, error, kind: failures.append((attempt, kind)),
            ))

        assert failures == [(0, ErrorKind.SERVER_ERROR), (1, ErrorKind.SERVER_ERROR)]


class TestDelays:
    """Test backoff delay computation."""

    def test_tiered_base_delays(self):
        """Rate limiting and bot detection back off longest, network shortest."""
        assert KIND_BASE_DELAYS[ErrorKind.BOT_DETECTION] > KIND_BASE_DELAYS[ErrorKind.NETWORK]
        assert KIND_BASE_DELAYS[ErrorKind.RATE_LIMIT] > KIND_BASE_DELAYS[ErrorKind.SERVER_ERROR]
        assert KIND_BASE_DELAYS[ErrorKind.NAVIGATION] == KIND_BASE_DELAYS[ErrorKind.NETWORK]

    def test_exponential_without_jitter(self):
        policy = RetryPolicy(jitter=False, max_delay=30.0)

        assert policy.calculate_delay(0, ErrorKind.SERVER_ERROR) == 2.0
        assert policy.calculate_delay(1, ErrorKind.SERVER_ERROR) == 4.0
        assert policy.calculate_delay(2, ErrorKind.SERVER_ERROR) == 8.0
        assert policy.calculate_delay(3, ErrorKind.BOT_DETECTION) == 30.0

    def test_unlisted_kind_uses_base_delay(self):
        policy = RetryPolicy(jitter=False, base_delay=1.5)

        assert policy.calculate_delay(0, ErrorKind.PARSING) == 1.5

    @pytest.mark.parametrize("kind", list(ErrorKind))
    @pytest.mark.parametrize("seed", [1, 2, 3])
    def test_monotonic_and_capped_with_jitter(self, kind, seed):
        """Jittered delays never decrease with the attempt index and never exceed max_delay."""
        policy = RetryPolicy(rng=random.Random(seed), max_delay=30.0)

        delays = [policy.calculate_delay(attempt, kind) for attempt in range(12)]

        assert all(d <= 30.0 for d in delays)
        assert all(a <= b for a, b in zip(delays, delays[1:]))

    def test_small_multiplier_rejected(self):
        """A multiplier that would let jitter reverse the ordering is refused."""
        with pytest.raises(ValueError):
            RetryPolicy(backoff_multiplier=1.1)

    def test_negative_max_retries_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)

    def test_from_settings(self):
        from api.config import Settings

        policy = RetryPolicy.from_settings(Settings(scraper_max_retries=4, retry_max_delay=12.0))

        assert policy.max_retries == 4
        assert policy.max_delay == 12.0
