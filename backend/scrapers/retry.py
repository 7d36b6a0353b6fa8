"""
Retry policy with per-error-kind eligibility and exponential backoff.

The policy drives the attempt loop of one logical scrape. It knows
nothing about browsers: the attempt callable receives the attempt index
and picks its own browser family and navigation strategy from it.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional

from .base import Colors
from .errors import ErrorKind, classify_error

logger = logging.getLogger(__name__)


# Base delays in seconds. Rate limiting and bot detection back off the most.
KIND_BASE_DELAYS = {
    ErrorKind.RATE_LIMIT: 5.0,
    ErrorKind.BOT_DETECTION: 10.0,
    ErrorKind.SERVER_ERROR: 2.0,
    ErrorKind.NETWORK: 1.0,
    ErrorKind.NAVIGATION: 1.0,
}

# Highest attempt index (exclusive) at which a kind may still be retried.
# None means always eligible, 0 means never.
RETRY_LIMITS = {
    ErrorKind.NETWORK: None,
    ErrorKind.SERVER_ERROR: None,
    ErrorKind.NAVIGATION: None,
    ErrorKind.RATE_LIMIT: 2,
    ErrorKind.PARSING: 2,
    ErrorKind.BOT_DETECTION: 1,
    ErrorKind.UNKNOWN: 1,
    ErrorKind.CLIENT_ERROR: 0,
}

JITTER_RATIO = 0.1  # +/-10%


class RetryPolicy:
    """
    Runs an attempt callable until it succeeds or the policy gives up.

    Usage:
        policy = RetryPolicy(max_retries=2)
        result = await policy.execute(lambda attempt: scrape_once(attempt))
    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_multiplier: float = 2.0,
        jitter: bool = True,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the retry policy.

        Args:
            max_retries: Retries after the first attempt (attempts = max_retries + 1)
            base_delay: Base delay in seconds for kinds without a tiered delay
            max_delay: Upper bound for any computed delay, jitter included
            backoff_multiplier: Exponential growth factor per attempt
            jitter: Apply +/-10% symmetric jitter to delays
            sleep: Awaitable sleep function (defaults to asyncio.sleep)
            rng: Random source for jitter

        Raises:
            ValueError: If the multiplier is too small to keep jittered
                delays non-decreasing across attempts
        """
        min_multiplier = (1 + JITTER_RATIO) / (1 - JITTER_RATIO) if jitter else 1.0
        if backoff_multiplier < min_multiplier:
            raise ValueError(
                f"backoff_multiplier must be >= {min_multiplier:.3f} (got {backoff_multiplier})"
            )
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings, **kwargs) -> 'RetryPolicy':
        return cls(
            max_retries=settings.scraper_max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            backoff_multiplier=settings.retry_backoff_multiplier,
            jitter=settings.retry_jitter,
            **kwargs,
        )

    @staticmethod
    def should_retry(kind: ErrorKind, attempt: int) -> bool:
        """Whether a failure of this kind at this attempt index may be retried."""
        limit = RETRY_LIMITS.get(kind, 0)
        if limit is None:
            return True
        return attempt < limit

    def base_delay_for(self, kind: ErrorKind) -> float:
        return KIND_BASE_DELAYS.get(kind, self.base_delay)

    def calculate_delay(self, attempt: int, kind: ErrorKind) -> float:
        """
        Backoff delay in seconds before the attempt after ``attempt``.

        delay = min(max_delay, base(kind) * multiplier^attempt * jitter)

        Jitter is applied before the cap, so the result never exceeds
        max_delay and stays non-decreasing in ``attempt``.
        """
        delay = self.base_delay_for(kind) * (self.backoff_multiplier ** attempt)
        if self.jitter:
            delay *= 1 + self._rng.uniform(-JITTER_RATIO, JITTER_RATIO)
        return min(self.max_delay, delay)

    async def execute(
        self,
        attempt_fn: Callable[[int], Awaitable[Any]],
        max_retries: Optional[int] = None,
        on_failure: Optional[Callable[[int, BaseException, ErrorKind], None]] = None,
    ) -> Any:
        """
        Run ``attempt_fn(attempt)`` with retries.

        Args:
            attempt_fn: Coroutine function performing one attempt
            max_retries: Override for this call
            on_failure: Called with (attempt, error, kind) after every failed attempt

        Returns:
            Result of the first successful attempt

        Raises:
            The last attempt's exception when retries are exhausted or the
            error kind is not eligible for another attempt
        """
        if max_retries is None:
            max_retries = self.max_retries

        attempt = 0
        while True:
            try:
                result = await attempt_fn(attempt)
            except Exception as e:
                kind = classify_error(e)
                if on_failure:
                    on_failure(attempt, e, kind)

                if attempt >= max_retries:
                    logger.warning(Colors.red(
                        f"All retry attempts exhausted ({attempt + 1} attempts). Final error [{kind.value}]: {e}"
                    ))
                    raise

                if not self.should_retry(kind, attempt):
                    logger.warning(Colors.red(f"Non-retryable error [{kind.value}] on attempt {attempt + 1}: {e}"))
                    raise

                delay = self.calculate_delay(attempt, kind)
                logger.warning(Colors.yellow(
                    f"Attempt {attempt + 1} failed [{kind.value}]: {e}. "
                    f"Retrying in {delay:.1f}s ({max_retries - attempt} attempts remaining)"
                ))
                await self._sleep(delay)
                attempt += 1
                continue

            if attempt > 0:
                logger.info(Colors.green(f"Retry successful on attempt {attempt + 1}"))
            return result
