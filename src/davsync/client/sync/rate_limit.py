"""Request quota tracking for rate-limited WebDAV vendors.

This module provides:
- RateLimiter: fixed-window request counter with lazy reset
- pacing_delay: inter-request delay for an account tier and delay level
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from davsync.core.config import AccountTier, DelayLevel

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 30 * 60
FREE_TIER_LIMIT = 600  # requests per window
PAID_TIER_LIMIT = 1500

PAID_TIER_DELAY = 0.1  # seconds
FREE_TIER_DELAYS = {
    DelayLevel.NORMAL: 0.2,
    DelayLevel.SLOW: 0.5,
    DelayLevel.VERY_SLOW: 1.0,
}


def pacing_delay(tier: AccountTier, level: DelayLevel = DelayLevel.NORMAL) -> float:
    """Seconds to wait before each request for the given tier and level."""
    if tier is AccountTier.PAID:
        return PAID_TIER_DELAY
    return FREE_TIER_DELAYS.get(level, FREE_TIER_DELAYS[DelayLevel.NORMAL])


def tier_limit(tier: AccountTier) -> int:
    return PAID_TIER_LIMIT if tier is AccountTier.PAID else FREE_TIER_LIMIT


class RateLimiter:
    """Counts requests against a quota that resets every window.

    The window is checked lazily: every accessor first resets the count if
    the window has expired.

    Attributes:
        limit: Requests allowed per window (None for no quota).
        delay: Seconds to wait between requests while under quota.
        paced: Whether configure() sets a tier pacing delay.
    """

    def __init__(
        self,
        limit: int | None = None,
        delay: float = 0.0,
        window: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        paced: bool = True,
    ) -> None:
        """Initialize the limiter.

        Args:
            limit: Requests allowed per window, None for unlimited.
            delay: Pacing delay in seconds returned while under quota.
            window: Window length in seconds.
            clock: Monotonic time source (injectable for tests).
            paced: False when the caller paces requests itself, so that
                configure() leaves the delay at zero.
        """
        self.limit = limit
        self.delay = delay
        self.paced = paced
        self._window = window
        self._clock = clock
        self._count = 0
        self._reset_at = clock() + window

    @classmethod
    def for_tier(
        cls,
        tier: AccountTier,
        level: DelayLevel = DelayLevel.NORMAL,
        clock: Callable[[], float] = time.monotonic,
        paced: bool = True,
    ) -> RateLimiter:
        """Create a limiter with the quota and pacing of an account tier.

        Args:
            tier: Account tier selecting the quota and pacing.
            level: Pacing level used on free-tier accounts.
            clock: Monotonic time source.
            paced: False for a quota-only limiter, when the caller paces
                requests itself.
        """
        limiter = cls(limit=tier_limit(tier), clock=clock, paced=paced)
        limiter.configure(tier, level)
        logger.info(
            "Rate limiter for %s tier: %d requests per %ds, %.0fms pacing",
            tier.value,
            limiter.limit,
            WINDOW_SECONDS,
            limiter.delay * 1000,
        )
        return limiter

    def configure(self, tier: AccountTier, level: DelayLevel = DelayLevel.NORMAL) -> None:
        """Apply the quota and pacing of a (possibly new) tier and level."""
        self.limit = tier_limit(tier)
        self.delay = pacing_delay(tier, level) if self.paced else 0.0

    def _check_and_reset_window(self) -> None:
        now = self._clock()
        if now >= self._reset_at:
            if self._count:
                logger.debug("Rate window expired after %d requests, resetting", self._count)
            self._count = 0
            self._reset_at = now + self._window

    def can_make_request(self) -> bool:
        self._check_and_reset_window()
        return self.limit is None or self._count < self.limit

    def get_wait_time(self) -> float:
        """Seconds the next request should wait.

        Returns:
            The pacing delay while under quota, otherwise the time left until
            the window resets.
        """
        self._check_and_reset_window()
        if self.limit is None or self._count < self.limit:
            return self.delay
        return max(0.0, self._reset_at - self._clock())

    def increment_counter(self) -> None:
        """Record one dispatched request."""
        self._check_and_reset_window()
        self._count += 1
        if self.limit is not None and self._count == self.limit:
            logger.warning(
                "Request quota reached (%d/%d), next window in %ds",
                self._count,
                self.limit,
                self.time_to_reset,
            )

    @property
    def request_count(self) -> int:
        self._check_and_reset_window()
        return self._count

    @property
    def time_to_reset(self) -> int:
        """Whole seconds until the current window ends."""
        return max(0, int(self._reset_at - self._clock()))
