"""Rolling-window pacing against provider rate limits.

Each session owns one :class:`RateLimiter`. Counters grow with every request
attempt and every usage report from the provider, and the window resets
unconditionally once it is 60 seconds old. Two checks consult it: a preflight
check before a turn is submitted (70%) and a mid-loop check before each
streamed request inside a turn (80%), which pauses for a fixed cooldown.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from relay_server.provider.types import ModelPolicy

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0
PREFLIGHT_THRESHOLD = 0.7
MID_LOOP_THRESHOLD = 0.8
DEFAULT_PAUSE_SECONDS = 60


@dataclass
class RateWindow:
    """Usage counters of the current rolling window."""

    window_start: float
    tokens_used: int = 0
    requests_used: int = 0


@dataclass
class PreflightResult:
    """Outcome of the check made before a turn is submitted."""

    allowed: bool
    token_percentage: float
    request_percentage: float
    message: str = ""


class RateLimiter:
    """Tracks token and request consumption for one session.

    Attributes:
        enabled: When False every check passes and no pause is taken
        pause_seconds: Length of the mid-loop cooldown
    """

    def __init__(
        self,
        enabled: bool = True,
        pause_seconds: int = DEFAULT_PAUSE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.enabled = enabled
        self.pause_seconds = pause_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._window = RateWindow(window_start=clock())

    def _roll(self) -> None:
        # Caller holds the lock
        if self._clock() - self._window.window_start >= WINDOW_SECONDS:
            self._window = RateWindow(window_start=self._clock())
            logger.debug("Rate window rolled over")

    def snapshot(self) -> RateWindow:
        """Return a copy of the current window after rolling it if expired."""
        with self._lock:
            self._roll()
            return RateWindow(
                window_start=self._window.window_start,
                tokens_used=self._window.tokens_used,
                requests_used=self._window.requests_used,
            )

    def record_request(self) -> None:
        """Count one request attempt."""
        with self._lock:
            self._roll()
            self._window.requests_used += 1

    def record_usage(self, prompt_tokens: int, completion_tokens: int) -> None:
        """Add an authoritative usage report to the window."""
        with self._lock:
            self._roll()
            self._window.tokens_used += prompt_tokens + completion_tokens

    def reset(self) -> None:
        """Start a fresh window with zeroed counters."""
        with self._lock:
            self._window = RateWindow(window_start=self._clock())

    def _fractions(self, policy: ModelPolicy) -> tuple[float, float]:
        with self._lock:
            self._roll()
            tokens = self._window.tokens_used
            requests = self._window.requests_used
        token_fraction = (
            tokens / policy.tokens_per_minute if policy.tokens_per_minute else 0.0
        )
        request_fraction = (
            requests / policy.requests_per_minute if policy.requests_per_minute else 0.0
        )
        return token_fraction, request_fraction

    def preflight(self, policy: ModelPolicy) -> PreflightResult:
        """Decide whether a new turn may be submitted now.

        Args:
            policy: Limits of the model the turn will use

        Returns:
            PreflightResult: ``allowed`` is False at 70% of either limit
        """
        token_fraction, request_fraction = self._fractions(policy)
        result = PreflightResult(
            allowed=True,
            token_percentage=token_fraction * 100,
            request_percentage=request_fraction * 100,
        )
        if not self.enabled:
            return result

        if token_fraction >= PREFLIGHT_THRESHOLD or request_fraction >= PREFLIGHT_THRESHOLD:
            pct = max(token_fraction, request_fraction) * 100
            result.allowed = False
            result.message = (
                f"⏸ Rate limit approaching ({pct:.0f}% of "
                f"{policy.tokens_per_minute} TPM). "
                "Message queued - will send when limit resets."
            )
            logger.warning(f"Preflight blocked submission at {pct:.0f}% of limits")
        return result

    def needs_pause(self, policy: ModelPolicy) -> bool:
        """True when usage is at 80% of either limit."""
        if not self.enabled:
            return False
        token_fraction, request_fraction = self._fractions(policy)
        return token_fraction >= MID_LOOP_THRESHOLD or request_fraction >= MID_LOOP_THRESHOLD

    async def pause(self) -> None:
        """Sleep for the cooldown, then reset the window."""
        logger.warning(f"Rate limit approaching, pausing for {self.pause_seconds}s")
        await self._sleep(self.pause_seconds)
        self.reset()
        logger.info("Rate limit pause finished, counters reset")
