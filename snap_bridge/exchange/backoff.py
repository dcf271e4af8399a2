# ============================================================================
# SNAP Bank Bridge v1.0.0
# Exponential Backoff - Bounded Retry Delays
# ============================================================================
#
# Purpose: Delay calculator for retry loops (expiry commits, reconnects)
#
# Defaults:
#   - Base: 1s, Multiplier: 2x, Cap: 600s, Jitter: 25%
#
# ============================================================================

import random
import threading


class ExponentialBackoff:
    """
    Exponential backoff calculator.

    Each get_delay() call advances the attempt counter; reset() after a
    success. Thread-safe so a single instance can be shared by a retry loop
    and an inspector.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 600.0,
        jitter: float = 0.25
    ):
        """
        Args:
            base_delay: Initial delay in seconds
            multiplier: Delay multiplier per attempt
            max_delay: Maximum delay cap in seconds (jitter never exceeds it)
            jitter: Random jitter factor (0-1)
        """
        if base_delay < 0 or max_delay < 0:
            raise ValueError("Backoff delays must be non-negative")
        if not 0 <= jitter <= 1:
            raise ValueError("Jitter must be between 0 and 1")

        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.jitter = jitter
        self._attempt = 0
        self._lock = threading.Lock()

    @property
    def attempt(self) -> int:
        return self._attempt

    def get_delay(self) -> float:
        """
        Get next backoff delay and increment attempt counter.

        Returns:
            Delay in seconds with optional jitter, capped at max_delay
        """
        with self._lock:
            attempt = self._attempt
            self._attempt += 1

        # exponent is clamped so huge attempt counts cannot overflow
        delay = self.base_delay * (self.multiplier ** min(attempt, 64))
        delay = min(delay, self.max_delay)

        if self.jitter > 0:
            delay += delay * self.jitter * random.random()
            delay = min(delay, self.max_delay)

        return delay

    def reset(self) -> None:
        """Reset attempt counter after a successful call."""
        with self._lock:
            self._attempt = 0
