# ============================================================================
# SNAP Bank Bridge v1.0.0
# Access-Token Manager - Cached Bearer Lease with Coalesced Renewal
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Hands every caller a valid bearer token, renewing transparently
#
# SOVEREIGN MANDATE:
#   - At most ONE renewal round-trip in flight at any time
#   - Concurrent callers that see an expired token wait on that renewal
#   - The cached token is only replaced once a new one is confirmed
#   - A failed renewal never hands out an expired token
#
# States:
#   EMPTY -> VALID -> EXPIRING -> EXPIRED -> VALID (renewed)
#   EXPIRING: inside the refresh margin, still usable if renewal fails
#
# Error Codes:
#   - SNAP-TOK-001: Renewal failed and no usable token is cached
#
# ============================================================================

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from snap_bridge.errors import TransportError
from snap_bridge.exchange.models import AccessTokenResponse
from snap_bridge.observability.metrics import record_token_renewal

logger = logging.getLogger(__name__)

DEFAULT_LEASE_SECONDS = 900.0
DEFAULT_REFRESH_MARGIN_SECONDS = 30.0


class TokenState(Enum):
    EMPTY = "EMPTY"
    VALID = "VALID"
    EXPIRING = "EXPIRING"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class AccessToken:
    """A bearer token and the monotonic instant it stops being usable."""
    token: str
    expires_at: float

    def remaining(self, now: float) -> float:
        return self.expires_at - now


class _RenewalFlight:
    """One in-flight renewal that followers can wait on."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: Optional[AccessToken] = None
        self.error: Optional[BaseException] = None


class AccessTokenManager:
    """
    Thread-safe access-token cache.

    The renewal function is usually EgressPipeline.request_access_token.
    The leader performs the round-trip outside the state lock; followers
    block on the flight's event and receive the same token or the same
    error.

    Example Usage:
        manager = AccessTokenManager(pipeline.request_access_token)
        token = manager.get_token()
    """

    def __init__(
        self,
        renew: Callable[[], AccessTokenResponse],
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        refresh_margin_seconds: float = DEFAULT_REFRESH_MARGIN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        wait_timeout_seconds: Optional[float] = None
    ) -> None:
        if lease_seconds <= 0:
            raise ValueError("lease_seconds must be positive")
        if not 0 <= refresh_margin_seconds < lease_seconds:
            raise ValueError("refresh_margin_seconds must be in [0, lease_seconds)")

        self._renew = renew
        self.lease_seconds = lease_seconds
        self.refresh_margin_seconds = refresh_margin_seconds
        self._clock = clock
        self._wait_timeout = wait_timeout_seconds

        self._lock = threading.Lock()
        self._current: Optional[AccessToken] = None
        self._flight: Optional[_RenewalFlight] = None
        self.renewal_count = 0

    # ========================================================================
    # State
    # ========================================================================

    def _state_of(self, token: Optional[AccessToken], now: float) -> TokenState:
        if token is None:
            return TokenState.EMPTY
        remaining = token.remaining(now)
        if remaining <= 0:
            return TokenState.EXPIRED
        if remaining <= self.refresh_margin_seconds:
            return TokenState.EXPIRING
        return TokenState.VALID

    @property
    def state(self) -> TokenState:
        with self._lock:
            return self._state_of(self._current, self._clock())

    @property
    def current(self) -> Optional[AccessToken]:
        with self._lock:
            return self._current

    def invalidate(self, stale: Optional[str] = None) -> bool:
        """
        Drop the cached token, e.g. after the bank answered 'Invalid Token'.

        Args:
            stale: The token the bank rejected. When given, the cache is only
                cleared if it still holds that token, so a late rejection
                never discards a token another caller already renewed.

        Returns:
            True if the cached token was dropped
        """
        with self._lock:
            current = self._current
            if current is None or (stale is not None and current.token != stale):
                dropped = False
            else:
                self._current = None
                dropped = True

        if dropped:
            logger.info("[SNAP-TOK] Cached access token invalidated")
        else:
            logger.debug("[SNAP-TOK] Invalidate skipped, cached token already replaced")
        return dropped

    # ========================================================================
    # Accessor
    # ========================================================================

    def get_token(self) -> str:
        """
        Return a usable bearer token, renewing when required.

        Raises:
            SnapError: Renewal failed and nothing unexpired is cached
            TransportError: Waiting on another caller's renewal timed out
        """
        return self.get_access_token().token

    def get_access_token(self) -> AccessToken:
        with self._lock:
            now = self._clock()
            current = self._current
            state = self._state_of(current, now)
            if state is TokenState.VALID:
                return current

            flight = self._flight
            leader = flight is None
            if leader:
                flight = _RenewalFlight()
                self._flight = flight

        if leader:
            self._run_renewal(flight)
        elif not flight.done.wait(self._wait_timeout):
            raise TransportError(
                "Timed out waiting for in-flight token renewal",
                error_code="SNAP-TOK-002"
            )

        if flight.result is not None:
            return flight.result

        # renewal failed: an unexpired prior token is still usable
        with self._lock:
            fallback = self._current
            if fallback is not None and fallback.remaining(self._clock()) > 0:
                logger.warning(
                    f"[SNAP-TOK-001] Renewal failed, serving prior token | "
                    f"remaining_s={fallback.remaining(self._clock()):.1f} | "
                    f"error={flight.error}"
                )
                return fallback

        logger.error(f"[SNAP-TOK-001] Renewal failed with no usable token | error={flight.error}")
        raise flight.error or TransportError("Token renewal aborted", error_code="SNAP-TOK-001")

    def _run_renewal(self, flight: _RenewalFlight) -> None:
        try:
            response = self._renew()
            issued_at = self._clock()
            token = AccessToken(
                token=response.access_token,
                expires_at=issued_at + self.lease_seconds,
            )
            flight.result = token
            with self._lock:
                self._current = token
                self.renewal_count += 1
            record_token_renewal("success")
            logger.info(
                f"[SNAP-TOK] Access token renewed | lease_s={self.lease_seconds} | "
                f"token=[REDACTED] | renewals={self.renewal_count}"
            )
        except Exception as e:
            # handed to every waiter and re-raised by get_access_token
            flight.error = e
            record_token_renewal("failure")
        finally:
            with self._lock:
                self._flight = None
            flight.done.set()
