"""
============================================================================
SNAP Bank Bridge v1.0.0
Transaction Expiry Watcher - Per-Reservation Countdown
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Side Effects: Marks va_request rows expired, writes transaction_watcher_log

This module implements the TransactionExpiryWatcher:
- One countdown thread per virtual-account reservation
- On deadline: re-check the reservation, then mark it expired exactly once
- Cancellation (payment received) and expiry are mutually exclusive under
  the entry lock; whichever takes it first wins, the other is a no-op
- Store outages are retried with bounded exponential backoff; after
  max_retry attempts the dead-letter handler alerts once and retries
  continue at the capped delay, so an expiry is never dropped

LOCK ORDER:
    entry.lock -> watcher map lock (never the reverse)

ERROR CODES:
    - SNAP-WAT-001: Expiry commit failed (will retry)
    - SNAP-WAT-002: Retry budget exhausted (dead letter)
    - SNAP-WAT-003: Unexpected error during expiry (retried like an outage)

============================================================================
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from snap_bridge.config import SnapConfig
from snap_bridge.errors import PersistenceTransientError
from snap_bridge.exchange.backoff import ExponentialBackoff
from snap_bridge.observability.metrics import record_watcher_outcome, set_watched_transactions
from snap_bridge.storage.va_repository import VAStatus, VirtualAccountRepository, WatcherLogStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRY = 10
DEFAULT_RETRY_BASE_SECONDS = 1.0
DEFAULT_RETRY_MAX_SECONDS = 600.0
DEFAULT_VA_LIFETIME = timedelta(hours=24)

Deadline = Union[datetime, float, int]


class WatchState(Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    SKIPPED = "SKIPPED"
    CANCELLED = "CANCELLED"
    STOPPED = "STOPPED"


@dataclass
class WatchedTransaction:
    """A reservation counting down to its deadline (epoch seconds)."""
    transaction_id: int
    expire_at: float
    max_retry: int
    attempts: int = 0
    state: WatchState = WatchState.ACTIVE
    dead_lettered: bool = False
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    thread: Optional[threading.Thread] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "expire_at": datetime.fromtimestamp(self.expire_at).isoformat(),
            "attempts": self.attempts,
            "max_retry": self.max_retry,
            "state": self.state.value,
        }


DeadLetterHandler = Callable[[WatchedTransaction, BaseException], None]


def _to_epoch(deadline: Deadline) -> float:
    if isinstance(deadline, datetime):
        # naive datetimes are local time, matching the va_request column
        return deadline.timestamp()
    return float(deadline)


class TransactionExpiryWatcher:
    """
    Expiry watcher for virtual-account reservations.

    Example Usage:
        watcher = TransactionExpiryWatcher(repository)
        watcher.watch(reservation.id, reservation.expired_at)
        ...
        watcher.transaction_paid(reservation.id)
    """

    def __init__(
        self,
        repository: VirtualAccountRepository,
        max_retry: int = DEFAULT_MAX_RETRY,
        retry_base_seconds: float = DEFAULT_RETRY_BASE_SECONDS,
        retry_max_seconds: float = DEFAULT_RETRY_MAX_SECONDS,
        retry_jitter: float = 0.25,
        dead_letter: Optional[DeadLetterHandler] = None,
        clock: Callable[[], float] = time.time,
        va_lifetime: timedelta = DEFAULT_VA_LIFETIME
    ) -> None:
        if max_retry < 1:
            raise ValueError("max_retry must be at least 1")

        self.repository = repository
        self.max_retry = max_retry
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self.retry_jitter = retry_jitter
        self.va_lifetime = va_lifetime
        self._dead_letter = dead_letter or self._log_dead_letter
        self._clock = clock

        self._lock = threading.Lock()
        self._watched: Dict[int, WatchedTransaction] = {}
        self._stopping = False

    @classmethod
    def from_config(
        cls,
        config: SnapConfig,
        repository: Optional[VirtualAccountRepository] = None,
        dead_letter: Optional[DeadLetterHandler] = None
    ) -> "TransactionExpiryWatcher":
        """Watcher with the WATCHER_* retry policy and SNAP_VA_LIFETIME_HOURS."""
        return cls(
            repository if repository is not None else VirtualAccountRepository.from_config(config),
            max_retry=config.watcher_max_retry,
            retry_base_seconds=config.watcher_retry_base_seconds,
            retry_max_seconds=config.watcher_retry_max_seconds,
            dead_letter=dead_letter,
            va_lifetime=timedelta(hours=config.va_lifetime_hours),
        )

    # ========================================================================
    # Registration
    # ========================================================================

    def watch(
        self,
        transaction_id: int,
        expire_at: Optional[Deadline] = None,
        lifetime: Optional[timedelta] = None
    ) -> WatchedTransaction:
        """
        Start a countdown for a reservation.

        Args:
            transaction_id: va_request primary key
            expire_at: Deadline as datetime or epoch seconds; defaults to
                now + lifetime (the configured VA lifetime when None)

        Returns:
            The watched entry (the existing one if already watched)
        """
        lifetime = lifetime if lifetime is not None else self.va_lifetime
        deadline = (
            self._clock() + lifetime.total_seconds()
            if expire_at is None else _to_epoch(expire_at)
        )

        with self._lock:
            if self._stopping:
                raise RuntimeError("Watcher is shut down")
            existing = self._watched.get(transaction_id)
            if existing is not None:
                logger.debug(f"[SNAP-WAT] Already watched | id={transaction_id}")
                return existing

            entry = WatchedTransaction(
                transaction_id=transaction_id,
                expire_at=deadline,
                max_retry=self.max_retry,
            )
            entry.thread = threading.Thread(
                target=self._run,
                args=(entry,),
                name=f"va-expiry-{transaction_id}",
                daemon=True,
            )
            self._watched[transaction_id] = entry
            count = len(self._watched)

        entry.thread.start()
        set_watched_transactions(count)
        logger.info(
            f"[SNAP-WAT] Watching reservation | id={transaction_id} | "
            f"expire_in_s={deadline - self._clock():.0f}"
        )
        return entry

    def restore_pending(self, id_bank: Optional[int] = None) -> int:
        """Re-arm watchers for reservations still pending after a restart."""
        pending = self.repository.list_pending(id_bank)
        for reservation in pending:
            if reservation.expired_at is None:
                self.watch(reservation.id)
            else:
                self.watch(reservation.id, reservation.expired_at)

        logger.info(f"[SNAP-WAT] Pending reservations restored | count={len(pending)}")
        return len(pending)

    # ========================================================================
    # Cancellation
    # ========================================================================

    def cancel(self, transaction_id: int, reason: str = "cancelled") -> bool:
        """
        Stop a countdown before it commits.

        Returns:
            True if this call cancelled it, False if it already expired,
            was already cancelled, or was never watched
        """
        with self._lock:
            entry = self._watched.get(transaction_id)
        if entry is None:
            return False

        with entry.lock:
            if entry.state is not WatchState.ACTIVE:
                return False
            entry.state = WatchState.CANCELLED
            entry.cancel_event.set()
            self._remove(entry)

        record_watcher_outcome("cancelled")
        self.repository.log_watcher_event(
            transaction_id, WatcherLogStatus.CANCELLED, reason,
            entry.attempts, entry.max_retry
        )
        logger.info(f"[SNAP-WAT] Watcher cancelled | id={transaction_id} | reason={reason}")
        return True

    def transaction_paid(self, transaction_id: int) -> bool:
        return self.cancel(transaction_id, reason="paid")

    # ========================================================================
    # Inspection & Shutdown
    # ========================================================================

    def is_watching(self, transaction_id: int) -> bool:
        with self._lock:
            return transaction_id in self._watched

    def snapshot(self) -> List[Dict[str, Any]]:
        with self._lock:
            entries = list(self._watched.values())
        return [entry.to_dict() for entry in entries]

    def __len__(self) -> int:
        with self._lock:
            return len(self._watched)

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """Stop every countdown without committing any expiry."""
        with self._lock:
            self._stopping = True
            entries = list(self._watched.values())

        for entry in entries:
            with entry.lock:
                if entry.state is WatchState.ACTIVE:
                    entry.state = WatchState.STOPPED
                entry.cancel_event.set()
                self._remove(entry)

        for entry in entries:
            if entry.thread is not None and entry.thread is not threading.current_thread():
                entry.thread.join(timeout)

        logger.info(f"[SNAP-WAT] Watcher shut down | stopped={len(entries)}")

    # ========================================================================
    # Countdown
    # ========================================================================

    def _remove(self, entry: WatchedTransaction) -> None:
        # caller holds entry.lock
        with self._lock:
            if self._watched.get(entry.transaction_id) is entry:
                del self._watched[entry.transaction_id]
            count = len(self._watched)
        set_watched_transactions(count)

    def _run(self, entry: WatchedTransaction) -> None:
        while True:
            remaining = entry.expire_at - self._clock()
            if remaining <= 0:
                break
            if entry.cancel_event.wait(remaining):
                return

        backoff = ExponentialBackoff(
            base_delay=self.retry_base_seconds,
            multiplier=2.0,
            max_delay=self.retry_max_seconds,
            jitter=self.retry_jitter,
        )

        while True:
            with entry.lock:
                if entry.state is not WatchState.ACTIVE:
                    return
                entry.attempts += 1
                try:
                    expired = self._commit_expiry(entry)
                except PersistenceTransientError as e:
                    failure = e
                except Exception as e:
                    logger.exception(
                        f"[SNAP-WAT-003] Unexpected expiry failure | id={entry.transaction_id} | "
                        f"error={type(e).__name__}"
                    )
                    failure = e
                else:
                    entry.state = WatchState.EXPIRED if expired else WatchState.SKIPPED
                    self._remove(entry)
                    self._finish(entry)
                    return

            self._on_failure(entry, failure)
            if entry.cancel_event.wait(backoff.get_delay()):
                return

    def _commit_expiry(self, entry: WatchedTransaction) -> bool:
        """True if this attempt expired the reservation, False if not needed."""
        reservation = self.repository.fetch_reservation(entry.transaction_id)
        if reservation is None:
            logger.info(f"[SNAP-WAT] Reservation gone, stopping | id={entry.transaction_id}")
            return False
        if reservation.status is not VAStatus.PENDING:
            logger.info(
                f"[SNAP-WAT] Reservation no longer pending | id={entry.transaction_id} | "
                f"status={reservation.status.name}"
            )
            return False
        return self.repository.mark_expired(entry.transaction_id)

    def _finish(self, entry: WatchedTransaction) -> None:
        if entry.state is WatchState.EXPIRED:
            outcome, message = "expired", "reservation expired"
        else:
            outcome, message = "skipped", "reservation not pending at deadline"

        record_watcher_outcome(outcome)
        self.repository.log_watcher_event(
            entry.transaction_id, WatcherLogStatus.SUCCESS, message,
            entry.attempts, entry.max_retry
        )
        logger.info(
            f"[SNAP-WAT] Watcher finished | id={entry.transaction_id} | "
            f"outcome={outcome} | attempts={entry.attempts}"
        )

    def _on_failure(self, entry: WatchedTransaction, error: Exception) -> None:
        code = getattr(error, "error_code", type(error).__name__)
        logger.warning(
            f"[SNAP-WAT-001] Expiry commit failed, retrying | id={entry.transaction_id} | "
            f"attempt={entry.attempts}/{entry.max_retry} | error={code}"
        )
        self.repository.log_watcher_event(
            entry.transaction_id, WatcherLogStatus.FAILED, getattr(error, "message", str(error)),
            entry.attempts, entry.max_retry
        )

        if entry.attempts >= entry.max_retry and not entry.dead_lettered:
            entry.dead_lettered = True
            record_watcher_outcome("dead_letter")
            try:
                self._dead_letter(entry, error)
            except Exception as e:
                logger.error(
                    f"[SNAP-WAT-002] Dead-letter handler raised | id={entry.transaction_id} | "
                    f"error={type(e).__name__}"
                )

    @staticmethod
    def _log_dead_letter(entry: WatchedTransaction, error: BaseException) -> None:
        logger.critical(
            f"[SNAP-WAT-002] Expiry retry budget exhausted | id={entry.transaction_id} | "
            f"attempts={entry.attempts} | error={error} | retrying at capped delay"
        )
