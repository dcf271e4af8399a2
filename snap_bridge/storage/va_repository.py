"""
============================================================================
SNAP Bank Bridge v1.0.0
Virtual Account Repository - Reservation Persistence Collaborator
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Side Effects: Reads va_request, updates id_va_status, writes
              transaction_watcher_log

OPERATIONS
----------
- fetch_reservation(id): current state of one reservation
- fetch_by_transaction(id_transaction): same, keyed by order id
- mark_expired(id): conditional pending -> expired transition
- list_pending(id_bank): reservations to re-arm after restart
- log_watcher_event(...): watcher audit trail (never raises)

ERROR CODES
-----------
- SNAP-DB-001: Store unavailable (PersistenceTransientError)
- SNAP-DB-003: Row could not be decoded (MalformedRecordError)

============================================================================
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import IntEnum
from typing import List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from snap_bridge.config import SnapConfig
from snap_bridge.errors import ConfigurationError, MalformedRecordError, PersistenceTransientError
from snap_bridge.storage.session import (
    check_database_connection,
    create_db_engine,
    create_session_factory,
)

logger = logging.getLogger(__name__)


class VAStatus(IntEnum):
    PENDING = 1
    PAID = 2
    EXPIRED = 3
    CANCELLED = 4


class WatcherLogStatus(IntEnum):
    SUCCESS = 1
    FAILED = 2
    CANCELLED = 3


@dataclass(frozen=True)
class Reservation:
    """Snapshot of a va_request row."""
    id: int
    id_transaction: str
    status: VAStatus
    expired_at: Optional[datetime]
    total_amount: Optional[Decimal] = None
    paid_amount: Optional[Decimal] = None

    @property
    def is_pending(self) -> bool:
        return self.status == VAStatus.PENDING


_RESERVATION_COLUMNS = """
    id, id_transaction, id_va_status, expired_date,
    totalAmountValue, paidAmountValue
"""


def _as_datetime(value) -> Optional[datetime]:
    # sqlite hands back ISO strings, MySQL/Postgres hand back datetimes
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _as_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _row_to_reservation(row) -> Reservation:
    try:
        return Reservation(
            id=int(row.id),
            id_transaction=str(row.id_transaction),
            status=VAStatus(int(row.id_va_status)),
            expired_at=_as_datetime(row.expired_date),
            total_amount=_as_decimal(row.totalAmountValue),
            paid_amount=_as_decimal(row.paidAmountValue),
        )
    except (TypeError, ValueError, ArithmeticError) as e:
        logger.error(
            f"[SNAP-DB-003] Reservation row could not be decoded | id={row.id} | "
            f"error={type(e).__name__}"
        )
        raise MalformedRecordError(f"Reservation row {row.id} could not be decoded") from e


class VirtualAccountRepository:
    """
    SQLAlchemy-backed persistence for virtual-account reservations.

    Each call opens its own short session from the factory; nothing is held
    across network I/O.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @classmethod
    def from_config(cls, config: SnapConfig) -> "VirtualAccountRepository":
        """
        Repository over a pooled engine for DB_URL (or the DB_* parts).

        Raises:
            ConfigurationError: No database configured
            PersistenceTransientError: Database unreachable at startup
        """
        if not config.database_url:
            raise ConfigurationError("DB_URL or DB_HOST/DB_NAME/DB_USER must be set")
        engine = create_db_engine(config.database_url)
        check_database_connection(engine)
        return cls(create_session_factory(engine))

    def fetch_reservation(self, reservation_id: int) -> Optional[Reservation]:
        """
        Returns:
            Reservation or None when the row does not exist

        Raises:
            PersistenceTransientError: Store unavailable
        """
        return self._fetch_one("id = :key", reservation_id)

    def fetch_by_transaction(self, id_transaction: str) -> Optional[Reservation]:
        return self._fetch_one("id_transaction = :key", id_transaction)

    def _fetch_one(self, where: str, key) -> Optional[Reservation]:
        query = text(f"SELECT {_RESERVATION_COLUMNS} FROM va_request WHERE {where}")
        try:
            with self._session_factory() as session:
                row = session.execute(query, {"key": key}).first()
        except SQLAlchemyError as e:
            logger.error(
                f"[SNAP-DB-001] Reservation fetch failed | key={key} | "
                f"error={type(e).__name__}"
            )
            raise PersistenceTransientError(f"Reservation fetch failed for {key}") from e

        return _row_to_reservation(row) if row is not None else None

    def mark_expired(self, reservation_id: int) -> bool:
        """
        Transition pending -> expired.

        Returns:
            True if this call changed the row, False if it was no longer pending

        Raises:
            PersistenceTransientError: Store unavailable; caller retries
        """
        statement = text(
            "UPDATE va_request SET id_va_status = :expired "
            "WHERE id = :id AND id_va_status = :pending"
        )
        try:
            with self._session_factory() as session:
                with session.begin():
                    result = session.execute(statement, {
                        "expired": int(VAStatus.EXPIRED),
                        "pending": int(VAStatus.PENDING),
                        "id": reservation_id,
                    })
                    changed = result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(
                f"[SNAP-DB-001] mark_expired failed | id={reservation_id} | "
                f"error={type(e).__name__}"
            )
            raise PersistenceTransientError(f"mark_expired failed for {reservation_id}") from e

        logger.info(f"[SNAP-VA] Reservation expiry committed | id={reservation_id} | changed={changed}")
        return changed

    def list_pending(self, id_bank: Optional[int] = None) -> List[Reservation]:
        """Pending reservations, optionally for a single bank."""
        query = f"SELECT {_RESERVATION_COLUMNS} FROM va_request WHERE id_va_status = :pending"
        params = {"pending": int(VAStatus.PENDING)}
        if id_bank is not None:
            query += " AND id_bank = :id_bank"
            params["id_bank"] = id_bank

        try:
            with self._session_factory() as session:
                rows = session.execute(text(query), params).all()
        except SQLAlchemyError as e:
            logger.error(f"[SNAP-DB-001] list_pending failed | error={type(e).__name__}")
            raise PersistenceTransientError("Listing pending reservations failed") from e

        return [_row_to_reservation(row) for row in rows]

    def log_watcher_event(
        self,
        reservation_id: int,
        status: WatcherLogStatus,
        message: str,
        attempts: int,
        max_attempts: int
    ) -> None:
        """Append to transaction_watcher_log. Audit failures are logged only."""
        statement = text(
            "INSERT INTO transaction_watcher_log "
            "(id_transaction, id_watcher_status, message, attempts, max_attempts) "
            "VALUES (:id, :status, :message, :attempts, :max_attempts)"
        )
        try:
            with self._session_factory() as session:
                with session.begin():
                    session.execute(statement, {
                        "id": reservation_id,
                        "status": int(status),
                        "message": message[:255],
                        "attempts": attempts,
                        "max_attempts": max_attempts,
                    })
        except SQLAlchemyError as e:
            logger.error(
                f"[SNAP-DB-001] Watcher log write failed | id={reservation_id} | "
                f"status={status.name} | error={type(e).__name__}"
            )
