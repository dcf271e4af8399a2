# ============================================================================
# SNAP Bank Bridge v1.0.0
# Token Store - Redis-backed Credentials, Issued Tokens, Replay Guard
# ============================================================================
#
# Purpose: Cache/token-store collaborator for the inbound pipeline
#
# Key Layout:
#   client-credentials              HASH  client_id -> client_secret
#   access-tokens:<token>           STR   client_id (TTL = token lifetime)
#   unique-external-id:<bank>       SET   X-EXTERNAL-ID values seen
#   partnered-banks                 HASH  bank_id -> display name
#   bank-icons                      HASH  bank_id -> icon URL
#
# Error Codes:
#   - SNAP-DB-002: Cache store unavailable
#
# ============================================================================

import logging
from typing import Optional

import redis
from redis.exceptions import RedisError

from snap_bridge.config import SnapConfig
from snap_bridge.errors import PersistenceTransientError

logger = logging.getLogger(__name__)

CLIENT_CREDENTIALS_KEY = "client-credentials"
ACCESS_TOKEN_PREFIX = "access-tokens"
EXTERNAL_ID_PREFIX = "unique-external-id"
PARTNERED_BANKS_KEY = "partnered-banks"
BANK_ICONS_KEY = "bank-icons"


def create_redis_client(redis_url: str) -> redis.Redis:
    """Pooled client; responses decoded to str."""
    return redis.Redis.from_url(redis_url, decode_responses=True)


class RedisTokenStore:
    """
    Thread-safe wrapper over a redis-py client.

    Every store failure is raised as PersistenceTransientError so callers
    can tell "unknown" from "store down".
    """

    def __init__(self, client: redis.Redis, external_id_namespace: str = "bca"):
        self._redis = client
        self.external_id_namespace = external_id_namespace

    @classmethod
    def from_config(
        cls,
        config: SnapConfig,
        external_id_namespace: str = "bca"
    ) -> "RedisTokenStore":
        """Store over a client for REDIS_URL."""
        return cls(create_redis_client(config.redis_url), external_id_namespace)

    # ------------------------------------------------------------------------
    # Client credentials
    # ------------------------------------------------------------------------

    def get_client_secret(self, client_id: str) -> Optional[str]:
        """Secret registered for a client id, or None if unknown."""
        try:
            value = self._redis.hget(CLIENT_CREDENTIALS_KEY, client_id)
        except RedisError as e:
            raise self._unavailable("hget", CLIENT_CREDENTIALS_KEY, e) from e
        return value or None

    def register_client(self, client_id: str, client_secret: str) -> None:
        try:
            self._redis.hset(CLIENT_CREDENTIALS_KEY, client_id, client_secret)
        except RedisError as e:
            raise self._unavailable("hset", CLIENT_CREDENTIALS_KEY, e) from e
        logger.info(f"[SNAP-STORE] Client registered | client_id={client_id} | secret=[REDACTED]")

    # ------------------------------------------------------------------------
    # Issued access tokens
    # ------------------------------------------------------------------------

    def store_access_token(self, token: str, client_id: str, ttl_seconds: int) -> None:
        key = f"{ACCESS_TOKEN_PREFIX}:{token}"
        try:
            self._redis.set(key, client_id, ex=int(ttl_seconds))
        except RedisError as e:
            raise self._unavailable("set", ACCESS_TOKEN_PREFIX, e) from e

    def lookup_access_token(self, token: str) -> Optional[str]:
        """
        Client id the token was issued to, or None when unknown/expired.

        Expiry is enforced by the key TTL.
        """
        if not token:
            return None
        try:
            value = self._redis.get(f"{ACCESS_TOKEN_PREFIX}:{token}")
        except RedisError as e:
            raise self._unavailable("get", ACCESS_TOKEN_PREFIX, e) from e
        return value or None

    def revoke_access_token(self, token: str) -> None:
        try:
            self._redis.delete(f"{ACCESS_TOKEN_PREFIX}:{token}")
        except RedisError as e:
            raise self._unavailable("delete", ACCESS_TOKEN_PREFIX, e) from e

    # ------------------------------------------------------------------------
    # Replay guard
    # ------------------------------------------------------------------------

    def claim_external_id(self, external_id: str) -> bool:
        """
        Atomically record an X-EXTERNAL-ID.

        Returns:
            True the first time an id is seen, False on replay
        """
        key = f"{EXTERNAL_ID_PREFIX}:{self.external_id_namespace}"
        try:
            added = self._redis.sadd(key, external_id)
        except RedisError as e:
            raise self._unavailable("sadd", key, e) from e
        return added == 1

    # ------------------------------------------------------------------------
    # Reference lookups
    # ------------------------------------------------------------------------

    def bank_name(self, bank_id: str) -> str:
        return self._hash_lookup(PARTNERED_BANKS_KEY, bank_id)

    def bank_icon(self, bank_id: str) -> str:
        return self._hash_lookup(BANK_ICONS_KEY, bank_id)

    def _hash_lookup(self, key: str, field: str) -> str:
        # display data: a miss or an outage both fall back to ""
        try:
            value = self._redis.hget(key, field)
        except RedisError as e:
            logger.warning(
                f"[SNAP-DB-002] Reference lookup failed | key={key} | "
                f"field={field} | error={type(e).__name__}"
            )
            return ""
        return value or ""

    @staticmethod
    def _unavailable(op: str, key: str, exc: Exception) -> PersistenceTransientError:
        logger.error(
            f"[SNAP-DB-002] Cache store unavailable | op={op} | key={key} | "
            f"error={type(exc).__name__}"
        )
        return PersistenceTransientError(
            f"Cache store unavailable during {op} on {key}",
            error_code="SNAP-DB-002"
        )
