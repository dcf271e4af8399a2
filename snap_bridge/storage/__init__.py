from snap_bridge.storage.token_store import RedisTokenStore, create_redis_client
from snap_bridge.storage.va_repository import (
    Reservation,
    VAStatus,
    VirtualAccountRepository,
    WatcherLogStatus,
)

__all__ = [
    "RedisTokenStore",
    "create_redis_client",
    "Reservation",
    "VAStatus",
    "VirtualAccountRepository",
    "WatcherLogStatus",
]
