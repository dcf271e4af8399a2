from snap_bridge.watcher.transaction_watcher import (
    TransactionExpiryWatcher,
    WatchedTransaction,
    WatchState,
)

__all__ = ["TransactionExpiryWatcher", "WatchedTransaction", "WatchState"]
