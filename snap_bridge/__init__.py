# ============================================================================
# SNAP Bank Bridge v1.0.0
# SNAP open-banking request signing, token lifecycle and VA expiry
# ============================================================================
#
# Components:
#   - security:      Canonicalizer, SnapSigner (RSA + HMAC-SHA512)
#   - exchange:      EgressPipeline, bank error taxonomy, backoff
#   - auth:          AccessTokenManager, AccessTokenIssuer
#   - api:           IngressVerifier, FastAPI callback router
#   - storage:       RedisTokenStore, VirtualAccountRepository
#   - watcher:       TransactionExpiryWatcher
#   - observability: Prometheus metrics
#
# ============================================================================

import logging

__version__ = "1.0.0"

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: int = logging.INFO) -> None:
    """Apply the bridge's log format to the root logger."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
