"""
============================================================================
SNAP Bank Bridge v1.0.0
Prometheus Metrics - Signing, Token and Watcher Observability
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Side Effects: Updates Prometheus metrics registry

METRICS EXPOSED
---------------
- snap_outbound_requests_total: Outbound bank calls by operation/outcome
- snap_token_renewals_total: Access-token renewal round-trips by outcome
- snap_inbound_verifications_total: Inbound callback verdicts
- snap_watcher_expiries_total: Expiry watcher terminal outcomes
- snap_watched_transactions: Reservations currently counting down

Recording helpers never raise; a broken registry must not break a payment.

============================================================================
"""

import logging

from prometheus_client import Counter, Gauge

logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS DEFINITIONS
# ============================================================================

OUTBOUND_REQUESTS = Counter(
    "snap_outbound_requests_total",
    "Outbound SNAP requests by operation and outcome",
    ["operation", "outcome"]
)

TOKEN_RENEWALS = Counter(
    "snap_token_renewals_total",
    "Access-token renewal round-trips by outcome",
    ["outcome"]
)

INBOUND_VERIFICATIONS = Counter(
    "snap_inbound_verifications_total",
    "Inbound callback verification verdicts",
    ["kind", "outcome"]
)

WATCHER_EXPIRIES = Counter(
    "snap_watcher_expiries_total",
    "Expiry watcher terminal outcomes",
    ["outcome"]
)

WATCHED_TRANSACTIONS = Gauge(
    "snap_watched_transactions",
    "Virtual-account reservations currently being watched"
)


# ============================================================================
# METRIC UPDATE FUNCTIONS
# ============================================================================

def record_outbound_request(operation: str, outcome: str) -> None:
    """
    Record an outbound call result.

    Args:
        operation: "access_token" or "api"
        outcome: "success", "rejected" or "transport_error"
    """
    try:
        OUTBOUND_REQUESTS.labels(operation=operation, outcome=outcome).inc()
    except Exception as e:
        logger.error(
            "[OBS-001] Failed to record outbound_request metric | error=%s",
            str(e)
        )


def record_token_renewal(outcome: str) -> None:
    try:
        TOKEN_RENEWALS.labels(outcome=outcome).inc()
    except Exception as e:
        logger.error(
            "[OBS-002] Failed to record token_renewal metric | error=%s",
            str(e)
        )


def record_inbound_verification(kind: str, outcome: str) -> None:
    """kind is "asymmetric" or "symmetric"; outcome is "accepted" or a reason."""
    try:
        INBOUND_VERIFICATIONS.labels(kind=kind, outcome=outcome).inc()
    except Exception as e:
        logger.error(
            "[OBS-003] Failed to record inbound_verification metric | error=%s",
            str(e)
        )


def record_watcher_outcome(outcome: str) -> None:
    """outcome is "expired", "cancelled", "skipped" or "dead_letter"."""
    try:
        WATCHER_EXPIRIES.labels(outcome=outcome).inc()
    except Exception as e:
        logger.error(
            "[OBS-004] Failed to record watcher_outcome metric | error=%s",
            str(e)
        )


def set_watched_transactions(count: int) -> None:
    try:
        WATCHED_TRANSACTIONS.set(count)
    except Exception as e:
        logger.error(
            "[OBS-005] Failed to update watched_transactions gauge | error=%s",
            str(e)
        )
