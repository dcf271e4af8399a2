# ============================================================================
# SNAP Bank Bridge v1.0.0
# Exchange Module - Outbound Bank Connectivity
# ============================================================================
#
# Components:
#   - EgressPipeline: sign, send and classify bank calls
#   - ExponentialBackoff: bounded retry delays
#   - BANK_ERROR_CODES / BankResponse: bank response taxonomy
#
# ============================================================================

from snap_bridge.exchange.backoff import ExponentialBackoff
from snap_bridge.exchange.egress import EgressPipeline, ExternalIdGenerator, rfc3339_now
from snap_bridge.exchange.error_codes import (
    BANK_ERROR_CODES,
    BankResponse,
    ResponseReason,
    ServiceCode,
    bank_response,
    describe_code,
)
from snap_bridge.exchange.models import AccessTokenRequest, AccessTokenResponse, BankErrorEnvelope

__all__ = [
    "ExponentialBackoff",
    "EgressPipeline",
    "ExternalIdGenerator",
    "rfc3339_now",
    "BANK_ERROR_CODES",
    "BankResponse",
    "ResponseReason",
    "ServiceCode",
    "bank_response",
    "describe_code",
    "AccessTokenRequest",
    "AccessTokenResponse",
    "BankErrorEnvelope",
]
