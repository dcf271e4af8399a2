# ============================================================================
# SNAP Bank Bridge v1.0.0
# Error Taxonomy - Tagged Error Kinds
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Single exception hierarchy carrying an explicit kind so callers
#          branch on ErrorKind instead of matching message strings.
#
# Cause chains use native exception chaining (raise ... from exc).
#
# Error Codes:
#   - SNAP-CFG-001: Invalid or missing configuration
#   - SNAP-KEY-001: Key material could not be loaded
#   - SNAP-SIG-001: Signing failure
#   - SNAP-SIG-002: Malformed signature encoding
#   - SNAP-BNK-001: Bank rejected the request (non-200 envelope)
#   - SNAP-NET-001: Transport failure (timeout, refused, malformed body)
#   - SNAP-DB-001:  Store unavailable (transient)
#   - SNAP-DB-003:  Stored record could not be decoded
#
# ============================================================================

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Kind of failure, used for control flow."""
    CONFIGURATION = "CONFIGURATION"
    CRYPTOGRAPHIC = "CRYPTOGRAPHIC"
    PROTOCOL_REJECTION = "PROTOCOL_REJECTION"
    TRANSPORT = "TRANSPORT"
    PERSISTENCE_TRANSIENT = "PERSISTENCE_TRANSIENT"


class SnapError(Exception):
    """
    Base exception for every failure raised by snap_bridge.

    Attributes:
        kind: ErrorKind tag
        error_code: Sovereign error code (e.g. SNAP-SIG-001)
        message: Human-readable message
        details: Optional structured context for logs
    """

    kind = ErrorKind.CONFIGURATION
    default_code = "SNAP-ERR-000"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.error_code = error_code or self.default_code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{self.error_code}] {message}")

    @property
    def retryable(self) -> bool:
        """True for kinds a caller may reasonably retry."""
        return self.kind in (ErrorKind.TRANSPORT, ErrorKind.PERSISTENCE_TRANSIENT)


class ConfigurationError(SnapError):
    """Missing or invalid configuration. Fatal at startup (SNAP-CFG-001)."""
    kind = ErrorKind.CONFIGURATION
    default_code = "SNAP-CFG-001"


class KeyLoadError(ConfigurationError):
    """PEM file missing, malformed or of the wrong key type (SNAP-KEY-001)."""
    default_code = "SNAP-KEY-001"


class CryptographicError(SnapError):
    """Signing or verification could not be performed (SNAP-SIG-002)."""
    kind = ErrorKind.CRYPTOGRAPHIC
    default_code = "SNAP-SIG-002"


class SigningError(CryptographicError):
    """The signing primitive itself failed (SNAP-SIG-001)."""
    default_code = "SNAP-SIG-001"


class ProtocolRejection(SnapError):
    """
    Non-200 response carrying the bank error envelope (SNAP-BNK-001).

    The bank's responseCode/responseMessage are preserved verbatim.
    """
    kind = ErrorKind.PROTOCOL_REJECTION
    default_code = "SNAP-BNK-001"

    def __init__(
        self,
        http_status: int,
        response_code: str,
        response_message: str,
        bank_message: str = "",
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.http_status = http_status
        self.response_code = response_code
        self.response_message = response_message
        self.bank_message = bank_message
        super().__init__(
            f"Bank rejected request | http_status={http_status} | "
            f"responseCode={response_code} | responseMessage={response_message}",
            error_code=error_code,
            details=details
        )

    @property
    def category(self) -> str:
        """Last four digits of the response code (e.g. '2401')."""
        return self.response_code[3:] if len(self.response_code) == 7 else ""

    @property
    def is_invalid_token(self) -> bool:
        return self.http_status == 401 and self.category.endswith("01")


class TransportError(SnapError):
    """Network-level failure, distinct from a bank rejection (SNAP-NET-001)."""
    kind = ErrorKind.TRANSPORT
    default_code = "SNAP-NET-001"


class PersistenceTransientError(SnapError):
    """Relational or cache store unavailable (SNAP-DB-001)."""
    kind = ErrorKind.PERSISTENCE_TRANSIENT
    default_code = "SNAP-DB-001"


class MalformedRecordError(PersistenceTransientError):
    """A stored row holds a value outside its domain (SNAP-DB-003)."""
    default_code = "SNAP-DB-003"
