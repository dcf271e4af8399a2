# ============================================================================
# SNAP Bank Bridge v1.0.0
# Inbound Verification Pipeline - Trust Nothing Until Verified
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Verifies every callback the bank sends before its body is used
#
# SOVEREIGN MANDATE:
#   - A request is accepted ONLY when the signature verifies AND the bearer
#     token is live and issued to the expected caller
#   - Any single failure rejects; there is no partial trust
#   - X-EXTERNAL-ID is claimed only after authentication succeeds
#   - Store or verifier breakage answers General Error, never "accepted"
#
# Error Codes:
#   - SNAP-IN-001: Request rejected (reason in log line)
#   - SNAP-IN-002: Verifier infrastructure failure
#
# ============================================================================

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional

from requests.structures import CaseInsensitiveDict

from snap_bridge.config import SnapConfig
from snap_bridge.errors import ConfigurationError, CryptographicError, PersistenceTransientError
from snap_bridge.exchange.error_codes import BankResponse, ResponseReason, ServiceCode, bank_response
from snap_bridge.observability.metrics import record_inbound_verification
from snap_bridge.security.signer import SnapSigner
from snap_bridge.storage.token_store import RedisTokenStore

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
MAX_EXTERNAL_ID_LENGTH = 36

_RFC3339 = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)


def parse_rfc3339(value: str) -> Optional[datetime]:
    """Parse an RFC3339 timestamp; None if it is not one."""
    if not value or not _RFC3339.match(value):
        return None
    normalized = value[:-1] + "+00:00" if value[-1] in "Zz" else value
    normalized = normalized.replace("t", "T", 1)
    try:
        # fromisoformat before 3.11 only takes 3 or 6 fractional digits
        if "." in normalized:
            head, rest = normalized.split(".", 1)
            digits = re.match(r"\d+", rest).group(0)
            normalized = f"{head}.{digits[:6].ljust(6, '0')}{rest[len(digits):]}"
        return datetime.fromisoformat(normalized)
    except ValueError:
        return None


@dataclass
class InboundRequest:
    """Framework-neutral view of an incoming HTTP request."""
    method: str
    path: str
    headers: Mapping[str, str]
    body: bytes = b""

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = CaseInsensitiveDict(self.headers or {})

    def header(self, name: str) -> str:
        return (self.headers.get(name) or "").strip()


@dataclass
class VerificationResult:
    """
    Outcome of an inbound verification.

    response is the envelope to answer with when rejected (and the success
    envelope when accepted).
    """
    accepted: bool
    response: BankResponse
    client_id: str = ""
    access_token: str = ""
    details: dict = field(default_factory=dict)


class IngressVerifier:
    """
    Inbound verification for the access-token and callback endpoints.

    Example Usage:
        verifier = IngressVerifier(signer, token_store, expected_client_id="bank-01")
        result = verifier.verify_symmetric_request(inbound, ServiceCode.PAYMENT_FLAG)
        if not result.accepted:
            return result.response.to_envelope(), result.response.http_status
    """

    def __init__(
        self,
        signer: SnapSigner,
        store: RedisTokenStore,
        expected_client_id: Optional[str] = None
    ) -> None:
        self.signer = signer
        self.store = store
        self.expected_client_id = expected_client_id

    @classmethod
    def from_config(
        cls,
        config: SnapConfig,
        store: Optional[RedisTokenStore] = None
    ) -> "IngressVerifier":
        """
        Verifier for bank callbacks.

        Raises:
            ConfigurationError: SNAP_BANK_PUBLIC_KEY_PATH unset
            KeyLoadError: Key material could not be loaded
        """
        if not config.bank_public_key_path:
            raise ConfigurationError(
                "SNAP_BANK_PUBLIC_KEY_PATH must be set to verify inbound requests"
            )
        signer = SnapSigner.from_paths(
            client_id=config.client_id,
            client_secret=config.client_secret,
            private_key_path=config.private_key_path,
            public_key_path=config.bank_public_key_path,
        )
        return cls(
            signer,
            store if store is not None else RedisTokenStore.from_config(config),
            expected_client_id=config.expected_client_id,
        )

    # ========================================================================
    # Asymmetric (access-token issuance)
    # ========================================================================

    def verify_access_token_request(
        self,
        request: InboundRequest,
        service: ServiceCode = ServiceCode.ACCESS_TOKEN
    ) -> VerificationResult:
        """Verify X-TIMESTAMP / X-CLIENT-KEY / X-SIGNATURE against the bank key."""
        timestamp = request.header("X-TIMESTAMP")
        client_key = request.header("X-CLIENT-KEY")
        signature = request.header("X-SIGNATURE")

        for name, value in (("X-CLIENT-KEY", client_key), ("X-TIMESTAMP", timestamp),
                            ("X-SIGNATURE", signature)):
            if not value:
                return self._missing(name, service, "asymmetric")

        if parse_rfc3339(timestamp) is None:
            return self._invalid_format("X-TIMESTAMP", service, "asymmetric")

        if self.expected_client_id and client_key != self.expected_client_id:
            return self._reject(ResponseReason.UNAUTHORIZED_UNKNOWN_CLIENT, service,
                                "asymmetric", "unexpected_client", client_key=client_key)

        try:
            secret = self.store.get_client_secret(client_key)
            if secret is None:
                return self._reject(ResponseReason.UNAUTHORIZED_UNKNOWN_CLIENT, service,
                                    "asymmetric", "unknown_client", client_key=client_key)
            verified = self.signer.verify_asymmetric_signature(timestamp, client_key, signature)
        except CryptographicError:
            verified = False
        except (PersistenceTransientError, ConfigurationError) as e:
            return self._broken(e, service, "asymmetric")

        if not verified:
            return self._reject(ResponseReason.UNAUTHORIZED_SIGNATURE, service,
                                "asymmetric", "bad_signature", client_key=client_key)

        record_inbound_verification("asymmetric", "accepted")
        return VerificationResult(
            accepted=True,
            response=bank_response(ResponseReason.SUCCESS, service),
            client_id=client_key,
        )

    # ========================================================================
    # Symmetric (every other callback)
    # ========================================================================

    def verify_symmetric_request(
        self,
        request: InboundRequest,
        service: ServiceCode
    ) -> VerificationResult:
        """
        Verify a bearer-authenticated callback.

        Order: mandatory headers, field formats, token lookup, signature,
        then the X-EXTERNAL-ID replay claim.
        """
        external_id = request.header("X-EXTERNAL-ID")
        timestamp = request.header("X-TIMESTAMP")
        authorization = request.header("Authorization")
        signature = request.header("X-SIGNATURE")

        for name, value in (("X-EXTERNAL-ID", external_id), ("X-TIMESTAMP", timestamp),
                            ("Authorization", authorization), ("X-SIGNATURE", signature)):
            if not value:
                return self._missing(name, service, "symmetric")

        numeric = external_id.isascii() and external_id.isdigit()
        if not numeric or len(external_id) > MAX_EXTERNAL_ID_LENGTH:
            return self._invalid_format("X-EXTERNAL-ID", service, "symmetric")
        if parse_rfc3339(timestamp) is None:
            return self._invalid_format("X-TIMESTAMP", service, "symmetric")

        token = authorization[len(BEARER_PREFIX):] if authorization.startswith(BEARER_PREFIX) else ""
        token = token.strip()
        if not token:
            return self._reject(ResponseReason.INVALID_TOKEN, service, "symmetric", "malformed_bearer")

        try:
            client_id = self.store.lookup_access_token(token)
            if client_id is None:
                return self._reject(ResponseReason.INVALID_TOKEN, service, "symmetric", "unknown_token")
            if self.expected_client_id and client_id != self.expected_client_id:
                return self._reject(ResponseReason.UNAUTHORIZED_UNKNOWN_CLIENT, service,
                                    "symmetric", "unexpected_client", client_key=client_id)

            secret = self.store.get_client_secret(client_id)
            if secret is None:
                return self._reject(ResponseReason.UNAUTHORIZED_UNKNOWN_CLIENT, service,
                                    "symmetric", "unknown_client", client_key=client_id)

            verified = self.signer.verify_symmetric_signature(
                request.method, request.path, token, request.body, timestamp,
                signature, secret=secret
            )
            if not verified:
                return self._reject(ResponseReason.UNAUTHORIZED_SIGNATURE, service,
                                    "symmetric", "bad_signature", client_key=client_id)

            if not self.store.claim_external_id(external_id):
                return self._reject(ResponseReason.DUPLICATE_EXTERNAL_ID, service,
                                    "symmetric", "replayed_external_id", external_id=external_id)
        except (PersistenceTransientError, ConfigurationError) as e:
            return self._broken(e, service, "symmetric")
        except (UnicodeDecodeError, ValueError) as e:
            # body could not be canonicalized
            logger.info(f"[SNAP-IN-001] Body not canonicalizable | error={type(e).__name__}")
            return self._reject(ResponseReason.BAD_REQUEST, service, "symmetric", "bad_body")

        record_inbound_verification("symmetric", "accepted")
        logger.debug(
            f"[SNAP-IN] Callback verified | client_id={client_id} | "
            f"path={request.path} | external_id={external_id}"
        )
        return VerificationResult(
            accepted=True,
            response=bank_response(ResponseReason.SUCCESS, service),
            client_id=client_id,
            access_token=token,
        )

    # ========================================================================
    # Rejection helpers
    # ========================================================================

    def _reject(
        self,
        reason: ResponseReason,
        service: ServiceCode,
        kind: str,
        outcome: str,
        **context
    ) -> VerificationResult:
        record_inbound_verification(kind, outcome)
        ctx = " | ".join(f"{k}={v}" for k, v in context.items())
        logger.info(
            f"[SNAP-IN-001] Request rejected | kind={kind} | reason={outcome}"
            + (f" | {ctx}" if ctx else "")
        )
        return VerificationResult(
            accepted=False,
            response=bank_response(reason, service),
            details={"reason": outcome, **context},
        )

    def _missing(self, header: str, service: ServiceCode, kind: str) -> VerificationResult:
        result = self._reject(ResponseReason.MISSING_MANDATORY_FIELD, service, kind,
                              "missing_header", header=header)
        result.response = result.response.with_detail(header)
        return result

    def _invalid_format(self, header: str, service: ServiceCode, kind: str) -> VerificationResult:
        result = self._reject(ResponseReason.INVALID_FIELD_FORMAT, service, kind,
                              "invalid_format", header=header)
        result.response = result.response.with_detail(header)
        return result

    def _broken(self, error: Exception, service: ServiceCode, kind: str) -> VerificationResult:
        logger.error(
            f"[SNAP-IN-002] Verifier failure | kind={kind} | error={error}"
        )
        record_inbound_verification(kind, "verifier_error")
        return VerificationResult(
            accepted=False,
            response=bank_response(ResponseReason.GENERAL_ERROR, service),
            details={"reason": "verifier_error", "error_kind": getattr(error, "kind", None)},
        )
