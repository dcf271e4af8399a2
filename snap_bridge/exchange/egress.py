# ============================================================================
# SNAP Bank Bridge v1.0.0
# Outbound Request Pipeline - Sign, Send, Classify
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Every call to the bank goes through this pipeline
#
# SOVEREIGN MANDATE:
#   - Asymmetric signature ONLY on the access-token call
#   - Symmetric signature on every other call
#   - The bytes that are signed are the bytes that are sent
#   - Bounded request timeout (configurable, default 5s)
#   - Bank rejections and network failures are distinct error kinds
#
# Error Codes:
#   - SNAP-BNK-001: Bank returned a non-200 envelope
#   - SNAP-NET-001: Connection failure or timeout
#   - SNAP-NET-002: Response body malformed
#
# ============================================================================

import itertools
import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import requests
from pydantic import ValidationError
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import RequestException, Timeout

from snap_bridge.errors import ProtocolRejection, TransportError
from snap_bridge.exchange.error_codes import describe_code
from snap_bridge.exchange.models import (
    GRANT_TYPE_CLIENT_CREDENTIALS,
    AccessTokenResponse,
    BankErrorEnvelope,
)
from snap_bridge.observability.metrics import record_outbound_request
from snap_bridge.security.canonicalizer import serialize_body
from snap_bridge.security.signer import SnapSigner

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_ACCESS_TOKEN_PATH = "/openapi/v1.0/access-token/b2b"
JSON_CONTENT_TYPE = "application/json"


def rfc3339_now() -> str:
    """Local time, second precision, with numeric offset."""
    return datetime.now().astimezone().isoformat(timespec="seconds")


class ExternalIdGenerator:
    """
    Numeric X-EXTERNAL-ID values, unique within the process.

    Unix seconds followed by a zero-padded rolling counter, so two calls in
    the same second never collide.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def next_id(self) -> str:
        with self._lock:
            seq = next(self._counter) % 1_000_000
        return f"{int(self._clock())}{seq:06d}"


class EgressPipeline:
    """
    Outbound SNAP request pipeline.

    Example Usage:
        pipeline = EgressPipeline(signer, base_url="https://sandbox.bank.co.id")
        token = pipeline.request_access_token()
        result = pipeline.send("POST", "/openapi/v1.0/transfer-va/inquiry",
                               body=payload, access_token=token.access_token)
    """

    def __init__(
        self,
        signer: SnapSigner,
        base_url: str,
        access_token_path: str = DEFAULT_ACCESS_TOKEN_PATH,
        app_host: str = "",
        partner_id: str = "",
        channel_id: str = "",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        timestamp_factory: Callable[[], str] = rfc3339_now,
        external_ids: Optional[ExternalIdGenerator] = None
    ) -> None:
        self.signer = signer
        self.base_url = base_url.rstrip("/")
        self.access_token_path = access_token_path
        self.app_host = app_host
        self.partner_id = partner_id
        self.channel_id = channel_id
        self.timeout = timeout
        self._session = session or requests.Session()
        self._timestamp = timestamp_factory
        self._external_ids = external_ids or ExternalIdGenerator()

        logger.info(
            f"[SNAP-EGRESS] Pipeline initialized | base_url={self.base_url} | "
            f"timeout={timeout}s | client_id={signer.client_id}"
        )

    # ========================================================================
    # Header Construction
    # ========================================================================

    def build_access_token_headers(
        self,
        headers: Optional[Dict[str, str]] = None,
        timestamp: Optional[str] = None
    ) -> Dict[str, str]:
        """Headers for the token-issuance call (asymmetric signature)."""
        timestamp = timestamp or self._timestamp()
        result = dict(headers or {})
        result.setdefault("Content-Type", JSON_CONTENT_TYPE)
        result["X-TIMESTAMP"] = timestamp
        result["X-CLIENT-KEY"] = self.signer.client_id
        result["X-SIGNATURE"] = self.signer.create_asymmetric_signature(timestamp)
        return result

    def build_general_headers(
        self,
        method: str,
        relative_url: str,
        body: bytes,
        access_token: str,
        headers: Optional[Dict[str, str]] = None,
        timestamp: Optional[str] = None,
        external_id: Optional[str] = None
    ) -> Dict[str, str]:
        """Headers for every authenticated call (symmetric signature)."""
        timestamp = timestamp or self._timestamp()
        signature = self.signer.create_symmetric_signature(
            method, relative_url, access_token, body, timestamp
        )

        result = dict(headers or {})
        result.setdefault("Content-Type", JSON_CONTENT_TYPE)
        result["Authorization"] = f"Bearer {access_token}"
        result["X-TIMESTAMP"] = timestamp
        result["X-CLIENT-KEY"] = self.signer.client_id
        result["X-SIGNATURE"] = signature
        result["ORIGIN"] = self.app_host
        result["X-EXTERNAL-ID"] = external_id or self._external_ids.next_id()
        if self.partner_id:
            result["X-PARTNER-ID"] = self.partner_id
        if self.channel_id:
            result["CHANNEL-ID"] = self.channel_id
        return result

    # ========================================================================
    # Operations
    # ========================================================================

    def request_access_token(self) -> AccessTokenResponse:
        """
        Obtain a B2B bearer token from the bank.

        Raises:
            ProtocolRejection: Bank refused the request
            TransportError: Network failure or malformed response
        """
        body = serialize_body({"grantType": GRANT_TYPE_CLIENT_CREDENTIALS})
        headers = self.build_access_token_headers()

        payload = self._execute("POST", self.access_token_path, body, headers, "access_token")
        try:
            return AccessTokenResponse.model_validate(payload)
        except ValidationError as e:
            record_outbound_request("access_token", "transport_error")
            logger.error(
                f"[SNAP-NET-002] Access-token response failed validation | "
                f"errors={e.error_count()}"
            )
            raise TransportError(
                "Access-token response missing required fields",
                error_code="SNAP-NET-002"
            ) from e

    def send(
        self,
        method: str,
        relative_url: str,
        body: Any = None,
        access_token: str = "",
        headers: Optional[Dict[str, str]] = None,
        external_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Send a symmetric-signed request.

        Args:
            method: HTTP method
            relative_url: Path plus optional query, relative to base_url
            body: dict/list (serialized minified), or raw JSON bytes/str
            access_token: Bearer token from the token manager

        Returns:
            Parsed JSON body of the 200 response
        """
        method = method.upper()
        data = serialize_body(body)
        signed_headers = self.build_general_headers(
            method, relative_url, data, access_token,
            headers=headers, external_id=external_id
        )
        return self._execute(method, relative_url, data, signed_headers, "api")

    # ========================================================================
    # Transport and Classification
    # ========================================================================

    def _execute(
        self,
        method: str,
        relative_url: str,
        data: bytes,
        headers: Dict[str, str],
        operation: str
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{relative_url}"
        started = time.monotonic()
        try:
            response = self._session.request(
                method,
                url,
                data=data or None,
                headers=headers,
                timeout=self.timeout,
            )
        except Timeout as e:
            record_outbound_request(operation, "transport_error")
            logger.error(
                f"[SNAP-NET-001] Request timeout | method={method} | "
                f"url={relative_url} | timeout={self.timeout}s"
            )
            raise TransportError(f"Timeout after {self.timeout}s calling {relative_url}") from e
        except RequestsConnectionError as e:
            record_outbound_request(operation, "transport_error")
            logger.error(
                f"[SNAP-NET-001] Connection failed | method={method} | url={relative_url}"
            )
            raise TransportError(f"Connection failed calling {relative_url}") from e
        except RequestException as e:
            record_outbound_request(operation, "transport_error")
            logger.error(
                f"[SNAP-NET-001] Request failed | method={method} | "
                f"url={relative_url} | error={type(e).__name__}"
            )
            raise TransportError(f"Request failed calling {relative_url}") from e

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.debug(
            f"[SNAP-EGRESS] Response received | method={method} | url={relative_url} | "
            f"status={response.status_code} | elapsed_ms={elapsed_ms}"
        )
        return self._classify(response, relative_url, operation)

    def _classify(
        self,
        response: requests.Response,
        relative_url: str,
        operation: str
    ) -> Dict[str, Any]:
        if response.status_code == 200:
            try:
                payload = response.json()
            except ValueError as e:
                record_outbound_request(operation, "transport_error")
                logger.error(
                    f"[SNAP-NET-002] Success response is not JSON | url={relative_url}"
                )
                raise TransportError(
                    f"Malformed success body from {relative_url}",
                    error_code="SNAP-NET-002"
                ) from e
            if not isinstance(payload, dict):
                record_outbound_request(operation, "transport_error")
                raise TransportError(
                    f"Success body from {relative_url} is not a JSON object",
                    error_code="SNAP-NET-002"
                )
            record_outbound_request(operation, "success")
            return payload

        try:
            envelope = BankErrorEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            # pydantic's ValidationError is a ValueError; both mean no envelope
            record_outbound_request(operation, "transport_error")
            logger.error(
                f"[SNAP-NET-002] Error response without bank envelope | "
                f"url={relative_url} | status={response.status_code}"
            )
            raise TransportError(
                f"HTTP {response.status_code} from {relative_url} without a bank envelope",
                error_code="SNAP-NET-002",
                details={"http_status": response.status_code},
            ) from e

        record_outbound_request(operation, "rejected")
        logger.warning(
            f"[SNAP-BNK-001] Bank rejected request | url={relative_url} | "
            f"status={response.status_code} | responseCode={envelope.response_code} | "
            f"responseMessage={envelope.response_message}"
        )
        raise ProtocolRejection(
            http_status=response.status_code,
            response_code=envelope.response_code,
            response_message=envelope.response_message,
            bank_message=describe_code(envelope.response_code),
            details={"envelope": envelope.model_dump(by_alias=True)},
        )

    def close(self) -> None:
        """Close HTTP session."""
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
