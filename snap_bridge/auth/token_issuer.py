# ============================================================================
# SNAP Bank Bridge v1.0.0
# Access-Token Issuer - Bearer Tokens We Hand to the Bank
# ============================================================================
#
# Purpose: The bank authenticates to our callback endpoints with a bearer
#          token obtained from us. This issues and stores those tokens.
#
# Flow:
#   1. Body must be {"grantType": "client_credentials"}
#   2. Asymmetric verification of the caller (IngressVerifier)
#   3. 64-char random token stored as access-tokens:<token> -> client_id
#
# ============================================================================

import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError

from snap_bridge.api.ingress import IngressVerifier, InboundRequest
from snap_bridge.config import SnapConfig
from snap_bridge.errors import PersistenceTransientError
from snap_bridge.exchange.error_codes import BankResponse, ResponseReason, ServiceCode, bank_response
from snap_bridge.exchange.models import AccessTokenRequest
from snap_bridge.storage.token_store import RedisTokenStore

logger = logging.getLogger(__name__)

TOKEN_LENGTH = 64
DEFAULT_ISSUED_TOKEN_TTL_SECONDS = 900


def generate_access_token() -> str:
    """URL-safe random token of exactly TOKEN_LENGTH characters."""
    return secrets.token_urlsafe(48)[:TOKEN_LENGTH]


@dataclass
class IssueResult:
    response: BankResponse
    body: Dict[str, Any]

    @property
    def http_status(self) -> int:
        return self.response.http_status


class AccessTokenIssuer:
    """Issues bearer tokens to authenticated bank callers."""

    def __init__(
        self,
        verifier: IngressVerifier,
        store: RedisTokenStore,
        ttl_seconds: int = DEFAULT_ISSUED_TOKEN_TTL_SECONDS
    ) -> None:
        self.verifier = verifier
        self.store = store
        self.ttl_seconds = int(ttl_seconds)

    @classmethod
    def from_config(
        cls,
        config: SnapConfig,
        verifier: IngressVerifier,
        store: Optional[RedisTokenStore] = None
    ) -> "AccessTokenIssuer":
        return cls(
            verifier,
            store if store is not None else verifier.store,
            ttl_seconds=config.issued_token_ttl_seconds,
        )

    def issue(self, request: InboundRequest) -> IssueResult:
        service = ServiceCode.ACCESS_TOKEN

        try:
            AccessTokenRequest.model_validate(json.loads(request.body or b"null"))
        except (ValueError, ValidationError):
            logger.info("[SNAP-ISSUE] Token request body rejected | reason=grant_type")
            return self._rejected(
                bank_response(ResponseReason.INVALID_FIELD_FORMAT, service).with_detail("grantType")
            )

        verdict = self.verifier.verify_access_token_request(request, service)
        if not verdict.accepted:
            return self._rejected(verdict.response)

        token = generate_access_token()
        try:
            self.store.store_access_token(token, verdict.client_id, self.ttl_seconds)
        except PersistenceTransientError:
            return self._rejected(bank_response(ResponseReason.GENERAL_ERROR, service))

        logger.info(
            f"[SNAP-ISSUE] Access token issued | client_id={verdict.client_id} | "
            f"ttl_s={self.ttl_seconds} | token=[REDACTED]"
        )
        response = bank_response(ResponseReason.SUCCESS, service)
        body = response.to_envelope()
        body.update({
            "accessToken": token,
            "tokenType": "bearer",
            "expiresIn": str(self.ttl_seconds),
        })
        return IssueResult(response=response, body=body)

    @staticmethod
    def _rejected(response: BankResponse) -> IssueResult:
        return IssueResult(response=response, body=response.to_envelope())
