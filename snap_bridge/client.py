# ============================================================================
# SNAP Bank Bridge v1.0.0
# SNAP Client - Outbound Facade
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Wires config -> signer -> pipeline -> token manager for the thin
#          per-operation wrappers (balance inquiry, transfer, ...)
#
# SOVEREIGN MANDATE:
#   - Key material loaded before the client exists (fail at startup)
#   - An "Invalid Token" rejection drops the cached token and retries ONCE
#   - Transport errors are surfaced, never retried here
#
# ============================================================================

import logging
from typing import Any, Dict, Optional

import requests

from snap_bridge.auth.token_manager import AccessTokenManager
from snap_bridge.config import SnapConfig
from snap_bridge.errors import ProtocolRejection
from snap_bridge.exchange.egress import EgressPipeline
from snap_bridge.security.signer import SnapSigner

logger = logging.getLogger(__name__)


class SnapClient:
    """
    Signed SNAP client.

    Example Usage:
        with SnapClient.from_config(SnapConfig.from_environment()) as client:
            inquiry = client.send("POST", "/openapi/v1.0/balance-inquiry", body)
    """

    def __init__(self, pipeline: EgressPipeline, tokens: AccessTokenManager):
        self.pipeline = pipeline
        self.tokens = tokens

    @classmethod
    def from_config(
        cls,
        config: SnapConfig,
        session: Optional[requests.Session] = None
    ) -> "SnapClient":
        signer = SnapSigner.from_paths(
            client_id=config.client_id,
            client_secret=config.client_secret,
            private_key_path=config.private_key_path,
            public_key_path=config.bank_public_key_path,
        )
        pipeline = EgressPipeline(
            signer,
            base_url=config.base_url,
            access_token_path=config.access_token_url,
            app_host=config.app_host,
            partner_id=config.partner_id,
            channel_id=config.channel_id,
            timeout=config.request_timeout_seconds,
            session=session,
        )
        tokens = AccessTokenManager(
            pipeline.request_access_token,
            lease_seconds=config.token_lease_seconds,
            refresh_margin_seconds=config.token_refresh_margin_seconds,
        )
        return cls(pipeline, tokens)

    def send(
        self,
        method: str,
        relative_url: str,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """
        Send an authenticated request with a valid bearer token.

        Raises:
            ProtocolRejection: Bank refused (after one token refresh if the
                refusal was "Invalid Token")
            TransportError: Network failure
        """
        token = self.tokens.get_token()
        try:
            return self.pipeline.send(method, relative_url, body, token, headers=headers)
        except ProtocolRejection as e:
            if not e.is_invalid_token:
                raise
            logger.warning(
                f"[SNAP-CLIENT] Bank reported invalid token, renewing once | "
                f"url={relative_url} | responseCode={e.response_code}"
            )

        self.tokens.invalidate(token)
        token = self.tokens.get_token()
        return self.pipeline.send(method, relative_url, body, token, headers=headers)

    def close(self) -> None:
        self.pipeline.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
