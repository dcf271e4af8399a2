"""
============================================================================
SNAP Bank Bridge v1.0.0
Callback API - Bank-facing Endpoints
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints:
    - Access-token endpoint: asymmetric signature (bank RSA key)
    - Callback endpoints: symmetric signature + bearer token we issued
Side Effects:
    - Stores issued tokens and seen X-EXTERNAL-ID values in the cache store
    - Hands verified payloads to injected handlers

SOVEREIGN MANDATE:
- Byte-perfect verification on the raw body (no parsing before auth)
- Every rejection answered with the bank envelope and matching HTTP status

FLOW:
1. Receive raw bytes
2. Verify (IngressVerifier) with the endpoint's service code
3. Parse JSON only after verification
4. Delegate to the handler; merge its reply into the success envelope

============================================================================
"""

import json
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from snap_bridge.api.ingress import IngressVerifier, InboundRequest, VerificationResult
from snap_bridge.auth.token_issuer import AccessTokenIssuer
from snap_bridge.errors import SnapError
from snap_bridge.exchange.error_codes import BankResponse, ResponseReason, ServiceCode, bank_response

logger = logging.getLogger(__name__)

DEFAULT_ACCESS_TOKEN_PATH = "/openapi/v1.0/access-token/b2b"
DEFAULT_BILL_PRESENTMENT_PATH = "/openapi/v1.0/transfer-va/inquiry"
DEFAULT_PAYMENT_FLAG_PATH = "/openapi/v1.0/transfer-va/payment"

CallbackHandler = Callable[[Dict[str, Any], VerificationResult], Dict[str, Any]]


def envelope_response(response: BankResponse, extra: Optional[Dict[str, Any]] = None) -> JSONResponse:
    content = response.to_envelope()
    if extra:
        content.update(extra)
    return JSONResponse(status_code=response.http_status, content=content)


async def to_inbound(request: Request) -> InboundRequest:
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    return InboundRequest(
        method=request.method,
        path=path,
        headers=dict(request.headers),
        body=await request.body(),
    )


def _reply_status(reply: Dict[str, Any], default: int) -> int:
    code = str(reply.get("responseCode", ""))
    if len(code) == 7 and code[:3].isdigit():
        return int(code[:3])
    return default


def create_callback_router(
    verifier: IngressVerifier,
    issuer: AccessTokenIssuer,
    bill_presentment_handler: CallbackHandler,
    payment_flag_handler: CallbackHandler,
    access_token_path: str = DEFAULT_ACCESS_TOKEN_PATH,
    bill_presentment_path: str = DEFAULT_BILL_PRESENTMENT_PATH,
    payment_flag_path: str = DEFAULT_PAYMENT_FLAG_PATH
) -> APIRouter:
    """
    Build the router the bank calls.

    Handlers receive the verified JSON payload and the verification result,
    and return extra response fields. A reply carrying its own responseCode
    (e.g. "4042414" Paid Bill) overrides the success envelope and its HTTP
    status is taken from the first three digits.
    """
    router = APIRouter(tags=["snap-callbacks"])

    @router.post(access_token_path)
    async def issue_access_token(request: Request) -> JSONResponse:
        inbound = await to_inbound(request)
        result = await run_in_threadpool(issuer.issue, inbound)
        return JSONResponse(status_code=result.http_status, content=result.body)

    async def handle_callback(
        request: Request,
        service: ServiceCode,
        handler: CallbackHandler
    ) -> JSONResponse:
        inbound = await to_inbound(request)
        verdict = await run_in_threadpool(verifier.verify_symmetric_request, inbound, service)
        if not verdict.accepted:
            return envelope_response(verdict.response)

        try:
            payload = json.loads(inbound.body or b"{}")
        except ValueError:
            return envelope_response(bank_response(ResponseReason.BAD_REQUEST, service))
        if not isinstance(payload, dict):
            return envelope_response(bank_response(ResponseReason.BAD_REQUEST, service))

        try:
            reply = await run_in_threadpool(handler, payload, verdict) or {}
        except SnapError as e:
            logger.error(
                f"[SNAP-CB-001] Callback handler failed | service={service.value} | "
                f"error={e.error_code} | kind={e.kind.value}"
            )
            return envelope_response(bank_response(ResponseReason.GENERAL_ERROR, service))

        success = bank_response(ResponseReason.SUCCESS, service)
        content = success.to_envelope()
        content.update(reply)
        return JSONResponse(
            status_code=_reply_status(reply, success.http_status),
            content=content,
        )

    @router.post(bill_presentment_path)
    async def bill_presentment(request: Request) -> JSONResponse:
        return await handle_callback(request, ServiceCode.BILL_PRESENTMENT, bill_presentment_handler)

    @router.post(payment_flag_path)
    async def payment_flag(request: Request) -> JSONResponse:
        return await handle_callback(request, ServiceCode.PAYMENT_FLAG, payment_flag_handler)

    return router
