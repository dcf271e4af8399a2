# ============================================================================
# SNAP Bank Bridge v1.0.0
# Bank Error Taxonomy - Static Response Code Table
# ============================================================================
#
# Purpose: Maps 7-character bank codes (<http3><service2><case2>) to
#          human-readable messages and builds the canned envelopes we
#          answer the bank with on inbound callbacks.
#
# The table is for messages only. Control flow uses the classification in
# snap_bridge.exchange.egress.
#
# ============================================================================

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping


BANK_ERROR_CODES: Mapping[str, str] = MappingProxyType({
    "4012401": "Invalid Token (B2B)",
    "4012400": "Unauthorized [Signature]",
    "4012403": "Unauthorized [Unknown client]",
    "4002402": "Invalid Mandatory Field",
    "4002401": "Invalid Field Format",
    "4092400": "Conflict",
    "2002400": "Success",
    "2002500": "Success",
    "2007300": "Successful",
    "4042414": "Paid Bill",
    "4042419": "Invalid Bill/Virtual Account",
    "4042412": "Invalid Bill/Virtual Account [Reason]",
    "4042512": "Invalid Bill/Virtual Account [Not Found]",
    "4002400": "Bad Request",
    "5002400": "General Error",
})


def describe_code(response_code: str) -> str:
    """Human message for a bank code, or empty string when unknown."""
    return BANK_ERROR_CODES.get(response_code, "")


class ServiceCode(str, Enum):
    """Two-digit service segment of a response code."""
    ACCESS_TOKEN = "73"
    BILL_PRESENTMENT = "24"
    PAYMENT_FLAG = "25"


class ResponseReason(Enum):
    """(http status, case code, message) for each outcome we report."""
    SUCCESS = (200, "00", "Success")
    INVALID_TOKEN = (401, "01", "Invalid Token (B2B)")
    UNAUTHORIZED_SIGNATURE = (401, "00", "Unauthorized [Signature]")
    UNAUTHORIZED_UNKNOWN_CLIENT = (401, "00", "Unauthorized [Unknown client]")
    MISSING_MANDATORY_FIELD = (400, "02", "Invalid Mandatory Field")
    INVALID_FIELD_FORMAT = (400, "01", "Invalid Field Format")
    DUPLICATE_EXTERNAL_ID = (409, "00", "Conflict")
    VA_PAID = (404, "14", "Paid Bill")
    VA_EXPIRED = (404, "19", "Invalid Bill/Virtual Account")
    VA_NOT_FOUND = (404, "12", "Invalid Bill/Virtual Account [Not Found]")
    BAD_REQUEST = (400, "00", "Bad Request")
    GENERAL_ERROR = (500, "00", "General Error")

    @property
    def http_status(self) -> int:
        return self.value[0]

    @property
    def case_code(self) -> str:
        return self.value[1]

    @property
    def message(self) -> str:
        return self.value[2]

    def message_for(self, service: "ServiceCode") -> str:
        return _SERVICE_MESSAGES.get((self, service), self.message)


# the access-token endpoint words its success differently from the callbacks
_SERVICE_MESSAGES: Mapping[Any, str] = MappingProxyType({
    (ResponseReason.SUCCESS, ServiceCode.ACCESS_TOKEN): "Successful",
})


@dataclass(frozen=True)
class BankResponse:
    """A bank-format response envelope plus the HTTP status to send it with."""
    http_status: int
    response_code: str
    response_message: str

    @property
    def ok(self) -> bool:
        return self.http_status == 200

    def for_service(self, service: ServiceCode) -> "BankResponse":
        """Rewrite the service segment (characters 3-4) of the code."""
        code = self.response_code
        return BankResponse(
            http_status=self.http_status,
            response_code=f"{code[:3]}{service.value}{code[5:]}",
            response_message=self.response_message,
        )

    def with_detail(self, detail: str) -> "BankResponse":
        """Append a bracketed detail, e.g. the missing header name."""
        return BankResponse(
            http_status=self.http_status,
            response_code=self.response_code,
            response_message=f"{self.response_message} [{detail}]",
        )

    def to_envelope(self) -> Dict[str, Any]:
        return {
            "responseCode": self.response_code,
            "responseMessage": self.response_message,
        }


def bank_response(reason: ResponseReason, service: ServiceCode) -> BankResponse:
    """Build the envelope for a reason within a service."""
    return BankResponse(
        http_status=reason.http_status,
        response_code=f"{reason.http_status}{service.value}{reason.case_code}",
        response_message=reason.message_for(service),
    )
