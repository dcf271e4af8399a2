"""
============================================================================
Unit Tests - Bank Error Taxonomy and Error Kinds
============================================================================
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from snap_bridge.errors import (
    ConfigurationError,
    CryptographicError,
    ErrorKind,
    KeyLoadError,
    PersistenceTransientError,
    ProtocolRejection,
    SigningError,
    SnapError,
    TransportError,
)
from snap_bridge.exchange.error_codes import (
    BANK_ERROR_CODES,
    BankResponse,
    ResponseReason,
    ServiceCode,
    bank_response,
    describe_code,
)


class TestBankErrorCodes:

    def test_known_codes(self):
        assert describe_code("4012401") == "Invalid Token (B2B)"
        assert describe_code("2002400") == "Success"
        assert describe_code("5002400") == "General Error"

    def test_unknown_code_is_empty(self):
        assert describe_code("9999999") == ""

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            BANK_ERROR_CODES["4012401"] = "changed"

    def test_all_codes_are_seven_digits(self):
        assert all(len(code) == 7 and code.isdigit() for code in BANK_ERROR_CODES)


class TestBankResponse:

    @pytest.mark.parametrize("reason,service,expected", [
        (ResponseReason.SUCCESS, ServiceCode.BILL_PRESENTMENT, "2002400"),
        (ResponseReason.INVALID_TOKEN, ServiceCode.BILL_PRESENTMENT, "4012401"),
        (ResponseReason.VA_PAID, ServiceCode.PAYMENT_FLAG, "4042514"),
        (ResponseReason.DUPLICATE_EXTERNAL_ID, ServiceCode.PAYMENT_FLAG, "4092500"),
        (ResponseReason.MISSING_MANDATORY_FIELD, ServiceCode.ACCESS_TOKEN, "4007302"),
        (ResponseReason.GENERAL_ERROR, ServiceCode.ACCESS_TOKEN, "5007300"),
    ])
    def test_code_layout(self, reason, service, expected):
        response = bank_response(reason, service)
        assert response.response_code == expected
        assert response.http_status == int(expected[:3])

    def test_for_service_rewrites_segment(self):
        response = bank_response(ResponseReason.UNAUTHORIZED_SIGNATURE, ServiceCode.BILL_PRESENTMENT)
        rewritten = response.for_service(ServiceCode.PAYMENT_FLAG)
        assert rewritten.response_code == "4012500"
        assert rewritten.response_message == response.response_message

    def test_with_detail(self):
        response = bank_response(ResponseReason.MISSING_MANDATORY_FIELD, ServiceCode.PAYMENT_FLAG)
        assert response.with_detail("X-TIMESTAMP").response_message == \
            "Invalid Mandatory Field [X-TIMESTAMP]"

    def test_envelope(self):
        response = BankResponse(200, "2002500", "Success")
        assert response.ok
        assert response.to_envelope() == {"responseCode": "2002500", "responseMessage": "Success"}

    @pytest.mark.parametrize("service,code,message", [
        (ServiceCode.ACCESS_TOKEN, "2007300", "Successful"),
        (ServiceCode.BILL_PRESENTMENT, "2002400", "Success"),
        (ServiceCode.PAYMENT_FLAG, "2002500", "Success"),
    ])
    def test_success_message_per_service(self, service, code, message):
        response = bank_response(ResponseReason.SUCCESS, service)
        assert response.to_envelope() == {"responseCode": code, "responseMessage": message}
        assert describe_code(code) == message


class TestErrorKinds:

    @pytest.mark.parametrize("error,kind", [
        (ConfigurationError("x"), ErrorKind.CONFIGURATION),
        (KeyLoadError("x"), ErrorKind.CONFIGURATION),
        (CryptographicError("x"), ErrorKind.CRYPTOGRAPHIC),
        (SigningError("x"), ErrorKind.CRYPTOGRAPHIC),
        (ProtocolRejection(400, "4002400", "Bad Request"), ErrorKind.PROTOCOL_REJECTION),
        (TransportError("x"), ErrorKind.TRANSPORT),
        (PersistenceTransientError("x"), ErrorKind.PERSISTENCE_TRANSIENT),
    ])
    def test_kind(self, error, kind):
        assert isinstance(error, SnapError)
        assert error.kind is kind

    def test_message_carries_code(self):
        assert str(TransportError("boom")) == "[SNAP-NET-001] boom"

    def test_retryable(self):
        assert TransportError("x").retryable
        assert PersistenceTransientError("x").retryable
        assert not ConfigurationError("x").retryable

    def test_protocol_rejection_preserves_bank_fields(self):
        error = ProtocolRejection(401, "4012401", "Invalid Token (B2B)")
        assert error.http_status == 401
        assert error.response_code == "4012401"
        assert error.response_message == "Invalid Token (B2B)"
        assert error.category == "2401"
        assert error.is_invalid_token

    def test_signature_rejection_is_not_invalid_token(self):
        assert not ProtocolRejection(401, "4012400", "Unauthorized").is_invalid_token

    def test_cause_chain(self):
        try:
            try:
                raise OSError("disk")
            except OSError as e:
                raise PersistenceTransientError("store down") from e
        except PersistenceTransientError as err:
            assert isinstance(err.__cause__, OSError)
