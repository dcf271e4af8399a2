"""
============================================================================
Unit Tests - Inbound Verification Pipeline
============================================================================

Tests IngressVerifier against requests signed by the bank's side:
- Asymmetric (access-token) verification and its rejections
- Symmetric callback verification: headers, formats, token, signature
- X-EXTERNAL-ID replay protection (claimed only after authentication)
- Store outages answered with General Error, never acceptance
============================================================================
"""

import os
import sys
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from snap_bridge.api.ingress import IngressVerifier, InboundRequest, parse_rfc3339
from snap_bridge.exchange.error_codes import ServiceCode
from snap_bridge.storage.token_store import RedisTokenStore

TIMESTAMP = "2024-05-01T10:15:30+07:00"
PATH = "/openapi/v1.0/transfer-va/payment?b=2&a=1"
TOKEN = "issued-token-abc"
BODY = b'{\n  "virtualAccountNo": "  0001",\n  "paidAmount": {"value": "10000.00"}\n}'


@pytest.fixture
def store(fake_redis, credentials):
    store = RedisTokenStore(fake_redis)
    store.register_client(credentials["bank_client_id"], credentials["bank_client_secret"])
    store.store_access_token(TOKEN, credentials["bank_client_id"], 900)
    return store


@pytest.fixture
def verifier(partner_signer, store, credentials):
    return IngressVerifier(partner_signer, store, expected_client_id=credentials["bank_client_id"])


def access_token_request(bank_signer, **overrides):
    headers = {
        "X-TIMESTAMP": TIMESTAMP,
        "X-CLIENT-KEY": bank_signer.client_id,
        "X-SIGNATURE": bank_signer.create_asymmetric_signature(TIMESTAMP),
    }
    headers.update(overrides)
    headers = {k: v for k, v in headers.items() if v is not None}
    return InboundRequest("POST", "/openapi/v1.0/access-token/b2b", headers,
                          b'{"grantType":"client_credentials"}')


def callback_request(bank_signer, external_id="1714530930000001", body=BODY, path=PATH,
                     token=TOKEN, **overrides):
    signature = bank_signer.create_symmetric_signature("POST", path, token, body, TIMESTAMP)
    headers = {
        "X-EXTERNAL-ID": external_id,
        "X-TIMESTAMP": TIMESTAMP,
        "Authorization": f"Bearer {token}",
        "X-SIGNATURE": signature,
        "X-PARTNER-ID": "12345",
        "CHANNEL-ID": "95231",
    }
    headers.update(overrides)
    headers = {k: v for k, v in headers.items() if v is not None}
    return InboundRequest("post", path, headers, body)


class TestParseRFC3339:

    @pytest.mark.parametrize("value", [
        "2024-05-01T10:15:30+07:00",
        "2024-05-01T03:15:30Z",
        "2024-05-01t03:15:30z",
        "2024-05-01T03:15:30.123+00:00",
        "2024-05-01T03:15:30.123456789Z",
    ])
    def test_valid(self, value):
        assert parse_rfc3339(value).tzinfo is not None

    @pytest.mark.parametrize("value", [
        "", "2024-05-01", "2024-05-01T10:15:30", "2024-05-01 10:15:30+07:00",
        "2024-13-01T10:15:30+07:00", "1714530930",
    ])
    def test_invalid(self, value):
        assert parse_rfc3339(value) is None


class TestInboundRequest:

    def test_headers_case_insensitive(self):
        request = InboundRequest("post", "/x", {"x-timestamp": " t "})
        assert request.method == "POST"
        assert request.header("X-TIMESTAMP") == "t"
        assert request.header("X-MISSING") == ""


class TestAsymmetricVerification:

    def test_accepts_valid_request(self, verifier, bank_signer):
        result = verifier.verify_access_token_request(access_token_request(bank_signer))
        assert result.accepted
        assert result.client_id == bank_signer.client_id
        assert result.response.response_code == "2007300"

    @pytest.mark.parametrize("header", ["X-CLIENT-KEY", "X-TIMESTAMP", "X-SIGNATURE"])
    def test_missing_header(self, verifier, bank_signer, header):
        result = verifier.verify_access_token_request(
            access_token_request(bank_signer, **{header: None})
        )
        assert not result.accepted
        assert result.response.response_code == "4007302"
        assert result.response.response_message == f"Invalid Mandatory Field [{header}]"

    def test_bad_timestamp(self, verifier, bank_signer):
        result = verifier.verify_access_token_request(
            access_token_request(bank_signer, **{"X-TIMESTAMP": "yesterday"})
        )
        assert result.response.response_code == "4007301"

    def test_unknown_client(self, partner_signer, store, bank_signer):
        verifier = IngressVerifier(partner_signer, store)
        result = verifier.verify_access_token_request(
            access_token_request(bank_signer, **{"X-CLIENT-KEY": "stranger"})
        )
        assert not result.accepted
        assert result.response.response_message == "Unauthorized [Unknown client]"
        assert result.response.http_status == 401

    def test_unexpected_client(self, verifier, bank_signer, store):
        store.register_client("other-bank", "secret")
        result = verifier.verify_access_token_request(
            access_token_request(bank_signer, **{"X-CLIENT-KEY": "other-bank"})
        )
        assert not result.accepted

    def test_bad_signature(self, verifier, bank_signer):
        forged = bank_signer.create_asymmetric_signature("2024-05-01T10:15:31+07:00")
        result = verifier.verify_access_token_request(
            access_token_request(bank_signer, **{"X-SIGNATURE": forged})
        )
        assert not result.accepted
        assert result.response.response_message == "Unauthorized [Signature]"

    def test_malformed_signature_is_unauthorized(self, verifier, bank_signer):
        result = verifier.verify_access_token_request(
            access_token_request(bank_signer, **{"X-SIGNATURE": "%%%"})
        )
        assert not result.accepted
        assert result.response.http_status == 401

    def test_store_outage_is_general_error(self, partner_signer, bank_signer):
        broken = MagicMock()
        broken.hget.side_effect = RedisConnectionError("down")
        verifier = IngressVerifier(partner_signer, RedisTokenStore(broken))
        result = verifier.verify_access_token_request(access_token_request(bank_signer))
        assert not result.accepted
        assert result.response.response_code == "5007300"


class TestSymmetricVerification:

    def test_accepts_valid_callback(self, verifier, bank_signer):
        result = verifier.verify_symmetric_request(callback_request(bank_signer),
                                                   ServiceCode.PAYMENT_FLAG)
        assert result.accepted
        assert result.access_token == TOKEN
        assert result.response.response_code == "2002500"

    def test_replayed_external_id_is_conflict(self, verifier, bank_signer):
        first = verifier.verify_symmetric_request(callback_request(bank_signer),
                                                  ServiceCode.PAYMENT_FLAG)
        second = verifier.verify_symmetric_request(callback_request(bank_signer),
                                                   ServiceCode.PAYMENT_FLAG)
        assert first.accepted
        assert not second.accepted
        assert second.response.response_code == "4092500"

    def test_rejected_request_does_not_burn_external_id(self, verifier, bank_signer, fake_redis):
        bad = callback_request(bank_signer, **{"X-SIGNATURE": "AAAA"})
        assert not verifier.verify_symmetric_request(bad, ServiceCode.PAYMENT_FLAG).accepted
        good = callback_request(bank_signer)
        assert verifier.verify_symmetric_request(good, ServiceCode.PAYMENT_FLAG).accepted

    @pytest.mark.parametrize("header", ["X-EXTERNAL-ID", "X-TIMESTAMP", "Authorization",
                                        "X-SIGNATURE"])
    def test_missing_header(self, verifier, bank_signer, header):
        result = verifier.verify_symmetric_request(
            callback_request(bank_signer, **{header: None}), ServiceCode.BILL_PRESENTMENT
        )
        assert result.response.response_code == "4002402"
        assert header in result.response.response_message

    @pytest.mark.parametrize("external_id", ["12ab", "1" * 37, "-1", "١٢٣"])
    def test_bad_external_id(self, verifier, bank_signer, external_id):
        result = verifier.verify_symmetric_request(
            callback_request(bank_signer, external_id=external_id), ServiceCode.BILL_PRESENTMENT
        )
        assert result.response.response_code == "4002401"
        assert result.response.response_message == "Invalid Field Format [X-EXTERNAL-ID]"

    def test_bad_timestamp(self, verifier, bank_signer):
        result = verifier.verify_symmetric_request(
            callback_request(bank_signer, **{"X-TIMESTAMP": "2024-05-01"}),
            ServiceCode.BILL_PRESENTMENT
        )
        assert result.response.response_message == "Invalid Field Format [X-TIMESTAMP]"

    def test_unknown_token(self, verifier, bank_signer):
        result = verifier.verify_symmetric_request(
            callback_request(bank_signer, token="never-issued"), ServiceCode.BILL_PRESENTMENT
        )
        assert result.response.response_code == "4012401"

    def test_authorization_without_bearer_prefix(self, verifier, bank_signer):
        result = verifier.verify_symmetric_request(
            callback_request(bank_signer, **{"Authorization": TOKEN}), ServiceCode.BILL_PRESENTMENT
        )
        assert not result.accepted
        assert result.response.response_code == "4012401"

    def test_token_issued_to_other_client(self, verifier, bank_signer, store):
        store.register_client("other-bank", "secret")
        store.store_access_token("other-token", "other-bank", 900)
        result = verifier.verify_symmetric_request(
            callback_request(bank_signer, token="other-token"), ServiceCode.BILL_PRESENTMENT
        )
        assert not result.accepted
        assert result.response.http_status == 401

    def test_tampered_body(self, verifier, bank_signer):
        request = callback_request(bank_signer)
        request.body = request.body.replace(b"10000.00", b"90000.00")
        result = verifier.verify_symmetric_request(request, ServiceCode.PAYMENT_FLAG)
        assert not result.accepted
        assert result.response.response_message == "Unauthorized [Signature]"

    def test_tampered_path(self, verifier, bank_signer):
        request = callback_request(bank_signer)
        request.path = "/openapi/v1.0/transfer-va/payment?a=1&b=3"
        assert not verifier.verify_symmetric_request(request, ServiceCode.PAYMENT_FLAG).accepted

    def test_reordered_query_still_verifies(self, verifier, bank_signer):
        request = callback_request(bank_signer)
        request.path = "/openapi/v1.0/transfer-va/payment?a=1&b=2"
        assert verifier.verify_symmetric_request(request, ServiceCode.PAYMENT_FLAG).accepted

    def test_non_utf8_body_is_bad_request(self, verifier, bank_signer):
        request = callback_request(bank_signer)
        request.body = b"\xff\xfe"
        result = verifier.verify_symmetric_request(request, ServiceCode.PAYMENT_FLAG)
        assert result.response.response_code == "4002500"

    def test_store_outage_is_general_error(self, partner_signer, bank_signer):
        broken = MagicMock()
        broken.get.side_effect = RedisConnectionError("down")
        verifier = IngressVerifier(partner_signer, RedisTokenStore(broken))
        result = verifier.verify_symmetric_request(callback_request(bank_signer),
                                                   ServiceCode.PAYMENT_FLAG)
        assert not result.accepted
        assert result.response.response_code == "5002500"
