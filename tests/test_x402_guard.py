# tests/test_x402_guard.py
"""
Unit tests for the x402 payment guard.
"""
import base64
import json
import pytest
from unittest.mock import MagicMock

from fastapi import Request
from requests.exceptions import ConnectionError
from starlette.datastructures import Headers

from paygate.x402.facilitator import (
    FacilitatorClient,
    FacilitatorUnavailable,
    SettleResult,
    VerifyResult,
)
from paygate.x402.guard import (
    GuardStage,
    PaymentDenied,
    PaymentErrorKind,
    PaymentGranted,
    PaymentGuard,
    encode_payment_response,
    extract_payment_header,
    get_client_ip,
)
from paygate.x402.requirements import create_payment_requirements

WALLET = "0xSellerWallet000000000000000000000000000001"
PAYMENT_HEADER = "eyJzaWduZWQiOiJwYXltZW50In0="


@pytest.fixture
def requirements():
    return create_payment_requirements(WALLET)


@pytest.fixture
def facilitator():
    mock_facilitator = MagicMock(spec=FacilitatorClient)
    mock_facilitator.verify.return_value = VerifyResult(is_valid=True)
    mock_facilitator.settle.return_value = SettleResult(event="payment.settled", tx_hash="0xdeadbeef")
    return mock_facilitator


@pytest.fixture
def guard(facilitator):
    return PaymentGuard(facilitator)


class TestExtractPaymentHeader:
    """Test X-PAYMENT header lookup."""

    def test_plain_mapping(self):
        """Finds the header in a plain dict."""
        assert extract_payment_header({"X-PAYMENT": "abc"}) == "abc"

    def test_case_insensitive(self):
        """Header name matching ignores case."""
        assert extract_payment_header({"x-payment": "abc"}) == "abc"
        assert extract_payment_header({"X-Payment": "abc"}) == "abc"

    def test_starlette_headers(self):
        """Reads starlette Headers via raw bytes."""
        headers = Headers(raw=[(b"x-payment", b"abc")])
        assert extract_payment_header(headers) == "abc"

    def test_missing(self):
        """Absent header returns None."""
        assert extract_payment_header({"Accept": "application/json"}) is None

    def test_blank_is_missing(self):
        """Blank header counts as absent."""
        assert extract_payment_header({"X-PAYMENT": "   "}) is None

    def test_utf8_bytes(self):
        """UTF-8 header bytes decode to text."""
        headers = Headers(raw=[(b"x-payment", "pago-é".encode("utf-8"))])
        assert extract_payment_header(headers) == "pago-é"

    def test_invalid_utf8_bytes(self):
        """Non-UTF-8 header bytes raise."""
        headers = Headers(raw=[(b"x-payment", b"\xff\xfe\xfd")])
        with pytest.raises(UnicodeDecodeError):
            extract_payment_header(headers)


class TestMissingHeader:
    """Requests without a payment header get the price quote."""

    def test_returns_402_with_requirements(self, guard, facilitator, requirements):
        """402 body carries the exact requirements instance given."""
        result = guard.check_payment({}, requirements)

        assert isinstance(result, PaymentDenied)
        assert result.kind == PaymentErrorKind.CLIENT_PAYMENT_MISSING
        assert result.stage == GuardStage.NO_HEADER
        assert result.status_code == 402
        assert result.body["error"] == "Payment Required"
        assert result.body["x402Version"] == 1
        assert result.body["paymentRequirements"] == requirements.to_wire()
        assert result.body["paymentRequirements"]["payTo"] == WALLET

    def test_no_facilitator_calls(self, guard, facilitator, requirements):
        """The facilitator is not contacted without a header."""
        guard.check_payment({}, requirements)

        facilitator.verify.assert_not_called()
        facilitator.settle.assert_not_called()


class TestMalformedHeader:
    """Headers that are not valid text."""

    def test_invalid_utf8_returns_402(self, guard, facilitator, requirements):
        """Non-UTF-8 header is rejected before verify."""
        headers = Headers(raw=[(b"x-payment", b"\xc3\x28")])

        result = guard.check_payment(headers, requirements)

        assert result.kind == PaymentErrorKind.CLIENT_PAYMENT_MALFORMED
        assert result.status_code == 402
        assert result.body == {
            "error": "Invalid X-PAYMENT header",
            "reason": "Header must be valid UTF-8",
        }
        facilitator.verify.assert_not_called()


class TestVerifyFailures:
    """Verify rejections and outages."""

    def test_invalid_payment_returns_402(self, guard, facilitator, requirements):
        """isValid false yields 402 with the reason and the quote."""
        facilitator.verify.return_value = VerifyResult(is_valid=False, invalid_reason="Insufficient balance")

        result = guard.check_payment({"X-PAYMENT": PAYMENT_HEADER}, requirements)

        assert result.kind == PaymentErrorKind.PAYMENT_REJECTED
        assert result.stage == GuardStage.VERIFYING
        assert result.status_code == 402
        assert result.body["error"] == "Invalid Payment"
        assert result.body["reason"] == "Insufficient balance"
        assert result.body["x402Version"] == 1
        assert result.body["paymentRequirements"] == requirements.to_wire()

    def test_invalid_payment_never_settles(self, guard, facilitator, requirements):
        """Settle is not attempted after a failed verify."""
        facilitator.verify.return_value = VerifyResult(is_valid=False, invalid_reason="Expired")

        guard.check_payment({"X-PAYMENT": PAYMENT_HEADER}, requirements)

        assert facilitator.verify.call_count == 1
        assert facilitator.settle.call_count == 0

    def test_verify_unavailable_returns_502(self, guard, facilitator, requirements):
        """Verify transport failure is a gateway error."""
        facilitator.verify.return_value = FacilitatorUnavailable(operation="verify", cause="Connection refused")

        result = guard.check_payment({"X-PAYMENT": PAYMENT_HEADER}, requirements)

        assert result.kind == PaymentErrorKind.FACILITATOR_UNAVAILABLE
        assert result.status_code == 502
        assert result.body == {
            "error": "Facilitator verify request failed",
            "detail": "Connection refused",
        }
        facilitator.settle.assert_not_called()

    def test_unreachable_facilitator_end_to_end(self, requirements):
        """A refused connection to /verify surfaces as 502 mentioning verify."""
        session = MagicMock()
        session.post.side_effect = ConnectionError("Connection refused")
        guard = PaymentGuard(FacilitatorClient(base_url="http://127.0.0.1:9", session=session))

        result = guard.check_payment({"X-PAYMENT": PAYMENT_HEADER}, requirements)

        assert result.status_code == 502
        assert "verify" in result.body["error"]
        assert session.post.call_count == 1


class TestSettleFailures:
    """Settle rejections, outages and protocol violations."""

    def test_settlement_failed_returns_402(self, guard, facilitator, requirements):
        """Non-success event yields 402 with the facilitator's error as detail."""
        facilitator.settle.return_value = SettleResult(event="payment.failed", error="Nonce already used")

        result = guard.check_payment({"X-PAYMENT": PAYMENT_HEADER}, requirements)

        assert result.kind == PaymentErrorKind.SETTLEMENT_REJECTED
        assert result.stage == GuardStage.SETTLING
        assert result.status_code == 402
        assert result.body == {"error": "Settlement Failed", "detail": "Nonce already used"}

    def test_settlement_failed_without_error(self, guard, facilitator, requirements):
        """Missing error field forwards as null detail."""
        facilitator.settle.return_value = SettleResult(event="payment.failed")

        result = guard.check_payment({"X-PAYMENT": PAYMENT_HEADER}, requirements)

        assert result.status_code == 402
        assert result.body["error"] == "Settlement Failed"
        assert result.body["detail"] is None

    def test_settle_unavailable_returns_502(self, guard, facilitator, requirements):
        """Settle transport failure is a gateway error."""
        facilitator.settle.return_value = FacilitatorUnavailable(operation="settle", cause="Read timed out")

        result = guard.check_payment({"X-PAYMENT": PAYMENT_HEADER}, requirements)

        assert result.kind == PaymentErrorKind.FACILITATOR_UNAVAILABLE
        assert result.status_code == 502
        assert result.body == {
            "error": "Facilitator settle request failed",
            "detail": "Read timed out",
        }

    def test_missing_tx_hash_returns_502(self, guard, facilitator, requirements):
        """Success event without txHash is a facilitator protocol violation."""
        facilitator.settle.return_value = SettleResult(event="payment.settled")

        result = guard.check_payment({"X-PAYMENT": PAYMENT_HEADER}, requirements)

        assert result.kind == PaymentErrorKind.FACILITATOR_PROTOCOL_VIOLATION
        assert result.status_code == 502
        assert result.body == {"error": "Purchase response missing tx"}


class TestSuccess:
    """Verified and settled payments."""

    def test_returns_tx_hash(self, guard, facilitator, requirements):
        """The facilitator's txHash is returned unmodified."""
        result = guard.check_payment({"X-PAYMENT": PAYMENT_HEADER}, requirements)

        assert result == PaymentGranted(tx_hash="0xdeadbeef")

    def test_verify_then_settle_with_same_header(self, guard, facilitator, requirements):
        """Both calls receive the header verbatim, verify first."""
        calls = []
        facilitator.verify.side_effect = lambda *args: calls.append(("verify", args)) or VerifyResult(is_valid=True)
        facilitator.settle.side_effect = lambda *args: calls.append(("settle", args)) or SettleResult(
            event="payment.settled", tx_hash="0xabc"
        )

        guard.check_payment({"X-PAYMENT": PAYMENT_HEADER}, requirements)

        assert calls == [
            ("verify", (PAYMENT_HEADER, requirements)),
            ("settle", (PAYMENT_HEADER, requirements)),
        ]

    def test_repeated_header_is_not_cached(self, guard, facilitator, requirements):
        """Each request makes its own verify and settle round trip."""
        headers = {"X-PAYMENT": PAYMENT_HEADER}

        first = guard.check_payment(headers, requirements)
        second = guard.check_payment(headers, requirements)

        assert first == second == PaymentGranted(tx_hash="0xdeadbeef")
        assert facilitator.verify.call_count == 2
        assert facilitator.settle.call_count == 2

    def test_requirements_untouched(self, guard, requirements):
        """The shared requirements are unchanged after a request."""
        before = requirements.to_wire()
        guard.check_payment({"X-PAYMENT": PAYMENT_HEADER}, requirements)
        assert requirements.to_wire() == before


class TestPaymentDeniedResponse:
    """Test the JSON response built from a denial."""

    def test_to_response(self, guard, requirements):
        """Status and body match the denial."""
        denied = guard.check_payment({}, requirements)

        response = denied.to_response()

        assert response.status_code == 402
        body = json.loads(response.body.decode())
        assert body["error"] == "Payment Required"
        assert body["paymentRequirements"]["payTo"] == WALLET


class TestPaymentErrorKind:
    """Test status mapping of the error taxonomy."""

    @pytest.mark.parametrize("kind,status", [
        (PaymentErrorKind.CLIENT_PAYMENT_MISSING, 402),
        (PaymentErrorKind.CLIENT_PAYMENT_MALFORMED, 402),
        (PaymentErrorKind.PAYMENT_REJECTED, 402),
        (PaymentErrorKind.SETTLEMENT_REJECTED, 402),
        (PaymentErrorKind.FACILITATOR_UNAVAILABLE, 502),
        (PaymentErrorKind.FACILITATOR_PROTOCOL_VIOLATION, 502),
    ])
    def test_status_codes(self, kind, status):
        """Client-actionable kinds are 402, dependency failures 502."""
        assert kind.status_code == status


class TestEncodePaymentResponse:
    """Test X-PAYMENT-RESPONSE header encoding."""

    def test_encode(self):
        """Header is base64 JSON with the tx hash."""
        encoded = encode_payment_response("0xabc123", "cronos-testnet")

        decoded = json.loads(base64.b64decode(encoded).decode())
        assert decoded == {"success": True, "txHash": "0xabc123", "network": "cronos-testnet"}


class TestGetClientIP:
    """Test client IP extraction."""

    def test_forwarded_for_header(self):
        """Extract IP from X-Forwarded-For header."""
        request = MagicMock(spec=Request)
        request.headers = {"X-Forwarded-For": "203.0.113.50, 70.41.3.18"}
        request.client = None

        assert get_client_ip(request) == "203.0.113.50"

    def test_real_ip_header(self):
        """Extract IP from X-Real-IP header."""
        request = MagicMock(spec=Request)
        request.headers = {"X-Real-IP": "203.0.113.50"}
        request.client = None

        assert get_client_ip(request) == "203.0.113.50"

    def test_direct_connection(self):
        """Extract IP from direct connection."""
        request = MagicMock(spec=Request)
        request.headers = {}
        request.client = MagicMock()
        request.client.host = "192.168.1.100"

        assert get_client_ip(request) == "192.168.1.100"

    def test_no_client_info(self):
        """Handle missing client info."""
        request = MagicMock(spec=Request)
        request.headers = {}
        request.client = None

        assert get_client_ip(request) == "unknown"
