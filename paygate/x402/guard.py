# paygate/x402/guard.py
"""
x402 payment guard for metered resources.

Resource handlers call PaymentGuard.check_payment before producing their
payload. The guard:
1. Reads the X-PAYMENT header (402 with the price quote when absent)
2. Verifies the payment instruction with the facilitator
3. Settles it with the facilitator
4. Returns the settlement transaction hash to the handler

Outcomes are returned as values (PaymentGranted / PaymentDenied) so handlers
can branch on them. Each guarded request makes exactly one verify call and at
most one settle call; nothing is cached or retried between requests.
"""
import base64
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from fastapi import Request
from starlette.responses import JSONResponse

from paygate.core.config import Settings, get_settings
from paygate.x402 import audit
from paygate.x402.facilitator import (
    FacilitatorClient,
    FacilitatorUnavailable,
)
from paygate.x402.requirements import PaymentRequirements

logger = logging.getLogger(__name__)

X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"


class GuardStage(Enum):
    """Where in the payment flow a request ended."""
    NO_HEADER = "no_header"
    VERIFYING = "verifying"
    SETTLING = "settling"
    UNLOCKED = "unlocked"


class PaymentErrorKind(Enum):
    """Why a guarded request was refused."""
    CLIENT_PAYMENT_MISSING = "client_payment_missing"
    CLIENT_PAYMENT_MALFORMED = "client_payment_malformed"
    PAYMENT_REJECTED = "payment_rejected"
    SETTLEMENT_REJECTED = "settlement_rejected"
    FACILITATOR_UNAVAILABLE = "facilitator_unavailable"
    FACILITATOR_PROTOCOL_VIOLATION = "facilitator_protocol_violation"

    @property
    def status_code(self) -> int:
        # The client can fix the first four by paying correctly
        if self in (
            PaymentErrorKind.FACILITATOR_UNAVAILABLE,
            PaymentErrorKind.FACILITATOR_PROTOCOL_VIOLATION,
        ):
            return 502
        return 402


@dataclass(frozen=True)
class PaymentGranted:
    """Payment verified and settled; tx_hash is the facilitator's settlement id."""
    tx_hash: str


@dataclass(frozen=True)
class PaymentDenied:
    """A terminal failure carrying the JSON body to send back."""
    kind: PaymentErrorKind
    stage: GuardStage
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.body)


GuardResult = Union[PaymentGranted, PaymentDenied]


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    # Check for forwarded headers first
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fall back to direct connection
    if request.client:
        return request.client.host

    return "unknown"


def _decode_header_value(value: Union[str, bytes]) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    # Starlette decodes header bytes as latin-1; undo that to check UTF-8
    try:
        raw = value.encode("latin-1")
    except UnicodeEncodeError:
        return value
    return raw.decode("utf-8")


def extract_payment_header(headers: Mapping) -> Optional[str]:
    """
    Find the X-PAYMENT header, matching the name case-insensitively.

    Args:
        headers: Starlette Headers (raw bytes are used) or any mapping

    Returns:
        The header value as text, or None if absent or blank

    Raises:
        UnicodeDecodeError: If the header value is not valid UTF-8
    """
    wanted = X_PAYMENT_HEADER.lower()
    value: Union[str, bytes, None] = None

    raw_items = getattr(headers, "raw", None)
    if raw_items is not None:
        for name, raw_value in raw_items:
            if name.decode("latin-1").lower() == wanted:
                value = raw_value
                break
    else:
        for name, header_value in headers.items():
            if name.lower() == wanted:
                value = header_value
                break

    if value is None:
        return None

    text = _decode_header_value(value).strip()
    return text or None


def encode_payment_response(tx_hash: str, network: str) -> str:
    """
    Encode the settlement result for the X-PAYMENT-RESPONSE header.

    Returns:
        Base64-encoded JSON string
    """
    response_json = json.dumps({
        "success": True,
        "txHash": tx_hash,
        "network": network,
    })
    return base64.b64encode(response_json.encode("utf-8")).decode("ascii")


class PaymentGuard:
    """
    Enforces payment before a resource is produced.

    The guard holds no per-request state and never reads global settings;
    the facilitator client and audit log location are given at construction.
    """

    def __init__(
        self,
        facilitator: FacilitatorClient,
        audit_log_path: Optional[Union[str, Path]] = None
    ):
        self.facilitator = facilitator
        self.audit_log_path = audit_log_path

    def _deny(
        self,
        kind: PaymentErrorKind,
        stage: GuardStage,
        body: Dict[str, Any],
        client_ip: Optional[str],
        request_id: str,
        reason: Optional[str] = None
    ) -> PaymentDenied:
        logger.warning(
            f"x402: Denied request {request_id} from {client_ip} at {stage.value}: "
            f"{kind.value} ({reason or body.get('error')})"
        )
        if self.audit_log_path and kind is not PaymentErrorKind.CLIENT_PAYMENT_MISSING:
            audit.log_payment_failed(
                self.audit_log_path,
                client_ip=client_ip,
                request_id=request_id,
                stage=stage.value,
                kind=kind.value,
                reason=reason or body.get("error")
            )
        return PaymentDenied(kind=kind, stage=stage, body=body)

    def check_payment(
        self,
        headers: Mapping,
        requirements: PaymentRequirements,
        client_ip: Optional[str] = None
    ) -> GuardResult:
        """
        Run the verify/settle exchange for one request.

        Args:
            headers: Incoming request headers
            requirements: The resource's shared, read-only price quote
            client_ip: Caller address, for logs and the audit trail

        Returns:
            PaymentGranted with the settlement tx hash, or PaymentDenied
        """
        # One id links every audit event written for this request
        request_id = audit.generate_request_id()

        try:
            payment_header = extract_payment_header(headers)
        except UnicodeDecodeError:
            return self._deny(
                PaymentErrorKind.CLIENT_PAYMENT_MALFORMED,
                GuardStage.NO_HEADER,
                {
                    "error": "Invalid X-PAYMENT header",
                    "reason": "Header must be valid UTF-8",
                },
                client_ip,
                request_id
            )

        if payment_header is None:
            logger.info(
                f"x402: No X-PAYMENT header from {client_ip}, "
                f"quoting {requirements.max_amount_required} on {requirements.network}"
            )
            if self.audit_log_path:
                audit.log_payment_required_sent(
                    self.audit_log_path,
                    client_ip=client_ip,
                    request_id=request_id,
                    amount=requirements.max_amount_required,
                    network=requirements.network,
                    pay_to=requirements.pay_to,
                    description=requirements.description
                )
            return PaymentDenied(
                kind=PaymentErrorKind.CLIENT_PAYMENT_MISSING,
                stage=GuardStage.NO_HEADER,
                body={
                    "error": "Payment Required",
                    "x402Version": requirements.x402_version,
                    "paymentRequirements": requirements.to_wire(),
                }
            )

        # Verify
        verify_result = self.facilitator.verify(payment_header, requirements)
        if isinstance(verify_result, FacilitatorUnavailable):
            return self._deny(
                PaymentErrorKind.FACILITATOR_UNAVAILABLE,
                GuardStage.VERIFYING,
                {
                    "error": "Facilitator verify request failed",
                    "detail": verify_result.cause,
                },
                client_ip,
                request_id,
                reason=verify_result.cause
            )

        if self.audit_log_path:
            audit.log_payment_verified(
                self.audit_log_path,
                client_ip=client_ip,
                request_id=request_id,
                is_valid=verify_result.is_valid,
                invalid_reason=verify_result.invalid_reason
            )

        if not verify_result.is_valid:
            return self._deny(
                PaymentErrorKind.PAYMENT_REJECTED,
                GuardStage.VERIFYING,
                {
                    "error": "Invalid Payment",
                    "x402Version": requirements.x402_version,
                    "paymentRequirements": requirements.to_wire(),
                    "reason": verify_result.invalid_reason,
                },
                client_ip,
                request_id,
                reason=verify_result.invalid_reason
            )

        logger.info(f"x402: Payment verified for {client_ip}, settling")

        # Settle
        settle_result = self.facilitator.settle(payment_header, requirements)
        if isinstance(settle_result, FacilitatorUnavailable):
            return self._deny(
                PaymentErrorKind.FACILITATOR_UNAVAILABLE,
                GuardStage.SETTLING,
                {
                    "error": "Facilitator settle request failed",
                    "detail": settle_result.cause,
                },
                client_ip,
                request_id,
                reason=settle_result.cause
            )

        if not settle_result.settled:
            return self._deny(
                PaymentErrorKind.SETTLEMENT_REJECTED,
                GuardStage.SETTLING,
                {
                    "error": "Settlement Failed",
                    "detail": settle_result.error,
                },
                client_ip,
                request_id,
                reason=settle_result.error or f"event={settle_result.event}"
            )

        if not settle_result.tx_hash:
            return self._deny(
                PaymentErrorKind.FACILITATOR_PROTOCOL_VIOLATION,
                GuardStage.SETTLING,
                {"error": "Purchase response missing tx"},
                client_ip,
                request_id
            )

        logger.info(f"x402: Payment settled for {client_ip}: {settle_result.tx_hash}")
        if self.audit_log_path:
            audit.log_payment_settled(
                self.audit_log_path,
                client_ip=client_ip,
                request_id=request_id,
                transaction_hash=settle_result.tx_hash,
                network=requirements.network,
                amount=requirements.max_amount_required
            )

        return PaymentGranted(tx_hash=settle_result.tx_hash)


def build_payment_guard(config: Settings) -> PaymentGuard:
    """Wire a PaymentGuard from application settings."""
    facilitator = FacilitatorClient(
        base_url=str(config.X402_FACILITATOR_URL),
        timeout=config.X402_FACILITATOR_TIMEOUT_SECONDS
    )
    audit_log_path = config.X402_AUDIT_LOG_PATH if config.X402_AUDIT_ENABLED else None
    return PaymentGuard(facilitator=facilitator, audit_log_path=audit_log_path)


@lru_cache()
def get_payment_guard() -> PaymentGuard:
    """Process-wide guard, used as a FastAPI dependency."""
    return build_payment_guard(get_settings())
