# paygate/x402/facilitator.py
"""
HTTP client for the x402 facilitator service.

The facilitator exposes two operations:
1. verify: is the payment instruction well-formed, signed and authorized?
2. settle: execute the verified instruction and report the transaction

Both take the same JSON envelope. Failures talking to the facilitator are
returned as FacilitatorUnavailable values rather than raised, so callers can
tell a gateway outage apart from a rejected payment.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import requests
from requests.exceptions import RequestException

from paygate.x402.requirements import PaymentRequirements, X402_VERSION

logger = logging.getLogger(__name__)

DEFAULT_FACILITATOR_URL = "https://facilitator.cronoslabs.org/v2/x402"
DEFAULT_TIMEOUT_SECONDS = 30.0

X402_VERSION_HEADER = "X402-Version"
SETTLED_EVENT = "payment.settled"
UNKNOWN_REASON = "Unknown reason"

VERIFY = "verify"
SETTLE = "settle"


@dataclass(frozen=True)
class VerifyResult:
    """Outcome of a verify call that reached the facilitator."""
    is_valid: bool
    invalid_reason: Optional[str] = None


@dataclass(frozen=True)
class SettleResult:
    """Outcome of a settle call that reached the facilitator."""
    event: Optional[str]
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self.event == SETTLED_EVENT


@dataclass(frozen=True)
class FacilitatorUnavailable:
    """Transport or parse failure while calling the facilitator."""
    operation: str
    cause: str


VerifyOutcome = Union[VerifyResult, FacilitatorUnavailable]
SettleOutcome = Union[SettleResult, FacilitatorUnavailable]


def build_facilitator_request(
    payment_header: str,
    requirements: PaymentRequirements
) -> Dict[str, Any]:
    """Envelope shared by verify and settle."""
    return {
        "x402Version": X402_VERSION,
        "paymentHeader": payment_header,
        "paymentRequirements": requirements.to_wire(),
    }


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


class FacilitatorClient:
    """
    Client for the facilitator's verify and settle endpoints.

    Holds no per-request state. The underlying requests.Session is shared by
    all requests for connection pooling.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_FACILITATOR_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None
    ):
        self.base_url = str(base_url).rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def close(self) -> None:
        self._session.close()

    def _timeout_for(self, requirements: PaymentRequirements) -> float:
        # Never wait longer than the payment instruction stays valid
        return min(self.timeout, float(requirements.max_timeout_seconds))

    def _post(
        self,
        operation: str,
        payment_header: str,
        requirements: PaymentRequirements
    ) -> Union[Dict[str, Any], FacilitatorUnavailable]:
        """
        POST the envelope to {base_url}/{operation}.

        Returns:
            The decoded JSON object, or FacilitatorUnavailable on connection
            errors, timeouts, 5xx statuses and bodies that are not a JSON object
        """
        url = f"{self.base_url}/{operation}"
        try:
            response = self._session.post(
                url,
                json=build_facilitator_request(payment_header, requirements),
                headers={X402_VERSION_HEADER: str(X402_VERSION)},
                timeout=self._timeout_for(requirements)
            )
        except RequestException as e:
            logger.error(f"x402: Facilitator {operation} request to {url} failed: {e}")
            return FacilitatorUnavailable(operation=operation, cause=str(e))

        if response.status_code >= 500:
            logger.error(f"x402: Facilitator {operation} returned HTTP {response.status_code}")
            return FacilitatorUnavailable(
                operation=operation,
                cause=f"Facilitator returned HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"x402: Facilitator {operation} returned a non-JSON body: {e}")
            return FacilitatorUnavailable(
                operation=operation,
                cause=f"Invalid JSON from facilitator: {e}"
            )

        if not isinstance(data, dict):
            logger.error(f"x402: Facilitator {operation} returned unexpected JSON type: {type(data)}")
            return FacilitatorUnavailable(
                operation=operation,
                cause="Unexpected response body from facilitator"
            )

        return data

    def verify(self, payment_header: str, requirements: PaymentRequirements) -> VerifyOutcome:
        """
        Ask the facilitator whether the payment instruction is valid.

        A response without isValid is treated as invalid.
        """
        data = self._post(VERIFY, payment_header, requirements)
        if isinstance(data, FacilitatorUnavailable):
            return data

        is_valid = data.get("isValid") is True
        if is_valid:
            return VerifyResult(is_valid=True)

        reason = _optional_text(data.get("invalidReason")) or UNKNOWN_REASON
        logger.info(f"x402: Facilitator rejected payment: {reason}")
        return VerifyResult(is_valid=False, invalid_reason=reason)

    def settle(self, payment_header: str, requirements: PaymentRequirements) -> SettleOutcome:
        """Ask the facilitator to execute a verified payment instruction."""
        data = self._post(SETTLE, payment_header, requirements)
        if isinstance(data, FacilitatorUnavailable):
            return data

        result = SettleResult(
            event=_optional_text(data.get("event")),
            tx_hash=_optional_text(data.get("txHash")),
            error=_optional_text(data.get("error"))
        )
        if not result.settled:
            logger.info(f"x402: Settlement not confirmed (event={result.event}): {result.error}")
        return result
