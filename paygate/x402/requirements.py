# paygate/x402/requirements.py
"""
Payment requirements for x402-protected resources.

A PaymentRequirements instance is the server's price quote for one resource:
who gets paid, in which asset, on which network, and how much. It is built
once at startup and shared read-only by every request to that resource.

The serialized form (see PaymentRequirements.to_wire) is echoed to clients in
402 challenges and error bodies, and sent to the facilitator on verify and
settle. Key names and casing are part of the wire contract.
"""
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# x402 protocol revision spoken by this server
X402_VERSION = 1

DEFAULT_SCHEME = "exact"
DEFAULT_NETWORK = "cronos-testnet"
DEFAULT_ASSET = "0xc01efAaF7C5C61bEbFAeb358E1161b537b8bC0e0"  # USDC.e testnet
DEFAULT_MAX_AMOUNT_REQUIRED = "1000000"  # 1 USDC.e (6 decimals)
DEFAULT_MAX_TIMEOUT_SECONDS = 300  # 5 minutes
DEFAULT_DESCRIPTION = "Premium Weather API"
DEFAULT_MIME_TYPE = "application/json"


class PaymentRequirements(BaseModel):
    """
    Price quote and payment addressing for a single resource.

    Attributes use snake_case; the wire format uses the camelCase aliases.
    Instances are frozen so they can be shared across concurrent requests.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    x402_version: int = Field(default=X402_VERSION, alias="x402Version")
    scheme: str = DEFAULT_SCHEME
    network: str = DEFAULT_NETWORK
    pay_to: str = Field(..., alias="payTo", description="Recipient wallet address")
    asset: str = DEFAULT_ASSET
    max_amount_required: str = Field(
        default=DEFAULT_MAX_AMOUNT_REQUIRED,
        alias="maxAmountRequired",
        description="Amount in the asset's smallest unit, as a decimal string"
    )
    max_timeout_seconds: int = Field(
        default=DEFAULT_MAX_TIMEOUT_SECONDS,
        alias="maxTimeoutSeconds",
        gt=0
    )
    description: str = DEFAULT_DESCRIPTION
    mime_type: str = Field(default=DEFAULT_MIME_TYPE, alias="mimeType")

    @field_validator("pay_to")
    @classmethod
    def pay_to_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("payTo must be a non-empty address")
        return value.strip()

    @field_validator("max_amount_required")
    @classmethod
    def amount_is_integer_string(cls, value: str) -> str:
        if not value.isdigit():
            raise ValueError("maxAmountRequired must be a non-negative integer string")
        return value

    def to_wire(self) -> Dict[str, Any]:
        """Serialize using the wire key names, in declaration order."""
        return self.model_dump(by_alias=True, mode="json")


def create_payment_requirements(
    pay_to: Optional[str],
    **overrides: Any
) -> PaymentRequirements:
    """
    Build the payment requirements for a resource.

    Args:
        pay_to: Seller wallet address from server configuration
        **overrides: Any other PaymentRequirements field, by attribute name

    Returns:
        An immutable PaymentRequirements instance

    Raises:
        ValueError: If pay_to is missing or blank. This is a startup failure.
    """
    if not pay_to or not pay_to.strip():
        logger.error("x402: Seller wallet is not configured")
        raise ValueError("A seller wallet address (payTo) is required")

    return PaymentRequirements(pay_to=pay_to, **overrides)
