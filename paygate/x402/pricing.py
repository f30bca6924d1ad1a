# paygate/x402/pricing.py
"""
Price catalog for x402-protected resources.

Each resource has a fixed price in the payable asset's smallest unit and a
description shown to clients in the 402 challenge. Network, asset and the
seller wallet come from paygate/core/config.py:
- SELLER_WALLET: recipient of every payment
- X402_NETWORK / X402_ASSET: settlement network and token
- X402_MAX_TIMEOUT_SECONDS: validity window of a payment instruction

The catalog is built once per process and shared read-only.
"""
import logging
from functools import lru_cache
from typing import Dict, Tuple

from paygate.core.config import get_settings
from paygate.x402.requirements import PaymentRequirements, create_payment_requirements

logger = logging.getLogger(__name__)

# USDC.e has 6 decimals, so 1 USDC.e = 1,000,000 smallest units
ASSET_DECIMALS = 6

WEATHER = "weather"
POEM = "poem"
PRICE = "price"

# resource -> (max amount in smallest units, description)
RESOURCE_CATALOG: Dict[str, Tuple[str, str]] = {
    WEATHER: ("1000000", "Premium Weather API"),
    POEM: ("500000", "Premium Poem API"),
    PRICE: ("250000", "Premium Price Quote API"),
}


def smallest_units_to_display(amount: str, decimals: int = ASSET_DECIMALS) -> str:
    """
    Format a smallest-unit amount as a decimal string.

    Example: "1500000" with 6 decimals -> "1.5"
    """
    value = int(amount)
    whole, fraction = divmod(value, 10 ** decimals)
    if not fraction:
        return str(whole)
    return f"{whole}.{str(fraction).rjust(decimals, '0').rstrip('0')}"


def build_resource_requirements(
    pay_to: str,
    network: str,
    asset: str,
    max_timeout_seconds: int
) -> Dict[str, PaymentRequirements]:
    """
    Build one PaymentRequirements per catalog resource.

    Raises:
        ValueError: If pay_to is missing
    """
    catalog = {}
    for resource, (amount, description) in RESOURCE_CATALOG.items():
        catalog[resource] = create_payment_requirements(
            pay_to,
            network=network,
            asset=asset,
            max_amount_required=amount,
            max_timeout_seconds=max_timeout_seconds,
            description=description
        )
        logger.info(
            f"x402: Priced {resource} at {smallest_units_to_display(amount)} "
            f"on {network} (pay to {catalog[resource].pay_to})"
        )
    return catalog


@lru_cache()
def get_resource_requirements() -> Dict[str, PaymentRequirements]:
    """Catalog built from settings; used as a FastAPI dependency."""
    config = get_settings()
    return build_resource_requirements(
        pay_to=config.SELLER_WALLET,
        network=config.X402_NETWORK,
        asset=config.X402_ASSET,
        max_timeout_seconds=config.X402_MAX_TIMEOUT_SECONDS
    )
