# paygate/api/endpoints/resources.py
import logging
import random
from typing import Callable, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from paygate.api.models.resources import (
    Poem,
    PoemResponse,
    PriceQuote,
    PriceResponse,
    RequirementsResponse,
    Weather,
    WeatherResponse,
)
from paygate.x402.guard import (
    PaymentDenied,
    PaymentGuard,
    X_PAYMENT_RESPONSE_HEADER,
    encode_payment_response,
    get_client_ip,
    get_payment_guard,
)
from paygate.x402.pricing import POEM, PRICE, WEATHER, get_resource_requirements
from paygate.x402.requirements import PaymentRequirements, X402_VERSION

logger = logging.getLogger(__name__)
router = APIRouter()

WEATHER_SUMMARIES = [
    "Clear sky on chain 🌤️",
    "Light drizzle over the mempool",
    "Gas fees calm, winds steady",
    "Foggy with a chance of forks",
]

POEM_LINES = [
    "A header signed, a promise sent,",
    "The facilitator weighs intent.",
    "Verified first, then settled true,",
    "A hash returns to carry through.",
    "No coin is held, no key is kept,",
    "Just one round trip before we slept.",
]

PRICE_SYMBOLS = ["CRO", "ETH", "BTC", "USDC"]


# Handlers are plain functions so FastAPI runs them in its threadpool while
# the guard waits on the facilitator.

def _guarded_json(
    request: Request,
    guard: PaymentGuard,
    requirements: PaymentRequirements,
    resource: str,
    build_payload: Callable[[str], BaseModel],
):
    result = guard.check_payment(
        request.headers,
        requirements,
        client_ip=get_client_ip(request)
    )
    if isinstance(result, PaymentDenied):
        return result.to_response()

    logger.info(f"Serving paid {resource} for tx {result.tx_hash}")
    payload = build_payload(result.tx_hash)
    return JSONResponse(
        content=payload.model_dump(),
        headers={
            X_PAYMENT_RESPONSE_HEADER: encode_payment_response(result.tx_hash, requirements.network)
        }
    )


def _random_weather(tx_hash: str) -> WeatherResponse:
    return WeatherResponse(
        weather=Weather(
            tempC=random.randint(-5, 35),
            wind_kmh=random.randint(0, 40),
            summary=random.choice(WEATHER_SUMMARIES)
        ),
        txHash=tx_hash
    )


def _random_poem(tx_hash: str) -> PoemResponse:
    start = random.randrange(0, len(POEM_LINES) - 3)
    return PoemResponse(
        poem=Poem(title="Settlement", lines=POEM_LINES[start:start + 4]),
        txHash=tx_hash
    )


def _random_price(tx_hash: str) -> PriceResponse:
    symbol = random.choice(PRICE_SYMBOLS)
    price = 1.0 if symbol == "USDC" else round(random.uniform(0.05, 70000.0), 4)
    return PriceResponse(
        quote=PriceQuote(
            symbol=symbol,
            priceUsd=price,
            change24hPercent=round(random.uniform(-10.0, 10.0), 2)
        ),
        txHash=tx_hash
    )


@router.get("/weather", response_model=WeatherResponse)
def get_weather(
    request: Request,
    guard: PaymentGuard = Depends(get_payment_guard),
    catalog: Dict[str, PaymentRequirements] = Depends(get_resource_requirements),
):
    """
    Paid weather report.

    Without an X-PAYMENT header this returns 402 with the payment requirements.
    """
    return _guarded_json(request, guard, catalog[WEATHER], WEATHER, _random_weather)


@router.get("/poem", response_model=PoemResponse)
def get_poem(
    request: Request,
    guard: PaymentGuard = Depends(get_payment_guard),
    catalog: Dict[str, PaymentRequirements] = Depends(get_resource_requirements),
):
    """Paid four-line poem."""
    return _guarded_json(request, guard, catalog[POEM], POEM, _random_poem)


@router.get("/price", response_model=PriceResponse)
def get_price(
    request: Request,
    guard: PaymentGuard = Depends(get_payment_guard),
    catalog: Dict[str, PaymentRequirements] = Depends(get_resource_requirements),
):
    """Paid spot price quote."""
    return _guarded_json(request, guard, catalog[PRICE], PRICE, _random_price)


@router.get("/requirements", response_model=RequirementsResponse)
def list_requirements(
    catalog: Dict[str, PaymentRequirements] = Depends(get_resource_requirements),
) -> RequirementsResponse:
    """Price list for all protected resources. Free."""
    return RequirementsResponse(
        x402Version=X402_VERSION,
        resources={name: requirements.to_wire() for name, requirements in catalog.items()}
    )
