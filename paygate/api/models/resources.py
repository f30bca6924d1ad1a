# paygate/api/models/resources.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List

PAID_ACCESS = "Payment Verified + Settled"


class Weather(BaseModel):
    tempC: int = Field(..., description="Temperature in degrees Celsius")
    wind_kmh: int = Field(..., description="Wind speed in km/h")
    summary: str


class WeatherResponse(BaseModel):
    """Paid weather report."""
    weather: Weather
    access: str = PAID_ACCESS
    txHash: str = Field(..., description="Settlement transaction hash")


class Poem(BaseModel):
    title: str
    lines: List[str]


class PoemResponse(BaseModel):
    """Paid poem."""
    poem: Poem
    access: str = PAID_ACCESS
    txHash: str = Field(..., description="Settlement transaction hash")


class PriceQuote(BaseModel):
    symbol: str
    priceUsd: float
    change24hPercent: float


class PriceResponse(BaseModel):
    """Paid price quote."""
    quote: PriceQuote
    access: str = PAID_ACCESS
    txHash: str = Field(..., description="Settlement transaction hash")


class RequirementsResponse(BaseModel):
    """Price list for every protected resource, in wire format."""
    x402Version: int
    resources: Dict[str, Dict[str, Any]]
