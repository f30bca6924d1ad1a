# paygate/core/config.py
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Paygate"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Wallet that receives payments; the service refuses to start without it
    SELLER_WALLET: str

    # Facilitator and settlement network
    X402_FACILITATOR_URL: AnyHttpUrl = "https://facilitator.cronoslabs.org/v2/x402"
    X402_NETWORK: str = "cronos-testnet"
    X402_ASSET: str = "0xc01efAaF7C5C61bEbFAeb358E1161b537b8bC0e0"  # USDC.e testnet
    X402_MAX_TIMEOUT_SECONDS: int = 300
    X402_FACILITATOR_TIMEOUT_SECONDS: float = 30.0

    # Audit trail
    X402_AUDIT_ENABLED: bool = False
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
