from contextlib import asynccontextmanager
from fastapi import FastAPI
from paygate.core.config import settings
from paygate.api.endpoints import resources
from paygate.x402.guard import get_payment_guard
import logging

# Configure basic logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Release the facilitator connection pool on shutdown
    logger.info("Closing facilitator client.")
    get_payment_guard().facilitator.close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json", # Standard location for OpenAPI spec
    lifespan=lifespan
)

# Include the API router(s)
# The prefix ensures all routes start with /api/v1
app.include_router(resources.router, prefix=settings.API_V1_STR, tags=["resources"])

@app.get("/", summary="Health Check", tags=["default"])
def read_root():
    """ Basic health check endpoint. """
    logger.info("Root endpoint '/' accessed.")
    return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}
