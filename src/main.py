"""
Eleva Splits - Commission Calculation and Payment Splitting

Main FastAPI application with:
- Payment-confirmed and refund webhooks
- Commission record reporting for ops and support
- Billing plan versioning
- Stripe Connect transfers
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.api import api_router
from src.config import settings
from src.services.errors import ConfigurationError, InputError
from src.services.rate_table import get_rate_table

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
    - Loads the rate table so a broken table fails the boot, not a payment

    Shutdown:
    - Cleanup tasks
    """
    logger.info("Starting Eleva Splits...")

    table = get_rate_table()
    logger.info(f"Rate table {table.version} loaded ({len(table.entries)} entries)")

    if not settings.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY is not set; transfers will fail")

    logger.info("Eleva Splits started successfully!")

    yield

    # Shutdown
    logger.info("Shutting down Eleva Splits...")


# Create FastAPI application
app = FastAPI(
    title="Eleva Splits",
    description="Commission calculation and payment splitting",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "configuration_error", "detail": str(exc)},
    )


@app.exception_handler(InputError)
async def input_error_handler(request: Request, exc: InputError):
    logger.warning(f"Invalid input on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=422,
        content={"error": "invalid_input", "detail": str(exc)},
    )


# Include routers
app.include_router(api_router)  # /api/* endpoints


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
    )
