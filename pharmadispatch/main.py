"""
Pharma Dispatch - Main FastAPI Application
"""
from fastapi import FastAPI

from pharmadispatch.core.config import settings
from pharmadispatch.core.logging import setup_logging, get_logger
from pharmadispatch.core.middleware import setup_middleware, setup_exception_handlers
from pharmadispatch.api.routes import router as api_router
from pharmadispatch.db.database import engine, init_models

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


_OPENAPI_TAGS = [
    {"name": "pricing", "description": "Fee parameters and fee previews."},
    {"name": "orders", "description": "Order creation with persisted totals and the ready trigger."},
    {
        "name": "deliveries",
        "description": "Courier assignment (automatic, manual, reassignment, bulk) and delivery progress.",
    },
    {"name": "couriers", "description": "Courier location pings and availability."},
    {"name": "wallets", "description": "Courier wallets: balance, history, top-ups and withdrawals."},
    {"name": "settings", "description": "Marketplace parameters (operator only)."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Dispatch and settlement core of a pharmacy delivery marketplace.",
    openapi_tags=_OPENAPI_TAGS,
)

setup_middleware(app)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    await init_models()
    logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    logger.info("Shutting down application")
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get("/health", summary="Liveness probe", tags=["health"])
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}
