from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from milkcart.config import settings
from milkcart.api.v1.router import api_router
from milkcart.core.exceptions import MilkCartError, http_status_for
from milkcart.database import init_db, async_session_factory
from milkcart.jobs.scheduler import start_scheduler, shutdown_scheduler, get_job_status


logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create missing tables
    - Start background scheduler
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()
    start_scheduler()

    yield

    shutdown_scheduler()
    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Authentication", "description": "Customer registration with email codes, customer and admin login"},
    {"name": "Categories", "description": "Product categories"},
    {"name": "Products", "description": "Dairy catalogue and stock levels"},
    {"name": "Cart", "description": "Customer shopping cart"},
    {"name": "Orders", "description": "Delivery slots, checkout, order history and cancellation"},
    {"name": "Admin Orders", "description": "Order confirmation, cancellation and dispatch"},
    {"name": "Delivery", "description": "Delivery person app: route and proof of delivery"},
    {"name": "Admin Delivery Boys", "description": "Delivery person approval and suspension"},
    {"name": "Delivery Assignments", "description": "Customer to delivery person mapping and route order"},
    {"name": "Payments", "description": "UPI QR payment sessions"},
    {"name": "Admin Payments", "description": "UPI payment verification"},
    {"name": "Subscriptions", "description": "Milk subscription plans, purchase, pause, skip and cancellation"},
    {"name": "Admin Subscriptions", "description": "Plan management, daily subscription deliveries and refunds"},
    {"name": "Wishlist", "description": "Saved products"},
    {"name": "Admin Dashboard", "description": "Daily metrics and reports"},
]

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.exception_handler(MilkCartError)
async def milkcart_error_handler(request: Request, exc: MilkCartError):
    """Business errors raised by services become JSON responses with the mapped status code."""
    content = {"detail": exc.message}
    if exc.details:
        content.update(exc.details)
    return JSONResponse(status_code=http_status_for(exc), content=content)


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness probe reporting database connectivity and scheduled jobs."""
    checks = {"database": "connected"}
    healthy = True
    try:
        async with async_session_factory() as session:
            await session.scalar(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check database probe failed: {e}")
        checks["database"] = f"error: {e}"
        healthy = False

    body = {
        "status": "healthy" if healthy else "unhealthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
        "jobs": get_job_status(),
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "docs": "/docs",
        "health": "/health",
    }
