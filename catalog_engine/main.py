"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from catalog_engine.api.routes import monitoring, price_rules, rates, sync, tokens
from catalog_engine.api.routes import settings as settings_routes
from catalog_engine.config import settings
from catalog_engine.context import build_context
from catalog_engine.db.models import Base
from catalog_engine.db.session import engine
from catalog_engine.sync.engine import InvalidJobTransition, SyncJobNotFound
from catalog_engine.worker.scheduler import setup_scheduler

# Configure structured logging
from catalog_engine.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting catalog engine...")

    # Initialize database
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    context = build_context()
    app.state.context = context
    context.sync_queue.start()

    scheduler = setup_scheduler(context)
    scheduler.start()
    logger.info("Scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down...")
    scheduler.shutdown()
    await context.close()
    await engine.dispose()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Catalog Engine",
    description="Medusa catalog sync and price margin monitoring",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

# Include API routes
app.include_router(sync.router)
app.include_router(monitoring.router)
app.include_router(price_rules.router)
app.include_router(settings_routes.router)
app.include_router(rates.router)
app.include_router(tokens.router)


@app.exception_handler(SyncJobNotFound)
async def sync_job_not_found_handler(request: Request, exc: SyncJobNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidJobTransition)
async def invalid_transition_handler(request: Request, exc: InvalidJobTransition):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run(
        "catalog_engine.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
