"""Centxo — FastAPI Application Entry Point.

Campaign provisioning core: credential resolution, structure planning,
paced Meta provisioning and cached campaign rosters.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from centxo.api.campaign_routes import router as campaign_router
from centxo.cache.store import get_cache_store
from centxo.cache.swr import get_swr_cache
from centxo.connectors.meta.client import close_shared_meta_client
from centxo.core.logging import get_logger
from centxo.database import _mask_url, db_url, init_db, test_connection
from centxo.scheduler.jobs import start_scheduler, stop_scheduler

logger = get_logger("main")

IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("🚀 Centxo starting up...")
    logger.info(f"🌍 Environment: {'SERVERLESS' if IS_SERVERLESS else 'LOCAL'}")
    if test_connection():
        init_db()
    else:
        logger.error("❌ Database NOT connected — endpoints will fail")
    if not IS_SERVERLESS:
        start_scheduler()
    yield
    if not IS_SERVERLESS:
        stop_scheduler()
    await get_swr_cache().drain()
    await close_shared_meta_client()
    await get_cache_store().close()
    logger.info("Centxo shut down")


app = FastAPI(
    title="Centxo",
    description="Provision Meta campaign → ad set → creative → ad trees from one request.",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(campaign_router)


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "centxo",
        "version": "1.0.0",
        "database": "postgresql" if db_url.startswith("postgresql") else "sqlite",
        "database_url": _mask_url(db_url),
    }
