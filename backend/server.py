from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from contextlib import asynccontextmanager
from database import database
from middleware.route_features import FeatureRouteMiddleware
from routes import admin_tenants, backoffice, features
from services.entitlement_cache import tenant_config_cache
from services.entitlement_errors import FeatureDenied, GuardRedirect, IdentityUnresolved

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

FEATURE_CACHE_SWEEP_MINUTES = int(os.getenv("FEATURE_CACHE_SWEEP_MINUTES", "5"))

scheduler = AsyncIOScheduler()


async def sweep_feature_cache():
    """Drop expired tenant config entries so idle tenants do not pin memory.

    Runs on the event loop, the only thread that touches the cache.
    """
    purged = tenant_config_cache.purge_expired()
    logger.debug("Feature cache sweep purged=%d", purged)
    return purged


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.getenv("PYTEST_RUNNING"):
        yield
        return

    # Startup
    logger.info("Starting CatalogKit Entitlements API")
    await database.connect()

    scheduler.add_job(
        sweep_feature_cache,
        IntervalTrigger(minutes=FEATURE_CACHE_SWEEP_MINUTES),
        id="feature_cache_sweep",
        name="Feature Cache Sweep",
        replace_existing=True
    )
    scheduler.start()
    logger.info("Background job scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down CatalogKit Entitlements API")
    scheduler.shutdown(wait=False)
    logger.info("Background job scheduler stopped")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="CatalogKit Entitlements API",
    description="Tenant-scoped feature entitlements for CatalogKit",
    version="1.0.0",
    lifespan=lifespan
)

# Route-level feature enforcement (runs inside CORS)
app.add_middleware(FeatureRouteMiddleware)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(features.router)  # Current tenant's features + registry
app.include_router(admin_tenants.router)  # Plan / override / cache admin
app.include_router(backoffice.router)  # Plan-gated pages and operations

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "CatalogKit Entitlements",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }


# Page guards end the request with a redirect
@app.exception_handler(GuardRedirect)
async def guard_redirect_handler(request: Request, exc: GuardRedirect):
    logger.info("Guard redirect path=%s to=%s reason=%s", request.url.path, exc.location, exc.reason)
    return RedirectResponse(exc.location, status_code=303)


@app.exception_handler(FeatureDenied)
async def feature_denied_handler(request: Request, exc: FeatureDenied):
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


@app.exception_handler(IdentityUnresolved)
async def identity_unresolved_handler(request: Request, exc: IdentityUnresolved):
    return JSONResponse(
        status_code=401,
        content={"detail": exc.message}
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
