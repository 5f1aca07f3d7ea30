"""
Main FastAPI application for the Attendance Trust Engine
"""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from attendance_trust import __version__
from attendance_trust.api import attendance, biometrics, fraud, location, system
from attendance_trust.config import settings
from attendance_trust.db.database import init_db
from attendance_trust.models.registry import algorithm_registry
from attendance_trust.services.fraud_engine_service import fraud_engine, purge_periodically

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.APP_DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting Attendance Trust Engine...")
    algorithm_registry.load_algorithms()

    if settings.FRAUD_ARCHIVE_ENABLED:
        try:
            init_db()
            logger.info("Fraud archive tables ready")
        except Exception as e:
            logger.error(f"Error preparing fraud archive: {e}")

    purge_task = None
    if settings.TRUST_STORE_BACKEND.lower() != "redis":
        # Process-local store: the worker's purge cannot reach it
        purge_task = asyncio.create_task(
            purge_periodically(fraud_engine, settings.TRUST_PURGE_INTERVAL_SEC)
        )
        logger.info(f"In-process trust data purge every {settings.TRUST_PURGE_INTERVAL_SEC}s")

    yield

    # Shutdown
    logger.info("Shutting down Attendance Trust Engine...")
    if purge_task is not None:
        purge_task.cancel()
        with suppress(asyncio.CancelledError):
            await purge_task


app = FastAPI(
    title="Attendance Trust Engine",
    description="Multi-signal attendance verification: geofence, liveness, identity, location trust and fraud scoring",
    version=__version__,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(system.router, tags=["System"])
app.include_router(attendance.router)
app.include_router(biometrics.router)
app.include_router(location.router)
app.include_router(fraud.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Attendance Trust Engine",
        "version": __version__,
        "status": "running"
    }
