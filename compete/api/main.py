"""
Competition Management API Server

FastAPI server exposing health, maintenance and dashboard endpoints over the
competition data layer, and running the background maintenance worker.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
import logging
import os
import uvicorn

from compete.api.routes import router
from compete.database.db import MongoConnection
from compete.services.database_service import DatabaseService
from compete.services.maintenance_service import MaintenanceService

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    # Startup
    logger.info("Starting up Competition Management API...")
    connection = MongoConnection()
    app.state.connection = connection
    app.state.database = None
    app.state.maintenance = None

    # Connect and create indexes
    try:
        database = await DatabaseService.from_connection(connection)
        await database.initialize()
        app.state.database = database
        logger.info("✓ Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        # Don't raise - the app starts and database routes answer 503

    # Start maintenance worker (status transitions and cleanup)
    if app.state.database is not None:
        try:
            maintenance = MaintenanceService(app.state.database)
            maintenance.start()
            app.state.maintenance = maintenance
            logger.info("✓ Maintenance worker started")
        except Exception as e:
            logger.error(f"Failed to start maintenance worker: {e}", exc_info=True)

    yield  # App is running

    # Shutdown
    logger.info("Shutting down Competition Management API...")

    # Stop maintenance worker
    if app.state.maintenance is not None:
        try:
            app.state.maintenance.stop()
            logger.info("✓ Maintenance worker stopped")
        except Exception as e:
            logger.error(f"Error stopping maintenance worker: {e}", exc_info=True)

    # Close MongoDB connection
    try:
        connection.close()
        logger.info("✓ MongoDB connection closed")
    except Exception as e:
        logger.error(f"Error closing MongoDB connection: {e}", exc_info=True)


app = FastAPI(
    title="Competition Management API",
    description="API for managing sports competitions, teams, players and matches",
    version="1.0.0",
    lifespan=lifespan,
)

# Include API routes
app.include_router(router, prefix="/api")


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
