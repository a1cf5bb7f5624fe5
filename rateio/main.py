"""
FastAPI Main Application
Energy rateio engine behind an HTTP surface
"""

from fastapi import FastAPI
from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from rateio.config import settings
from rateio.infrastructure.db.database import init_db, close_db
from rateio.api.routes import health, rateio
from rateio.utils.logging_redaction import install_redaction_filter

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)
install_redaction_filter()

# Reduce noisy loggers in production
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager
    Opens and closes the database engine
    """
    logger.info("🚀 Starting rateio engine (%s)", settings.APP_ENV)
    await init_db()
    logger.info("✅ Database initialized")

    yield

    logger.info("🛑 Shutting down rateio engine")
    await close_db()


app = FastAPI(
    title="Energy Rateio Engine",
    description="Distributes solar generator output across subscribers",
    version="1.0.0",
    lifespan=lifespan,
)

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "☀️ Energy Rateio Engine",
        "version": "1.0.0",
        "modes": ["percentage", "priority"],
        "docs": "/docs"
    }


app.include_router(health.router, tags=["Health"])
app.include_router(rateio.router, prefix="/api/v1/rateio", tags=["Rateio"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rateio.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
    )
