# sheetsync/main.py

import asyncio
import logging
import os
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sheetsync.api.dependencies import get_sync_service
from sheetsync.api.v1.endpoints import sync
from sheetsync.core.config import settings
from sheetsync.core.locking import init_redis_pool, close_redis_pool

# Set up logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, description=settings.DESCRIPTION)

# Set up CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(sync.router, prefix=settings.API_V1_STR)


@app.on_event("startup")
async def startup_event():
    """Open the record store and the lock backend"""
    start_time = time.time()
    logger.info(f"Starting {settings.PROJECT_NAME} v{settings.VERSION}")
    logger.info(f"Process ID: {os.getpid()}")

    # Ensure required directories exist
    os.makedirs(settings.DATA_DIR, exist_ok=True)
    os.makedirs(settings.LOGS_DIR, exist_ok=True)

    # Log configuration
    logger.info(f"Environment: {'Development' if settings.DEBUG else 'Production'}")
    logger.info(f"Store backend: {settings.STORE_BACKEND}")
    if not settings.APP_CODE and not settings.APP_CODE_HASH:
        logger.info("APP_CODE not set in environment, reading it from the config sheet")

    try:
        # Loading the store reads the whole workbook, keep it off the event loop
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, get_sync_service)
        logger.info("Record store initialized successfully")
    except Exception as e:
        logger.error(f"Error initializing record store: {str(e)}", exc_info=True)

    await init_redis_pool()

    # Log startup time
    elapsed = time.time() - start_time
    logger.info(f"Application startup completed in {elapsed:.2f} seconds")


@app.on_event("shutdown")
async def shutdown_event():
    await close_redis_pool()
    get_sync_service().store.close()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "sheetsync.main:app",
        host=settings.HOST,
        port=settings.PORT,
        workers=settings.WORKERS,
        log_level=settings.LOG_LEVEL,
        reload=settings.RELOAD
    )
