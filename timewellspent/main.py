"""
TimeWellSpent sync service: FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from timewellspent.config.settings import settings
from timewellspent.storage.database import init_db
from timewellspent.sync.engine import sync_engine
from timewellspent.api.sync_routes import router as sync_router
from timewellspent.api.friends_routes import router as friends_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler("timewellspent.log"),
    ],
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("TimeWellSpent sync service starting...")
    init_db()
    if sync_engine.configured:
        await sync_engine.start_auto_sync()
        logger.info("Sync engine started (device: %s)", sync_engine.devices.resolve().id)
    else:
        logger.info("Remote sync not configured; running local-only")
    logger.info("API ready at http://%s:%s", settings.api_host, settings.api_port)
    yield
    logger.info("TimeWellSpent sync service shutting down...")
    await sync_engine.aclose()


app = FastAPI(
    title="TimeWellSpent Sync",
    description="Multi-device sync and friends graph for TimeWellSpent",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(sync_router)
app.include_router(friends_router)


@app.get("/health")
def health():
    return {"status": "ok", "version": "0.1.0"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "timewellspent.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
