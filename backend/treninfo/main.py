"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from treninfo.api import tracking, trains, ws
from treninfo.config import settings
from treninfo.core.broadcaster import Broadcaster
from treninfo.core.refresh import RefreshCoordinator
from treninfo.core.scheduler import create_scheduler
from treninfo.core.tracking_store import TrackingStore
from treninfo.core.train_tracker import TrainTracker
from treninfo.core.treninfo_client import TreninfoClient

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    client = TreninfoClient()
    store = TrackingStore()
    await store.connect()
    broadcaster = Broadcaster()
    await broadcaster.connect()

    tracker = TrainTracker(client, store, broadcaster, RefreshCoordinator())

    # Wire up API modules
    trains.tracker = tracker
    tracking.tracker = tracker
    ws.broadcaster = broadcaster

    scheduler = create_scheduler(tracker)
    scheduler.start()
    logger.info(
        "Treninfo started - tracking cycle every %ds against %s",
        settings.tracking_poll_seconds, settings.upstream_base_url,
    )

    yield

    scheduler.shutdown(wait=False)
    await client.close()
    await store.close()
    await broadcaster.close()
    logger.info("Treninfo shut down")


app = FastAPI(
    title="Treninfo",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(trains.router)
app.include_router(tracking.router)
app.include_router(ws.router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
