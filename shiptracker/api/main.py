"""
FastAPI application for the ship tracker feed proxy.

- Viewers: WebSocket at / and /ws (status + ais_data envelopes)
- Health: /health, /health/live, /health/ready
- API: /api/status, /api/status/mirror, /api/vessels, /api/vessels/{mmsi}
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from shiptracker.core.config import settings
from shiptracker.api.health import router as health_router
from shiptracker.api.live import router as live_router
from shiptracker.api.router import router as api_router
from shiptracker.services.ingest_state import set_proxy
from shiptracker.services.proxy import ProxyService


def _setup_logging() -> None:
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    _setup_logging()

    proxy = ProxyService(settings)
    set_proxy(proxy)
    await proxy.start()

    yield

    await proxy.stop()
    set_proxy(None)


app = FastAPI(
    title="Ship Tracker",
    description="AISstream proxy: one upstream feed fanned out to many viewers",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(live_router)
app.include_router(api_router, prefix=settings.API_PREFIX)


def run() -> None:
    uvicorn.run(
        "shiptracker.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
