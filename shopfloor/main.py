from __future__ import annotations

import asyncio
import logging
import os
import signal

from fastapi import FastAPI

from shopfloor.core.logging_setup import configure_logging
from shopfloor.db.base import Base
from shopfloor.db.session import engine

# Register models
from shopfloor.db import models  # noqa: F401

from weighing.api import router as weighing_router
from weighing.telemetry.api import router as telemetry_router
from weighing.telemetry.pipeline import TelemetryPipeline
from weighing.telemetry.subscriber import run_subscriber

LOGGER = logging.getLogger(__name__)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "0") == "1"
MQTT_ENABLED = os.getenv("MQTT_ENABLED", "0") == "1"


def create_app(*, pipeline: TelemetryPipeline | None = None, create_schema: bool = True, start_subscriber: bool = MQTT_ENABLED) -> FastAPI:
    app = FastAPI(title="Shop-floor Weighing")
    app.state.telemetry = pipeline or TelemetryPipeline()
    app.include_router(weighing_router)
    app.include_router(telemetry_router)

    @app.on_event("startup")
    async def _startup():
        configure_logging(level=LOG_LEVEL, json_format=LOG_JSON)
        if create_schema:
            # Dev-friendly schema creation (migrations are available for real upgrades)
            Base.metadata.create_all(bind=engine)
        if start_subscriber:
            task = asyncio.create_task(run_subscriber(app.state.telemetry))
            task.add_done_callback(_stop_process_on_subscriber_exit)
            app.state.subscriber_task = task

    @app.on_event("shutdown")
    async def _shutdown():
        task = getattr(app.state, "subscriber_task", None)
        if task is not None:
            task.remove_done_callback(_stop_process_on_subscriber_exit)
            task.cancel()

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


def _stop_process_on_subscriber_exit(task: asyncio.Task) -> None:
    # Subscriber loss is fatal; the process supervisor restarts us.
    if task.cancelled():
        return
    LOGGER.critical("Telemetry subscriber stopped: %s; terminating process", task.exception())
    os.kill(os.getpid(), signal.SIGTERM)


app = create_app()
