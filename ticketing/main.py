"""
Entry point for the ticketing backend.

This script creates the FastAPI application, includes all API routers,
maps domain errors to JSON responses and starts the in-process SLA
monitor. Run with:

    uvicorn ticketing.main:app --reload

"""

from __future__ import annotations

import logging
import os
import threading

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .core.db import engine
from .models import Base
from .services.sla_monitor import run_sla_monitor
from .scripts.run_migrations import run_migrations_to_head

from .api import api_router
from .core.config import get_app_env
from .core.errors import TicketingError, log_exception


def _env_true(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


def create_app() -> FastAPI:
    app = FastAPI(title="Ticketing Backend", version="0.1.0")
    # Include API routers
    app.include_router(api_router)
    app.state.sla_monitor_stop = None
    app.state.sla_monitor_thread = None

    @app.exception_handler(TicketingError)
    async def _ticketing_error(_: Request, exc: TicketingError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})

    @app.on_event("startup")
    def _init_db() -> None:
        logger = logging.getLogger("startup")
        env = get_app_env()
        if _env_true("AUTO_CREATE_DB"):
            try:
                Base.metadata.create_all(bind=engine)
            except Exception as exc:
                log_exception(logger, "DB create_all failed", exc=exc)
                if env == "prod":
                    raise
        if _env_true("AUTO_RUN_MIGRATIONS"):
            try:
                run_migrations_to_head()
            except Exception as exc:
                log_exception(logger, "DB migrations failed", exc=exc)
                if env == "prod":
                    raise
        if _env_true("ENABLE_SLA_MONITOR"):
            stop_event = threading.Event()
            thread = threading.Thread(
                target=run_sla_monitor,
                args=(stop_event,),
                daemon=True,
                name="sla-monitor",
            )
            thread.start()
            app.state.sla_monitor_stop = stop_event
            app.state.sla_monitor_thread = thread

    @app.on_event("shutdown")
    def _shutdown() -> None:
        stop_event = getattr(app.state, "sla_monitor_stop", None)
        if stop_event:
            stop_event.set()
        thread = getattr(app.state, "sla_monitor_thread", None)
        if thread:
            thread.join(timeout=5)

    return app


app = create_app()
