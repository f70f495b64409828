"""FastAPI entrypoint for the task board server."""

from __future__ import annotations

import logging
import random
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from entropy_kanban.broadcast import BroadcastScheduler
from entropy_kanban.config import AppConfig, load_config
from entropy_kanban.corruption import CorruptionScheduler
from entropy_kanban.errors import (
    ErrorResponse,
    KanbanError,
    VersionConflict,
    conflict_response,
    error_response,
)
from entropy_kanban.logging_setup import setup_logging
from entropy_kanban.router import task_router
from entropy_kanban.store import TaskStore
from entropy_kanban.versioning import VersionGuard

# Import to register routes with the shared router.
from entropy_kanban import routes  # noqa: F401

logger = logging.getLogger(__name__)


def create_app(config: AppConfig | None = None) -> FastAPI:
    config = config or load_config()
    setup_logging(config.log_level)

    store = TaskStore()
    broadcaster = BroadcastScheduler(
        store,
        heartbeat_interval=config.heartbeat_interval,
        send_timeout=config.broadcast_send_timeout,
    )
    corruption = CorruptionScheduler(
        store,
        rng=random.Random(config.corruption_seed),
        interval=config.corruption_interval,
        stale_threshold=config.stale_threshold,
        on_corrupt=lambda event: broadcaster.request_broadcast(),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Write-triggered pushes always run; the flag only gates timed work.
        broadcaster.start(heartbeat=config.enable_background)
        if config.enable_background:
            corruption.start()
            logger.info(
                "Background loops started (heartbeat %.1fs, corruption every %.1fs)",
                config.heartbeat_interval,
                config.corruption_interval,
            )
        try:
            yield
        finally:
            await corruption.stop()
            await broadcaster.stop()
            logger.info("Background loops stopped")

    app = FastAPI(lifespan=lifespan)
    app.state.config = config
    app.state.store = store
    app.state.guard = VersionGuard(store)
    app.state.broadcaster = broadcaster
    app.state.corruption = corruption

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    @app.exception_handler(KanbanError)
    def handle_kanban_error(request: Request, exc: KanbanError) -> JSONResponse:
        if isinstance(exc, VersionConflict):
            return JSONResponse(status_code=409, content=conflict_response(exc))
        return JSONResponse(
            status_code=exc.status_code, content=error_response(exc.error)
        )

    @app.exception_handler(RequestValidationError)
    def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        error = ErrorResponse(
            code="INVALID_REQUEST",
            message="Request body could not be parsed.",
            details={"errors": [str(item.get("msg", "")) for item in exc.errors()]},
        )
        return JSONResponse(status_code=400, content=error_response(error))

    @app.exception_handler(Exception)
    def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        error = ErrorResponse(code="INTERNAL_ERROR", message="Internal server error")
        return JSONResponse(status_code=500, content=error_response(error))

    @app.get("/health", status_code=200)
    def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(task_router)
    return app
