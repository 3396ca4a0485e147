"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from scheduled_matching.config import AppConfig
from scheduled_matching.container import build_services, init_database, recover_interrupted
from scheduled_matching.errors import ScheduledMatchingError, ValidationError

from .batches import router as batches_router
from .manual import router as manual_router
from .schedule import router as schedule_router

logger = logging.getLogger("scheduled_matching.web")


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request"


def create_app(
    config: AppConfig | None = None,
    session_factory: sessionmaker | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    services = build_services(config, session_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: schema, default configs, stale batches, cron jobs
        init_database(services)
        recover_interrupted(services)
        registered = services.driver.register_all()
        if start_scheduler and services.config.scheduler.autostart:
            services.driver.start()
        logger.info("Scheduled matching ready: %d country schedule(s) enabled", registered)

        yield

        services.driver.shutdown()

    app = FastAPI(title="Scheduled Matching", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(ScheduledMatchingError)
    async def scheduled_matching_error_handler(request: Request, exc: ScheduledMatchingError):
        logger.warning("%s %s -> %d %s: %s", request.method, request.url.path, exc.status_code, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        error = ValidationError(_validation_message(exc))
        logger.warning("%s %s -> 400: %s", request.method, request.url.path, error.message)
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    app.include_router(schedule_router)
    app.include_router(batches_router)
    app.include_router(manual_router)

    @app.get("/health")
    def health():
        return {"status": "ok", "scheduler": services.driver.get_scheduler_info()}

    return app


app = create_app()
