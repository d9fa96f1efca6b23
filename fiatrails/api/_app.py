"""
FastAPI application factory.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from fiatrails._types import Clock, system_clock
from fiatrails.api._errors import ApiError, error_response
from fiatrails.api._routes import router
from fiatrails.api._workers import start_workers, stop_workers
from fiatrails.config import Settings
from fiatrails.errors import MintErrors
from fiatrails.ledger import LedgerClient
from fiatrails.log import configure_logging
from fiatrails.services import Services, build_services

logger = structlog.get_logger(component="api")


def create_app(
    services: Services | None = None,
    *,
    settings: Settings | None = None,
    ledger: LedgerClient | None = None,
    clock: Clock = system_clock,
    run_workers: bool = True,
) -> FastAPI:
    """
    Build the HTTP app.

    With services given, the app uses them as-is (tests). Otherwise the
    lifespan builds them from settings (default: Settings.from_env()) and
    disposes of them on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = services is None
        if owned:
            resolved = settings or Settings.from_env()
            configure_logging(resolved.log_level, resolved.log_json)
            app.state.services = await build_services(resolved, ledger, clock)
        current: Services = app.state.services

        tasks = start_workers(current) if run_workers else []
        logger.info("app_started", workers=len(tasks))
        try:
            yield
        finally:
            await stop_workers(current, tasks)
            if owned:
                await current.close()
            logger.info("app_stopped")

    app = FastAPI(title="fiatrails", lifespan=lifespan)
    if services is not None:
        app.state.services = services
    app.include_router(router)

    @app.exception_handler(ApiError)
    async def api_error(request: Request, exc: ApiError) -> JSONResponse:
        return error_response(exc.error)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response(MintErrors.invalid_request(str(exc.errors()[:1])))

    @app.exception_handler(SQLAlchemyError)
    async def store_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("store_failed", path=request.url.path, error=str(exc))
        return error_response(MintErrors.store_error("Storage unavailable", exc))

    return app


__all__ = ("create_app",)
