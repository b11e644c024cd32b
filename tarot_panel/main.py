import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import tarot_panel.core.models  # noqa: F401  registers every table on Base.metadata
from tarot_panel.api.attendance.router import router as attendance_router
from tarot_panel.api.auth.router import router as auth_router
from tarot_panel.api.cron.router import router as cron_router
from tarot_panel.api.incidents.router import router as incidents_router
from tarot_panel.api.invoices.router import router as invoices_router
from tarot_panel.api.monthly.router import router as monthly_router
from tarot_panel.api.presence.router import router as presence_router
from tarot_panel.api.storage.router import router as storage_router
from tarot_panel.api.teams.router import router as teams_router
from tarot_panel.api.workers.router import router as workers_router
from tarot_panel.core.config import settings
from tarot_panel.core.logging import configure_logging

logger = logging.getLogger(__name__)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"ok": False, "error": "BAD_BODY", "details": jsonable_encoder(exc.errors())},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"ok": False, "error": "INTERNAL_ERROR"},
    )


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Tarot Celestial · Panel Interno")

    # CORS: allow the panel frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Routers
    app.include_router(auth_router)
    app.include_router(workers_router)
    app.include_router(attendance_router)
    app.include_router(presence_router)
    app.include_router(incidents_router)
    app.include_router(monthly_router)
    app.include_router(invoices_router)
    app.include_router(teams_router)
    app.include_router(storage_router)
    app.include_router(cron_router)

    return app


app = create_app()
