# pyright: reportUnusedFunction=false
from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.services.coach import CoachUnavailableError


logger = logging.getLogger(__name__)


def install_exception_handlers(app: FastAPI) -> None:
    """Map infrastructure failures to generic responses; details stay in the logs."""

    @app.exception_handler(SQLAlchemyError)
    async def database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error(
            "database error method=%s path=%s",
            request.method,
            request.url.path,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(CoachUnavailableError)
    async def coach_unavailable(request: Request, exc: CoachUnavailableError) -> JSONResponse:
        logger.error("coach provider error path=%s error=%s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": "AI coach is temporarily unavailable"},
        )
