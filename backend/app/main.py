from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.api.notifications import router as notifications_router
from app.db.base import Base
from app.db.session import DEFAULT_DATABASE_URL, get_engine
from app.services.errors import ApiError

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _should_create_schema() -> bool:
    # Outside SQLite the schema belongs to Alembic unless explicitly requested.
    flag = os.getenv("AUTO_CREATE_SCHEMA")
    if flag is not None:
        return flag == "1"
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL).startswith("sqlite")


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    if _should_create_schema():
        Base.metadata.create_all(bind=get_engine())
        logger.info("schema_created")
    yield


def _error_response(status_code: int, error: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error})


def create_app() -> FastAPI:
    app = FastAPI(title="Notification Core API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ApiError)
    async def handle_api_error(_: Request, exc: ApiError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("api_error", extra={"code": exc.code})
        return _error_response(exc.status_code, {"code": exc.code, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        _: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _error_response(
            422,
            {
                "code": "REQUEST_VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": exc.errors(),
            },
        )

    @app.get("/health", tags=["system"])
    def health() -> JSONResponse:
        try:
            with get_engine().connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("health_database_unavailable")
            return JSONResponse(
                status_code=503, content={"status": "degraded", "database": "unavailable"}
            )
        return JSONResponse(content={"status": "ok", "database": "ok"})

    app.include_router(notifications_router)
    return app


app = create_app()
