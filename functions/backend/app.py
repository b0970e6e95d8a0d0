"""
FastAPI application entry point for the persona backend.
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.auth import ActorVerifier
from backend.config import Settings, get_settings
from backend.db import DbClient
from backend.dependencies import (
    build_actor_verifier,
    build_avatar_store,
    build_db_client,
    build_tts_client,
)
from backend.errors import ApiError
from backend.routes import router

_UNSET = object()


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Invalid parameters."})


def create_app(
    settings: Optional[Settings] = None,
    *,
    db: Optional[DbClient] = None,
    tts=_UNSET,
    verifier: Optional[ActorVerifier] = None,
) -> FastAPI:
    """
    Build the app and its clients. Clients are created once here and shared
    by every request; pass them in to override the settings-driven defaults
    (``tts=None`` disables speech synthesis).
    """
    settings = settings or get_settings()
    app = FastAPI(title="Persona Backend (FastAPI)", version="0.1.0")

    app.state.settings = settings
    app.state.db = db if db is not None else build_db_client(settings)
    app.state.tts = (
        build_tts_client(settings) if tts is _UNSET else tts
    )
    app.state.verifier = (
        verifier if verifier is not None else build_actor_verifier(settings)
    )
    app.state.avatar_store = build_avatar_store(settings, app.state.db)

    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
