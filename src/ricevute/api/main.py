"""
@file main.py
@brief Entry point FastAPI: logging, handler degli errori di dominio, router.
@ingroup api_module
"""

from __future__ import annotations
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ricevute.config import get_settings
from ricevute.domain.errors import (
    ExtractionError,
    FileValidationError,
    IdentityResolutionError,
    IntakeError,
    InvalidStateTransition,
    PersistenceError,
    RecordNotFound,
    ValidationError,
)
from .routes import router

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s  %(name)-30s  %(levelname)-5s  %(message)s",
)
logger = logging.getLogger(__name__)


def status_for(exc: IntakeError) -> int:
    """@brief Codice HTTP per ciascun errore di dominio."""
    if isinstance(exc, FileValidationError):
        return 413 if exc.too_large else 400
    if isinstance(exc, ExtractionError):
        return 422
    if isinstance(exc, (ValidationError, IdentityResolutionError)):
        return 400
    if isinstance(exc, InvalidStateTransition):
        return 409
    if isinstance(exc, RecordNotFound):
        return 404
    if isinstance(exc, PersistenceError):
        return 500
    return 400


app = FastAPI(title="Ricevute API", version="0.1.0")


@app.exception_handler(IntakeError)
async def intake_error_handler(request: Request, exc: IntakeError):
    status = status_for(exc)
    log = logger.error if status >= 500 else logger.warning
    log("%s %s -> %d %s: %s", request.method, request.url.path, status, exc.code, exc.message)
    return JSONResponse(status_code=status, content=exc.to_dict())


app.include_router(router)
