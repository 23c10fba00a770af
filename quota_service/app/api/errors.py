"""도메인 예외 -> HTTP 응답 변환."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from ..exceptions import (
    DuplicateGenerationError,
    GenerationNotFoundError,
    InsufficientQuotaError,
    InvalidRequestError,
    QuotaWriteConflictError,
    ReservationPersistenceError,
)
from .schemas.quota import InsufficientCredits, InsufficientQuotaResponse


logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def insufficient_quota_handler(
    request: Request, exc: InsufficientQuotaError
) -> JSONResponse:
    body = InsufficientQuotaResponse(
        credits=InsufficientCredits(available=exc.available, required=exc.required)
    )
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content=body.model_dump(by_alias=True),
    )


async def reservation_persistence_handler(
    request: Request, exc: ReservationPersistenceError
) -> JSONResponse:
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create reservation"
    )


async def write_conflict_handler(
    request: Request, exc: QuotaWriteConflictError
) -> JSONResponse:
    logger.warning("write conflict: %s", exc)
    return _error(status.HTTP_409_CONFLICT, "Concurrent update, please retry")


async def duplicate_generation_handler(
    request: Request, exc: DuplicateGenerationError
) -> JSONResponse:
    logger.warning("duplicate generation: %s", exc)
    return _error(status.HTTP_409_CONFLICT, "Task already has a generation record")


async def not_found_handler(
    request: Request, exc: GenerationNotFoundError
) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, "Generation not found")


async def invalid_request_handler(
    request: Request, exc: InvalidRequestError
) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, str(exc))


async def database_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.exception("database error on %s %s", request.method, request.url.path)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Database error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InsufficientQuotaError, insufficient_quota_handler)
    app.add_exception_handler(
        ReservationPersistenceError, reservation_persistence_handler
    )
    app.add_exception_handler(QuotaWriteConflictError, write_conflict_handler)
    app.add_exception_handler(
        DuplicateGenerationError, duplicate_generation_handler
    )
    app.add_exception_handler(GenerationNotFoundError, not_found_handler)
    app.add_exception_handler(InvalidRequestError, invalid_request_handler)
    app.add_exception_handler(PyMongoError, database_error_handler)
