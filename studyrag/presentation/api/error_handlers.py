"""Maps domain exceptions to HTTP responses."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from studyrag.domain.exceptions import (
    EntityNotFoundError,
    GenerationError,
    InsufficientMaterialError,
    InvalidInputError,
    ProviderError,
)

logger = logging.getLogger(__name__)

# Checked in order; subclasses must come before their bases.
_STATUS_BY_ERROR: list[tuple[type[Exception], int]] = [
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
    (EntityNotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientMaterialError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
    (GenerationError, status.HTTP_502_BAD_GATEWAY),
]


async def _domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    for error_type, _ in _STATUS_BY_ERROR:
        app.add_exception_handler(error_type, _domain_error_handler)
