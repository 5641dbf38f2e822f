from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from genbill.core.errors import DomainError, PersistenceError, ValidationError

logger = logging.getLogger("genbill.api")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, _domain_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, _store_error_handler)


async def _domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "request failed method=%s path=%s kind=%s detail=%s",
            request.method,
            request.url.path,
            exc.kind,
            exc.message,
            exc_info=exc.__cause__,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(
        "unwrapped store error method=%s path=%s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    error = PersistenceError("The data store is unavailable")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    error = ValidationError("; ".join(problems) or "Invalid request")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())
