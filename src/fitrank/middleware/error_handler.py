"""Global error handlers: engine errors and everything else become JSON."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fitrank.errors import (
    AuthorizationError,
    ConflictError,
    FitRankError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)

logger = structlog.get_logger()

STATUS_CODES: dict[type[FitRankError], int] = {
    NotFoundError: 404,
    AuthorizationError: 403,
    ConflictError: 409,
    InvalidStateError: 409,
    ValidationError: 422,
}


def status_for(exc: FitRankError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 400


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(FitRankError)
    async def engine_error_handler(request: Request, exc: FitRankError) -> JSONResponse:
        status_code = status_for(exc)
        logger.info(
            "engine_error",
            path=request.url.path,
            code=exc.code,
            status_code=status_code,
            detail=exc.message,
        )
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "detail": "Validation error",
                "code": ValidationError.code,
                "errors": jsonable_errors(exc),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, always JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Pydantic error dicts minus the ``ctx`` payload, which may hold exceptions."""
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]
