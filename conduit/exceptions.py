"""
Error taxonomy and its HTTP mapping.

Services raise ``ApiError`` subclasses; the handlers registered by
``setup_exception_handlers`` turn them into the JSON error envelopes the
clients expect.  Token failures have their own ``TokenError`` branch: they are
internal classifications that the request boundary collapses into
``UnauthorizedError`` so nothing about *why* a token was rejected leaks out.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code: int = 500

    def __init__(self, message: str = "internal server error") -> None:
        self.message = message
        super().__init__(message)

    def body(self) -> dict:
        return {"errors": [self.message]}


class NotFoundError(ApiError):
    status_code = 404

    def __init__(self, entity: str = "entity") -> None:
        self.entity = entity
        super().__init__(f"{entity} not found")

    def body(self) -> dict:
        # Clients only ever see the generic form.
        return {"errors": ["entity not found"]}


class ValidationError(ApiError):
    """Field-keyed validation failure; *errors* maps field -> messages."""

    status_code = 422

    def __init__(self, errors: dict[str, list[str]]) -> None:
        self.errors = {field: list(messages) for field, messages in errors.items()}
        super().__init__("validation failed")

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls({field: [message]})

    def body(self) -> dict:
        return {"errors": self.errors}


class UnauthorizedError(ApiError):
    status_code = 401

    def __init__(self) -> None:
        super().__init__("401 Unauthorized")

    def body(self) -> dict:
        return {"errors": {"token": [self.message]}}


class ForbiddenError(ApiError):
    status_code = 403

    def __init__(self) -> None:
        super().__init__("403 Forbidden")

    def body(self) -> dict:
        return {"errors": {"authorization": [self.message]}}


class ConflictError(ApiError):
    status_code = 409

    def __init__(self, field: str, message: str = "has already been taken") -> None:
        self.field = field
        super().__init__(message)

    def body(self) -> dict:
        return {"errors": {self.field: [self.message]}}


class ServiceUnavailableError(ApiError):
    status_code = 503

    def __init__(self, message: str = "service unavailable") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Token classification (internal only)
# ---------------------------------------------------------------------------

class TokenError(Exception):
    pass


class MalformedTokenError(TokenError):
    pass


class TokenSignatureError(TokenError):
    pass


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.body())


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Reshape FastAPI's request validation errors into ``{errors: {field: [...]}}``."""
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        names = [str(part) for part in error["loc"] if isinstance(part, str)]
        # loc looks like ("body", "user", "email") or ("query", "limit")
        field = names[-1] if len(names) > 1 else "body"
        errors.setdefault(field, []).append(error["msg"])
    return JSONResponse(status_code=422, content={"errors": errors})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return JSONResponse(status_code=404, content={"errors": ["entity not found"]})
    return JSONResponse(
        status_code=exc.status_code,
        content={"errors": [str(exc.detail)]},
        headers=getattr(exc, "headers", None),
    )


async def pool_timeout_handler(request: Request, exc: PoolTimeoutError) -> JSONResponse:
    logger.warning("Connection pool exhausted serving %s %s", request.method, request.url.path)
    return await api_error_handler(request, ServiceUnavailableError())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error serving %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(status_code=500, content={"errors": ["internal server error"]})


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(PoolTimeoutError, pool_timeout_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
