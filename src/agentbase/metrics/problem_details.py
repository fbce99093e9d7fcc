"""
Problem Details for HTTP APIs (RFC 7807) responses for the metrics service.
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException

from ..errors import BrokerConnectionError

PROBLEM_JSON = "application/problem+json"


class ProblemDetail(BaseModel):
    """Problem Details schema according to RFC 7807."""

    type: str = Field(..., description="A URI reference that identifies the problem type")
    title: str = Field(..., description="A short, human-readable summary of the problem type")
    status: int = Field(..., description="The HTTP status code")
    detail: str = Field(..., description="A human-readable explanation specific to this occurrence")
    instance: str = Field(..., description="The request path that produced the problem")
    errors: Optional[dict[str, list[str]]] = Field(
        None, description="Optional field for validation errors"
    )


class ErrorTypes:
    VALIDATION_ERROR = "https://agentbase.dev/problems/validation-error"
    NOT_FOUND = "https://agentbase.dev/problems/not-found"
    BAD_REQUEST = "https://agentbase.dev/problems/bad-request"
    INTERNAL_ERROR = "https://agentbase.dev/problems/internal-error"
    SERVICE_UNAVAILABLE = "https://agentbase.dev/problems/service-unavailable"


_ERROR_MAPPINGS = {
    400: (ErrorTypes.BAD_REQUEST, "Bad Request"),
    404: (ErrorTypes.NOT_FOUND, "Not Found"),
    422: (ErrorTypes.VALIDATION_ERROR, "Validation Error"),
    500: (ErrorTypes.INTERNAL_ERROR, "Internal Server Error"),
    503: (ErrorTypes.SERVICE_UNAVAILABLE, "Service Unavailable"),
}


def problem_response(
    status: int,
    detail: str,
    instance: str,
    errors: Optional[dict[str, list[str]]] = None,
) -> JSONResponse:
    error_type, title = _ERROR_MAPPINGS.get(status, _ERROR_MAPPINGS[500])
    problem = ProblemDetail(
        type=error_type,
        title=title,
        status=status,
        detail=detail,
        instance=instance,
        errors=errors,
    )
    return JSONResponse(
        status_code=status,
        content=problem.model_dump(exclude_none=True),
        media_type=PROBLEM_JSON,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return problem_response(
        exc.status_code,
        str(exc.detail) if exc.detail else "An error occurred",
        request.url.path,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.setdefault(field, []).append(error["msg"])
    return problem_response(422, "Request validation failed", request.url.path, errors or None)


async def broker_exception_handler(request: Request, exc: BrokerConnectionError) -> JSONResponse:
    logger.error(f"Broker unavailable while serving {request.url.path}: {exc}")
    return problem_response(503, "Metrics broker is unavailable", request.url.path)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f"Unhandled exception on {request.method} {request.url.path}")
    return problem_response(500, "An internal server error occurred", request.url.path)


def setup_problem_detail_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(BrokerConnectionError, broker_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
