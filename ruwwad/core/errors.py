import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    status.HTTP_400_BAD_REQUEST: "Invalid request. Please check your input.",
    status.HTTP_401_UNAUTHORIZED: "Authentication required. Please log in again.",
    status.HTTP_403_FORBIDDEN: "You are not allowed to perform this action.",
    status.HTTP_404_NOT_FOUND: "The requested resource was not found.",
    status.HTTP_409_CONFLICT: "This action conflicts with existing data.",
    status.HTTP_503_SERVICE_UNAVAILABLE: "Service unavailable. Please try again later.",
}
SERVER_ERROR_MESSAGE = "Server error"

DATABASE_UNAVAILABLE = "Database unavailable. Verify DATABASE_URL and database credentials."


def status_message(status_code: int) -> str:
    if status_code in STATUS_MESSAGES:
        return STATUS_MESSAGES[status_code]
    if status_code >= 500:
        return SERVER_ERROR_MESSAGE
    if status_code >= 400:
        return STATUS_MESSAGES[status.HTTP_400_BAD_REQUEST]
    return ""


def database_unavailable(exc: Exception) -> HTTPException:
    logger.error("Database error: %s", exc)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE)


def _format_validation_error(error: dict) -> str:
    location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
    message = error.get("msg", "Invalid value")
    # Pydantic prefixes messages raised from validators
    message = message.removeprefix("Value error, ")
    if location:
        return f"{'.'.join(location)}: {message}"
    return message


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if exc.detail is not None else status_message(exc.status_code)
    body = {"message": detail} if isinstance(detail, str) else {"message": status_message(exc.status_code), "details": detail}
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [_format_validation_error(error) for error in exc.errors()]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": errors[0] if errors else status_message(400), "errors": errors},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": SERVER_ERROR_MESSAGE},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
