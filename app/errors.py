"""API error taxonomy. Every error renders as JSON with at least an `error` field."""
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

GENERIC_ERROR = "Internal server error"
GENERIC_MESSAGE = "An unexpected error occurred. Please try again or contact support."


class ApiError(Exception):
    status_code = 500

    def __init__(
        self,
        error: str,
        message: str | None = None,
        *,
        code: str | None = None,
        field: str | None = None,
        headers: dict[str, str] | None = None,
        extra: dict | None = None,
    ):
        super().__init__(error)
        self.error = error
        self.message = message
        self.code = code
        self.field = field
        self.headers = headers
        self.extra = extra or {}

    def to_body(self) -> dict:
        body = {"error": self.error}
        if self.message:
            body["message"] = self.message
        if self.code:
            body["code"] = self.code
        if self.field:
            body["field"] = self.field
        body.update(self.extra)
        return body


class ValidationError(ApiError):
    status_code = 400


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 400


class RateLimitedError(ApiError):
    status_code = 429


class UpstreamServiceError(ApiError):
    """Processor/database/auth failure. Client only ever sees the generic message."""
    status_code = 500

    def __init__(self):
        super().__init__(GENERIC_ERROR, GENERIC_MESSAGE)


class ConfigurationError(ApiError):
    status_code = 503


def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)


def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in e.get("loc", ()) if p != "body") for e in exc.errors()]
    fields = [f for f in fields if f]
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request",
            "message": "The request body is missing or malformed.",
            **({"field": fields[0]} if fields else {}),
        },
    )
