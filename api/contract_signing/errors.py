import logging
from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ContractError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class Unauthenticated(ContractError):
    status_code = 401


class NotFound(ContractError):
    status_code = 404


class InvalidState(ContractError):
    status_code = 400


class ValidationError(ContractError):
    status_code = 400


class PageRangeError(ValidationError):
    pass


class ExternalServiceError(ContractError):
    status_code = 502


class StorageError(ContractError):
    status_code = 500


def register_error_handlers(app) -> None:
    @app.exception_handler(ContractError)
    async def contract_error_handler(request: Request, exc: ContractError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.details)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        problems = []
        for err in exc.errors():
            location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": "; ".join(problems)},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Unexpected error"})
