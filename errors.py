"""
Error types shared by the services and the HTTP layer.

Services return ``ServiceResult`` values; the routes turn failed results into
``AppError`` exceptions which the handlers below render as JSON.
"""

import functools
import logging
from typing import Any, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


# ==================== Result type ====================

class ServiceResult(BaseModel):
    success: bool
    data: Any = None
    message: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    code: Optional[str] = None


def ok(data: Any = None, message: Optional[str] = None) -> ServiceResult:
    return ServiceResult(success=True, data=data, message=message)


def fail(message: str, code: str = "invalid", errors: Optional[List[str]] = None) -> ServiceResult:
    return ServiceResult(success=False, message=message, code=code, errors=errors or [])


def store_call(message: str):
    """Convert driver failures raised inside a service method into a failed result."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except PyMongoError as e:
                logger.exception(f"{message}: {e}")
                return fail(message, code="store_error", errors=[str(e)])
        return wrapper
    return decorator


# ==================== Custom Exceptions ====================

class AppError(Exception):
    """Base exception for application errors."""
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors or []

    def to_dict(self):
        return {
            'success': False,
            'error': self.message,
            'errors': self.errors,
            'status': self.status_code,
        }


class ValidationError(AppError):
    """Raised when input validation fails."""
    status_code = 400


class AuthenticationError(AppError):
    status_code = 401


class AuthorizationError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    """Raised when a domain rule rejects the operation (e.g. asset not available)."""
    status_code = 409


class StoreError(AppError):
    """Raised when the document store cannot be reached."""
    status_code = 503


RESULT_ERRORS = {
    "invalid": ValidationError,
    "unauthenticated": AuthenticationError,
    "forbidden": AuthorizationError,
    "not_found": NotFoundError,
    "conflict": ConflictError,
    "store_error": StoreError,
}


def raise_for_result(result: ServiceResult) -> Any:
    """Return ``result.data`` or raise the error matching ``result.code``."""
    if result.success:
        return result.data
    error_cls = RESULT_ERRORS.get(result.code or "invalid", AppError)
    raise error_cls(result.message or "Request failed", errors=result.errors)


# ==================== Error Handlers ====================

def register_error_handlers(app: FastAPI):
    """Register JSON error handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, error: AppError):
        if error.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {error.message}")
        else:
            logger.warning(f"Application error: {error.message}")
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, error: RequestValidationError):
        messages = []
        for item in error.errors():
            loc = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
            messages.append(f"{loc}: {item.get('msg')}" if loc else item.get("msg"))
        body = ValidationError("Invalid request", errors=messages).to_dict()
        return JSONResponse(status_code=422, content={**body, 'status': 422})

    @app.exception_handler(PyMongoError)
    async def handle_store_error(request: Request, error: PyMongoError):
        logger.exception(f"Database error on {request.method} {request.url.path}")
        return JSONResponse(status_code=503, content=StoreError("Database unavailable").to_dict())
