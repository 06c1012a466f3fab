"""
Error Handling Module for OpsGuard

Centralized error handling with:
- Custom exception hierarchy
- Standardized error responses
- Request-scoped error logging
- Payroll/pricing configuration errors
- Database error handling
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

# Configure logging
logger = logging.getLogger("opsguard.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    GUARD_NOT_FOUND = "GUARD_NOT_FOUND"
    QUOTE_NOT_FOUND = "QUOTE_NOT_FOUND"
    POSITION_NOT_FOUND = "POSITION_NOT_FOUND"
    PARAMETER_VERSION_NOT_FOUND = "PARAMETER_VERSION_NOT_FOUND"
    SALARY_STRUCTURE_NOT_FOUND = "SALARY_STRUCTURE_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.utcnow()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() + "Z",
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class InvalidAmountException(ValidationException):
    """Invalid monetary amount or count"""

    def __init__(self, amount: Any, field: str = "amount", message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid amount: {amount}. Amount must be zero or positive.",
            field=field,
            code=ErrorCode.INVALID_AMOUNT,
            details={"provided_amount": str(amount)},
        )


class ConfigurationError(ValidationException):
    """
    A package references a payroll setting the rate tables do not define
    (pension fund, health system, contract type, risk level).

    Never falls back to an arbitrary rate.
    """

    def __init__(self, field: str, value: Any, message: Optional[str] = None, allowed: Optional[list] = None):
        details = {"provided": str(value)}
        if allowed:
            details["allowed"] = sorted(str(a) for a in allowed)
        super().__init__(
            message=message or f"Unknown {field}: '{value}'",
            field=field,
            details=details,
            code=ErrorCode.CONFIGURATION_ERROR,
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class GuardNotFoundException(NotFoundException):
    """Guard not found"""

    def __init__(self, guard_id: Union[str, UUID]):
        super().__init__(
            resource_type="Guard",
            resource_id=guard_id,
            code=ErrorCode.GUARD_NOT_FOUND,
        )


class QuoteNotFoundException(NotFoundException):
    """Quote not found"""

    def __init__(self, quote_id: Union[str, UUID]):
        super().__init__(
            resource_type="Quote",
            resource_id=quote_id,
            code=ErrorCode.QUOTE_NOT_FOUND,
        )


class PositionNotFoundException(NotFoundException):
    """Quote position not found"""

    def __init__(self, position_id: Union[str, UUID]):
        super().__init__(
            resource_type="Position",
            resource_id=position_id,
            code=ErrorCode.POSITION_NOT_FOUND,
        )


class RateTablesNotFoundError(NotFoundException):
    """No payroll parameter version covers the requested date or ID"""

    def __init__(self, on_date: Optional[Any] = None, version_id: Optional[Union[str, UUID]] = None):
        if version_id is not None:
            message = f"Parameter version '{version_id}' not found"
        else:
            message = f"No parameter version in effect on {on_date}"
        super().__init__(
            resource_type="PayrollParameterVersion",
            resource_id=version_id,
            message=message,
            code=ErrorCode.PARAMETER_VERSION_NOT_FOUND,
        )


class SalaryStructureNotFoundError(NotFoundException):
    """No override, post or installation structure applies to the guard"""

    def __init__(self, guard_id: Union[str, UUID]):
        super().__init__(
            resource_type="SalaryStructure",
            resource_id=guard_id,
            message=f"No salary structure applies to guard '{guard_id}'",
            code=ErrorCode.SALARY_STRUCTURE_NOT_FOUND,
        )


class ConflictException(AppException):
    """Resource conflict exception"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


# ============================================================================
# Exception Handlers
# ============================================================================

# HTTPException status -> error code; anything unlisted is INTERNAL_ERROR
HTTP_STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: ErrorCode.INVALID_INPUT,
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
    status.HTTP_405_METHOD_NOT_ALLOWED: ErrorCode.INVALID_INPUT,
    status.HTTP_409_CONFLICT: ErrorCode.RESOURCE_CONFLICT,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ErrorCode.VALIDATION_ERROR,
}


def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Build the `{"detail": {...}}` body every error shares."""
    body: Dict[str, Any] = {
        "code": code.value,
        "message": message,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }
    if field:
        body["field"] = field
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"detail": body})


def classify_database_error(exc: SQLAlchemyError) -> Tuple[ErrorCode, str, int]:
    """
    Map a SQLAlchemy error to (code, client message, HTTP status).

    Unique violations surface as 409 so a duplicate parameter version or
    quote code reads as a conflict rather than a server fault.
    """
    if isinstance(exc, IntegrityError):
        reason = str(exc.orig).lower() if exc.orig else ""
        if "unique" in reason or "duplicate" in reason:
            return ErrorCode.DUPLICATE_ENTRY, "A record with this value already exists", status.HTTP_409_CONFLICT
        if "foreign key" in reason:
            return (
                ErrorCode.DATA_INTEGRITY_ERROR,
                "Referenced record does not exist",
                status.HTTP_422_UNPROCESSABLE_ENTITY,
            )
        return (
            ErrorCode.DATA_INTEGRITY_ERROR,
            "Data integrity constraint violated",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    if isinstance(exc, OperationalError):
        return ErrorCode.CONNECTION_ERROR, "Database is unavailable", status.HTTP_500_INTERNAL_SERVER_ERROR
    if isinstance(exc, DataError):
        return ErrorCode.DATABASE_ERROR, "Value rejected by the database", status.HTTP_422_UNPROCESSABLE_ENTITY
    return ErrorCode.DATABASE_ERROR, "A database error occurred", status.HTTP_500_INTERNAL_SERVER_ERROR


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    # Client errors are expected traffic; only server-side codes log at error level
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(
        level,
        "%s %s -> %s %s",
        request.method,
        request.url.path,
        exc.code.value,
        exc.message,
        exc_info=exc.original_error,
    )
    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    logger.warning("%s %s -> HTTP %s %s", request.method, request.url.path, exc.status_code, message)
    return create_error_response(
        code=HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Flatten pydantic errors into field/message/type triples."""
    errors = [
        {
            # Drop the leading "body"/"query"/"path" segment
            "field": ".".join(str(part) for part in error["loc"][1:]) or str(error["loc"][0]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.info("%s %s -> %d validation error(s)", request.method, request.url.path, len(errors))
    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    code, message, status_code = classify_database_error(exc)
    logger.error(
        "%s %s -> %s (%s)", request.method, request.url.path, code.value, type(exc).__name__, exc_info=True
    )
    return create_error_response(code=code, message=message, status_code=status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.critical(
        "%s %s -> unhandled %s", request.method, request.url.path, type(exc).__name__, exc_info=True
    )
    # Internal details stay in the log
    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
