"""
Error responses for the HTTP API

Maps the domain ErrorKind taxonomy and request validation failures onto
stable, enumerable error codes. Internal failures are logged and answered
with a single generic code.
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..errors import BankingError, ErrorKind
from ..logging_config import get_logger, log_action


logger = get_logger("corebank.api")


class ErrorCode(str, Enum):
    """Error codes returned in the ``code`` field of error responses"""
    MISSING_BEARER_TOKEN = "MISSING_BEARER_TOKEN"
    INVALID_BEARER_TOKEN = "INVALID_BEARER_TOKEN"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MALFORMED_BODY = "MALFORMED_BODY"
    ACCOUNT_ALREADY_EXISTS = "ACCOUNT_ALREADY_EXISTS"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    ACCOUNT_SECRET_INVALID = "ACCOUNT_SECRET_INVALID"
    ACCOUNT_FUNDS_INSUFFICIENT = "ACCOUNT_FUNDS_INSUFFICIENT"
    TRANSFER_SAME_ACCOUNT = "TRANSFER_SAME_ACCOUNT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Default status and code per error kind; routes override NOT_FOUND where needed
ERROR_RESPONSES: Dict[ErrorKind, Tuple[int, ErrorCode]] = {
    ErrorKind.MISSING_CREDENTIAL: (status.HTTP_403_FORBIDDEN, ErrorCode.MISSING_BEARER_TOKEN),
    ErrorKind.INVALID_CREDENTIAL: (status.HTTP_403_FORBIDDEN, ErrorCode.INVALID_BEARER_TOKEN),
    ErrorKind.TOKEN_INVALID: (status.HTTP_403_FORBIDDEN, ErrorCode.INVALID_BEARER_TOKEN),
    ErrorKind.TOKEN_MALFORMED: (status.HTTP_403_FORBIDDEN, ErrorCode.INVALID_BEARER_TOKEN),
    ErrorKind.DUPLICATE_IDENTITY: (422, ErrorCode.ACCOUNT_ALREADY_EXISTS),
    ErrorKind.NOT_FOUND: (status.HTTP_404_NOT_FOUND, ErrorCode.ACCOUNT_NOT_FOUND),
    ErrorKind.INSUFFICIENT_FUNDS: (422, ErrorCode.ACCOUNT_FUNDS_INSUFFICIENT),
    ErrorKind.SAME_ACCOUNT: (422, ErrorCode.TRANSFER_SAME_ACCOUNT),
    ErrorKind.INVALID_AMOUNT: (422, ErrorCode.VALIDATION_ERROR),
    ErrorKind.NEGATIVE_BALANCE: (422, ErrorCode.VALIDATION_ERROR),
}


def error_response(status_code: int, code: ErrorCode, details: Optional[List[str]] = None) -> JSONResponse:
    """Render an error body ``{"code": ..., "details": [...]}``"""
    body = {"code": code.value}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def describe_validation_error(error: dict) -> str:
    """Turn one pydantic error into a field-level message"""
    location = [part for part in error.get("loc", ()) if isinstance(part, str)]
    field = location[-1] if location else "body"
    error_type = error.get("type", "")
    ctx = error.get("ctx") or {}

    if error_type == "missing":
        return f"{field} is required"
    if error_type == "string_too_short":
        if ctx.get("min_length") == 1:
            return f"{field} is required"
        return f"{field} must have at least {ctx.get('min_length')} characters"
    if error_type == "greater_than":
        return f"{field} must be greater than {ctx.get('gt')}"
    if error_type == "greater_than_equal":
        return f"{field} must be greater than or equal to {ctx.get('ge')}"
    return f"{field} is not valid"


async def banking_error_handler(request: Request, exc: BankingError) -> JSONResponse:
    mapped = ERROR_RESPONSES.get(exc.kind)
    if mapped is None:
        return await internal_error_handler(request, exc)
    status_code, code = mapped
    details = [exc.message] if code == ErrorCode.VALIDATION_ERROR else None
    return error_response(status_code, code, details)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if any(error.get("type") == "json_invalid" for error in errors):
        return error_response(status.HTTP_400_BAD_REQUEST, ErrorCode.MALFORMED_BODY)
    return error_response(
        422,
        ErrorCode.VALIDATION_ERROR,
        [describe_validation_error(error) for error in errors]
    )


async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log_action(
        logger, "error", f"Internal error on {request.method} {request.url.path}: {exc}",
        action="internal_error", resource=request.url.path,
        exc_info=(type(exc), exc, exc.__traceback__)
    )
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.INTERNAL_ERROR)
