"""
Stream Scene API Response Utilities
Standardized response format and error handling
"""
from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from typing import Any, Dict, List, Optional

from .logging_config import api_logger
from .timeutils import utc_now, isoformat_z


# ============================================================
# SUCCESS RESPONSES
# ============================================================

def success(message: str = None, **data: Any) -> Dict:
    """Create success response, e.g. ``success(post=...)`` -> ``{"ok": True, "post": ...}``"""
    response = {"ok": True}
    response.update(data)
    if message:
        response["message"] = message
    return response


# ============================================================
# ERROR RESPONSES
# ============================================================

class ApiException(HTTPException):
    """Custom API exception with error codes"""

    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: str = None,
        details: Dict = None,
    ):
        self.error_code = error_code or f"ERR_{status_code}"
        self.details = details
        super().__init__(status_code=status_code, detail=message)


# Common exceptions
def bad_request(message: str, code: str = "BAD_REQUEST", details: Dict = None):
    raise ApiException(400, message, code, details)

def not_found(resource: str = "Resource", id: Any = None, message: str = None):
    reason = f"{resource} not found" if id is None else f"{resource} '{id}' not found"
    if message:
        raise ApiException(404, message, "NOT_FOUND", {"reason": reason})
    raise ApiException(404, reason, "NOT_FOUND")

def conflict(message: str = "Resource conflict", details: Dict = None):
    raise ApiException(409, message, "CONFLICT", details)

def upstream_error(message: str, details: Dict = None):
    raise ApiException(502, message, "UPSTREAM_ERROR", details)


# ============================================================
# EXCEPTION HANDLER
# ============================================================

def error_response(status_code: int, message: str, error_code: str, details: Optional[Dict] = None) -> JSONResponse:
    """The one error body every failure is rendered with."""
    return JSONResponse(
        status_code=status_code,
        content={
            "ok": False,
            "error": message,
            "error_code": error_code,
            "details": details,
            "timestamp": isoformat_z(utc_now()),
        },
    )


def _validation_message(errors: List[Dict]) -> str:
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")


async def api_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render ApiException, request validation failures (as 400) and anything unexpected (as 500)."""
    path = request.url.path

    if isinstance(exc, ApiException):
        api_logger.warning(exc.detail, status_code=exc.status_code, error_code=exc.error_code, path=path)
        return error_response(exc.status_code, exc.detail, exc.error_code, exc.details)

    if isinstance(exc, RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        api_logger.warning("Validation failed", path=path, errors=errors)
        return error_response(400, _validation_message(errors), "VALIDATION_ERROR", {"errors": errors})

    api_logger.error("Unhandled error", error=exc, path=path)
    return error_response(500, "An unexpected error occurred", "INTERNAL_ERROR")
