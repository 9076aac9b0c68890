from typing import Any, Optional, Dict
from datetime import datetime
from fastapi.responses import JSONResponse


def serialize_datetime(obj: Any) -> Any:
    """Convert datetime objects to ISO format strings for JSON serialization"""
    if isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, dict):
        return {k: serialize_datetime(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [serialize_datetime(item) for item in obj]
    return obj


def success_response(
    message: str = "Success",
    data: Any = None,
    status_code: int = 200,
    **extra: Any
) -> JSONResponse:
    """
    Standard success response

    Args:
        message: Success message
        data: Response data (optional)
        status_code: HTTP status code (default: 200)
        extra: Additional top-level fields (e.g. pagination)

    Returns:
        JSONResponse with success format
    """
    response = {
        "success": True,
        "message": message
    }

    if data is not None:
        response["data"] = serialize_datetime(data)
    for key, value in extra.items():
        response[key] = serialize_datetime(value)

    return JSONResponse(content=response, status_code=status_code)


def error_response(
    message: str = "Error",
    status_code: int = 400,
    errors: Optional[Dict[str, Any]] = None,
    stack: Optional[str] = None
) -> JSONResponse:
    """
    Standard error response

    Args:
        message: Error message
        status_code: HTTP status code (default: 400)
        errors: Field-level error details (optional)
        stack: Stack trace, only passed outside production

    Returns:
        JSONResponse with error format
    """
    response = {
        "success": False,
        "message": message
    }

    if errors:
        response["errors"] = errors
    if stack:
        response["stack"] = stack

    return JSONResponse(content=response, status_code=status_code)
