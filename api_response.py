"""
Response envelopes returned by the AdminAPI.

Success: {"success": True, "message": ..., "data": ...}
Error:   {"success": False, "error": {"kind": ..., "message": ..., "details"?: ...}}

Each helper returns a (body, status_code) pair so any web framework can
serialize it directly.
"""

import os
import logging
import traceback
from typing import Any, Callable, Dict, Optional, Tuple

from errors import ServiceError

logger = logging.getLogger(__name__)

Response = Tuple[Dict[str, Any], int]


def is_development() -> bool:
    return os.environ.get("APP_ENV", "production").lower() == "development"


def success(data: Any = None, message: Optional[str] = None, status_code: int = 200) -> Response:
    return {"success": True, "message": message, "data": data}, status_code


def created(data: Any, message: str = "Resource created successfully") -> Response:
    return success(data, message, 201)


def error(exc: Exception) -> Response:
    """Envelope for an exception. Unknown exceptions become server_error/500."""
    if isinstance(exc, ServiceError):
        return {"success": False, "error": exc.to_dict()}, exc.status_code

    logger.error(f"Unhandled error: {exc}", exc_info=True)
    body: Dict[str, Any] = {"kind": "server_error", "message": "Internal server error"}
    if is_development():
        body["traceback"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return {"success": False, "error": body}, 500


def handle(operation: Callable[[], Response]) -> Response:
    """Run ``operation`` and turn any raised exception into an error envelope."""
    try:
        return operation()
    except Exception as exc:
        return error(exc)
