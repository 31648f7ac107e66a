"""
API Middleware - error handling and request logging for the snapshot API.

Provides:
- Unified JSON error envelope
- Request logging with timing
"""

import time
import traceback
from typing import Callable, Optional

from aiohttp import web

from obtv_preview.core.logging_utils import get_module_logger


logger = get_module_logger("APIMiddleware")

_debug_mode: bool = False


def set_debug_mode(enabled: bool) -> None:
    """Enable or disable debug mode for verbose error responses."""
    global _debug_mode
    _debug_mode = enabled


@web.middleware
async def request_logging_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
    """Log method, path, status and duration of every request."""
    start_time = time.perf_counter()
    response: Optional[web.StreamResponse] = None
    try:
        response = await handler(request)
        return response
    finally:
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        status = response.status if response is not None else "error"
        log = logger.info if _debug_mode else logger.debug
        log("%s %s -> %s (%.1fms)", request.method, request.path, status, elapsed_ms)


@web.middleware
async def error_handling_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
    """
    Catch errors and format them as:

    {
        "error": {"code": "ERROR_CODE", "message": "Human-readable message"},
        "status": 500
    }
    """
    try:
        return await handler(request)
    except web.HTTPRedirection:
        raise
    except web.HTTPException as e:
        return create_error_response(
            e.reason.upper().replace(" ", "_") if e.reason else "HTTP_ERROR",
            e.text or str(e),
            status=e.status,
        )
    except ValueError as e:
        logger.warning("Validation error: %s", e)
        return create_error_response("VALIDATION_ERROR", str(e), status=400)
    except Exception as e:
        tb = traceback.format_exc()
        logger.error("Unexpected error: %s\n%s", e, tb)
        details = {"type": type(e).__name__, "message": str(e)}
        if _debug_mode:
            details["traceback"] = tb.split("\n")
        return create_error_response(
            "INTERNAL_ERROR",
            "An unexpected error occurred",
            status=500,
            details=details,
        )


def create_error_response(code: str, message: str, status: int = 400, details: dict = None) -> web.Response:
    """Create standardized error response."""
    error = {"error": {"code": code, "message": message}, "status": status}
    if details:
        error["error"]["details"] = details
    return web.json_response(error, status=status)


async def parse_json_body(request: web.Request):
    """Parse a JSON body. Returns (body, error_response)."""
    try:
        body = await request.json()
    except Exception:
        return None, create_error_response("INVALID_BODY", "Request body must be valid JSON", status=400)
    if not isinstance(body, dict):
        return None, create_error_response("INVALID_BODY", "Request body must be a JSON object", status=400)
    return body, None
