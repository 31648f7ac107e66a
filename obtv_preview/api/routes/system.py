"""
System API routes - health and preview status.
"""

from aiohttp import web

from ..middleware import create_error_response


def setup_system_routes(app: web.Application, controller) -> None:
    """Register system routes."""
    app.router.add_get("/api/health", health_handler)
    app.router.add_get("/api/preview/status", preview_status_handler)


async def health_handler(request: web.Request) -> web.Response:
    """
    GET /api/health - Health check.

    Returns the server status, uptime and number of running snapshot workers.
    """
    controller = request.app["controller"]
    return web.json_response(controller.health_check())


async def preview_status_handler(request: web.Request) -> web.Response:
    """
    GET /api/preview/status - Admission and snapshot scheduler status.

    Only available when the process runs the client-side preview core.
    """
    controller = request.app["controller"]
    status = controller.preview_status()
    if status is None:
        return create_error_response(
            "PREVIEW_DISABLED",
            "Preview service is not running in this process",
            status=404,
        )
    return web.json_response(status)
