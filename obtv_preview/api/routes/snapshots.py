"""
Snapshot API routes - worker registration and snapshot images.
"""

from aiohttp import web

from ..middleware import create_error_response, parse_json_body

NO_STORE_HEADERS = {"Cache-Control": "no-store"}


def setup_snapshot_routes(app: web.Application, controller) -> None:
    """Register snapshot routes."""
    app.router.add_post("/api/snapshots/register", register_handler)
    app.router.add_get("/api/streams/{stream_id}/snapshot", stream_snapshot_handler)
    app.router.add_get("/snapshots/{name}", snapshot_file_handler)


async def register_handler(request: web.Request) -> web.Response:
    """
    POST /api/snapshots/register - Start or keep alive snapshot workers.

    Request body:
        {"streamIds": ["cam1", "cam2"]}
    """
    controller = request.app["controller"]
    body, error = await parse_json_body(request)
    if error:
        return error

    stream_ids = body.get("streamIds")
    if not isinstance(stream_ids, list):
        return create_error_response("INVALID_BODY", "streamIds must be an array", status=400)

    result = await controller.register_streams(str(s) for s in stream_ids)
    return web.json_response(result)


async def stream_snapshot_handler(request: web.Request) -> web.Response:
    """
    GET /api/streams/{stream_id}/snapshot - Redirect to the current snapshot image.
    """
    controller = request.app["controller"]
    stream_id = request.match_info["stream_id"]
    location = controller.snapshot_redirect_url(stream_id)
    if location is None:
        return create_error_response(
            "SNAPSHOT_NOT_FOUND",
            f"No snapshot available for {stream_id}",
            status=404,
        )
    raise web.HTTPFound(location, headers=NO_STORE_HEADERS)


async def snapshot_file_handler(request: web.Request) -> web.StreamResponse:
    """
    GET /snapshots/{name} - Serve a snapshot JPEG without caching.
    """
    controller = request.app["controller"]
    name = request.match_info["name"]
    path = controller.snapshot_file(name)
    if path is None:
        return create_error_response("SNAPSHOT_NOT_FOUND", f"{name} not found", status=404)
    return web.FileResponse(path, headers=NO_STORE_HEADERS)
