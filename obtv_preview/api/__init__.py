"""
HTTP API for server-side snapshots.

Usage:
    from obtv_preview.api import APIServer, APIController

    controller = APIController(pool, catalog)
    server = APIServer(controller, host="0.0.0.0", port=8080)
    await server.start()
"""

from .controller import APIController
from .server import APIServer

__all__ = ["APIController", "APIServer"]
