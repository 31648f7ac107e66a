"""
aiohttp server for the snapshot worker pool and preview status endpoints.
"""

from typing import Optional

from aiohttp import web

from obtv_preview.core.logging_utils import get_module_logger

from .controller import APIController
from .middleware import (
    error_handling_middleware,
    request_logging_middleware,
    set_debug_mode,
)
from .routes import setup_all_routes


logger = get_module_logger("APIServer")


class APIServer:
    """
    Serves the API on the running event loop.

    ``port=0`` binds an ephemeral port; ``port`` is updated to the bound
    value once the site is up. Usable as ``async with APIServer(...)``.
    """

    def __init__(
        self,
        controller: APIController,
        host: str = "127.0.0.1",
        port: int = 8080,
        debug: bool = False,
    ):
        self.controller = controller
        self.host = host
        self.port = port
        self.debug = debug
        self._runner: Optional[web.AppRunner] = None
        set_debug_mode(debug)

    def create_app(self) -> web.Application:
        app = web.Application(middlewares=[request_logging_middleware, error_handling_middleware])
        app["controller"] = self.controller
        setup_all_routes(app, self.controller)
        return app

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    async def start(self) -> None:
        if self._runner is not None:
            logger.warning("API server already running on %s", self.url)
            return

        runner = web.AppRunner(self.create_app(), access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise

        for address in runner.addresses:
            if isinstance(address, tuple) and len(address) >= 2:
                self.port = address[1]
                break
        self._runner = runner
        logger.info("API server listening on %s%s", self.url, " (debug)" if self.debug else "")

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is None:
            return
        await runner.cleanup()
        logger.info("API server on %s stopped", self.url)

    async def __aenter__(self) -> "APIServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
