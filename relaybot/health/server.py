"""
HTTP exposure of health reports.

Serves ``GET /health`` (aggregate) and ``GET /health/{name}`` (one
reporter) as JSON. The status code is 200 unless the reported status is
UNHEALTHY, in which case it is 503, so load balancers and orchestrators can
probe the bot without parsing the body.
"""

from __future__ import annotations

import json
from typing import Optional

from aiohttp import web

from relaybot.core.config.config import Config
from relaybot.core.logging.logger import get_logger
from relaybot.health.checks import HealthCheckRegistry, HealthStatus

logger = get_logger(__name__)


def _status_code(status: str) -> int:
    return 503 if status == HealthStatus.UNHEALTHY.value else 200


class HealthServer:
    """Minimal aiohttp server around a ``HealthCheckRegistry``."""

    def __init__(self, registry: HealthCheckRegistry, host: str = "0.0.0.0", port: int = 8080) -> None:
        self._registry = registry
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None

    @classmethod
    def from_config(cls, registry: HealthCheckRegistry) -> "HealthServer":
        return cls(registry, host=Config.HEALTH_SERVER_HOST, port=Config.HEALTH_SERVER_PORT)

    @property
    def running(self) -> bool:
        return self._runner is not None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self.handle_health)
        app.router.add_get("/health/{name}", self.handle_component)
        return app

    async def handle_health(self, request: web.Request) -> web.Response:
        report = await self._registry.check_all()
        return web.json_response(report, status=_status_code(report["status"]), dumps=_dumps)

    async def handle_component(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        try:
            result = await self._registry.check(name)
        except KeyError:
            return web.json_response(
                {"error": f"Unknown health check '{name}'", "available": self._registry.names},
                status=404,
            )
        body = result.to_dict()
        return web.json_response(body, status=_status_code(body["status"]), dumps=_dumps)

    async def start(self) -> None:
        if self._runner is not None:
            return

        runner = web.AppRunner(self.build_app())
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise

        self._runner = runner
        logger.info(
            "Health server listening",
            extra={"host": self._host, "port": self._port},
        )

    async def stop(self) -> None:
        if self._runner is None:
            return
        runner, self._runner = self._runner, None
        await runner.cleanup()
        logger.info("Health server stopped")


def _dumps(obj: object) -> str:
    return json.dumps(obj, default=str)
