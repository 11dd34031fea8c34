"""HTTP/JSON ingestion endpoint.

Sample device-facing agent: a PUT or POST on any path carrying the
``x-tenant-id`` and ``x-device-id`` headers forwards its JSON body to the
platform as an attribute update. Also serves /health/live and
/health/ready for container probes.
"""

import json
import logging
from datetime import UTC, datetime

from aiohttp import web

from core.logging import get_logger, log_with_context
from iotagent.agent import IoTAgent

logger = get_logger(__name__)

TENANT_HEADER = "x-tenant-id"
DEVICE_HEADER = "x-device-id"


class IngestServer:
    """aiohttp server forwarding device HTTP requests to an IoTAgent."""

    def __init__(self, agent: IoTAgent, host: str = "0.0.0.0", port: int = 80):
        self.agent = agent
        self.host = host
        self.port = port
        self._started_at = datetime.now(UTC)
        self._actual_port: int | None = None

        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    @property
    def actual_port(self) -> int | None:
        return self._actual_port

    async def handle_data(self, request: web.Request) -> web.Response:
        tenant = request.headers.get(TENANT_HEADER)
        device_id = request.headers.get(DEVICE_HEADER)
        if not tenant or not device_id:
            return web.json_response(
                {"message": "missing device and tenant information"}, status=400
            )

        try:
            attrs = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return web.json_response({"message": "body must be valid JSON"}, status=400)
        if not isinstance(attrs, dict):
            return web.json_response({"message": "body must be a JSON object"}, status=400)

        log_with_context(
            logger,
            logging.DEBUG,
            "Forwarding device update",
            tenant=tenant,
            device_id=device_id,
            http_method=request.method,
            http_url=request.path,
        )
        self.agent.update_attrs(device_id, tenant, attrs, {})
        return web.Response(status=200)

    async def handle_liveness(self, request: web.Request) -> web.Response:
        uptime_seconds = (datetime.now(UTC) - self._started_at).total_seconds()
        return web.json_response(
            {
                "status": "alive",
                "group_id": self.agent.group_id,
                "uptime_seconds": int(uptime_seconds),
                "timestamp": datetime.now(UTC).isoformat(),
            },
            status=200,
        )

    async def handle_readiness(self, request: web.Request) -> web.Response:
        """200 once the producer is connected, 503 otherwise."""
        producer = self.agent.producer
        body = {
            "status": "ready" if producer.is_ready else "not_ready",
            "checks": {
                "producer_state": producer.state.value,
                "buffered_events": len(producer.buffer),
                "tenants": self.agent.supervisor.tenants,
            },
            "timestamp": datetime.now(UTC).isoformat(),
        }
        return web.json_response(body, status=200 if producer.is_ready else 503)

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health/live", self.handle_liveness)
        app.router.add_get("/health/ready", self.handle_readiness)
        app.router.add_put("/{tail:.*}", self.handle_data)
        app.router.add_post("/{tail:.*}", self.handle_data)
        return app

    async def start(self) -> None:
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()

        if self._site._server and self._site._server.sockets:
            self._actual_port = self._site._server.sockets[0].getsockname()[1]
        else:
            self._actual_port = self.port

        logger.info(
            f"iotagent running (port {self._actual_port})",
            extra={"http_url": f"http://{self.host}:{self._actual_port}"},
        )

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
        self._app = None
        self._runner = None
        self._site = None
        logger.info("Ingest server stopped")
