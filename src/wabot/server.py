"""
Webhook receiver for gateway events, with a health endpoint for monitoring.

Events are acknowledged immediately and queued; a single consumer hands them to the
bot one at a time so side effects keep the order the gateway delivered them in.
"""

from __future__ import annotations

import asyncio
import hmac
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from aiohttp import web

from wabot.services.logger_service import LoggerService

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]
MAX_QUEUED_EVENTS = 1000


class WebhookServer:
    def __init__(
        self,
        logger: LoggerService,
        host: str = "0.0.0.0",
        port: int = 8080,
        token: str = "",
        status: Callable[[], dict[str, Any]] | None = None,
    ) -> None:
        self.logger = logger
        self.host = host
        self.port = port
        self.token = token
        self.status = status
        self.events: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=MAX_QUEUED_EVENTS)
        self.app = web.Application()
        self.runner: web.AppRunner | None = None

        self.app.router.add_post("/events", self.events_handler)
        self.app.router.add_get("/health", self.health_handler)

    async def events_handler(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            self.logger.log("webhook.unauthorized", remote=request.remote or "")
            return web.json_response({"ok": False, "error": "unauthorized"}, status=401)
        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"ok": False, "error": "invalid json"}, status=400)
        events = body if isinstance(body, list) else [body]
        accepted = 0
        for event in events:
            if not isinstance(event, dict) or not event.get("event"):
                continue
            try:
                self.events.put_nowait(event)
            except asyncio.QueueFull:
                self.logger.error("webhook.queue_full", dropped=len(events) - accepted)
                return web.json_response({"ok": False, "accepted": accepted}, status=503)
            accepted += 1
        return web.json_response({"ok": True, "accepted": accepted})

    async def health_handler(self, request: web.Request) -> web.Response:
        payload: dict[str, Any] = {
            "status": "healthy",
            "queued_events": self.events.qsize(),
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        }
        if self.status is not None:
            payload.update(self.status())
        return web.json_response(payload)

    async def consume(self, handler: EventHandler) -> None:
        while True:
            event = await self.events.get()
            try:
                await handler(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                self.logger.error("webhook.event_failed", kind=str(event.get("event", "")), error=str(exc)[:300])
            finally:
                self.events.task_done()

    async def start(self) -> None:
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        self.logger.log("webhook.started", host=self.host, port=self.port)

    async def stop(self) -> None:
        if self.runner is None:
            return
        await self.runner.cleanup()
        self.runner = None
        self.logger.log("webhook.stopped")

    def _authorized(self, request: web.Request) -> bool:
        if not self.token:
            return True
        supplied = request.headers.get("X-Gateway-Token", "")
        auth = request.headers.get("Authorization", "")
        if not supplied and auth.lower().startswith("bearer "):
            supplied = auth[7:].strip()
        return hmac.compare_digest(supplied.encode("utf-8"), self.token.encode("utf-8"))
