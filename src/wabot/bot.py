from __future__ import annotations

import asyncio
import signal
from datetime import datetime, timezone
from typing import Any

from wabot.commands.builtin import register_builtin_commands
from wabot.commands.hidden import register_hidden_commands
from wabot.commands.registry import CommandRegistry
from wabot.config import Settings
from wabot.context import Services
from wabot.identity import is_group, mention_tag, normalize
from wabot.pipeline import MessagePipeline
from wabot.server import WebhookServer
from wabot.services.ai_responder import AIResponder
from wabot.services.security import SecurityFilter
from wabot.storage import MessagePackStore
from wabot.transport import GatewayTransport, Transport, TransportError


class WaBot:
    def __init__(
        self,
        settings: Settings,
        transport: Transport | None = None,
        store: MessagePackStore | None = None,
    ) -> None:
        self.settings = settings
        self.transport = transport or GatewayTransport(settings.gateway_url, settings.gateway_token)
        self.services = Services.build(settings, self.transport, store)
        self.logger = self.services.logger
        self.started_at = datetime.now(tz=timezone.utc)

        self.responder = AIResponder(self.services)
        self.security = SecurityFilter(self.services)
        self.commands = CommandRegistry()
        self.hidden_commands = CommandRegistry(hidden=True)
        register_builtin_commands(self.commands, self.responder, self.started_at)
        register_hidden_commands(self.hidden_commands)
        self.commands.freeze()
        self.hidden_commands.freeze()

        self.pipeline = MessagePipeline(
            self.services,
            self.commands,
            self.hidden_commands,
            self.responder,
            self.security,
        )
        self.server = WebhookServer(
            self.logger,
            host=settings.webhook_host,
            port=settings.webhook_port,
            token=settings.gateway_token,
            status=self.health_status,
        )
        self.connected = False
        self.faulted = False
        self._closing = False
        self._closed = asyncio.Event()

    async def start(self) -> None:
        await self.services.store.load()
        scheduler = self.services.scheduler
        scheduler.spawn("store-autosave", self.services.store.autosave_loop)
        scheduler.every("ephemeral-sweep", self.settings.ephemeral_ttl_sec, self._sweep_ephemeral)
        scheduler.spawn("webhook-consumer", lambda: self.server.consume(self.handle_event))
        await self.server.start()
        self.logger.log(
            "bot.started",
            bot=self.services.identity.primary,
            commands=len(self.commands),
            hidden_commands=len(self.hidden_commands),
        )

    async def _sweep_ephemeral(self) -> None:
        dropped = self.services.ephemeral.sweep()
        if dropped:
            self.logger.log("ephemeral.swept", dropped=dropped)

    async def run_forever(self) -> None:
        await self.start()
        await self._closed.wait()

    async def handle_event(self, event: dict[str, Any]) -> None:
        kind = str(event.get("event", ""))
        data = event.get("data")
        if kind == "messages.upsert":
            messages = data.get("messages") if isinstance(data, dict) else data
            if isinstance(messages, list) and messages:
                await self.pipeline.process_batch(messages)
            return
        if kind == "group-participants.update" and isinstance(data, dict):
            await self.on_group_participants(data)
            return
        if kind == "connection.update" and isinstance(data, dict):
            await self.on_connection_update(data)
            return
        self.logger.log("webhook.ignored", kind=kind)

    async def on_group_participants(self, data: dict[str, Any]) -> None:
        services = self.services
        chat_id = normalize(data.get("id"))
        if not is_group(chat_id):
            return
        action = str(data.get("action", ""))
        members = [
            identity
            for identity in (normalize(raw) for raw in data.get("participants") or [])
            if identity and not services.identity.is_self(identity)
        ]
        if not members:
            return
        settings = services.group_settings.get(chat_id)
        tags = " ".join(mention_tag(identity) or identity for identity in members)
        if action == "add" and settings.welcome_enabled:
            await services.send_text(
                chat_id,
                f"👋 Welcome {tags}! Say hi and type {self.settings.command_prefix}help to see what I can do.",
                members,
            )
        elif action == "remove" and settings.goodbye_enabled:
            await services.send_text(chat_id, f"👋 Goodbye {tags}. Take care!", members)
        services.logger.log("group.participants", chat_id=chat_id, action=action, count=len(members))

    async def on_connection_update(self, data: dict[str, Any]) -> None:
        services = self.services
        me = data.get("me") if isinstance(data.get("me"), dict) else {}
        linked = normalize(me.get("lid"))
        if linked and linked != services.identity.linked:
            services.identity.linked = linked
            services.logger.log("connection.linked_identity", linked=linked)

        state = str(data.get("connection", ""))
        if state == "open":
            reconnect = not self.connected
            self.connected = True
            cleared = services.presence.clear_all() if reconnect else 0
            services.logger.log("connection.open", typing_timers_cleared=cleared)
        elif state == "close":
            self.connected = False
            services.logger.log("connection.closed", reason=str(data.get("reason", ""))[:200])

    def health_status(self) -> dict[str, Any]:
        uptime = datetime.now(tz=timezone.utc) - self.started_at
        return {
            "bot": self.settings.bot_name,
            "connected": self.connected,
            "uptime_sec": int(uptime.total_seconds()),
            "scheduled_tasks": len(self.services.scheduler.active_keys()),
        }

    async def shutdown(self) -> None:
        if self._closing:
            return
        self._closing = True
        self.logger.log("bot.shutdown", faulted=self.faulted)
        await self.services.scheduler.stop()
        await self.server.stop()
        try:
            await self.services.store.save()
        except OSError as exc:
            self.logger.error("bot.store_save_failed", error=str(exc)[:300])
        try:
            await self.transport.close()
        except TransportError as exc:
            self.logger.error("bot.transport_close_failed", error=str(exc)[:300])
        self._closed.set()

    def handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        self.logger.error(
            "process.fault",
            message=str(context.get("message", ""))[:300],
            error=repr(exc)[:300] if exc is not None else "",
        )
        self.faulted = True
        loop.create_task(self.shutdown())


async def _run(bot: WaBot) -> None:
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(bot.handle_loop_exception)
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: loop.create_task(bot.shutdown()))
        except NotImplementedError:
            pass
    try:
        await bot.run_forever()
    finally:
        await bot.shutdown()


def main() -> None:
    settings = Settings.load()
    bot = WaBot(settings)
    asyncio.run(_run(bot))
    if bot.faulted:
        raise SystemExit(1)
