from __future__ import annotations

from wabot.services.logger_service import LoggerService
from wabot.services.scheduler import Scheduler
from wabot.transport import ConnectionClosedError, Transport, TransportError

TYPING_KEY_PREFIX = "typing:"


class PresenceService:
    """Simulated "composing" presence per conversation."""

    def __init__(self, transport: Transport, scheduler: Scheduler, logger: LoggerService, duration_sec: float) -> None:
        self.transport = transport
        self.scheduler = scheduler
        self.logger = logger
        self.duration_sec = float(duration_sec)

    def arm(self, chat_id: str) -> None:
        key = f"{TYPING_KEY_PREFIX}{chat_id}"
        if not self.is_typing(chat_id):
            self.scheduler.call_later(f"typing-start:{chat_id}", 0, lambda: self._set(chat_id, "composing"))
        self.scheduler.call_later(key, self.duration_sec, lambda: self._set(chat_id, "paused"))

    def is_typing(self, chat_id: str) -> bool:
        return f"{TYPING_KEY_PREFIX}{chat_id}" in self.scheduler.active_keys()

    def clear_all(self) -> int:
        cleared = self.scheduler.cancel_prefix(TYPING_KEY_PREFIX)
        if cleared:
            self.logger.log("presence.cleared", timers=cleared)
        return cleared

    async def _set(self, chat_id: str, state: str) -> None:
        try:
            await self.transport.set_presence(chat_id, state)
        except ConnectionClosedError:
            raise
        except TransportError as exc:
            self.logger.log("presence.update_failed", chat_id=chat_id, state=state, error=str(exc)[:200])
