from __future__ import annotations

import time
from typing import Any

from wabot.services.logger_service import LoggerService
from wabot.storage import MessagePackStore


class ModerationService:
    """Link-violation warning counters and timed punishments, keyed by identity."""

    def __init__(self, store: MessagePackStore, logger: LoggerService) -> None:
        self.store = store
        self.logger = logger

    def add_warning(self, identity: str) -> int:
        warnings = self._warnings()
        count = int(warnings.get(identity, 0)) + 1
        warnings[identity] = count
        self.store.touch()
        return count

    def warnings(self, identity: str) -> int:
        return int(self._warnings().get(identity, 0))

    def reset_warnings(self, identity: str) -> bool:
        existed = self._warnings().pop(identity, None) is not None
        if existed:
            self.store.touch()
        return existed

    def punish(self, identity: str, until: float) -> None:
        self._punishments()[identity] = float(until)
        self.store.touch()
        self.logger.log("moderation.punished", identity=identity, until=until)

    def is_punished(self, identity: str, now: float | None = None) -> bool:
        punishments = self._punishments()
        expiry = punishments.get(identity)
        if expiry is None:
            return False
        now_ts = float(now if now is not None else time.time())
        if now_ts < float(expiry):
            return True
        del punishments[identity]
        self.store.touch()
        self.logger.log("moderation.punishment_expired", identity=identity)
        return False

    def punishment_remaining(self, identity: str, now: float | None = None) -> int:
        expiry = self._punishments().get(identity)
        if expiry is None:
            return 0
        now_ts = float(now if now is not None else time.time())
        return max(0, int(float(expiry) - now_ts))

    def pardon(self, identity: str) -> bool:
        existed = self._punishments().pop(identity, None) is not None
        if existed:
            self.store.touch()
            self.logger.log("moderation.pardoned", identity=identity)
        return existed

    def _warnings(self) -> dict[str, Any]:
        return self.store.section("moderation", "warnings")

    def _punishments(self) -> dict[str, Any]:
        return self.store.section("moderation", "punishments")
