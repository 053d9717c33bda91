from __future__ import annotations

import math
import time


class RateLimiter:
    """Per-identity cooldown for commands. The privileged identity is never limited."""

    def __init__(self, window_sec: float, privileged_identity: str = "") -> None:
        self.window_sec = float(window_sec)
        self.privileged_identity = privileged_identity
        self._last_by_identity: dict[str, float] = {}

    def check_and_record(self, identity: str, now: float | None = None) -> bool:
        if identity and identity == self.privileged_identity:
            return True
        now_ts = float(now if now is not None else time.time())
        last = self._last_by_identity.get(identity)
        if last is not None and now_ts - last < self.window_sec:
            return False
        self._last_by_identity[identity] = now_ts
        return True

    def remaining_seconds(self, identity: str, now: float | None = None) -> int:
        last = self._last_by_identity.get(identity)
        if last is None:
            return 0
        now_ts = float(now if now is not None else time.time())
        elapsed = now_ts - last
        return max(0, math.ceil(self.window_sec - elapsed))

    def last_accepted(self, identity: str) -> float | None:
        return self._last_by_identity.get(identity)
