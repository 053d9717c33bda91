from __future__ import annotations

import time


class SpamDetector:
    """Sliding-window message throughput check, separate from the command cooldown."""

    def __init__(self, window_sec: float, max_messages: int, privileged_identity: str = "") -> None:
        self.window_sec = float(window_sec)
        self.max_messages = int(max_messages)
        self.privileged_identity = privileged_identity
        self._timestamps: dict[str, list[float]] = {}

    def is_spamming(self, identity: str, now: float | None = None) -> bool:
        if identity and identity == self.privileged_identity:
            return False
        now_ts = float(now if now is not None else time.time())
        recent = [ts for ts in self._timestamps.get(identity, []) if now_ts - ts <= self.window_sec]
        recent.append(now_ts)
        self._timestamps[identity] = recent
        return len(recent) > self.max_messages

    def reset(self, identity: str) -> None:
        self._timestamps.pop(identity, None)

    def window_count(self, identity: str) -> int:
        return len(self._timestamps.get(identity, []))
