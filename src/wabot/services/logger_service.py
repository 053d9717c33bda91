from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from wabot.storage import LOG_ROWS_CAP, MessagePackStore

LOG_LEVELS = {"debug": 10, "info": 20, "warn": 30, "error": 40}


class LoggerService:
    def __init__(self, store: MessagePackStore, log_dir: Path | None = None, level: str = "info") -> None:
        self.store = store
        self.log_dir = log_dir
        self.threshold = LOG_LEVELS.get(level.strip().lower(), LOG_LEVELS["info"])
        self._listeners: list[Callable[[dict[str, object]], None]] = []
        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)

    def subscribe(self, listener: Callable[[dict[str, object]], None]) -> None:
        self._listeners.append(listener)

    def debug(self, event: str, **data: object) -> None:
        self._emit("debug", event, data)

    def log(self, event: str, **data: object) -> None:
        self._emit("info", event, data)

    def error(self, event: str, **data: object) -> None:
        self._emit("error", event, data)

    def message(self, chat_id: str, sender_id: str, text: str) -> None:
        """Inbound traffic goes to its own stream and never into the store."""
        if self.log_dir is None:
            return
        row = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "chat_id": chat_id,
            "sender_id": sender_id,
            "text": text[:500],
        }
        self._append_file("messages.log", json.dumps(row, ensure_ascii=False))

    def recent(self, limit: int = 20) -> list[dict[str, object]]:
        logs = self.store.data.get("logs", [])
        return list(logs[-max(1, limit):])

    def _emit(self, level: str, event: str, data: dict[str, object]) -> None:
        if LOG_LEVELS[level] < self.threshold:
            return
        row = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "data": _plain(data),
        }
        logs = self.store.data.setdefault("logs", [])
        logs.append(row)
        if len(logs) > LOG_ROWS_CAP:
            del logs[: len(logs) - LOG_ROWS_CAP]
        self.store.touch()
        line = f"[{row['ts']}] {level.upper()} {event} {_compact(data)}"
        print(line)
        if self.log_dir is not None:
            self._append_file("combined.log", line)
        for listener in self._listeners:
            try:
                listener(row)
            except Exception:  # noqa: BLE001
                continue

    def _append_file(self, name: str, line: str) -> None:
        try:
            with (self.log_dir / name).open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError:
            return


def _plain(data: dict[str, object]) -> dict[str, object]:
    # Rows are packed with msgpack, so anything exotic is stringified up front.
    out: dict[str, object] = {}
    for key, value in data.items():
        if value is None or isinstance(value, (str, int, float, bool)):
            out[key] = value
        elif isinstance(value, (list, tuple)):
            out[key] = [item if isinstance(item, (str, int, float, bool)) else str(item) for item in value]
        else:
            out[key] = str(value)
    return out


def _compact(data: dict[str, object]) -> str:
    try:
        return json.dumps(data, ensure_ascii=False, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return str(data)
