from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any

from wabot.storage import MessagePackStore


@dataclass
class GroupSettings:
    ai_enabled: bool = True
    welcome_enabled: bool = True
    goodbye_enabled: bool = True
    spam_filter_enabled: bool = True
    link_protection_enabled: bool = True


SETTING_NAMES = tuple(f.name for f in fields(GroupSettings))


class GroupSettingsStore:
    def __init__(self, store: MessagePackStore) -> None:
        self.store = store

    def get(self, chat_id: str) -> GroupSettings:
        row = self._row(chat_id)
        return GroupSettings(**{name: bool(row[name]) for name in SETTING_NAMES})

    def set(self, chat_id: str, **patch: bool) -> GroupSettings:
        unknown = [key for key in patch if key not in SETTING_NAMES]
        if unknown:
            raise KeyError(f"Unknown group setting(s): {', '.join(unknown)}")
        row = self._row(chat_id)
        for key, value in patch.items():
            row[key] = bool(value)
        self.store.touch()
        return self.get(chat_id)

    def known_chats(self) -> list[str]:
        return sorted(self._root().keys())

    def _row(self, chat_id: str) -> dict[str, Any]:
        root = self._root()
        row = root.get(chat_id)
        if not isinstance(row, dict):
            row = asdict(GroupSettings())
            root[chat_id] = row
            self.store.touch()
            return row
        for name in SETTING_NAMES:
            if name not in row:
                row[name] = True
                self.store.touch()
        return row

    def _root(self) -> dict[str, Any]:
        return self.store.section("group_settings")
