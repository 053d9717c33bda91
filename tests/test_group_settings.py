from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from wabot.services.group_settings import GroupSettingsStore
from wabot.storage import MessagePackStore

GROUP = "120363000000000001@g.us"


def _make_store(tmp_path: Path) -> MessagePackStore:
    store = MessagePackStore(tmp_path / "state.msgpack")
    asyncio.run(store.load())
    return store


def test_defaults_are_created_lazily(tmp_path: Path) -> None:
    settings = GroupSettingsStore(_make_store(tmp_path))
    assert settings.known_chats() == []
    row = settings.get(GROUP)
    assert row.ai_enabled and row.link_protection_enabled and row.spam_filter_enabled
    assert settings.known_chats() == [GROUP]


def test_set_patches_and_survives_reload(tmp_path: Path) -> None:
    store = _make_store(tmp_path)
    settings = GroupSettingsStore(store)
    updated = settings.set(GROUP, ai_enabled=False, welcome_enabled=False)
    assert not updated.ai_enabled
    assert updated.goodbye_enabled
    asyncio.run(store.save())

    reloaded = GroupSettingsStore(_make_store(tmp_path))
    assert not reloaded.get(GROUP).ai_enabled
    assert not reloaded.get(GROUP).welcome_enabled


def test_unknown_setting_is_rejected(tmp_path: Path) -> None:
    settings = GroupSettingsStore(_make_store(tmp_path))
    with pytest.raises(KeyError):
        settings.set(GROUP, nsfw_enabled=True)
