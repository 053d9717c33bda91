from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from wabot.config import Settings
from wabot.storage import MessagePackStore


def test_settings_load_reads_passwords_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("GATEWAY_URL", "OWNER_NUMBER", "BOT_NUMBER", "BOT_NAME", "RESPOND_TO_ALL", "STORE_PATH", "LOG_DIR", "LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    path = tmp_path / "passwords.txt"
    path.write_text(
        "\n".join(
            [
                "# gateway",
                "GATEWAY_URL=http://localhost:3000",
                "OWNER_NUMBER=15550000001",
                "BOT_NUMBER=15550000002",
                "respond_to_all=yes",
                "SPAM_MAX_MESSAGES=7",
                "LINK_WARN_MAX=3",
                "BLOCKED_LINK_PATTERNS=chat.whatsapp.com/, t.me/",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("BOT_NAME", "Zed")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    settings = Settings.load(path)

    assert settings.gateway_url == "http://localhost:3000"
    assert settings.bot_name == "Zed"
    assert settings.respond_to_all is True
    assert settings.spam_max_messages == 7
    assert settings.link_warn_max == 3
    assert settings.blocked_link_patterns == ("chat.whatsapp.com/", "t.me/")
    assert settings.log_level == "debug"
    assert settings.ai_max_response_chars == 2000
    assert settings.ai_timeout_sec == 60.0


def test_settings_load_requires_gateway(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("GATEWAY_URL", "OWNER_NUMBER", "BOT_NUMBER"):
        monkeypatch.delenv(key, raising=False)
    path = tmp_path / "passwords.txt"
    path.write_text("OWNER_NUMBER=1\nBOT_NUMBER=2\n", encoding="utf-8")
    with pytest.raises(RuntimeError, match="GATEWAY_URL"):
        Settings.load(path)


def test_store_fills_missing_schema_keys(tmp_path: Path) -> None:
    store = MessagePackStore(tmp_path / "state.msgpack")
    asyncio.run(store.load())
    store.data["profiles"]["x"] = {"xp": 5}
    del store.data["moderation"]["punishments"]
    asyncio.run(store.save())

    reloaded = MessagePackStore(tmp_path / "state.msgpack")
    asyncio.run(reloaded.load())

    assert reloaded.data["profiles"]["x"] == {"xp": 5}
    assert reloaded.data["moderation"]["punishments"] == {}
    assert "runtime" in reloaded.data
    assert reloaded.section("a", "b") == {}
    assert reloaded.data["a"] == {"b": {}}
