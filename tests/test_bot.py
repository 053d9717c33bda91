from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from aiohttp import test_utils

from fakes import ALICE, BOB, BOT, GROUP, FakeTransport, make_settings, text_message
from wabot.bot import WaBot
from wabot.storage import MessagePackStore


def _make_bot(tmp_path: Path, transport: FakeTransport, **overrides: Any) -> WaBot:
    settings = make_settings(tmp_path, **overrides)
    store = MessagePackStore(settings.store_path)
    asyncio.run(store.load())
    return WaBot(settings, transport, store)


def test_commands_are_registered_and_frozen(tmp_path: Path) -> None:
    bot = _make_bot(tmp_path, FakeTransport())
    for name in ("help", "menu", "ping", "dice", "roll", "profile", "top", "ask", "reveal", "vv", "kick", "stats"):
        assert name in bot.commands, name
    for name in ("timeout", "bonus", "pardon"):
        assert name in bot.hidden_commands
        assert name not in bot.commands


def test_welcome_and_goodbye_follow_group_settings(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport)

    join = {"event": "group-participants.update", "data": {"id": GROUP, "participants": [ALICE, BOT], "action": "add"}}
    leave = {"event": "group-participants.update", "data": {"id": GROUP, "participants": [BOB], "action": "remove"}}
    asyncio.run(bot.handle_event(join))
    asyncio.run(bot.handle_event(leave))

    assert transport.sent[0].text.startswith("👋 Welcome @15551110001")
    assert transport.sent[0].mentions == [ALICE]
    assert transport.sent[1].text.startswith("👋 Goodbye @15551110002")

    bot.services.group_settings.set(GROUP, welcome_enabled=False)
    asyncio.run(bot.handle_event(join))
    assert len(transport.sent) == 2


def test_message_batch_event_runs_pipeline(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport)
    event = {
        "event": "messages.upsert",
        "data": {"messages": [text_message("!ping", message_id="p1"), text_message("!ping", sender=BOB, message_id="p2")]},
    }

    asyncio.run(bot.handle_event(event))

    assert len([text for text in transport.texts(GROUP) if text.startswith("🏓")]) == 2


def test_connection_update_records_linked_identity_and_clears_typing(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport, typing_duration_sec=60)

    async def scenario() -> list[str]:
        await bot.handle_event({"event": "connection.update", "data": {"connection": "open"}})
        bot.services.presence.arm(GROUP)
        await bot.handle_event({"event": "connection.update", "data": {"connection": "close"}})
        await bot.handle_event(
            {"event": "connection.update", "data": {"connection": "open", "me": {"id": BOT, "lid": "11223344@lid"}}}
        )
        keys = bot.services.scheduler.active_keys()
        await bot.services.scheduler.stop()
        return keys

    keys = asyncio.run(scenario())

    assert bot.services.identity.linked == "11223344@lid"
    assert bot.connected
    assert not any(key.startswith("typing:") for key in keys)


def test_shutdown_is_idempotent(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport)

    async def scenario() -> None:
        await bot.shutdown()
        await bot.shutdown()

    asyncio.run(scenario())

    assert transport.closed
    assert (tmp_path / "state.msgpack").exists()
    assert [row["event"] for row in bot.services.store.data["logs"]].count("bot.shutdown") == 1


def test_webhook_requires_token_and_queues_events(tmp_path: Path) -> None:
    bot = _make_bot(tmp_path, FakeTransport(), gateway_token="s3cret")

    async def scenario() -> tuple[int, int, dict[str, Any], int]:
        client = test_utils.TestClient(test_utils.TestServer(bot.server.app))
        await client.start_server()
        try:
            denied = await client.post("/events", json={"event": "connection.update", "data": {}})
            accepted = await client.post(
                "/events",
                json=[{"event": "connection.update", "data": {"connection": "open"}}, {"nope": 1}],
                headers={"Authorization": "Bearer s3cret"},
            )
            health = await client.get("/health")
            return denied.status, accepted.status, await health.json(), bot.server.events.qsize()
        finally:
            await client.close()

    denied, accepted, health, queued = asyncio.run(scenario())

    assert denied == 401
    assert accepted == 200
    assert queued == 1
    assert health["status"] == "healthy"
    assert health["bot"] == "Wabot"
