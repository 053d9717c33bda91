from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from fakes import (
    ALICE,
    BOB,
    BOT,
    CAROL,
    GROUP,
    OWNER,
    FakeTransport,
    make_settings,
    media_message,
    text_message,
)
from wabot.bot import WaBot
from wabot.commands.registry import CommandContext, CommandRegistry
from wabot.pipeline import MessagePipeline
from wabot.services.ai_service import AIService
from wabot.storage import MessagePackStore


class StubAIService(AIService):
    def __init__(self, *args: Any) -> None:
        super().__init__(*args)
        self.calls = 0

    async def generate(self, parts: list[Any], *, cache_key: str = "") -> str:
        self.calls += 1
        return "ai says hi"


def _make_bot(tmp_path: Path, transport: FakeTransport, **overrides: Any) -> WaBot:
    settings = make_settings(tmp_path, **overrides)
    store = MessagePackStore(settings.store_path)
    asyncio.run(store.load())
    bot = WaBot(settings, transport, store)
    bot.services.ai = StubAIService(settings, store)
    return bot


def _echo_pipeline(bot: WaBot) -> MessagePipeline:
    registry = CommandRegistry()

    @registry.command("echo")
    async def echo(ctx: CommandContext, args: list[str]) -> None:
        if args == ["boom"]:
            raise RuntimeError("handler exploded")
        await ctx.reply(f"echo {' '.join(args)}")

    return MessagePipeline(bot.services, registry, bot.hidden_commands, bot.responder, bot.security)


def _batch() -> list[dict[str, Any]]:
    return [
        text_message("!echo one", sender=ALICE, message_id="b1"),
        text_message("!echo boom", sender=BOB, message_id="b2"),
        text_message("!echo three", sender=CAROL, message_id="b3"),
    ]


def test_failing_command_does_not_stop_the_batch(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport)
    pipeline = _echo_pipeline(bot)

    results = asyncio.run(pipeline.process_batch(_batch()))

    group_texts = transport.texts(GROUP)
    assert results == ["command", "command", "command"]
    assert "echo one" in group_texts
    assert "echo three" in group_texts
    assert group_texts.index("echo one") < group_texts.index("echo three")
    assert any("Something went wrong" in text for text in group_texts)
    assert any("handler exploded" in text for text in transport.texts(OWNER))


def test_failing_stage_is_isolated_per_message(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport)
    pipeline = _echo_pipeline(bot)
    leveling = bot.services.leveling
    original_award = leveling.award

    def award(identity: str, amount: int):
        if identity == BOB:
            raise RuntimeError("progression store unavailable")
        return original_award(identity, amount)

    leveling.award = award  # type: ignore[method-assign]

    results = asyncio.run(pipeline.process_batch(_batch()))

    assert results == ["command", "progression", "command"]
    assert transport.texts(GROUP) == ["echo one", "echo three"]
    assert any("progression store unavailable" in text for text in transport.texts(OWNER))
    failures = [row for row in bot.services.store.data["logs"] if row["event"] == "pipeline.message_failed"]
    assert failures and failures[-1]["data"]["message_id"] == "b2"


def test_filter_drops_own_broadcast_and_empty_messages(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport)
    from_me = text_message("hi")
    from_me["key"]["fromMe"] = True
    status = text_message("story", chat="status@broadcast")
    empty = text_message("x")
    empty["message"] = {"messageContextInfo": {}}

    for raw in (from_me, status, empty, text_message("self", sender=BOT)):
        assert asyncio.run(bot.pipeline.process(raw)) == "filter"
    assert transport.sent == []


def test_punished_sender_is_ignored_until_expiry(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport)
    bot.services.moderation.punish(ALICE, until=500.0)

    assert asyncio.run(bot.pipeline.process(text_message("!ping"), now=100.0)) == "punishment"
    assert asyncio.run(bot.pipeline.process(text_message("!ping"), now=600.0)) == "command"
    assert any(text.startswith("🏓 Pong!") for text in transport.texts())


def test_unparseable_message_aborts_quietly(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport)
    raw = text_message("hi", chat=ALICE)
    raw["key"]["id"] = ""

    assert asyncio.run(bot.pipeline.process(raw)) == "parse"
    assert transport.sent == []


def test_hidden_command_deletes_trigger_and_stops(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport)
    raw = text_message("$$timeout 15", sender=OWNER, mentions=(BOB,), message_id="h1")

    assert asyncio.run(bot.pipeline.process(raw)) == "hidden_command"
    assert [ref.message_id for ref in transport.deleted] == ["h1"]
    assert bot.services.moderation.is_punished(BOB)
    assert transport.texts(GROUP) == []
    assert bot.services.leveling.get_profile(OWNER).xp == 0


def test_hidden_prefix_from_member_is_ordinary_text(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport)

    assert asyncio.run(bot.pipeline.process(text_message("$$timeout 15", mentions=(BOB,)))) == "done"
    assert transport.deleted == []
    assert not bot.services.moderation.is_punished(BOB)


def test_hostile_direct_message_gets_comeback(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport)

    assert asyncio.run(bot.pipeline.process(text_message("you are so stupid", chat=ALICE))) == "hostility"
    assert len(transport.texts(ALICE)) == 1
    assert bot.services.ai.calls == 0


def test_direct_message_and_unknown_command_reach_ai(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport)

    assert asyncio.run(bot.pipeline.process(text_message("!whatever", chat=ALICE))) == "ai"
    assert transport.texts(ALICE) == ["ai says hi"]
    history = bot.services.history.read(ALICE)
    assert [entry.text for entry in history] == ["!whatever", "ai says hi"]


def test_level_up_is_announced(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport, xp_per_message=100)

    asyncio.run(bot.pipeline.process(text_message("hello all")))

    assert any("reached level 2" in text for text in transport.texts(GROUP))


def test_view_once_capture_then_reveal(tmp_path: Path) -> None:
    transport = FakeTransport(media_payload=b"secret-photo")
    bot = _make_bot(tmp_path, transport, reveal_self_destruct_sec=0)

    async def scenario() -> list[str]:
        first = await bot.pipeline.process(media_message("imageMessage", view_once=True, message_id="v1"))
        second = await bot.pipeline.process(text_message("!reveal", sender=BOB, mentions=(ALICE,), message_id="v2"))
        return [first, second]

    assert asyncio.run(scenario()) == ["ephemeral", "command"]
    assert any("View-once image" in text and "within 60s" in text for text in transport.texts(GROUP))
    assert transport.media[0]["payload"] == b"secret-photo"
    assert ALICE not in bot.services.ephemeral


def test_view_once_download_failure_is_reported_not_stored(tmp_path: Path) -> None:
    transport = FakeTransport(fail_download=True)
    bot = _make_bot(tmp_path, transport)

    result = asyncio.run(bot.pipeline.process(media_message("videoMessage", view_once=True, message_id="v1")))

    assert result == "ephemeral"
    assert transport.texts(GROUP)[-1] == "😓 Sorry, I couldn't save that view-once item."
    assert ALICE not in bot.services.ephemeral
    assert "ephemeral.download_failed" in [row["event"] for row in bot.logger.recent(20)]


def test_typing_presence_for_group_chatter(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport, typing_duration_sec=0.01)

    async def scenario() -> None:
        await bot.pipeline.process(text_message("just chatting"))
        await bot.pipeline.process(text_message("!ping", sender=BOB))
        await asyncio.sleep(0.05)
        await bot.services.scheduler.stop()

    asyncio.run(scenario())

    assert transport.presence == [(GROUP, "composing"), (GROUP, "paused")]


def test_sticker_gets_reaction(tmp_path: Path) -> None:
    transport = FakeTransport()
    bot = _make_bot(tmp_path, transport, sticker_reaction_chance=1.0)

    assert asyncio.run(bot.pipeline.process(media_message("stickerMessage", message_id="s1"))) == "reaction"
    assert transport.reactions and transport.reactions[0][0].message_id == "s1"
