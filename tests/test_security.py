from __future__ import annotations

import asyncio
from pathlib import Path

from fakes import ALICE, BOB, BOT, GROUP, OWNER, FakeTransport, make_services, text_message
from wabot.models import GroupMember
from wabot.services.security import SecurityFilter


def _group_transport(*, bot_admin: bool = True) -> FakeTransport:
    return FakeTransport(
        members={
            GROUP: [
                GroupMember(ALICE),
                GroupMember(BOB, "admin"),
                GroupMember(BOT, "admin" if bot_admin else "member"),
            ]
        }
    )


def test_link_violation_escalates_to_removal(tmp_path: Path) -> None:
    transport = _group_transport()
    services = make_services(tmp_path, transport, spam_max_messages=100)
    security = SecurityFilter(services)

    async def scenario() -> list[bool]:
        handled = []
        for i in range(5):
            ctx = services.parser.parse(
                text_message(f"join chat.whatsapp.com/abc{i}", message_id=f"link-{i}")
            )
            handled.append(await security.evaluate(ctx, now=1000.0 + i * 30))
            if i < 4:
                assert transport.membership == []
        return handled

    handled = asyncio.run(scenario())

    warnings = [text for text in transport.texts(GROUP) if "Warning" in text]
    assert handled == [True] * 5
    assert [w.split("Warning ")[1] for w in warnings] == ["1/5.", "2/5.", "3/5.", "4/5.", "5/5."]
    assert [ref.message_id for ref in transport.deleted] == [f"link-{i}" for i in range(5)]
    assert transport.membership == [(GROUP, [ALICE], "remove")]
    assert services.moderation.warnings(ALICE) == 0


def test_admins_and_owner_are_exempt(tmp_path: Path) -> None:
    transport = _group_transport()
    transport.members[GROUP].append(GroupMember(OWNER))
    services = make_services(tmp_path, transport)
    security = SecurityFilter(services)

    for sender in (BOB, OWNER):
        ctx = services.parser.parse(text_message("see https://example.com", sender=sender))
        assert not asyncio.run(security.evaluate(ctx, now=10.0))
    assert transport.deleted == []


def test_delete_failure_becomes_apology(tmp_path: Path) -> None:
    transport = _group_transport()
    transport.fail_delete = True
    services = make_services(tmp_path, transport)
    security = SecurityFilter(services)

    ctx = services.parser.parse(text_message("http://spam.example"))
    assert asyncio.run(security.evaluate(ctx, now=10.0))
    assert "couldn't delete" in transport.texts(GROUP)[-1]


def test_spam_without_admin_rights_only_informs(tmp_path: Path) -> None:
    transport = _group_transport(bot_admin=False)
    services = make_services(tmp_path, transport, spam_max_messages=2)
    security = SecurityFilter(services)

    async def scenario() -> list[bool]:
        results = []
        for i in range(3):
            ctx = services.parser.parse(text_message(f"msg {i}", message_id=f"s{i}"))
            results.append(await security.evaluate(ctx, now=100.0 + i))
        return results

    assert asyncio.run(scenario()) == [False, False, True]
    assert transport.membership == []
    assert "need admin rights" in transport.texts(GROUP)[-1]


def test_direct_chats_are_not_filtered(tmp_path: Path) -> None:
    services = make_services(tmp_path, _group_transport())
    ctx = services.parser.parse(text_message("https://example.com", chat=ALICE))
    assert not asyncio.run(SecurityFilter(services).evaluate(ctx, now=1.0))


def _flood(services, security: SecurityFilter, count: int) -> list[bool]:
    async def scenario() -> list[bool]:
        results = []
        for i in range(count):
            ctx = services.parser.parse(text_message(f"msg {i}", message_id=f"f{i}"))
            results.append(await security.evaluate(ctx, now=200.0 + i))
        return results

    return asyncio.run(scenario())


def test_spam_with_admin_rights_removes_sender(tmp_path: Path) -> None:
    transport = _group_transport()
    services = make_services(tmp_path, transport, spam_max_messages=2)

    assert _flood(services, SecurityFilter(services), 3) == [False, False, True]
    assert transport.membership == [(GROUP, [ALICE], "remove")]
    assert "removed for flooding" in transport.texts(GROUP)[-1]
    assert services.logger.recent(1)[0]["event"] == "security.removed"


def test_removal_failure_becomes_apology(tmp_path: Path) -> None:
    transport = _group_transport()
    transport.fail_membership = True
    services = make_services(tmp_path, transport, spam_max_messages=2)

    assert _flood(services, SecurityFilter(services), 3) == [False, False, True]
    assert transport.membership == []
    assert transport.texts(GROUP)[-1] == "😓 Sorry, I couldn't remove @15551110001."
    events = [row["event"] for row in services.logger.recent(10)]
    assert "security.remove_failed" in events
    assert "security.removed" not in events
