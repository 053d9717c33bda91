from __future__ import annotations

from dataclasses import dataclass, field

from wabot.context import BotIdentity, Services
from wabot.models import GroupMember
from wabot.transport import TransportError


@dataclass
class GroupRoster:
    chat_id: str
    members: dict[str, GroupMember] = field(default_factory=dict)
    loaded: bool = False

    def is_admin(self, identity: str) -> bool:
        member = self.members.get(identity)
        return bool(member and member.is_admin)

    def bot_is_admin(self, identity: BotIdentity) -> bool:
        return self.is_admin(identity.primary) or self.is_admin(identity.linked)


async def load_roster(services: Services, chat_id: str) -> GroupRoster:
    """Fetch group members; on failure an empty, not-loaded roster comes back (nobody is admin)."""
    try:
        members = await services.transport.get_group_members(chat_id)
    except TransportError as exc:
        services.logger.error("roster.fetch_failed", chat_id=chat_id, error=str(exc)[:300])
        return GroupRoster(chat_id=chat_id)
    return GroupRoster(chat_id=chat_id, members={member.identity: member for member in members}, loaded=True)
