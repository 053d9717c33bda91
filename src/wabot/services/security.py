from __future__ import annotations

import re
import time

from wabot.context import Services
from wabot.identity import mention_tag
from wabot.models import MessageContext
from wabot.services.roster import GroupRoster, load_roster
from wabot.transport import TransportError


class SecurityFilter:
    """
    Link and spam policy for group chats.

    Group admins and the owner are exempt. Removal always requires the bot to hold
    admin rights in the group; moderation failures become an in-chat notice and are
    never re-raised.
    """

    def __init__(self, services: Services) -> None:
        self.services = services
        patterns = [p for p in services.settings.blocked_link_patterns if p]
        self._link_regex = (
            re.compile("|".join(re.escape(p) for p in patterns), re.IGNORECASE) if patterns else None
        )

    def contains_blocked_link(self, text: str) -> bool:
        return bool(self._link_regex and text and self._link_regex.search(text))

    async def evaluate(self, ctx: MessageContext, now: float | None = None) -> bool:
        if not ctx.is_group or self.services.is_privileged(ctx.sender_id):
            return False
        settings = self.services.group_settings.get(ctx.chat_id)
        roster: GroupRoster | None = None

        if settings.link_protection_enabled and self.contains_blocked_link(ctx.text):
            roster = await load_roster(self.services, ctx.chat_id)
            if not roster.is_admin(ctx.sender_id):
                await self._handle_link(ctx, roster)
                return True

        if settings.spam_filter_enabled:
            now_ts = float(now if now is not None else time.time())
            if self.services.spam.is_spamming(ctx.sender_id, now_ts):
                if roster is None:
                    roster = await load_roster(self.services, ctx.chat_id)
                if not roster.is_admin(ctx.sender_id):
                    await self._handle_spam(ctx, roster)
                    return True
        return False

    async def _handle_link(self, ctx: MessageContext, roster: GroupRoster) -> None:
        services = self.services
        max_warnings = max(1, services.settings.link_warn_max)
        count = services.moderation.add_warning(ctx.sender_id)
        tag = mention_tag(ctx.sender_id) or ctx.display_name
        services.logger.log(
            "security.link_warning",
            chat_id=ctx.chat_id,
            user_id=ctx.sender_id,
            count=count,
            max=max_warnings,
        )
        await services.send_text(
            ctx.chat_id,
            f"⚠️ {tag} links are not allowed in this group. Warning {count}/{max_warnings}.",
            [ctx.sender_id],
        )
        try:
            await services.transport.delete_message(ctx.ref)
        except TransportError as exc:
            services.logger.error("security.delete_failed", chat_id=ctx.chat_id, message_id=ctx.message_id, error=str(exc)[:300])
            await services.send_text(ctx.chat_id, "😓 Sorry, I couldn't delete that message. Am I an admin here?")

        if count < max_warnings:
            return
        services.moderation.reset_warnings(ctx.sender_id)
        await self._remove(
            ctx,
            roster,
            notice=f"🚫 {tag} has been removed after {max_warnings} link warnings.",
            reason="links",
        )

    async def _handle_spam(self, ctx: MessageContext, roster: GroupRoster) -> None:
        tag = mention_tag(ctx.sender_id) or ctx.display_name
        self.services.logger.log("security.spam_detected", chat_id=ctx.chat_id, user_id=ctx.sender_id)
        await self._remove(
            ctx,
            roster,
            notice=f"🚫 {tag} has been removed for flooding the chat.",
            reason="spam",
        )

    async def _remove(self, ctx: MessageContext, roster: GroupRoster, *, notice: str, reason: str) -> bool:
        services = self.services
        tag = mention_tag(ctx.sender_id) or ctx.display_name
        if not roster.bot_is_admin(services.identity):
            services.logger.log("security.removal_skipped", chat_id=ctx.chat_id, user_id=ctx.sender_id, reason=reason)
            await services.send_text(
                ctx.chat_id,
                f"ℹ️ I should remove {tag} ({reason}), but I need admin rights in this group to do that.",
                [ctx.sender_id],
            )
            return False
        try:
            await services.transport.update_group_membership(ctx.chat_id, [ctx.sender_id], "remove")
        except TransportError as exc:
            services.logger.error("security.remove_failed", chat_id=ctx.chat_id, user_id=ctx.sender_id, error=str(exc)[:300])
            await services.send_text(ctx.chat_id, f"😓 Sorry, I couldn't remove {tag}.", [ctx.sender_id])
            return False
        services.spam.reset(ctx.sender_id)
        services.logger.log("security.removed", chat_id=ctx.chat_id, user_id=ctx.sender_id, reason=reason)
        await services.send_text(ctx.chat_id, notice, [ctx.sender_id])
        return True
