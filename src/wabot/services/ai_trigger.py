from __future__ import annotations

import re
from typing import TYPE_CHECKING, Callable

from wabot.identity import phone_digits
from wabot.models import MessageContext
from wabot.prompts import CURRENT_MESSAGE_HEADER, HISTORY_HEADER, TRUNCATION_MARKER
from wabot.services.group_settings import GroupSettingsStore

if TYPE_CHECKING:
    from wabot.context import BotIdentity

_NUMERIC_TAG = re.compile(r"@(\d{5,})")


class AITriggerEvaluator:
    """
    Decides whether a message gets an AI reply.

    Order: global override, direct chat, group AI switch, then the group triggers in
    order (linked identity mentioned, reply to the primary identity, reply to the
    linked identity, display name, @number tag). The two reply checks are independent
    predicates; neither is assumed to be the canonical bot identity.
    """

    def __init__(
        self,
        identity: "BotIdentity",
        group_settings: GroupSettingsStore,
        bot_name: str,
        respond_to_all: Callable[[], bool],
    ) -> None:
        self.identity = identity
        self.group_settings = group_settings
        self.respond_to_all = respond_to_all
        self._name_regex = re.compile(rf"\b{re.escape(bot_name.strip())}\b", re.IGNORECASE) if bot_name.strip() else None

    def should_respond(self, ctx: MessageContext) -> bool:
        return self.trigger_reason(ctx) is not None

    def trigger_reason(self, ctx: MessageContext) -> str | None:
        if self.respond_to_all():
            return "override"
        if not ctx.is_group:
            return "direct"
        if not self.group_settings.get(ctx.chat_id).ai_enabled:
            return None
        if self.identity.linked and self.identity.linked in ctx.mentions:
            return "mention"
        if ctx.quoted is not None and ctx.quoted.participant:
            if ctx.quoted.participant == self.identity.primary:
                return "reply_primary"
            if ctx.quoted.participant == self.identity.linked:
                return "reply_linked"
        if self._name_regex is not None and self._name_regex.search(ctx.text):
            return "name"
        numbers = self.identity.numbers()
        if numbers and any(tag in numbers for tag in _NUMERIC_TAG.findall(ctx.text)):
            return "number_tag"
        return None


def filter_reply_mentions(reply_text: str, user_mentions: tuple[str, ...] | list[str]) -> list[str]:
    """Keep only @number tags in ``reply_text`` that the user had tagged themselves."""
    allowed: dict[str, str] = {}
    for identity in user_mentions:
        digits = phone_digits(identity)
        if digits:
            allowed.setdefault(digits, identity)
    out: list[str] = []
    for digits in _NUMERIC_TAG.findall(reply_text):
        identity = allowed.get(digits)
        if identity and identity not in out:
            out.append(identity)
    return out


def build_prompt(
    *,
    persona: str,
    history_lines: list[str],
    reply_note: str,
    speaker: str,
    message: str,
    budget: int,
) -> str:
    """
    Assemble the prompt text within ``budget`` characters.

    History is dropped from the oldest end first; only if that is not enough is the
    current message cut, with a truncation marker appended.
    """
    current_header = CURRENT_MESSAGE_HEADER.format(speaker=speaker)
    lines = list(history_lines)

    def render(history: list[str], text: str) -> str:
        blocks = [persona]
        if history:
            blocks.append("\n".join([HISTORY_HEADER, *history]))
        if reply_note:
            blocks.append(reply_note)
        blocks.append(f"{current_header}\n{text}")
        return "\n\n".join(blocks)

    prompt = render(lines, message)
    while lines and len(prompt) > budget:
        lines.pop(0)
        prompt = render(lines, message)
    if len(prompt) <= budget:
        return prompt

    overflow = len(prompt) - budget
    keep = max(0, len(message) - overflow - len(TRUNCATION_MARKER))
    return render([], message[:keep] + TRUNCATION_MARKER)
