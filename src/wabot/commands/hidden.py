from __future__ import annotations

import time

from wabot.commands.registry import CommandContext, CommandRegistry
from wabot.identity import mention_tag, normalize

MAX_TIMEOUT_MINUTES = 7 * 24 * 60


def _last_int(args: list[str], target: str) -> int | None:
    """Last integer argument, ignoring the one argument that named ``target``."""
    skip = next((index for index, arg in enumerate(args) if normalize(arg) == target), None)
    for index in range(len(args) - 1, -1, -1):
        if index == skip:
            continue
        try:
            return int(args[index])
        except ValueError:
            continue
    return None


def register_hidden_commands(registry: CommandRegistry) -> None:
    """Owner maintenance actions. Feedback goes to the owner's DM since the trigger message is deleted."""

    @registry.command("timeout", description="Mute a user for N minutes", usage="<@user|number> <minutes>")
    async def timeout_cmd(ctx: CommandContext, args: list[str]) -> None:
        services = ctx.services
        target = ctx.target(args)
        minutes = _last_int(args, target)
        if not target or minutes is None or minutes <= 0:
            await services.notify_owner("Usage: timeout <@user|number> <minutes>")
            return
        if services.is_privileged(target) or services.identity.is_self(target):
            await services.notify_owner("Refusing to time out the owner or the bot.")
            return
        minutes = min(minutes, MAX_TIMEOUT_MINUTES)
        services.moderation.punish(target, time.time() + minutes * 60)
        await services.notify_owner(f"🔇 {mention_tag(target) or target} is ignored for {minutes} min.")

    @registry.command("bonus", description="Grant bonus XP", usage="<@user|number> <xp>")
    async def bonus_cmd(ctx: CommandContext, args: list[str]) -> None:
        services = ctx.services
        target = ctx.target(args)
        amount = _last_int(args, target)
        if not target or amount is None or amount <= 0:
            await services.notify_owner("Usage: bonus <@user|number> <xp>")
            return
        change = services.leveling.award(target, amount)
        services.logger.log("leveling.bonus", user_id=target, amount=amount, level=change.after.level)
        await services.notify_owner(
            f"🎁 {mention_tag(target) or target} +{amount} XP (now {change.after.xp} XP, level {change.after.level})."
        )

    @registry.command("pardon", description="Lift a timeout", usage="<@user|number>")
    async def pardon_cmd(ctx: CommandContext, args: list[str]) -> None:
        services = ctx.services
        target = ctx.target(args)
        if not target:
            await services.notify_owner("Usage: pardon <@user|number>")
            return
        if services.moderation.pardon(target):
            await services.notify_owner(f"🔊 {mention_tag(target) or target} is no longer timed out.")
        else:
            await services.notify_owner(f"{mention_tag(target) or target} was not timed out.")
