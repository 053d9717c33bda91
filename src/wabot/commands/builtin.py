from __future__ import annotations

from datetime import datetime, timezone

from wabot.commands.registry import CommandContext, CommandRegistry
from wabot.identity import mention_tag
from wabot.models import MessageRef
from wabot.prompts import JOKES
from wabot.services.ai_responder import AIResponder
from wabot.services.ephemeral_store import RetrieveStatus
from wabot.services.group_settings import GroupSettings
from wabot.services.roster import GroupRoster, load_roster
from wabot.transport import TransportError

TOGGLE_COMMANDS: dict[str, tuple[str, str]] = {
    "ai": ("ai_enabled", "AI replies"),
    "welcome": ("welcome_enabled", "welcome messages"),
    "goodbye": ("goodbye_enabled", "goodbye messages"),
    "antilink": ("link_protection_enabled", "link protection"),
    "antispam": ("spam_filter_enabled", "spam filter"),
}
MEMBERSHIP_COMMANDS: dict[str, tuple[str, str]] = {
    "kick": ("remove", "removed"),
    "promote": ("promote", "promoted to admin"),
    "demote": ("demote", "demoted"),
}


def parse_switch(args: list[str]) -> bool | None:
    if not args:
        return None
    value = args[0].lower()
    if value in ("on", "enable", "enabled", "true", "1", "yes"):
        return True
    if value in ("off", "disable", "disabled", "false", "0", "no"):
        return False
    return None


async def require_group_admin(ctx: CommandContext) -> GroupRoster | None:
    if not ctx.message.is_group:
        await ctx.reply("👥 This command only works in groups.")
        return None
    roster = await load_roster(ctx.services, ctx.chat)
    if not roster.is_admin(ctx.sender) and not ctx.services.is_privileged(ctx.sender):
        await ctx.reply("⛔ Only group admins can use this command.")
        return None
    return roster


def format_settings(settings: GroupSettings) -> str:
    def flag(value: bool) -> str:
        return "✅ on" if value else "❌ off"

    return "\n".join(
        [
            "⚙️ *Group settings*",
            f"AI replies: {flag(settings.ai_enabled)}",
            f"Welcome: {flag(settings.welcome_enabled)}",
            f"Goodbye: {flag(settings.goodbye_enabled)}",
            f"Anti-link: {flag(settings.link_protection_enabled)}",
            f"Anti-spam: {flag(settings.spam_filter_enabled)}",
        ]
    )


def register_builtin_commands(registry: CommandRegistry, responder: AIResponder, started_at: datetime) -> None:
    @registry.command("help", description="Show this menu", aliases=("menu",))
    async def help_cmd(ctx: CommandContext, args: list[str]) -> None:
        settings = ctx.services.settings
        lines = [f"🤖 *{settings.bot_name} commands*"]
        for descriptor in registry.listed():
            if descriptor.requires_privilege and not ctx.services.is_privileged(ctx.sender):
                continue
            marker = "👑 " if descriptor.requires_privilege else ""
            usage = f" {descriptor.usage}" if descriptor.usage else ""
            lines.append(f"{marker}{settings.command_prefix}{descriptor.name}{usage} - {descriptor.description}")
        await ctx.reply("\n".join(lines))

    @registry.command("ping", description="Check that the bot is alive")
    async def ping_cmd(ctx: CommandContext, args: list[str]) -> None:
        uptime = datetime.now(tz=timezone.utc) - started_at
        await ctx.reply(f"🏓 Pong! Uptime: {str(uptime).split('.', 1)[0]}")

    @registry.command("joke", description="Tell a random joke")
    async def joke_cmd(ctx: CommandContext, args: list[str]) -> None:
        await ctx.reply(f"😂 {ctx.services.rng.choice(JOKES)}")

    @registry.command("dice", description="Roll a die", aliases=("roll",), usage="[sides]")
    async def dice_cmd(ctx: CommandContext, args: list[str]) -> None:
        sides = 6
        if args:
            try:
                sides = int(args[0])
            except ValueError:
                await ctx.reply("🎲 Usage: dice [sides], e.g. dice 20")
                return
        if not 2 <= sides <= 1000:
            await ctx.reply("🎲 Pick between 2 and 1000 sides.")
            return
        await ctx.reply(f"🎲 You rolled a {ctx.services.rng.randint(1, sides)} (d{sides}).")

    @registry.command("profile", description="Show level and XP", aliases=("level", "rank"), usage="[@user]")
    async def profile_cmd(ctx: CommandContext, args: list[str]) -> None:
        target = ctx.target(args) or ctx.sender
        profile = ctx.services.leveling.get_profile(target)
        await ctx.reply(
            "\n".join(
                [
                    f"📊 Profile of {mention_tag(target) or target}",
                    f"Level: {profile.level}",
                    f"XP: {profile.xp}",
                    f"Title: {profile.title}",
                ]
            ),
            [target],
        )

    @registry.command("top", description="XP leaderboard", aliases=("leaderboard",))
    async def top_cmd(ctx: CommandContext, args: list[str]) -> None:
        rows = ctx.services.leveling.leaderboard(10)
        if not rows:
            await ctx.reply("🏆 Nobody has earned XP yet.")
            return
        lines = ["🏆 *Leaderboard*"]
        for position, (identity, profile) in enumerate(rows, start=1):
            lines.append(f"{position}. {mention_tag(identity) or identity} - lvl {profile.level} ({profile.xp} XP)")
        await ctx.reply("\n".join(lines), [identity for identity, _profile in rows])

    @registry.command("ask", description="Ask the AI directly", usage="<question>")
    async def ask_cmd(ctx: CommandContext, args: list[str]) -> None:
        if not ctx.raw_args:
            await ctx.reply(f"💬 Usage: {ctx.services.settings.command_prefix}ask <question>")
            return
        await responder.respond(ctx.message, reason="command", text_override=ctx.raw_args)

    @registry.command("reveal", description="Reveal a captured view-once item", aliases=("vv",), usage="[@user]")
    async def reveal_cmd(ctx: CommandContext, args: list[str]) -> None:
        services = ctx.services
        owner = ctx.target(args) or ctx.sender
        result = services.ephemeral.retrieve(owner)
        if result.status is RetrieveStatus.NOT_FOUND or result.item is None:
            if result.status is RetrieveStatus.EXPIRED:
                await ctx.reply("⌛ That view-once item has expired.")
            else:
                await ctx.reply("🔍 No pending view-once item for that user.")
            return
        item = result.item
        message_id = await services.send_media(
            ctx.chat,
            item.media_kind,
            item.payload,
            caption=f"👁️ View-once from {mention_tag(owner) or owner}" + (f"\n{item.caption}" if item.caption else ""),
            mentions=[owner],
            mimetype=item.mimetype,
        )
        if not message_id:
            await ctx.reply("😓 Sorry, I couldn't send that item.")
            return
        services.logger.log("ephemeral.revealed", chat_id=ctx.chat, owner_id=owner, by=ctx.sender)
        delay = services.settings.reveal_self_destruct_sec
        if delay > 0:
            ref = MessageRef(chat_id=ctx.chat, message_id=message_id, from_me=True)
            services.scheduler.call_later(
                f"destruct:{message_id}",
                delay,
                lambda: services.transport.delete_message(ref),
            )
            await ctx.reply(f"💣 This will self-destruct in {int(delay)}s.")

    @registry.command("settings", description="Show group settings")
    async def settings_cmd(ctx: CommandContext, args: list[str]) -> None:
        if not ctx.message.is_group:
            await ctx.reply("👥 This command only works in groups.")
            return
        await ctx.reply(format_settings(ctx.services.group_settings.get(ctx.chat)))

    def make_toggle(command: str, field_name: str, label: str) -> None:
        @registry.command(command, description=f"Turn {label} on or off", usage="on|off")
        async def toggle_cmd(ctx: CommandContext, args: list[str]) -> None:
            if await require_group_admin(ctx) is None:
                return
            value = parse_switch(args)
            if value is None:
                current = getattr(ctx.services.group_settings.get(ctx.chat), field_name)
                await ctx.reply(f"⚙️ {label.capitalize()} is {'on' if current else 'off'}. Use `{command} on|off`.")
                return
            ctx.services.group_settings.set(ctx.chat, **{field_name: value})
            ctx.services.logger.log("settings.changed", chat_id=ctx.chat, setting=field_name, value=value, by=ctx.sender)
            await ctx.reply(f"✅ {label.capitalize()} turned {'on' if value else 'off'}.")

    for command, (field_name, label) in TOGGLE_COMMANDS.items():
        make_toggle(command, field_name, label)

    @registry.command("resetwarn", description="Clear a member's link warnings", usage="@user")
    async def resetwarn_cmd(ctx: CommandContext, args: list[str]) -> None:
        if await require_group_admin(ctx) is None:
            return
        target = ctx.target(args)
        if not target:
            await ctx.reply("❓ Tag the member whose warnings should be cleared.")
            return
        ctx.services.moderation.reset_warnings(target)
        await ctx.reply(f"🧹 Warnings cleared for {mention_tag(target) or target}.", [target])

    def make_membership(command: str, action: str, verb: str) -> None:
        @registry.command(command, description=f"Member gets {verb}", usage="@user")
        async def membership_cmd(ctx: CommandContext, args: list[str]) -> None:
            roster = await require_group_admin(ctx)
            if roster is None:
                return
            target = ctx.target(args)
            if not target:
                await ctx.reply("❓ Tag the member first.")
                return
            if ctx.services.identity.is_self(target) or ctx.services.is_privileged(target):
                await ctx.reply("🙅 Nice try.")
                return
            if not roster.bot_is_admin(ctx.services.identity):
                await ctx.reply("ℹ️ I need admin rights in this group to do that.")
                return
            try:
                await ctx.services.transport.update_group_membership(ctx.chat, [target], action)
            except TransportError as exc:
                ctx.services.logger.error("command.membership_failed", command=command, chat_id=ctx.chat, error=str(exc)[:300])
                await ctx.reply("😓 Sorry, that didn't work.")
                return
            await ctx.reply(f"✅ {mention_tag(target) or target} {verb}.", [target])

    for command, (action, verb) in MEMBERSHIP_COMMANDS.items():
        make_membership(command, action, verb)

    @registry.command("respondall", description="Reply to every message", requires_privilege=True, usage="on|off")
    async def respondall_cmd(ctx: CommandContext, args: list[str]) -> None:
        value = parse_switch(args)
        if value is None:
            await ctx.reply(f"🌐 Respond-to-all is {'on' if ctx.services.respond_to_all else 'off'}.")
            return
        ctx.services.set_respond_to_all(value)
        ctx.services.logger.log("runtime.respond_to_all", value=value)
        await ctx.reply(f"🌐 Respond-to-all turned {'on' if value else 'off'}.")

    @registry.command("aitest", description="Test the AI provider", requires_privilege=True)
    async def aitest_cmd(ctx: CommandContext, args: list[str]) -> None:
        result = await ctx.services.ai.test_api()
        status = "✅" if result.ok else "❌"
        latency = f" ({result.latency_ms} ms)" if result.latency_ms is not None else ""
        await ctx.reply(f"{status} {result.detail}{latency}")

    @registry.command("stats", description="Runtime statistics", requires_privilege=True)
    async def stats_cmd(ctx: CommandContext, args: list[str]) -> None:
        services = ctx.services
        uptime = datetime.now(tz=timezone.utc) - started_at
        data = services.store.data
        await ctx.reply(
            "\n".join(
                [
                    "📈 *Stats*",
                    f"Uptime: {str(uptime).split('.', 1)[0]}",
                    f"Profiles: {len(data.get('profiles', {}))}",
                    f"Groups configured: {len(data.get('group_settings', {}))}",
                    f"Active punishments: {len(data.get('moderation', {}).get('punishments', {}))}",
                    f"Pending view-once: {len(services.ephemeral)}",
                    f"Scheduled tasks: {len(services.scheduler.active_keys())}",
                    f"Respond-to-all: {'on' if services.respond_to_all else 'off'}",
                ]
            )
        )
