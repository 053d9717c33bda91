from __future__ import annotations

import traceback
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from wabot.context import Services
from wabot.identity import is_group, normalize
from wabot.models import MessageContext

ERROR_REPORT_TRACE_CHARS = 1500


@dataclass
class CommandContext:
    services: Services
    message: MessageContext
    name: str
    raw_args: str = ""

    async def reply(self, text: str, mentions: list[str] | None = None) -> str:
        return await self.services.reply(self.message, text, mentions)

    @property
    def sender(self) -> str:
        return self.message.sender_id

    @property
    def chat(self) -> str:
        return self.message.chat_id

    def target(self, args: list[str]) -> str:
        """Who a moderation-style command is aimed at: a mention, the quoted author, or a number arg."""
        if self.message.mentions:
            return self.message.mentions[0]
        if self.message.quoted is not None and self.message.quoted.participant:
            return self.message.quoted.participant
        for arg in args:
            identity = normalize(arg)
            if identity and not is_group(identity):
                return identity
        return ""


CommandHandler = Callable[[CommandContext, list[str]], Awaitable[None]]


@dataclass(frozen=True)
class CommandDescriptor:
    name: str
    handler: CommandHandler
    requires_privilege: bool = False
    description: str = ""
    hidden: bool = False
    aliases: tuple[str, ...] = ()
    usage: str = ""


class DispatchOutcome(str, Enum):
    UNKNOWN = "unknown"
    OK = "ok"
    DENIED = "denied"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"

    @property
    def handled(self) -> bool:
        return self is not DispatchOutcome.UNKNOWN


class CommandRegistry:
    """Name -> descriptor table. Read-only once ``freeze()`` has been called at startup."""

    def __init__(self, *, hidden: bool = False) -> None:
        self.hidden = hidden
        self._commands: dict[str, CommandDescriptor] = {}
        self._aliases: dict[str, str] = {}
        self._frozen = False

    def register(self, descriptor: CommandDescriptor) -> CommandDescriptor:
        if self._frozen:
            raise RuntimeError("Command registry is frozen.")
        if self.hidden and not (descriptor.hidden and descriptor.requires_privilege):
            raise ValueError(f"Hidden registry only accepts hidden privileged commands: {descriptor.name}")
        name = descriptor.name.lower()
        if name in self._commands or name in self._aliases:
            raise ValueError(f"Duplicate command name: {name}")
        self._commands[name] = descriptor
        for alias in descriptor.aliases:
            key = alias.lower()
            if key in self._commands or key in self._aliases:
                raise ValueError(f"Duplicate command alias: {key}")
            self._aliases[key] = name
        return descriptor

    def command(
        self,
        name: str,
        *,
        description: str = "",
        requires_privilege: bool = False,
        aliases: tuple[str, ...] = (),
        usage: str = "",
    ) -> Callable[[CommandHandler], CommandHandler]:
        def decorator(fn: CommandHandler) -> CommandHandler:
            self.register(
                CommandDescriptor(
                    name=name,
                    handler=fn,
                    requires_privilege=requires_privilege or self.hidden,
                    description=description,
                    hidden=self.hidden,
                    aliases=aliases,
                    usage=usage,
                )
            )
            return fn

        return decorator

    def freeze(self) -> None:
        self._frozen = True

    def get(self, name: str) -> CommandDescriptor | None:
        key = name.lower()
        key = self._aliases.get(key, key)
        return self._commands.get(key)

    def listed(self) -> list[CommandDescriptor]:
        return [d for d in sorted(self._commands.values(), key=lambda d: d.name) if not d.hidden]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __len__(self) -> int:
        return len(self._commands)


async def dispatch(
    registry: CommandRegistry,
    services: Services,
    message: MessageContext,
    name: str,
    args: list[str],
    raw_args: str = "",
    now: float | None = None,
) -> DispatchOutcome:
    """
    Run a command by name.

    Every matched name counts as handled (success, denial, cooldown or failure) so the
    caller stops trying other responses for that message. Handler errors are logged,
    answered with a generic notice, and reported in detail to the owner.
    """
    descriptor = registry.get(name)
    if descriptor is None:
        return DispatchOutcome.UNKNOWN

    sender = message.sender_id
    privileged = services.is_privileged(sender)
    if descriptor.requires_privilege and not privileged:
        services.logger.log("command.denied", command=descriptor.name, user_id=sender)
        await services.reply(message, "⛔ Access denied. This command is for the bot owner only.")
        return DispatchOutcome.DENIED

    if not privileged and not services.rate_limiter.check_and_record(sender, now):
        wait = services.rate_limiter.remaining_seconds(sender, now)
        await services.reply(message, f"⏳ Slow down! Try again in {wait}s.")
        return DispatchOutcome.RATE_LIMITED

    ctx = CommandContext(services=services, message=message, name=descriptor.name, raw_args=raw_args)
    try:
        await descriptor.handler(ctx, list(args))
    except Exception as exc:  # noqa: BLE001
        trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        services.logger.error(
            "command.failed",
            command=descriptor.name,
            user_id=sender,
            chat_id=message.chat_id,
            error=str(exc)[:300],
        )
        await services.reply(message, "❌ Something went wrong while running that command.")
        await services.notify_owner(
            "\n".join(
                [
                    f"🛑 Command `{descriptor.name}` failed",
                    f"chat: {message.chat_id}",
                    f"sender: {sender}",
                    f"args: {' '.join(args)[:200]}",
                    f"error: {exc!r}"[:300],
                    trace[-ERROR_REPORT_TRACE_CHARS:],
                ]
            )
        )
        return DispatchOutcome.FAILED
    services.logger.log("command.ok", command=descriptor.name, user_id=sender, chat_id=message.chat_id)
    return DispatchOutcome.OK
