from __future__ import annotations

import random
import traceback
from dataclasses import dataclass, field

from wabot.config import Settings
from wabot.identity import normalize, phone_digits
from wabot.models import ContentKind, MessageContext, MessageRef
from wabot.parser import MessageParser
from wabot.services.ai_service import AIService
from wabot.services.chat_history import ChatHistory
from wabot.services.ephemeral_store import EphemeralMediaStore
from wabot.services.group_settings import GroupSettingsStore
from wabot.services.leveling_service import LevelingService
from wabot.services.logger_service import LoggerService
from wabot.services.moderation_service import ModerationService
from wabot.services.presence import PresenceService
from wabot.services.rate_limiter import RateLimiter
from wabot.services.scheduler import Scheduler
from wabot.services.spam_detector import SpamDetector
from wabot.storage import MessagePackStore
from wabot.transport import Transport, TransportError

OWNER_REPORT_TRACE_CHARS = 1500


@dataclass
class BotIdentity:
    """The bot's own identities plus the single privileged (owner) identity."""

    primary: str
    owner: str
    linked: str = ""

    def __post_init__(self) -> None:
        if not self.linked:
            self.linked = self.primary

    def is_self(self, identity: str) -> bool:
        return bool(identity) and identity in (self.primary, self.linked)

    def numbers(self) -> set[str]:
        return {digits for digits in (phone_digits(self.primary), phone_digits(self.linked)) if digits}

    @staticmethod
    def from_settings(settings: Settings) -> "BotIdentity":
        primary = normalize(settings.bot_number)
        linked = normalize(settings.bot_lid) if settings.bot_lid else ""
        return BotIdentity(primary=primary, owner=normalize(settings.owner_number), linked=linked)


@dataclass
class Services:
    """Everything a pipeline stage or command handler may touch, passed explicitly."""

    settings: Settings
    store: MessagePackStore
    logger: LoggerService
    transport: Transport
    identity: BotIdentity
    scheduler: Scheduler
    presence: PresenceService
    parser: MessageParser
    group_settings: GroupSettingsStore
    rate_limiter: RateLimiter
    spam: SpamDetector
    moderation: ModerationService
    leveling: LevelingService
    history: ChatHistory
    ephemeral: EphemeralMediaStore
    ai: AIService
    rng: random.Random = field(default_factory=random.Random)

    @staticmethod
    def build(settings: Settings, transport: Transport, store: MessagePackStore | None = None) -> "Services":
        store = store or MessagePackStore(settings.store_path)
        logger = LoggerService(store, settings.log_dir, settings.log_level)
        identity = BotIdentity.from_settings(settings)
        scheduler = Scheduler(logger)
        return Services(
            settings=settings,
            store=store,
            logger=logger,
            transport=transport,
            identity=identity,
            scheduler=scheduler,
            presence=PresenceService(transport, scheduler, logger, settings.typing_duration_sec),
            parser=MessageParser(settings.command_prefix),
            group_settings=GroupSettingsStore(store),
            rate_limiter=RateLimiter(settings.command_cooldown_sec, identity.owner),
            spam=SpamDetector(settings.spam_window_sec, settings.spam_max_messages, identity.owner),
            moderation=ModerationService(store, logger),
            leveling=LevelingService(store),
            history=ChatHistory(settings.history_cap),
            ephemeral=EphemeralMediaStore(settings.ephemeral_ttl_sec),
            ai=AIService(settings, store, logger),
        )

    def is_privileged(self, identity: str) -> bool:
        return bool(identity) and identity == self.identity.owner

    @property
    def respond_to_all(self) -> bool:
        runtime = self.store.section("runtime")
        return bool(runtime.get("respond_to_all", False)) or self.settings.respond_to_all

    def set_respond_to_all(self, enabled: bool) -> None:
        self.store.section("runtime")["respond_to_all"] = bool(enabled)
        self.store.touch()

    async def send_text(
        self,
        chat_id: str,
        text: str,
        mentions: list[str] | None = None,
        quoted: MessageRef | None = None,
    ) -> str:
        try:
            return await self.transport.send_text(chat_id, text, mentions or [], quoted)
        except TransportError as exc:
            self.logger.error("transport.send_failed", chat_id=chat_id, error=str(exc)[:300])
            return ""

    async def reply(self, ctx: MessageContext, text: str, mentions: list[str] | None = None) -> str:
        return await self.send_text(ctx.chat_id, text, mentions, quoted=ctx.ref)

    async def send_media(
        self,
        chat_id: str,
        kind: ContentKind,
        payload: bytes,
        caption: str = "",
        mentions: list[str] | None = None,
        mimetype: str = "",
    ) -> str:
        try:
            return await self.transport.send_media(chat_id, kind, payload, caption, mentions or [], mimetype)
        except TransportError as exc:
            self.logger.error("transport.send_media_failed", chat_id=chat_id, kind=kind.value, error=str(exc)[:300])
            return ""

    async def notify_owner(self, text: str) -> None:
        if not self.identity.owner:
            return
        await self.send_text(self.identity.owner, text[:4000])

    async def report_exception(self, title: str, exc: BaseException, **details: object) -> None:
        trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        lines = [f"🛑 {title}"]
        lines.extend(f"{key}: {value}" for key, value in details.items())
        lines.append(f"error: {exc!r}"[:300])
        lines.append(trace[-OWNER_REPORT_TRACE_CHARS:])
        await self.notify_owner("\n".join(lines))
