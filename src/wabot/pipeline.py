"""
Inbound message pipeline.

Each message runs through an ordered list of named stages. A stage returns CONTINUE to
hand over to the next one, STOP when the message is fully handled, or ERROR when it
cannot be processed. A failure inside one message never affects the rest of the batch.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from wabot.commands.registry import CommandRegistry, DispatchOutcome, dispatch
from wabot.context import Services
from wabot.identity import STATUS_BROADCAST, is_group, mention_tag
from wabot.models import ContentKind, EphemeralContent, MessageContext
from wabot.parser import Envelope, MessageParseError, MessageParser, peek, read_envelope
from wabot.prompts import HOSTILITY_COMEBACKS, NEGATIVE_TERMS, STICKER_REACTIONS
from wabot.services.ai_responder import AIResponder, transcript_text
from wabot.services.chat_history import ROLE_USER
from wabot.services.security import SecurityFilter
from wabot.transport import TransportError

TYPING_MEDIA_KINDS = (ContentKind.IMAGE, ContentKind.VIDEO, ContentKind.AUDIO, ContentKind.STICKER)


class StageResult(str, Enum):
    CONTINUE = "continue"
    STOP = "stop"
    ERROR = "error"


@dataclass
class MessageState:
    raw: dict[str, Any]
    envelope: Envelope
    now: float
    ctx: MessageContext | None = None
    ai_responded: bool = False

    @property
    def message(self) -> MessageContext:
        if self.ctx is None:
            raise RuntimeError("Stage needs a parsed message.")
        return self.ctx


Stage = Callable[[MessageState], Awaitable[StageResult]]


class MessagePipeline:
    def __init__(
        self,
        services: Services,
        commands: CommandRegistry,
        hidden_commands: CommandRegistry,
        responder: AIResponder,
        security: SecurityFilter,
    ) -> None:
        self.services = services
        self.commands = commands
        self.hidden_commands = hidden_commands
        self.responder = responder
        self.security = security
        self.hidden_parser = MessageParser(services.settings.secret_prefix)
        self._hostility_regex = re.compile(
            r"\b(?:" + "|".join(re.escape(term) for term in NEGATIVE_TERMS) + r")\b", re.IGNORECASE
        )
        self.stages: list[tuple[str, Stage]] = [
            ("filter", self.filter_stage),
            ("punishment", self.punishment_stage),
            ("typing", self.typing_stage),
            ("parse", self.parse_stage),
            ("hidden_command", self.hidden_command_stage),
            ("progression", self.progression_stage),
            ("hostility", self.hostility_stage),
            ("transcript", self.transcript_stage),
            ("security", self.security_stage),
            ("command", self.command_stage),
            ("ai", self.ai_stage),
            ("ephemeral", self.ephemeral_stage),
            ("reaction", self.reaction_stage),
        ]

    async def process_batch(self, batch: list[Any]) -> list[str]:
        """Process messages one after another, in source order."""
        return [await self.process(raw) for raw in batch]

    async def process(self, raw: Any, now: float | None = None) -> str:
        """Run one message through the stages; returns the name of the stage that ended it, or "done"."""
        state = MessageState(
            raw=raw if isinstance(raw, dict) else {},
            envelope=read_envelope(raw),
            now=float(now if now is not None else time.time()),
        )
        stage_name = ""
        try:
            for stage_name, stage in self.stages:
                result = await stage(state)
                if result is StageResult.CONTINUE:
                    continue
                if result is StageResult.ERROR:
                    self.services.logger.log("pipeline.aborted", stage=stage_name, message_id=state.envelope.message_id)
                return stage_name
        except Exception as exc:  # noqa: BLE001
            self.services.logger.error(
                "pipeline.message_failed",
                stage=stage_name,
                message_id=state.envelope.message_id,
                chat_id=state.envelope.chat_id,
                error=str(exc)[:300],
            )
            await self.services.report_exception(
                "Message processing failed",
                exc,
                stage=stage_name,
                message_id=state.envelope.message_id,
                chat=state.envelope.chat_id,
            )
            return stage_name
        return "done"

    async def filter_stage(self, state: MessageState) -> StageResult:
        envelope = state.envelope
        if envelope.from_me or self.services.identity.is_self(envelope.sender_id):
            return StageResult.STOP
        if STATUS_BROADCAST in (envelope.chat_id, envelope.sender_id):
            return StageResult.STOP
        if not envelope.has_payload or not envelope.chat_id or not envelope.sender_id:
            return StageResult.STOP
        return StageResult.CONTINUE

    async def punishment_stage(self, state: MessageState) -> StageResult:
        if self.services.moderation.is_punished(state.envelope.sender_id, state.now):
            return StageResult.STOP
        return StageResult.CONTINUE

    async def typing_stage(self, state: MessageState) -> StageResult:
        services = self.services
        chat_id = state.envelope.chat_id
        if not is_group(chat_id) or services.respond_to_all:
            return StageResult.CONTINUE
        kind, text = peek(state.raw)
        is_command = text.strip().startswith(services.settings.command_prefix)
        if (text.strip() and not is_command) or kind in TYPING_MEDIA_KINDS:
            services.presence.arm(chat_id)
        return StageResult.CONTINUE

    async def parse_stage(self, state: MessageState) -> StageResult:
        try:
            state.ctx = self.services.parser.parse(state.raw)
        except MessageParseError as exc:
            self.services.logger.log("pipeline.parse_failed", message_id=state.envelope.message_id, error=str(exc))
            return StageResult.ERROR
        return StageResult.CONTINUE

    async def hidden_command_stage(self, state: MessageState) -> StageResult:
        services = self.services
        ctx = state.message
        if not services.is_privileged(ctx.sender_id) or not ctx.text.startswith(services.settings.secret_prefix):
            return StageResult.CONTINUE
        try:
            await services.transport.delete_message(ctx.ref)
        except TransportError as exc:
            services.logger.log("hidden_command.delete_failed", message_id=ctx.message_id, error=str(exc)[:200])
        parsed = self.hidden_parser.parse_command(ctx.text)
        if parsed is None:
            return StageResult.STOP
        outcome = await dispatch(
            self.hidden_commands,
            services,
            ctx,
            parsed.name,
            list(parsed.args),
            parsed.raw_args,
            state.now,
        )
        if outcome is DispatchOutcome.UNKNOWN:
            await services.notify_owner(f"Unknown hidden command: {parsed.name}")
        return StageResult.STOP

    async def progression_stage(self, state: MessageState) -> StageResult:
        services = self.services
        ctx = state.message
        if ctx.is_button_click:
            return StageResult.CONTINUE
        change = services.leveling.award(ctx.sender_id, services.settings.xp_per_message)
        if change.leveled_up:
            services.logger.log("leveling.level_up", user_id=ctx.sender_id, level=change.after.level)
            tag = mention_tag(ctx.sender_id) or ctx.display_name
            await services.send_text(
                ctx.chat_id,
                f"🎉 {tag} reached level {change.after.level}! Title: {change.after.title}",
                [ctx.sender_id],
            )
        return StageResult.CONTINUE

    async def hostility_stage(self, state: MessageState) -> StageResult:
        ctx = state.message
        if ctx.is_group or not ctx.text or not self._hostility_regex.search(ctx.text):
            return StageResult.CONTINUE
        await self.services.reply(ctx, self.services.rng.choice(HOSTILITY_COMEBACKS))
        self.services.logger.log("pipeline.hostility", chat_id=ctx.chat_id)
        return StageResult.STOP

    async def transcript_stage(self, state: MessageState) -> StageResult:
        ctx = state.message
        text = transcript_text(ctx)
        if text:
            self.services.history.append(
                ctx.chat_id,
                ROLE_USER,
                text,
                speaker_id=ctx.sender_id,
                speaker_name=ctx.display_name,
            )
            self.services.logger.message(ctx.chat_id, ctx.sender_id, text)
        return StageResult.CONTINUE

    async def security_stage(self, state: MessageState) -> StageResult:
        if await self.security.evaluate(state.message, state.now):
            return StageResult.STOP
        return StageResult.CONTINUE

    async def command_stage(self, state: MessageState) -> StageResult:
        ctx = state.message
        if ctx.command is None:
            return StageResult.CONTINUE
        outcome = await dispatch(
            self.commands,
            self.services,
            ctx,
            ctx.command.name,
            list(ctx.command.args),
            ctx.command.raw_args,
            state.now,
        )
        return StageResult.STOP if outcome.handled else StageResult.CONTINUE

    async def ai_stage(self, state: MessageState) -> StageResult:
        ctx = state.message
        state.ai_responded = await self.responder.maybe_respond(ctx)
        if state.ai_responded and not ctx.is_ephemeral:
            return StageResult.STOP
        return StageResult.CONTINUE

    async def ephemeral_stage(self, state: MessageState) -> StageResult:
        services = self.services
        ctx = state.message
        if not isinstance(ctx.content, EphemeralContent):
            return StageResult.CONTINUE
        if state.ai_responded:
            return StageResult.STOP
        media = ctx.content.media
        try:
            payload = await services.transport.download_media(ctx.raw)
        except TransportError as exc:
            services.logger.error("ephemeral.download_failed", message_id=ctx.message_id, error=str(exc)[:300])
            await services.reply(ctx, "😓 Sorry, I couldn't save that view-once item.")
            return StageResult.STOP
        services.ephemeral.capture(
            ctx.sender_id,
            media.media_kind,
            payload,
            state.now,
            mimetype=media.mimetype,
            caption=media.caption,
        )
        services.logger.log("ephemeral.captured", chat_id=ctx.chat_id, owner_id=ctx.sender_id, kind=media.media_kind.value)
        remaining = services.ephemeral.remaining_seconds(ctx.sender_id, state.now)
        tag = mention_tag(ctx.sender_id) or ctx.display_name
        await services.reply(
            ctx,
            f"👁️ View-once {media.media_kind.value} from {tag} saved. "
            f"Use {services.settings.command_prefix}reveal within {remaining}s to see it.",
            [ctx.sender_id],
        )
        return StageResult.STOP

    async def reaction_stage(self, state: MessageState) -> StageResult:
        services = self.services
        ctx = state.message
        if not ctx.is_sticker or services.rng.random() >= services.settings.sticker_reaction_chance:
            return StageResult.CONTINUE
        try:
            await services.transport.send_reaction(ctx.ref, services.rng.choice(STICKER_REACTIONS))
        except TransportError as exc:
            services.logger.log("reaction.failed", message_id=ctx.message_id, error=str(exc)[:200])
        return StageResult.STOP
