from __future__ import annotations

from wabot.context import Services
from wabot.models import ContentKind, EphemeralContent, MediaContent, MessageContext
from wabot.prompts import (
    AI_BLOCKED_MESSAGE,
    AI_EMPTY_MESSAGE,
    AI_SHAPE_MESSAGE,
    MEDIA_PLACEHOLDERS,
    PERSONA_TEMPLATE,
    REPLY_NOTE_TEMPLATE,
)
from wabot.services.ai_service import (
    AIBlockedError,
    AIEmptyResponseError,
    AIResponseShapeError,
    AIServiceError,
    ImagePart,
    PromptPart,
    TextPart,
)
from wabot.services.ai_trigger import AITriggerEvaluator, build_prompt, filter_reply_mentions
from wabot.services.chat_history import ROLE_ASSISTANT, ROLE_USER
from wabot.transport import TransportError

VISION_KINDS = (ContentKind.IMAGE, ContentKind.STICKER)


def transcript_text(ctx: MessageContext) -> str:
    """What the transcript stores for a message: its text, or a placeholder for bare media."""
    if ctx.text:
        return ctx.text
    if isinstance(ctx.content, EphemeralContent):
        return MEDIA_PLACEHOLDERS.get(ctx.content.kind.value, "[sent media]")
    return MEDIA_PLACEHOLDERS.get(ctx.content.kind.value, "")


class AIResponder:
    def __init__(self, services: Services) -> None:
        self.services = services
        self.trigger = AITriggerEvaluator(
            identity=services.identity,
            group_settings=services.group_settings,
            bot_name=services.settings.bot_name,
            respond_to_all=lambda: services.respond_to_all,
        )

    async def maybe_respond(self, ctx: MessageContext) -> bool:
        reason = self.trigger.trigger_reason(ctx)
        if reason is None:
            return False
        return await self.respond(ctx, reason=reason)

    async def respond(self, ctx: MessageContext, *, reason: str, text_override: str | None = None) -> bool:
        """Generate and send a reply. Returns True once something user-visible was sent."""
        services = self.services
        message_text = text_override if text_override is not None else transcript_text(ctx)
        if not message_text.strip() and not self._wants_image(ctx):
            return False

        prompt = self.build_prompt_text(ctx, message_text)
        parts: list[PromptPart] = [TextPart(prompt)]
        image = await self._image_part(ctx)
        if image is not None:
            parts.append(image)

        try:
            reply = await services.ai.generate(parts, cache_key=services.ai.cache_key(ctx.sender_id, message_text))
        except AIBlockedError as exc:
            services.logger.log("ai.blocked", chat_id=ctx.chat_id, message_id=ctx.message_id, detail=str(exc)[:200])
            await services.reply(ctx, AI_BLOCKED_MESSAGE)
            return True
        except AIEmptyResponseError as exc:
            services.logger.log("ai.empty", chat_id=ctx.chat_id, message_id=ctx.message_id, detail=str(exc)[:200])
            await services.reply(ctx, AI_EMPTY_MESSAGE)
            return True
        except AIResponseShapeError as exc:
            services.logger.error("ai.bad_shape", chat_id=ctx.chat_id, message_id=ctx.message_id, detail=str(exc)[:200])
            await services.reply(ctx, AI_SHAPE_MESSAGE)
            return True
        except AIServiceError as exc:
            services.logger.error("ai.failed", chat_id=ctx.chat_id, message_id=ctx.message_id, detail=str(exc)[:300])
            await services.reply(ctx, services.ai.fallback_response())
            return True

        mentions = filter_reply_mentions(reply, ctx.mentions)
        await services.reply(ctx, reply, mentions)
        services.history.append(ctx.chat_id, ROLE_ASSISTANT, reply, speaker_id=services.identity.primary)
        services.logger.log(
            "ai.reply",
            chat_id=ctx.chat_id,
            user_id=ctx.sender_id,
            reason=reason,
            chars=len(reply),
            mentions=len(mentions),
        )
        return True

    def build_prompt_text(self, ctx: MessageContext, message_text: str) -> str:
        settings = self.services.settings
        history = self.services.history.read(ctx.chat_id)
        if history and history[-1].role == ROLE_USER and history[-1].speaker_id == ctx.sender_id:
            if history[-1].text == transcript_text(ctx).strip():
                history = history[:-1]
        persona = PERSONA_TEMPLATE.format(
            bot_name=settings.bot_name,
            chat_kind="group chat" if ctx.is_group else "private chat",
        )
        reply_note = ""
        if ctx.quoted is not None and ctx.quoted.text:
            if self.services.identity.is_self(ctx.quoted.participant):
                author = settings.bot_name
            else:
                author = ctx.quoted.participant.split("@", 1)[0] or "someone"
            snippet = ctx.quoted.text[: settings.quoted_snippet_chars]
            reply_note = REPLY_NOTE_TEMPLATE.format(author=author, snippet=snippet)
        return build_prompt(
            persona=persona,
            history_lines=[entry.render(settings.bot_name) for entry in history],
            reply_note=reply_note,
            speaker=ctx.display_name,
            message=message_text,
            budget=settings.ai_input_budget,
        )

    def _wants_image(self, ctx: MessageContext) -> bool:
        return isinstance(ctx.content, MediaContent) and ctx.content.media_kind in VISION_KINDS

    async def _image_part(self, ctx: MessageContext) -> ImagePart | None:
        if not self._wants_image(ctx):
            return None
        try:
            data = await self.services.transport.download_media(ctx.raw)
        except TransportError as exc:
            self.services.logger.log("ai.image_download_failed", message_id=ctx.message_id, error=str(exc)[:200])
            return None
        mimetype = ctx.content.mimetype if isinstance(ctx.content, MediaContent) else ""
        return ImagePart(data=data, mimetype=mimetype or "image/jpeg")
