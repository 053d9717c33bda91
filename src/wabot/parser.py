from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from wabot.identity import is_group, normalize
from wabot.models import (
    Content,
    ContentKind,
    EphemeralContent,
    InteractiveReply,
    MediaContent,
    MessageContext,
    ParsedCommand,
    QuotedMessage,
    TextContent,
    UnsupportedContent,
)

WRAPPER_KEYS = ("ephemeralMessage", "documentWithCaptionMessage", "editedMessage")
VIEW_ONCE_KEYS = ("viewOnceMessage", "viewOnceMessageV2", "viewOnceMessageV2Extension")
MEDIA_KEYS: dict[str, ContentKind] = {
    "imageMessage": ContentKind.IMAGE,
    "videoMessage": ContentKind.VIDEO,
    "audioMessage": ContentKind.AUDIO,
    "documentMessage": ContentKind.DOCUMENT,
    "stickerMessage": ContentKind.STICKER,
}
IGNORED_KEYS = ("messageContextInfo", "senderKeyDistributionMessage")


class MessageParseError(ValueError):
    pass


@dataclass(frozen=True)
class Envelope:
    """Key-level view of an inbound message, read before full parsing."""

    chat_id: str
    sender_id: str
    message_id: str
    from_me: bool
    has_payload: bool


def read_envelope(raw: Any) -> Envelope:
    if not isinstance(raw, dict):
        return Envelope(chat_id="", sender_id="", message_id="", from_me=False, has_payload=False)
    key = raw.get("key") if isinstance(raw.get("key"), dict) else {}
    chat_id = normalize(key.get("remoteJid"))
    if is_group(chat_id):
        sender_id = normalize(key.get("participant") or raw.get("participant"))
    else:
        sender_id = chat_id
    message = raw.get("message")
    has_payload = isinstance(message, dict) and any(k not in IGNORED_KEYS for k in message)
    return Envelope(
        chat_id=chat_id,
        sender_id=sender_id,
        message_id=str(key.get("id") or ""),
        from_me=bool(key.get("fromMe", False)),
        has_payload=has_payload,
    )


def peek(raw: Any) -> tuple[ContentKind, str]:
    """Best-effort (kind, text) for stages that run before parsing; never raises."""
    try:
        content = decode_content(raw.get("message") or {})
    except (AttributeError, MessageParseError, TypeError):
        return ContentKind.UNSUPPORTED, ""
    return content.kind, content_text(content)


def decode_content(message: dict[str, Any]) -> Content:
    type_name, node = _content_node(message)
    if type_name in VIEW_ONCE_KEYS:
        inner = decode_content(node.get("message") or {})
        if isinstance(inner, MediaContent):
            return EphemeralContent(media=inner)
        return inner
    if type_name == "conversation":
        return TextContent(text=str(node.get("text", "")))
    if type_name == "extendedTextMessage":
        return TextContent(text=str(node.get("text", "") or ""))
    if type_name in MEDIA_KEYS:
        media = MediaContent(
            media_kind=MEDIA_KEYS[type_name],
            caption=str(node.get("caption", "") or ""),
            mimetype=str(node.get("mimetype", "") or ""),
        )
        if node.get("viewOnce"):
            return EphemeralContent(media=media)
        return media
    if type_name == "buttonsResponseMessage":
        return InteractiveReply(
            selected_id=str(node.get("selectedButtonId", "") or ""),
            text=str(node.get("selectedDisplayText", "") or ""),
        )
    if type_name == "templateButtonReplyMessage":
        return InteractiveReply(
            selected_id=str(node.get("selectedId", "") or ""),
            text=str(node.get("selectedDisplayText", "") or ""),
        )
    if type_name == "listResponseMessage":
        reply = node.get("singleSelectReply") or {}
        return InteractiveReply(
            selected_id=str(reply.get("selectedRowId", "") or ""),
            text=str(node.get("title", "") or ""),
        )
    return UnsupportedContent(type_name=type_name or "empty")


def content_text(content: Content) -> str:
    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, MediaContent):
        return content.caption
    if isinstance(content, EphemeralContent):
        return content.media.caption
    if isinstance(content, InteractiveReply):
        return content.text
    return ""


def _content_node(message: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    if not isinstance(message, dict):
        raise MessageParseError("message payload is not an object")
    current = message
    for _ in range(4):
        wrapper = next((key for key in WRAPPER_KEYS if isinstance(current.get(key), dict)), None)
        if wrapper is None:
            break
        inner = current[wrapper].get("message")
        if not isinstance(inner, dict):
            raise MessageParseError(f"{wrapper} without inner message")
        current = inner
    for key, value in current.items():
        if key in IGNORED_KEYS:
            continue
        if key == "conversation":
            return key, {"text": value}
        if isinstance(value, dict):
            return key, value
    return "", {}


class MessageParser:
    def __init__(self, command_prefix: str) -> None:
        self.command_prefix = command_prefix

    def parse(self, raw: Any) -> MessageContext:
        if not isinstance(raw, dict):
            raise MessageParseError("inbound event is not an object")
        envelope = read_envelope(raw)
        if not envelope.chat_id:
            raise MessageParseError("missing or invalid chat identity")
        if not envelope.sender_id:
            raise MessageParseError("missing or invalid sender identity")
        if not envelope.message_id:
            raise MessageParseError("missing message id")

        message = raw.get("message") or {}
        content = decode_content(message)
        _type_name, node = _content_node(message)
        if isinstance(content, EphemeralContent) and _type_name in VIEW_ONCE_KEYS:
            _inner_type, node = _content_node(node.get("message") or {})
        context_info = node.get("contextInfo") if isinstance(node.get("contextInfo"), dict) else {}

        text = content_text(content).strip()
        return MessageContext(
            message_id=envelope.message_id,
            chat_id=envelope.chat_id,
            sender_id=envelope.sender_id,
            is_group=is_group(envelope.chat_id),
            content=content,
            text=text,
            push_name=str(raw.get("pushName", "") or ""),
            mentions=self._mentions(context_info),
            quoted=self._quoted(context_info),
            command=self.parse_command(text),
            timestamp=_timestamp(raw.get("messageTimestamp")),
            raw=raw,
        )

    def parse_command(self, text: str) -> ParsedCommand | None:
        if not text.startswith(self.command_prefix):
            return None
        body = text[len(self.command_prefix):].strip()
        if not body:
            return None
        parts = body.split(maxsplit=1)
        name = parts[0].lower()
        raw_args = parts[1].strip() if len(parts) > 1 else ""
        return ParsedCommand(name=name, args=tuple(raw_args.split()), raw_args=raw_args)

    def _mentions(self, context_info: dict[str, Any]) -> tuple[str, ...]:
        out: list[str] = []
        for raw_jid in context_info.get("mentionedJid") or []:
            identity = normalize(raw_jid)
            if identity and identity not in out:
                out.append(identity)
        return tuple(out)

    def _quoted(self, context_info: dict[str, Any]) -> QuotedMessage | None:
        quoted = context_info.get("quotedMessage")
        if not isinstance(quoted, dict):
            return None
        try:
            text = content_text(decode_content(quoted))
        except MessageParseError:
            text = ""
        return QuotedMessage(
            message_id=str(context_info.get("stanzaId", "") or ""),
            participant=normalize(context_info.get("participant") or context_info.get("remoteJid")),
            text=text,
        )


def _timestamp(value: Any) -> float:
    if isinstance(value, dict):
        value = value.get("low", 0)
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0
