from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class ContentKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    INTERACTIVE = "interactive"
    UNSUPPORTED = "unsupported"


MEDIA_KINDS = (
    ContentKind.IMAGE,
    ContentKind.VIDEO,
    ContentKind.AUDIO,
    ContentKind.DOCUMENT,
    ContentKind.STICKER,
)


@dataclass(frozen=True)
class TextContent:
    text: str

    @property
    def kind(self) -> ContentKind:
        return ContentKind.TEXT


@dataclass(frozen=True)
class MediaContent:
    media_kind: ContentKind
    caption: str = ""
    mimetype: str = ""

    @property
    def kind(self) -> ContentKind:
        return self.media_kind


@dataclass(frozen=True)
class EphemeralContent:
    """View-once wrapper around a single media item."""

    media: MediaContent

    @property
    def kind(self) -> ContentKind:
        return self.media.media_kind


@dataclass(frozen=True)
class InteractiveReply:
    """Button / list selection sent back by a user."""

    selected_id: str
    text: str = ""

    @property
    def kind(self) -> ContentKind:
        return ContentKind.INTERACTIVE


@dataclass(frozen=True)
class UnsupportedContent:
    type_name: str

    @property
    def kind(self) -> ContentKind:
        return ContentKind.UNSUPPORTED


Content = Union[TextContent, MediaContent, EphemeralContent, InteractiveReply, UnsupportedContent]


@dataclass(frozen=True)
class MessageRef:
    chat_id: str
    message_id: str
    from_me: bool = False
    participant: str = ""


@dataclass(frozen=True)
class QuotedMessage:
    message_id: str
    participant: str
    text: str = ""


@dataclass(frozen=True)
class ParsedCommand:
    name: str
    args: tuple[str, ...] = ()
    raw_args: str = ""


@dataclass(frozen=True)
class MessageContext:
    message_id: str
    chat_id: str
    sender_id: str
    is_group: bool
    content: Content
    text: str = ""
    push_name: str = ""
    mentions: tuple[str, ...] = ()
    quoted: QuotedMessage | None = None
    command: ParsedCommand | None = None
    timestamp: float = 0.0
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def ref(self) -> MessageRef:
        return MessageRef(
            chat_id=self.chat_id,
            message_id=self.message_id,
            from_me=False,
            participant=self.sender_id if self.is_group else "",
        )

    @property
    def is_ephemeral(self) -> bool:
        return isinstance(self.content, EphemeralContent)

    @property
    def is_sticker(self) -> bool:
        return isinstance(self.content, MediaContent) and self.content.media_kind == ContentKind.STICKER

    @property
    def is_button_click(self) -> bool:
        return isinstance(self.content, InteractiveReply)

    @property
    def display_name(self) -> str:
        return self.push_name or self.sender_id.split("@", 1)[0]


@dataclass
class GroupMember:
    identity: str
    role: str = "member"

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "superadmin")
