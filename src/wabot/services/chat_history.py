from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatHistoryEntry:
    role: str
    text: str
    speaker_id: str = ""
    speaker_name: str = ""

    def render(self, bot_name: str) -> str:
        if self.role == ROLE_ASSISTANT:
            return f"{bot_name}: {self.text}"
        return f"{self.speaker_name or self.speaker_id or 'user'}: {self.text}"


class ChatHistory:
    """Bounded per-conversation transcript; the oldest entries fall off first."""

    def __init__(self, cap: int) -> None:
        self.cap = max(1, int(cap))
        self._by_chat: dict[str, deque[ChatHistoryEntry]] = defaultdict(lambda: deque(maxlen=self.cap))

    def append(
        self,
        chat_id: str,
        role: str,
        text: str,
        speaker_id: str = "",
        speaker_name: str = "",
    ) -> None:
        clean = str(text or "").strip()
        if not clean:
            return
        if role not in (ROLE_USER, ROLE_ASSISTANT):
            raise ValueError(f"Unknown history role: {role}")
        self._by_chat[chat_id].append(
            ChatHistoryEntry(role=role, text=clean, speaker_id=speaker_id, speaker_name=speaker_name)
        )

    def read(self, chat_id: str) -> list[ChatHistoryEntry]:
        rows = self._by_chat.get(chat_id)
        return list(rows) if rows else []

    def clear(self, chat_id: str) -> None:
        self._by_chat.pop(chat_id, None)
