from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum

from wabot.models import ContentKind


class RetrieveStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"


@dataclass(frozen=True)
class EphemeralItem:
    owner_id: str
    media_kind: ContentKind
    payload: bytes
    created_at: float
    mimetype: str = ""
    caption: str = ""


@dataclass(frozen=True)
class RetrieveResult:
    status: RetrieveStatus
    item: EphemeralItem | None = None


class EphemeralMediaStore:
    """
    One pending view-once item per owner.

    Items are consumed by the first successful retrieval. Anything older than the TTL is
    dropped on read and by the periodic sweep.
    """

    def __init__(self, ttl_sec: float) -> None:
        self.ttl_sec = float(ttl_sec)
        self._items: dict[str, EphemeralItem] = {}

    def capture(
        self,
        owner_id: str,
        media_kind: ContentKind,
        payload: bytes,
        now: float | None = None,
        *,
        mimetype: str = "",
        caption: str = "",
    ) -> EphemeralItem:
        item = EphemeralItem(
            owner_id=owner_id,
            media_kind=media_kind,
            payload=payload,
            created_at=float(now if now is not None else time.time()),
            mimetype=mimetype,
            caption=caption,
        )
        self._items[owner_id] = item
        return item

    def retrieve(self, owner_id: str, now: float | None = None) -> RetrieveResult:
        item = self._items.get(owner_id)
        if item is None:
            return RetrieveResult(status=RetrieveStatus.NOT_FOUND)
        now_ts = float(now if now is not None else time.time())
        del self._items[owner_id]
        if now_ts - item.created_at > self.ttl_sec:
            return RetrieveResult(status=RetrieveStatus.EXPIRED)
        return RetrieveResult(status=RetrieveStatus.FOUND, item=item)

    def remaining_seconds(self, owner_id: str, now: float | None = None) -> int:
        item = self._items.get(owner_id)
        if item is None:
            return 0
        now_ts = float(now if now is not None else time.time())
        return max(0, int(self.ttl_sec - (now_ts - item.created_at)))

    def sweep(self, now: float | None = None) -> int:
        now_ts = float(now if now is not None else time.time())
        expired = [owner for owner, item in self._items.items() if now_ts - item.created_at > self.ttl_sec]
        for owner in expired:
            del self._items[owner]
        return len(expired)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, owner_id: object) -> bool:
        return owner_id in self._items
