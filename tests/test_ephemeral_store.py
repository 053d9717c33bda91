from __future__ import annotations

from wabot.models import ContentKind
from wabot.services.ephemeral_store import EphemeralMediaStore, RetrieveStatus

USER = "15551110001@s.whatsapp.net"


def test_retrieve_consumes_item() -> None:
    store = EphemeralMediaStore(ttl_sec=60)
    store.capture(USER, ContentKind.IMAGE, b"img", 100.0, mimetype="image/jpeg")

    first = store.retrieve(USER, 110.0)
    second = store.retrieve(USER, 111.0)

    assert first.status is RetrieveStatus.FOUND
    assert first.item is not None and first.item.payload == b"img"
    assert second.status is RetrieveStatus.NOT_FOUND


def test_expired_item_is_cleared() -> None:
    store = EphemeralMediaStore(ttl_sec=60)
    store.capture(USER, ContentKind.VIDEO, b"vid", 100.0)

    assert store.retrieve(USER, 160.001).status is RetrieveStatus.EXPIRED
    assert store.retrieve(USER, 160.002).status is RetrieveStatus.NOT_FOUND


def test_capture_replaces_and_sweep_drops_old_items() -> None:
    store = EphemeralMediaStore(ttl_sec=60)
    store.capture(USER, ContentKind.IMAGE, b"old", 0.0)
    store.capture(USER, ContentKind.IMAGE, b"new", 50.0)
    store.capture("15551110002@s.whatsapp.net", ContentKind.AUDIO, b"voice", 0.0)

    assert store.remaining_seconds(USER, 60.0) == 50
    assert store.sweep(100.0) == 1
    assert len(store) == 1
    result = store.retrieve(USER, 100.0)
    assert result.item is not None and result.item.payload == b"new"
