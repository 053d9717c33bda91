"""
Transport contract used by the bot, plus an HTTP gateway implementation.

The gateway is a sidecar that owns the WhatsApp session and exposes a small REST
surface. Inbound events are pushed to the webhook server in ``wabot.server``.
"""

from __future__ import annotations

import asyncio
import base64
from typing import Any, Protocol

import aiohttp

from wabot.identity import normalize
from wabot.models import ContentKind, GroupMember, MessageRef

MEMBERSHIP_ACTIONS = ("add", "remove", "promote", "demote")
PRESENCE_STATES = ("composing", "recording", "paused", "available", "unavailable")


class TransportError(RuntimeError):
    pass


class ConnectionClosedError(TransportError):
    pass


class Transport(Protocol):
    async def send_text(
        self,
        chat_id: str,
        text: str,
        mentions: list[str] | None = None,
        quoted: MessageRef | None = None,
    ) -> str: ...

    async def send_media(
        self,
        chat_id: str,
        kind: ContentKind,
        payload: bytes,
        caption: str = "",
        mentions: list[str] | None = None,
        mimetype: str = "",
    ) -> str: ...

    async def send_reaction(self, ref: MessageRef, emoji: str) -> None: ...

    async def delete_message(self, ref: MessageRef) -> None: ...

    async def set_presence(self, chat_id: str, state: str) -> None: ...

    async def get_group_members(self, chat_id: str) -> list[GroupMember]: ...

    async def update_group_membership(self, chat_id: str, identities: list[str], action: str) -> None: ...

    async def download_media(self, raw_message: dict[str, Any]) -> bytes: ...

    async def close(self) -> None: ...


class GatewayTransport:
    def __init__(self, base_url: str, token: str = "", timeout_sec: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._timeout = aiohttp.ClientTimeout(total=timeout_sec)
        self._session: aiohttp.ClientSession | None = None

    async def send_text(
        self,
        chat_id: str,
        text: str,
        mentions: list[str] | None = None,
        quoted: MessageRef | None = None,
    ) -> str:
        payload: dict[str, Any] = {"chatId": chat_id, "text": text, "mentions": list(mentions or [])}
        if quoted is not None:
            payload["quoted"] = _ref_payload(quoted)
        data = await self._request("POST", "/messages/text", json=payload)
        return str(data.get("id", ""))

    async def send_media(
        self,
        chat_id: str,
        kind: ContentKind,
        payload: bytes,
        caption: str = "",
        mentions: list[str] | None = None,
        mimetype: str = "",
    ) -> str:
        body = {
            "chatId": chat_id,
            "kind": kind.value,
            "data": base64.b64encode(payload).decode("ascii"),
            "caption": caption,
            "mimetype": mimetype,
            "mentions": list(mentions or []),
        }
        data = await self._request("POST", "/messages/media", json=body)
        return str(data.get("id", ""))

    async def send_reaction(self, ref: MessageRef, emoji: str) -> None:
        await self._request("POST", "/messages/reaction", json={"key": _ref_payload(ref), "emoji": emoji})

    async def delete_message(self, ref: MessageRef) -> None:
        await self._request("POST", "/messages/delete", json={"key": _ref_payload(ref)})

    async def set_presence(self, chat_id: str, state: str) -> None:
        if state not in PRESENCE_STATES:
            raise ValueError(f"Unknown presence state: {state}")
        await self._request("POST", "/presence", json={"chatId": chat_id, "state": state})

    async def get_group_members(self, chat_id: str) -> list[GroupMember]:
        data = await self._request("GET", f"/groups/{chat_id}/participants")
        members: list[GroupMember] = []
        for row in data.get("participants", []):
            if not isinstance(row, dict):
                continue
            identity = normalize(row.get("id"))
            if identity:
                members.append(GroupMember(identity=identity, role=str(row.get("admin") or "member")))
        return members

    async def update_group_membership(self, chat_id: str, identities: list[str], action: str) -> None:
        if action not in MEMBERSHIP_ACTIONS:
            raise ValueError(f"Unknown membership action: {action}")
        await self._request(
            "POST",
            f"/groups/{chat_id}/participants",
            json={"action": action, "participants": list(identities)},
        )

    async def download_media(self, raw_message: dict[str, Any]) -> bytes:
        data = await self._request("POST", "/media/download", json={"message": raw_message})
        encoded = data.get("data")
        if not isinstance(encoded, str) or not encoded:
            raise TransportError("Gateway returned no media data.")
        return base64.b64decode(encoded)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, path: str, *, json: dict[str, Any] | None = None) -> dict[str, Any]:
        session = self._ensure_session()
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            async with session.request(method, f"{self.base_url}{path}", json=json, headers=headers) as response:
                body = await response.text()
                if response.status >= 400:
                    raise TransportError(f"HTTP {response.status} on {path}: {body[:300]}")
                if not body:
                    return {}
                try:
                    data = await response.json(content_type=None)
                except ValueError as exc:
                    raise TransportError(f"Invalid JSON from gateway on {path}") from exc
        except asyncio.TimeoutError as exc:
            raise TransportError(f"Gateway request timed out on {path}") from exc
        except aiohttp.ClientConnectionError as exc:
            raise ConnectionClosedError(f"Gateway connection closed: {exc}") from exc
        except aiohttp.ClientError as exc:
            raise TransportError(f"Gateway request failed on {path}: {exc}") from exc
        return data if isinstance(data, dict) else {}

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session


def _ref_payload(ref: MessageRef) -> dict[str, Any]:
    payload: dict[str, Any] = {"remoteJid": ref.chat_id, "id": ref.message_id, "fromMe": ref.from_me}
    if ref.participant:
        payload["participant"] = ref.participant
    return payload
