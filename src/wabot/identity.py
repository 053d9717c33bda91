"""
Canonical participant and conversation identifiers.

Every identifier that enters the bot (message keys, mentions, quoted participants,
command arguments) goes through ``normalize`` before it is used as a map key.
An empty string means "no identity" and callers must abort instead of continuing
with a bad key.
"""

from __future__ import annotations

import re

LINKED_DEVICE_MARKER = "@lid"
GROUP_SUFFIX = "@g.us"
DIRECT_SUFFIX = "@s.whatsapp.net"
STATUS_BROADCAST = "status@broadcast"
MIN_PHONE_DIGITS = 6

_NON_DIGITS = re.compile(r"\D")
_NON_GROUP_CHARS = re.compile(r"[^\d-]")


def normalize(raw: str | None) -> str:
    value = str(raw or "").strip()
    if not value:
        return ""
    if LINKED_DEVICE_MARKER in value:
        return value
    if value.endswith(GROUP_SUFFIX):
        local = _NON_GROUP_CHARS.sub("", value.split("@", 1)[0]).strip("-")
        return f"{local}{GROUP_SUFFIX}" if local else ""
    if value == STATUS_BROADCAST:
        return value
    if value.endswith(DIRECT_SUFFIX):
        local = value.split("@", 1)[0].split(":", 1)[0]
        digits = _NON_DIGITS.sub("", local)
        return f"{digits}{DIRECT_SUFFIX}" if digits else ""
    digits = _NON_DIGITS.sub("", value)
    if len(digits) >= MIN_PHONE_DIGITS:
        return f"{digits}{DIRECT_SUFFIX}"
    return ""


def is_group(identity: str) -> bool:
    return identity.endswith(GROUP_SUFFIX)


def is_linked_device(identity: str) -> bool:
    return LINKED_DEVICE_MARKER in identity


def phone_digits(identity: str) -> str:
    """Local digits of a direct or linked identity ("" for groups and broadcasts)."""
    if not identity or is_group(identity) or identity == STATUS_BROADCAST:
        return ""
    return _NON_DIGITS.sub("", identity.split("@", 1)[0].split(":", 1)[0])


def mention_tag(identity: str) -> str:
    digits = phone_digits(identity)
    return f"@{digits}" if digits else ""
