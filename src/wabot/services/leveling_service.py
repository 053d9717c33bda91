from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from wabot.storage import MessagePackStore

XP_PER_LEVEL_UNIT = 100
TITLES: tuple[tuple[int, str], ...] = (
    (1, "Newcomer"),
    (3, "Regular"),
    (5, "Chatterbox"),
    (10, "Veteran"),
    (15, "Elite"),
    (25, "Legend"),
    (40, "Mythic"),
)


@dataclass(frozen=True)
class Profile:
    xp: int = 0
    level: int = 1
    title: str = TITLES[0][1]


@dataclass(frozen=True)
class LevelChange:
    identity: str
    before: Profile
    after: Profile

    @property
    def leveled_up(self) -> bool:
        return self.after.level > self.before.level


def level_for_xp(xp: int) -> int:
    return int(math.floor(math.sqrt(max(0, xp) / XP_PER_LEVEL_UNIT))) + 1


def title_for_level(level: int) -> str:
    title = TITLES[0][1]
    for min_level, name in TITLES:
        if level >= min_level:
            title = name
    return title


class LevelingService:
    """Progression store: XP, level and title per identity."""

    def __init__(self, store: MessagePackStore) -> None:
        self.store = store

    def get_profile(self, identity: str) -> Profile:
        row = self._root().get(identity)
        if not isinstance(row, dict):
            return Profile()
        return Profile(
            xp=int(row.get("xp", 0)),
            level=int(row.get("level", 1)),
            title=str(row.get("title", "")) or title_for_level(int(row.get("level", 1))),
        )

    def upsert_profile(self, identity: str, profile: Profile) -> None:
        self._root()[identity] = {"xp": int(profile.xp), "level": int(profile.level), "title": profile.title}
        self.store.touch()

    def award(self, identity: str, amount: int) -> LevelChange:
        before = self.get_profile(identity)
        xp = max(0, before.xp + int(amount))
        level = level_for_xp(xp)
        after = Profile(xp=xp, level=level, title=title_for_level(level))
        self.upsert_profile(identity, after)
        return LevelChange(identity=identity, before=before, after=after)

    def leaderboard(self, limit: int = 10) -> list[tuple[str, Profile]]:
        rows = [(identity, self.get_profile(identity)) for identity in self._root()]
        rows.sort(key=lambda pair: pair[1].xp, reverse=True)
        return rows[: max(1, limit)]

    def _root(self) -> dict[str, Any]:
        return self.store.section("profiles")
