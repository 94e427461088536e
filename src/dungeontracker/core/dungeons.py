"""Dungeon catalog — identity, display names and wave counts.

Game data comes from the host through the ``GameData`` protocol. Live
metadata sometimes reports zero waves, so a small table of known wave
counts backs it up.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol

from dungeontracker.config import DungeonOverride

COMBAT_ACTION_PREFIX = "/actions/combat/"

# Fallback when live metadata reports 0 or nothing
DUNGEON_MAX_WAVES = {
    "/actions/combat/chimerical_den": 50,
    "/actions/combat/sinister_circus": 60,
    "/actions/combat/enchanted_fortress": 65,
    "/actions/combat/pirate_cove": 65,
}


class GameData(Protocol):
    """Host-provided game metadata."""

    def get_action_details(self, action_hrid: str) -> dict | None: ...

    def get_current_actions(self) -> list[dict]: ...


@dataclass(frozen=True)
class DungeonInfo:
    name: str
    max_waves: int  # 0 when unknown


def dungeon_key(dungeon_hrid: str, tier) -> str:
    """Storage key for a dungeon+tier pair, e.g. ``/actions/combat/x::T1``."""
    return f"{dungeon_hrid}::T{tier}"


def name_from_hrid(dungeon_hrid: str) -> str:
    """``/actions/combat/chimerical_den`` → ``Chimerical Den``."""
    slug = dungeon_hrid.rstrip("/").rsplit("/", 1)[-1]
    return " ".join(word[:1].upper() + word[1:] for word in slug.split("_") if word)


def team_key(names: Iterable[str]) -> str:
    """Canonical, order-independent party identifier."""
    return ",".join(sorted(names))


class DungeonCatalog:
    """Resolves dungeon metadata from game data plus configured overrides."""

    def __init__(
        self,
        game_data: GameData,
        overrides: dict[str, DungeonOverride] | None = None,
    ) -> None:
        self._game_data = game_data
        self._overrides = overrides or {}

    def is_dungeon_action(self, action_hrid) -> bool:
        if not isinstance(action_hrid, str) or not action_hrid.startswith(COMBAT_ACTION_PREFIX):
            return False
        details = self._game_data.get_action_details(action_hrid) or {}
        zone = details.get("combatZoneInfo") or {}
        return zone.get("isDungeon") is True

    def get_dungeon_info(self, dungeon_hrid: str | None) -> DungeonInfo | None:
        if not dungeon_hrid:
            return None
        details = self._game_data.get_action_details(dungeon_hrid)
        if not details:
            return None

        override = self._overrides.get(dungeon_hrid)
        zone = details.get("combatZoneInfo") or {}
        max_waves = (zone.get("dungeonInfo") or {}).get("maxWaves") or 0
        if not max_waves and override and override.max_waves:
            max_waves = override.max_waves
        if not max_waves:
            max_waves = DUNGEON_MAX_WAVES.get(dungeon_hrid, 0)

        name = details.get("name") or (override.name if override else None) or name_from_hrid(dungeon_hrid)
        return DungeonInfo(name=name, max_waves=int(max_waves))

    def dungeon_name(self, dungeon_hrid: str | None) -> str | None:
        info = self.get_dungeon_info(dungeon_hrid)
        return info.name if info else None

    def find_active_dungeon(self) -> dict | None:
        """First queued dungeon action that is not done, if any."""
        for action in self._game_data.get_current_actions() or []:
            if not isinstance(action, dict):
                continue
            if self.is_dungeon_action(action.get("actionHrid")) and not action.get("isDone"):
                return action
        return None


class StaticGameData:
    """In-memory ``GameData`` for offline replay and tests.

    Knows the built-in dungeons plus any configured overrides. The current
    action queue is set explicitly or follows ``actions_updated`` payloads.
    """

    def __init__(
        self,
        action_details: dict[str, dict] | None = None,
        current_actions: list[dict] | None = None,
    ) -> None:
        self._details = dict(action_details or {})
        self._current_actions = list(current_actions or [])

    @classmethod
    def with_known_dungeons(
        cls,
        overrides: dict[str, DungeonOverride] | None = None,
    ) -> StaticGameData:
        details: dict[str, dict] = {}
        hrids = set(DUNGEON_MAX_WAVES) | set(overrides or {})
        for hrid in sorted(hrids):
            override = (overrides or {}).get(hrid)
            max_waves = (override.max_waves if override else None) or DUNGEON_MAX_WAVES.get(hrid, 0)
            details[hrid] = {
                "hrid": hrid,
                "name": (override.name if override else None) or name_from_hrid(hrid),
                "combatZoneInfo": {
                    "isDungeon": True,
                    "dungeonInfo": {"maxWaves": max_waves},
                },
            }
        return cls(action_details=details)

    def get_action_details(self, action_hrid: str) -> dict | None:
        return self._details.get(action_hrid)

    def get_current_actions(self) -> list[dict]:
        return list(self._current_actions)

    def set_current_actions(self, actions: list[dict]) -> None:
        self._current_actions = list(actions)

    def apply_actions_updated(self, data: dict) -> None:
        """Merge an ``actions_updated`` payload into the current queue."""
        for action in (data or {}).get("endCharacterActions") or []:
            if not isinstance(action, dict):
                continue
            hrid = action.get("actionHrid")
            self._current_actions = [a for a in self._current_actions if a.get("actionHrid") != hrid]
            if not action.get("isDone"):
                self._current_actions.append(action)
