"""Tracker configuration loader."""

import os
import yaml
from dataclasses import dataclass, field
from pathlib import Path

MONGO_URI_ENV = "DUNGEONTRACKER_MONGO_URI"


@dataclass
class StorageConfig:
    backend: str = "json"  # "memory", "json", "mongo"
    path: Path = Path("output/store")  # json backend directory
    mongo_uri: str | None = None
    mongo_db: str = "dungeontracker"
    debounce_s: float = 3.0

    def resolve_mongo_uri(self) -> str:
        """Configured URI, else the DUNGEONTRACKER_MONGO_URI env var."""
        uri = self.mongo_uri or os.environ.get(MONGO_URI_ENV)
        if not uri:
            raise ValueError(f"No MongoDB URI configured and {MONGO_URI_ENV} not set")
        return uri


@dataclass
class DungeonOverride:
    name: str | None = None
    max_waves: int | None = None


@dataclass
class TrackerConfig:
    character_id: str | None = None
    storage: StorageConfig = field(default_factory=StorageConfig)
    snapshot_max_age_s: float = 600.0  # older snapshots are discarded on restore
    chat_history_limit: int = 100  # party messages kept for the post-start scan
    dungeons: dict[str, DungeonOverride] = field(default_factory=dict)


def load_config(path: Path) -> TrackerConfig:
    """Load tracker config from YAML file."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    t = raw.get("tracker", {})
    s = raw.get("storage", {})

    storage = StorageConfig(
        backend=s.get("backend", "json"),
        path=Path(s.get("path", "output/store")),
        mongo_uri=s.get("mongo_uri"),
        mongo_db=s.get("mongo_db", "dungeontracker"),
        debounce_s=float(s.get("debounce_s", 3.0)),
    )

    dungeons = {}
    for hrid, d in (raw.get("dungeons") or {}).items():
        d = d or {}
        dungeons[hrid] = DungeonOverride(
            name=d.get("name"),
            max_waves=d.get("max_waves"),
        )

    character_id = t.get("character_id")
    return TrackerConfig(
        character_id=str(character_id) if character_id is not None else None,
        storage=storage,
        snapshot_max_age_s=float(t.get("snapshot_max_age_s", 600.0)),
        chat_history_limit=int(t.get("chat_history_limit", 100)),
        dungeons=dungeons,
    )
