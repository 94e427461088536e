"""RunStore — durable run history and the crash-safe in-flight snapshot.

Completed runs are one newest-first list under a single key. The in-flight
snapshot is a single key, always replaced or deleted whole.

Runs recovered from chat carry no server id, so duplicates are detected
by shape: same team, start within 10 s, duration within 2 s.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from dungeontracker.core.chat_grammar import parse_iso_timestamp
from dungeontracker.core.dungeons import dungeon_key
from dungeontracker.core.store import KeyValueStore

logger = logging.getLogger(__name__)

RUNS_STORE = "unifiedRuns"
RUNS_KEY = "allRuns"
SNAPSHOT_STORE = "settings"
SNAPSHOT_KEY = "dungeonTracker_inProgressRun"

SOURCE_LIVE = "live"
SOURCE_CHAT_BACKFILL = "chat-backfill"

DUPLICATE_START_WINDOW_MS = 10_000
DUPLICATE_DURATION_WINDOW_MS = 2_000


@dataclass
class CompletedRun:
    """One finished dungeon run."""

    dungeon_name: str
    duration: int  # authoritative ms
    team_key: str
    timestamp: str  # ISO-8601 run start
    source: str = SOURCE_LIVE
    validated: bool = False
    dungeon_key: str | None = None
    dungeon_hrid: str | None = None
    tier: int | None = None
    tracked_duration: int | None = None  # wall-clock ms, live runs only
    wave_times: list[int] | None = None
    waves_completed: int | None = None
    key_counts: dict[str, int] | None = None

    @property
    def start_ms(self) -> int | None:
        return parse_iso_timestamp(self.timestamp)

    @property
    def avg_wave_time(self) -> float | None:
        if not self.wave_times:
            return None
        return sum(self.wave_times) / len(self.wave_times)

    def to_record(self) -> dict:
        return asdict(self)

    @classmethod
    def from_record(cls, record: dict) -> CompletedRun:
        hrid = record.get("dungeon_hrid")
        tier = record.get("tier")
        key = record.get("dungeon_key")
        if key is None and hrid is not None and tier is not None:
            key = dungeon_key(hrid, tier)
        wave_times = record.get("wave_times")
        return cls(
            dungeon_name=record.get("dungeon_name") or "Unknown",
            duration=int(record["duration"]),
            team_key=record.get("team_key", ""),
            timestamp=record["timestamp"],
            source=record.get("source", SOURCE_LIVE),
            validated=bool(record.get("validated", False)),
            dungeon_key=key,
            dungeon_hrid=hrid,
            tier=tier,
            tracked_duration=record.get("tracked_duration"),
            wave_times=list(wave_times) if wave_times is not None else None,
            waves_completed=record.get("waves_completed"),
            key_counts=record.get("key_counts"),
        )


def is_duplicate(a: CompletedRun, b: CompletedRun) -> bool:
    """True if *a* and *b* describe the same run observed twice."""
    if a.team_key != b.team_key:
        return False
    start_a, start_b = a.start_ms, b.start_ms
    if start_a is None or start_b is None:
        return False
    return (
        abs(start_a - start_b) <= DUPLICATE_START_WINDOW_MS
        and abs(a.duration - b.duration) <= DUPLICATE_DURATION_WINDOW_MS
    )


class RunStore:
    """Run history and snapshot persistence over a KeyValueStore.

    Keys are namespaced by character id so alts never share history.
    """

    def __init__(self, store: KeyValueStore, character_id: str | None = None) -> None:
        self._store = store
        self._character_id = character_id

    @property
    def store(self) -> KeyValueStore:
        return self._store

    @property
    def character_id(self) -> str | None:
        return self._character_id

    def _key(self, base: str) -> str:
        if not self._character_id:
            return base
        return f"{base}_{self._character_id}"

    # ------------------------------------------------------------------
    # Run history
    # ------------------------------------------------------------------

    def _load_records(self) -> list[dict]:
        records = self._store.get_json(self._key(RUNS_KEY), RUNS_STORE, [])
        if not isinstance(records, list):
            logger.warning("Run history is not a list, ignoring")
            return []
        return records

    def get_all_runs(self) -> list[CompletedRun]:
        """Every stored run, newest first. Malformed records are skipped."""
        runs: list[CompletedRun] = []
        for record in self._load_records():
            try:
                runs.append(CompletedRun.from_record(record))
            except (KeyError, TypeError, ValueError, AttributeError):
                logger.warning("Skipping malformed run record: %r", record)
        return runs

    def save_run(self, run: CompletedRun) -> bool:
        """Prepend *run* unless an equivalent run is already stored.

        Returns True only when a new record was written.
        """
        records = self._load_records()
        for record in records:
            try:
                existing = CompletedRun.from_record(record)
            except (KeyError, TypeError, ValueError, AttributeError):
                continue
            if is_duplicate(existing, run):
                logger.debug("Duplicate run for team %s at %s, not saved", run.team_key, run.timestamp)
                return False

        records.insert(0, run.to_record())
        return self._store.set_json(self._key(RUNS_KEY), records, RUNS_STORE, immediate=True)

    def get_run_history(self, dungeon_hrid: str, tier, limit: int = 0) -> list[CompletedRun]:
        key = dungeon_key(dungeon_hrid, tier)
        runs = [r for r in self.get_all_runs() if r.dungeon_key == key]
        if limit > 0:
            return runs[:limit]
        return runs

    def get_runs_by_name(self, dungeon_name: str) -> list[CompletedRun]:
        return [r for r in self.get_all_runs() if r.dungeon_name == dungeon_name]

    def delete_run(self, timestamp: str) -> bool:
        """Delete the run(s) started at *timestamp*. False if none matched."""
        records = self._load_records()
        kept = [r for r in records if r.get("timestamp") != timestamp]
        if len(kept) == len(records):
            return False
        return self._store.set_json(self._key(RUNS_KEY), kept, RUNS_STORE, immediate=True)

    def clear_history(self, dungeon_hrid: str | None = None, tier=None) -> bool:
        """Drop all runs, or only those for one dungeon+tier."""
        if dungeon_hrid is None:
            return self._store.set_json(self._key(RUNS_KEY), [], RUNS_STORE, immediate=True)
        key = dungeon_key(dungeon_hrid, tier)
        kept = []
        for record in self._load_records():
            record_key = record.get("dungeon_key")
            if record_key is None and record.get("dungeon_hrid") is not None:
                record_key = dungeon_key(record["dungeon_hrid"], record.get("tier"))
            if record_key != key:
                kept.append(record)
        return self._store.set_json(self._key(RUNS_KEY), kept, RUNS_STORE, immediate=True)

    # ------------------------------------------------------------------
    # In-flight snapshot
    # ------------------------------------------------------------------

    def save_snapshot(self, snapshot: dict, immediate: bool = True) -> bool:
        return self._store.set_json(self._key(SNAPSHOT_KEY), snapshot, SNAPSHOT_STORE, immediate)

    def load_snapshot(self) -> dict | None:
        snapshot = self._store.get_json(self._key(SNAPSHOT_KEY), SNAPSHOT_STORE, None)
        if snapshot is not None and not isinstance(snapshot, dict):
            logger.warning("In-flight snapshot is not an object, ignoring")
            return None
        return snapshot

    def clear_snapshot(self) -> bool:
        return self._store.delete(self._key(SNAPSHOT_KEY), SNAPSHOT_STORE)

    def discard_pending(self) -> None:
        """Drop debounced writes that have not reached the backend yet."""
        self._store.cleanup_pending_writes()
