"""DungeonTracker — live run state machine.

Consumes push messages through a MessageHook and follows one dungeon run
at a time:

    Idle → Tracking(wave) → Completed | Aborted → Idle

Wave progress comes from ``new_battle`` / ``action_completed``. The
authoritative duration comes from the party chat key-count lines via the
ChatTimestampReconciler; the wall-clock duration is only a fallback. Every
transition mirrors the in-flight run to the RunStore so a reload or crash
can pick it up again.

Usage:
    tracker = DungeonTracker(hook, game_data, run_store)
    tracker.on_update(lambda live, outcome=None: ...)
    tracker.start()
    ...
    tracker.dispose()
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from dungeontracker.backfill import UNKNOWN_DUNGEON, BackfillResult, backfill_from_transcript
from dungeontracker.config import TrackerConfig
from dungeontracker.core import payloads
from dungeontracker.core.chat_grammar import (
    ChatEventType,
    parse_iso_timestamp,
    parse_key_counts,
    parse_lines,
    to_iso,
)
from dungeontracker.core.dungeons import DungeonCatalog, GameData, dungeon_key, name_from_hrid, team_key
from dungeontracker.core.hooks import MessageHook
from dungeontracker.core.reconciler import ChatTimestampReconciler, KeyCountRole
from dungeontracker.core.run_store import SOURCE_LIVE, CompletedRun, RunStore
from dungeontracker.core.transcript import TranscriptSource
from dungeontracker.reporting.stats import RunStats, compute_stats, filter_runs

logger = logging.getLogger(__name__)

PARTY_CHANNEL = "/chat_channel_types/party"
MSG_BATTLE_STARTED = "systemChatMessage.partyBattleStarted"
MSG_KEY_COUNT = "systemChatMessage.partyKeyCount"
MSG_PARTY_FAILED = "systemChatMessage.partyFailed"

# Key counts older than this before the run start belong to an earlier run
_SCAN_LOOKBACK_MS = 60_000

Clock = Callable[[], int]
UpdateCallback = Callable[..., None]


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RunState:
    """The in-flight run. Exactly one exists while tracking."""

    dungeon_hrid: str | None
    tier: int | None
    battle_id: int | str | None
    start_time: int  # tracked start, epoch ms
    current_wave: int = 0
    max_waves: int = 0  # 0 when unknown
    waves_completed: int = 0
    wave_times: list[int] = field(default_factory=list)
    wave_start_time: int | None = None
    key_counts: dict[str, int] = field(default_factory=dict)
    hibernation_detected: bool = False
    last_update_time: int = 0
    restored: bool = False  # rebuilt from a snapshot after an interruption

    def to_snapshot(self, reconciler: ChatTimestampReconciler) -> dict:
        snapshot = {
            "battle_id": self.battle_id,
            "dungeon_hrid": self.dungeon_hrid,
            "tier": self.tier,
            "start_time": self.start_time,
            "current_wave": self.current_wave,
            "max_waves": self.max_waves,
            "waves_completed": self.waves_completed,
            "wave_times": list(self.wave_times),
            "wave_start_time": self.wave_start_time,
            "key_counts": dict(self.key_counts),
            "hibernation_detected": self.hibernation_detected,
            "last_update_time": self.last_update_time,
        }
        snapshot.update(reconciler.to_dict())
        return snapshot

    @classmethod
    def from_snapshot(cls, data: dict) -> RunState:
        """Rebuild from a snapshot. Raises KeyError/TypeError/ValueError if malformed."""
        wave_start = data.get("wave_start_time")
        return cls(
            dungeon_hrid=data.get("dungeon_hrid"),
            tier=data.get("tier"),
            battle_id=data.get("battle_id"),
            start_time=int(data["start_time"]),
            current_wave=int(data.get("current_wave") or 0),
            max_waves=int(data.get("max_waves") or 0),
            waves_completed=int(data.get("waves_completed") or 0),
            wave_times=[int(t) for t in data.get("wave_times") or []],
            wave_start_time=int(wave_start) if wave_start is not None else None,
            key_counts=dict(data.get("key_counts") or {}),
            hibernation_detected=bool(data.get("hibernation_detected", False)),
            last_update_time=int(data.get("last_update_time") or 0),
            restored=True,
        )


@dataclass(frozen=True)
class LiveRun:
    """Read-only view of the in-flight run for display."""

    dungeon_hrid: str | None
    dungeon_name: str
    tier: int | None
    current_wave: int
    max_waves: int
    waves_completed: int
    total_elapsed: int
    current_wave_elapsed: int
    avg_wave_time: float
    fastest_wave: int
    slowest_wave: int
    estimated_time_remaining: float
    key_counts: dict[str, int]
    hibernation_detected: bool
    chat_anchored: bool  # total_elapsed measured from a key-count line

    @property
    def progress(self) -> float | None:
        if not self.max_waves:
            return None
        return min(1.0, self.waves_completed / self.max_waves)


@dataclass(frozen=True)
class RunOutcome:
    """What a completion callback receives."""

    run: CompletedRun
    chat_duration: int | None
    saved: bool

    @property
    def duration(self) -> int:
        """Chat-validated duration when there is one, else tracked time."""
        return self.run.duration

    @property
    def validated(self) -> bool:
        return self.run.validated


class DungeonTracker:
    """Event-driven dungeon run tracker. One per character session."""

    def __init__(
        self,
        hook: MessageHook,
        game_data: GameData,
        run_store: RunStore,
        *,
        config: TrackerConfig | None = None,
        transcript: TranscriptSource | None = None,
        clock: Clock | None = None,
        year: int | None = None,
    ) -> None:
        self.config = config or TrackerConfig()
        self._hook = hook
        self._catalog = DungeonCatalog(game_data, self.config.dungeons)
        self._run_store = run_store
        self._transcript = transcript
        self._clock = clock or _wall_clock_ms
        self._year = year

        self._run: RunState | None = None
        self._reconciler = ChatTimestampReconciler()
        self._pending_dungeon: tuple[str, int | None] | None = None
        self._recent_messages: deque[dict] = deque(maxlen=self.config.chat_history_limit)
        self._callbacks: list[UpdateCallback] = []
        self._was_hidden = False
        self._started = False
        self._handlers = {
            payloads.NEW_BATTLE: self.on_new_battle,
            payloads.ACTION_COMPLETED: self.on_action_completed,
            payloads.ACTIONS_UPDATED: self.on_actions_updated,
            payloads.CHAT_MESSAGE_RECEIVED: self.on_chat_message,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, check_active: bool = True) -> None:
        """Subscribe to push messages. A second call is a no-op."""
        if self._started:
            logger.debug("Tracker already started")
            return
        self._started = True
        for message_type, handler in self._handlers.items():
            self._hook.on(message_type, handler)
        if check_active:
            self.check_for_active_dungeon()

    def dispose(self) -> None:
        """Tear down for a character switch: unsubscribe, forget everything."""
        for message_type, handler in self._handlers.items():
            self._hook.off(message_type, handler)
        self._run_store.discard_pending()
        self._reset()
        self._pending_dungeon = None
        self._recent_messages.clear()
        self._callbacks.clear()
        self._was_hidden = False
        self._run_store.clear_snapshot()
        self._started = False

    @property
    def is_tracking(self) -> bool:
        return self._run is not None

    # ------------------------------------------------------------------
    # Startup recovery
    # ------------------------------------------------------------------

    def check_for_active_dungeon(self) -> bool:
        """Resume a snapshot if the host says a dungeon is already running.

        Without a matching snapshot the active dungeon is remembered so the
        next ``new_battle`` can start tracking it.
        """
        if self.is_tracking:
            return False
        action = self._catalog.find_active_dungeon()
        if action is None:
            return False

        hrid = action.get("actionHrid")
        saved = self._run_store.load_snapshot()
        if saved and self._is_stale(saved):
            self._run_store.clear_snapshot()
            saved = None
        if saved and saved.get("dungeon_hrid") == hrid and self._adopt_snapshot(saved):
            logger.info("Resumed %s at wave %d from snapshot", hrid, self._run.current_wave)
            self._notify_update()
            return True

        self._pending_dungeon = (hrid, action.get("difficultyTier"))
        return False

    def restore_in_progress_run(self, battle_id) -> bool:
        """Resume the snapshot for *battle_id*, or discard it.

        The snapshot is discarded if it belongs to another battle, the
        dungeon is no longer active, or it is older than the configured age.
        """
        saved = self._run_store.load_snapshot()
        if not saved:
            return False

        if saved.get("battle_id") != battle_id:
            logger.info("Snapshot battle id mismatch, discarding")
            self._run_store.clear_snapshot()
            return False

        action = self._catalog.find_active_dungeon()
        if action is None or action.get("actionHrid") != saved.get("dungeon_hrid"):
            logger.info("Snapshot dungeon no longer active, discarding")
            self._run_store.clear_snapshot()
            return False

        if self._is_stale(saved):
            self._run_store.clear_snapshot()
            return False

        if not self._adopt_snapshot(saved):
            self._run_store.clear_snapshot()
            return False

        logger.info("Restored %s at wave %d", self._run.dungeon_hrid, self._run.current_wave)
        self._notify_update()
        return True

    def _is_stale(self, saved: dict) -> bool:
        age_ms = self._clock() - (saved.get("last_update_time") or 0)
        if age_ms > self.config.snapshot_max_age_s * 1000:
            logger.info("Snapshot is %.0fs old, discarding", age_ms / 1000)
            return True
        return False

    def _adopt_snapshot(self, saved: dict) -> bool:
        try:
            run = RunState.from_snapshot(saved)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed in-flight snapshot: %s", exc)
            return False
        self._run = run
        self._reconciler = ChatTimestampReconciler.from_dict(saved)
        self._pending_dungeon = None
        return True

    # ------------------------------------------------------------------
    # Push message handlers
    # ------------------------------------------------------------------

    def on_new_battle(self, data: dict) -> None:
        if not payloads.validate_payload(payloads.NEW_BATTLE, data):
            return

        wave = data["wave"]
        battle_id = data.get("battleId")
        started_at = parse_iso_timestamp(data.get("combatStartTime"))
        if started_at is None:
            started_at = self._clock()

        if wave == 0:
            run = self._run
            if run is not None:
                if run.battle_id == battle_id and run.current_wave == 0:
                    logger.debug("Duplicate new_battle for wave 0, ignoring")
                    return
                if run.max_waves and run.waves_completed >= run.max_waves:
                    self._complete()
                else:
                    self._abort("new run started before the previous one finished")
            self._run_store.clear_snapshot()
            self._start_dungeon(battle_id, wave, started_at)
        elif self._run is None:
            if self.restore_in_progress_run(battle_id):
                if self._run.current_wave != wave:
                    self._start_wave(wave, started_at)
            else:
                self._start_dungeon(battle_id, wave, started_at)
        else:
            if self._run.battle_id == battle_id and self._run.current_wave == wave:
                logger.debug("Duplicate new_battle for wave %d, ignoring", wave)
                return
            self._run.battle_id = battle_id
            self._start_wave(wave, started_at)

    def on_action_completed(self, data: dict) -> None:
        if not payloads.validate_payload(payloads.ACTION_COMPLETED, data):
            return
        run = self._run
        if run is None:
            return

        action = data["endCharacterAction"]
        hrid = action["actionHrid"]
        if not self._catalog.is_dungeon_action(hrid):
            return
        # Plain combat zones report no wave
        if action.get("wave") is None:
            return

        self._adopt_dungeon(hrid, action.get("difficultyTier"))

        # The final wave reports wave 0; read it as the current wave
        reported = action["wave"] or run.current_wave
        is_done = bool(action.get("isDone"))

        if reported > run.waves_completed:
            if run.wave_start_time is not None:
                run.wave_times.append(max(0, self._clock() - run.wave_start_time))
            run.waves_completed = reported
        elif not is_done:
            logger.debug("Duplicate action_completed for wave %d, ignoring", reported)
            return

        if is_done:
            if run.max_waves and run.waves_completed >= run.max_waves:
                self._complete()
            else:
                self._abort(f"left after {run.waves_completed} of {run.max_waves or '?'} waves")
            return

        self._persist(immediate=False)
        self._notify_update()

    def on_actions_updated(self, data: dict) -> None:
        if not payloads.validate_payload(payloads.ACTIONS_UPDATED, data):
            return

        for action in data["endCharacterActions"]:
            if not isinstance(action, dict):
                continue
            hrid = action.get("actionHrid")
            if not self._catalog.is_dungeon_action(hrid):
                continue

            if not action.get("isDone"):
                self._pending_dungeon = (hrid, action.get("difficultyTier"))
                if self._run is not None and self._run.dungeon_hrid is None:
                    self._adopt_dungeon(hrid, action.get("difficultyTier"))
                    self._notify_update()
            elif self._run is not None:
                self._adopt_dungeon(hrid, action.get("difficultyTier"))
                run = self._run
                # A successful finish is handled by action_completed
                if not (run.max_waves and run.waves_completed >= run.max_waves):
                    self._abort("dungeon action ended with waves remaining")
                return

    def on_chat_message(self, data: dict) -> None:
        if not payloads.validate_payload(payloads.CHAT_MESSAGE_RECEIVED, data):
            return

        message = data["message"]
        if message.get("chan") != PARTY_CHANNEL:
            return
        self._recent_messages.append(message)
        if not message.get("isSystemMessage"):
            return

        timestamp = parse_iso_timestamp(message.get("t"))
        if timestamp is None:
            logger.warning("Party system message without a usable timestamp: %r", message.get("t"))
            return

        kind = message.get("m")
        if kind == MSG_BATTLE_STARTED:
            metadata = payloads.parse_metadata(message.get("systemMetadata"))
            self._on_battle_started(timestamp, metadata.get("name") or "")
        elif kind == MSG_PARTY_FAILED:
            if self._run is not None:
                self._abort("party failed")
        elif kind == MSG_KEY_COUNT:
            metadata = payloads.parse_metadata(message.get("systemMetadata"))
            text = metadata.get("keyCountString") or ""
            self._on_key_counts(timestamp, parse_key_counts(text), text)

    def on_visibility_change(self, hidden: bool) -> None:
        """Host visibility signal. Hidden then visible mid-run means the
        wall clock may have jumped (sleep, tab hibernation)."""
        if hidden:
            self._was_hidden = True
            return
        if self._was_hidden and self._run is not None:
            logger.info("Visibility restored mid-run, elapsed time may be unreliable")
            self._run.hibernation_detected = True
            self._persist(immediate=True)
            self._notify_update()
        self._was_hidden = False

    # ------------------------------------------------------------------
    # Chat handling
    # ------------------------------------------------------------------

    def _on_battle_started(self, timestamp: int, battle_name: str) -> None:
        run = self._run
        if run is None:
            return
        self._reconciler.observe_battle_start(timestamp)
        current_name = self._catalog.dungeon_name(run.dungeon_hrid) if run.dungeon_hrid else None
        if battle_name and current_name and current_name not in battle_name:
            # A missed abort: we are already in another dungeon
            self._abort(f"battle started in {battle_name} while tracking {current_name}")
            return
        self._persist(immediate=False)

    def _on_key_counts(self, timestamp: int, key_counts: dict[str, int], text: str) -> None:
        run = self._run
        if run is None:
            return
        if not key_counts:
            logger.warning("Key-count message with no parsable counts: %r", text)
            return

        fallback = run.start_time if run.restored else None
        role = self._reconciler.observe_key_count(timestamp, key_counts, text, fallback_start=fallback)
        if role is KeyCountRole.REPEAT:
            logger.debug("Key-count message at %d is not a new anchor", timestamp)
            return

        run.key_counts = dict(key_counts)
        if role is KeyCountRole.END:
            self._complete()
            return
        self._persist(immediate=True)
        self._notify_update()

    def _scan_existing_chat(self) -> None:
        """Seed the start anchor from messages seen before the run started."""
        run = self._run
        if run is None:
            return
        earliest = run.start_time - _SCAN_LOOKBACK_MS
        latest: tuple[int, dict[str, int], str] | None = None

        for message in self._recent_messages:
            if not message.get("isSystemMessage"):
                continue
            timestamp = parse_iso_timestamp(message.get("t"))
            if timestamp is None:
                continue
            kind = message.get("m")
            if kind == MSG_BATTLE_STARTED:
                self._reconciler.observe_battle_start(timestamp)
            elif kind == MSG_KEY_COUNT and timestamp >= earliest:
                text = payloads.parse_metadata(message.get("systemMetadata")).get("keyCountString") or ""
                counts = parse_key_counts(text)
                if counts:
                    latest = (timestamp, counts, text)

        if latest is None and self._transcript is not None:
            for event in parse_lines(self._transcript.get_visible_log_lines(), year=self._year):
                if event.type is ChatEventType.BATTLE_START:
                    self._reconciler.observe_battle_start(event.timestamp)
                elif event.type is ChatEventType.KEY_COUNT and event.timestamp >= earliest:
                    latest = (event.timestamp, dict(event.key_counts), event.text)

        if latest is None:
            return
        timestamp, counts, text = latest
        run.key_counts = counts
        if self._reconciler.seed_start(timestamp, counts, text):
            logger.info("Start anchor recovered from earlier chat at %s", to_iso(timestamp))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _resolve_dungeon(self) -> tuple[str, int | None] | None:
        if self._pending_dungeon is not None:
            hrid, tier = self._pending_dungeon
            self._pending_dungeon = None
            if not self._catalog.is_dungeon_action(hrid):
                logger.warning("Pending action %s is not a dungeon, not tracking", hrid)
                return None
            return hrid, tier
        action = self._catalog.find_active_dungeon()
        if action is None:
            return None
        return action.get("actionHrid"), action.get("difficultyTier")

    def _adopt_dungeon(self, hrid: str, tier) -> None:
        """Fill in the dungeon for a run started without knowing it."""
        run = self._run
        if run is None or run.dungeon_hrid is not None:
            return
        run.dungeon_hrid = hrid
        run.tier = tier
        info = self._catalog.get_dungeon_info(hrid)
        if info:
            run.max_waves = info.max_waves

    def _start_dungeon(self, battle_id, wave: int, started_at: int) -> None:
        resolved = self._resolve_dungeon()
        if resolved is None:
            logger.debug("new_battle outside a dungeon, not tracking")
            return
        hrid, tier = resolved
        info = self._catalog.get_dungeon_info(hrid)
        if info is None or not info.max_waves:
            logger.warning("No wave count for %s, tracking wall-clock time only", hrid)

        self._reconciler = ChatTimestampReconciler()
        self._run = RunState(
            dungeon_hrid=hrid,
            tier=tier,
            battle_id=battle_id,
            start_time=started_at,
            current_wave=wave,
            max_waves=info.max_waves if info else 0,
            wave_start_time=started_at,
        )
        logger.info("Tracking %s T%s from wave %d", hrid, tier, wave)
        self._scan_existing_chat()
        self._persist(immediate=True)
        self._notify_update()

    def _start_wave(self, wave: int, started_at: int) -> None:
        run = self._run
        run.current_wave = wave
        run.wave_start_time = started_at
        self._persist(immediate=False)
        self._notify_update()

    def _complete(self) -> None:
        run, reconciler = self._run, self._reconciler
        if run is None:
            return
        self._reset()
        # Cleared before the save so the next run's snapshot is never deleted
        self._run_store.clear_snapshot()

        tracked = max(0, self._clock() - run.start_time)
        chat_duration = reconciler.duration()
        validated = chat_duration is not None
        start = reconciler.first_timestamp if validated else run.start_time

        if run.dungeon_hrid:
            name = self._catalog.dungeon_name(run.dungeon_hrid) or name_from_hrid(run.dungeon_hrid)
        else:
            name = UNKNOWN_DUNGEON
        key = dungeon_key(run.dungeon_hrid, run.tier) if run.dungeon_hrid and run.tier is not None else None

        completed = CompletedRun(
            dungeon_name=name,
            duration=chat_duration if validated else tracked,
            team_key=team_key(run.key_counts),
            timestamp=to_iso(start),
            source=SOURCE_LIVE,
            validated=validated,
            dungeon_key=key,
            dungeon_hrid=run.dungeon_hrid,
            tier=run.tier,
            tracked_duration=tracked,
            wave_times=list(run.wave_times),
            waves_completed=run.waves_completed,
            key_counts=dict(run.key_counts),
        )

        saved = False
        if validated and run.key_counts and run.dungeon_hrid:
            saved = self._run_store.save_run(completed)
        logger.info(
            "Completed %s in %d ms (%s)%s",
            name, completed.duration,
            "chat-validated" if validated else "tracked",
            "" if saved else ", not saved",
        )

        self._notify_completion(RunOutcome(run=completed, chat_duration=chat_duration, saved=saved))
        self._notify_update()

    def _abort(self, reason: str) -> None:
        logger.info("Run aborted: %s", reason)
        self._reset()
        self._run_store.clear_snapshot()
        self._notify_update()

    def _reset(self) -> None:
        self._run = None
        self._reconciler = ChatTimestampReconciler()

    def _persist(self, immediate: bool) -> None:
        run = self._run
        if run is None:
            return
        run.last_update_time = self._clock()
        self._run_store.save_snapshot(run.to_snapshot(self._reconciler), immediate=immediate)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_current_run(self) -> LiveRun | None:
        run = self._run
        if run is None:
            return None

        now = self._clock()
        run_start = self._reconciler.first_timestamp or run.start_time
        waves = run.wave_times
        avg_wave = sum(waves) / len(waves) if waves else 0
        remaining = max(0, run.max_waves - run.waves_completed) if run.max_waves else 0

        if run.dungeon_hrid:
            name = self._catalog.dungeon_name(run.dungeon_hrid) or name_from_hrid(run.dungeon_hrid)
        else:
            name = UNKNOWN_DUNGEON

        return LiveRun(
            dungeon_hrid=run.dungeon_hrid,
            dungeon_name=name,
            tier=run.tier,
            current_wave=run.current_wave,
            max_waves=run.max_waves,
            waves_completed=run.waves_completed,
            total_elapsed=max(0, now - run_start),
            current_wave_elapsed=max(0, now - run.wave_start_time) if run.wave_start_time is not None else 0,
            avg_wave_time=avg_wave,
            fastest_wave=min(waves) if waves else 0,
            slowest_wave=max(waves) if waves else 0,
            estimated_time_remaining=avg_wave * remaining,
            key_counts=dict(run.key_counts),
            hibernation_detected=run.hibernation_detected,
            chat_anchored=self._reconciler.has_start,
        )

    def get_run_history(self, dungeon_hrid: str, tier, limit: int = 0) -> list[CompletedRun]:
        return self._run_store.get_run_history(dungeon_hrid, tier, limit)

    def get_all_runs(self) -> list[CompletedRun]:
        return self._run_store.get_all_runs()

    def get_stats(
        self,
        dungeon_hrid: str | None = None,
        tier=None,
        dungeon_name: str | None = None,
        team: str | None = None,
    ) -> RunStats:
        if dungeon_hrid is not None:
            runs = self.get_run_history(dungeon_hrid, tier)
        else:
            runs = self.get_all_runs()
        return compute_stats(filter_runs(runs, dungeon_name=dungeon_name, team_key=team))

    def backfill_from_chat_history(self) -> BackfillResult:
        if self._transcript is None:
            logger.warning("No transcript source configured, nothing to backfill")
            return BackfillResult(runs_added=0, teams=[])
        live = self.get_current_run()
        return backfill_from_transcript(
            self._transcript,
            self._run_store,
            year=self._year,
            fallback_dungeon_name=live.dungeon_name if live else None,
        )

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def on_update(self, callback: UpdateCallback) -> None:
        """Register ``callback(live_run, outcome=None)``.

        Called with the live run after each change, and with
        ``(None, RunOutcome)`` when a run completes.
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def off_update(self, callback: UpdateCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_update(self) -> None:
        live = self.get_current_run()
        for callback in list(self._callbacks):
            try:
                callback(live)
            except Exception:
                logger.exception("Update callback failed")

    def _notify_completion(self, outcome: RunOutcome) -> None:
        for callback in list(self._callbacks):
            try:
                callback(None, outcome)
            except Exception:
                logger.exception("Completion callback failed")
