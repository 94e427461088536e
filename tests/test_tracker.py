"""Tests for DungeonTracker — live state machine driven through a MessageHook."""

import json

import pytest

from dungeontracker.core.chat_grammar import parse_timestamp, to_iso
from dungeontracker.core.transcript import ListTranscript
from dungeontracker.tracker import (
    MSG_BATTLE_STARTED,
    MSG_KEY_COUNT,
    MSG_PARTY_FAILED,
    PARTY_CHANNEL,
    DungeonTracker,
)

DEN = "/actions/combat/chimerical_den"
COVE = "/actions/combat/pirate_cove"
T0 = 1_767_600_000_000


def _new_battle(wave: int, start_ms: int, battle_id: int = 1) -> dict:
    return {"battleId": battle_id, "wave": wave, "combatStartTime": to_iso(start_ms)}


def _wave_done(wave: int, done: bool = False, hrid: str = DEN, tier: int = 1) -> dict:
    return {
        "endCharacterAction": {
            "actionHrid": hrid,
            "wave": wave,
            "isDone": done,
            "difficultyTier": tier,
        }
    }


def _chat(kind: str, t_ms: int, metadata: dict | None = None, system: bool = True, chan: str = PARTY_CHANNEL) -> dict:
    return {
        "message": {
            "chan": chan,
            "isSystemMessage": system,
            "m": kind,
            "t": to_iso(t_ms),
            "systemMetadata": json.dumps(metadata or {}),
        }
    }


def _key_counts(t_ms: int, counts: dict[str, int]) -> dict:
    text = ", ".join(f"[{name} - {count}]" for name, count in counts.items())
    return _chat(MSG_KEY_COUNT, t_ms, {"keyCountString": text})


def _play_waves(hook, clock, first: int, last: int, wave_ms: int = 10_000, finish: bool = False) -> None:
    """Start and complete waves first..last-1; the final completion reports *last*."""
    for wave in range(first, last):
        hook.dispatch("new_battle", _new_battle(wave, clock.now))
        clock.advance(wave_ms)
        reported = wave + 1
        hook.dispatch("action_completed", _wave_done(reported, done=finish and reported == last))


def _outcomes(updates):
    return [outcome for live, outcome in updates if outcome is not None]


class TestStart:
    def test_wave_zero_starts_tracking(self, tracker, hook, run_store):
        hook.dispatch("new_battle", _new_battle(0, T0))
        live = tracker.get_current_run()
        assert tracker.is_tracking
        assert live.dungeon_name == "Chimerical Den"
        assert live.tier == 1
        assert live.max_waves == 50
        assert live.current_wave == 0
        assert run_store.load_snapshot()["battle_id"] == 1

    def test_not_a_dungeon(self, tracker, hook, game_data):
        game_data.set_current_actions([{"actionHrid": "/actions/combat/fly", "isDone": False}])
        hook.dispatch("new_battle", _new_battle(0, T0))
        assert not tracker.is_tracking

    def test_pending_info_from_actions_updated(self, tracker, hook):
        hook.dispatch("actions_updated", {
            "endCharacterActions": [{"actionHrid": COVE, "isDone": False, "difficultyTier": 2}],
        })
        hook.dispatch("new_battle", _new_battle(0, T0))
        live = tracker.get_current_run()
        assert live.dungeon_hrid == COVE
        assert live.max_waves == 65
        assert live.tier == 2

    def test_malformed_payload_dropped(self, tracker, hook):
        hook.dispatch("new_battle", {"battleId": 1})
        hook.dispatch("new_battle", {"wave": "zero", "combatStartTime": "x"})
        assert not tracker.is_tracking

    def test_start_twice_subscribes_once(self, tracker, hook):
        tracker.start()
        assert hook.handler_count() == 4

    def test_missing_wave_count_tracks_wall_clock_only(self, hook, run_store, clock):
        from dungeontracker.core.dungeons import StaticGameData

        hrid = "/actions/combat/new_dungeon"
        data = StaticGameData(
            action_details={hrid: {"name": "New Dungeon", "combatZoneInfo": {"isDungeon": True}}},
            current_actions=[{"actionHrid": hrid, "difficultyTier": 0, "isDone": False}],
        )
        t = DungeonTracker(hook, data, run_store, clock=clock)
        t.start(check_active=False)
        hook.dispatch("new_battle", _new_battle(0, T0))
        clock.advance(10_000)
        hook.dispatch("action_completed", _wave_done(1, hrid=hrid, tier=0))
        live = t.get_current_run()
        assert live.max_waves == 0
        assert live.progress is None
        assert live.estimated_time_remaining == 0
        t.dispose()


class TestWaves:
    def test_wave_times_and_eta(self, tracker, hook, clock):
        _play_waves(hook, clock, 0, 2)
        live = tracker.get_current_run()
        assert live.waves_completed == 2
        assert live.avg_wave_time == 10_000
        assert live.fastest_wave == live.slowest_wave == 10_000
        assert live.estimated_time_remaining == 48 * 10_000
        assert live.progress == pytest.approx(2 / 50)

    def test_waves_completed_never_decreases(self, tracker, hook, clock):
        hook.dispatch("new_battle", _new_battle(0, T0))
        hook.dispatch("action_completed", _wave_done(5))
        hook.dispatch("action_completed", _wave_done(3))
        assert tracker.get_current_run().waves_completed == 5

    def test_reported_zero_means_current_wave(self, tracker, hook, clock):
        hook.dispatch("new_battle", _new_battle(0, T0))
        hook.dispatch("new_battle", _new_battle(7, clock.advance(1_000)))
        hook.dispatch("action_completed", _wave_done(0))
        assert tracker.get_current_run().waves_completed == 7

    def test_duplicate_delivery_ignored(self, tracker, hook, clock):
        hook.dispatch("new_battle", _new_battle(0, T0))
        hook.dispatch("new_battle", _new_battle(1, clock.advance(10_000)))
        clock.advance(10_000)
        hook.dispatch("action_completed", _wave_done(1))
        hook.dispatch("action_completed", _wave_done(1))
        hook.dispatch("new_battle", _new_battle(1, clock.now))
        live = tracker.get_current_run()
        assert live.waves_completed == 1
        assert live.current_wave == 1
        assert live.avg_wave_time == 10_000

    def test_new_wave_updates_battle_id(self, tracker, hook, clock, run_store):
        hook.dispatch("new_battle", _new_battle(0, T0, battle_id=1))
        hook.dispatch("new_battle", _new_battle(1, clock.advance(5_000), battle_id=2))
        run_store.store.flush_all()
        assert run_store.load_snapshot()["battle_id"] == 2


class TestCompletion:
    def test_full_run_completes_once(self, tracker, hook, clock, updates, run_store):
        _play_waves(hook, clock, 0, 50, finish=True)
        outcomes = _outcomes(updates)
        assert len(outcomes) == 1
        outcome = outcomes[0]
        assert outcome.run.waves_completed == 50
        assert not tracker.is_tracking
        # No key counts seen: tracked time only, nothing stored
        assert not outcome.validated
        assert outcome.duration == 50 * 10_000
        assert not outcome.saved
        assert run_store.get_all_runs() == []
        assert run_store.load_snapshot() is None

    def test_chat_bracketed_run_is_saved(self, tracker, hook, clock, updates, run_store):
        hook.dispatch("new_battle", _new_battle(0, T0))
        hook.dispatch("chat_message_received", _key_counts(T0 + 5_000, {"Alice": 3, "Bob": 2}))
        _play_waves(hook, clock, 0, 10)
        hook.dispatch("chat_message_received", _key_counts(T0 + 770_000, {"Alice": 5, "Bob": 4}))

        [outcome] = _outcomes(updates)
        assert outcome.validated
        assert outcome.saved
        assert outcome.duration == 765_000
        assert outcome.run.tracked_duration == 100_000

        [stored] = run_store.get_all_runs()
        assert stored.duration == 765_000
        assert stored.team_key == "Alice,Bob"
        assert stored.dungeon_key == f"{DEN}::T1"
        assert stored.timestamp == to_iso(T0 + 5_000)
        assert stored.source == "live"
        assert run_store.load_snapshot() is None

    def test_terminal_action_after_start_anchor_only(self, tracker, hook, clock, updates):
        hook.dispatch("new_battle", _new_battle(0, T0))
        hook.dispatch("chat_message_received", _key_counts(T0 + 1_000, {"Alice": 3}))
        _play_waves(hook, clock, 0, 50, finish=True)
        [outcome] = _outcomes(updates)
        assert not outcome.validated
        assert outcome.run.team_key == "Alice"

    def test_repeat_key_count_is_not_an_end(self, tracker, hook, updates):
        hook.dispatch("new_battle", _new_battle(0, T0))
        hook.dispatch("chat_message_received", _key_counts(T0 + 1_000, {"Alice": 3}))
        hook.dispatch("chat_message_received", _key_counts(T0 + 1_000, {"Alice": 3}))
        assert tracker.is_tracking
        assert _outcomes(updates) == []

    def test_key_counts_while_idle_ignored(self, tracker, hook, updates):
        hook.dispatch("chat_message_received", _key_counts(T0, {"Alice": 3}))
        hook.dispatch("chat_message_received", _key_counts(T0 + 60_000, {"Alice": 4}))
        assert not tracker.is_tracking
        assert _outcomes(updates) == []

    def test_new_run_after_max_waves_completes_previous(self, tracker, hook, clock, updates):
        _play_waves(hook, clock, 0, 50)
        hook.dispatch("new_battle", _new_battle(0, clock.advance(5_000), battle_id=2))
        assert len(_outcomes(updates)) == 1
        assert tracker.get_current_run().current_wave == 0

    def test_new_run_mid_dungeon_aborts_previous(self, tracker, hook, clock, updates):
        _play_waves(hook, clock, 0, 3)
        hook.dispatch("new_battle", _new_battle(0, clock.advance(5_000), battle_id=2))
        assert _outcomes(updates) == []
        assert tracker.get_current_run().waves_completed == 0


class TestAbort:
    def test_done_below_max_waves(self, tracker, hook, clock, updates, run_store):
        _play_waves(hook, clock, 0, 3)
        hook.dispatch("action_completed", _wave_done(3, done=True))
        assert not tracker.is_tracking
        assert _outcomes(updates) == []
        assert run_store.load_snapshot() is None

    def test_party_failed(self, tracker, hook, clock, run_store):
        hook.dispatch("new_battle", _new_battle(0, T0))
        hook.dispatch("chat_message_received", _chat(MSG_PARTY_FAILED, T0 + 30_000))
        assert not tracker.is_tracking
        assert run_store.load_snapshot() is None
        assert run_store.get_all_runs() == []

    def test_actions_updated_done_with_waves_left(self, tracker, hook, clock):
        _play_waves(hook, clock, 0, 3)
        hook.dispatch("actions_updated", {
            "endCharacterActions": [{"actionHrid": DEN, "isDone": True, "difficultyTier": 1}],
        })
        assert not tracker.is_tracking

    def test_actions_updated_done_at_max_waves_left_to_action_completed(self, tracker, hook, clock):
        _play_waves(hook, clock, 0, 50)
        hook.dispatch("actions_updated", {
            "endCharacterActions": [{"actionHrid": DEN, "isDone": True, "difficultyTier": 1}],
        })
        assert tracker.is_tracking

    def test_battle_started_elsewhere_resets(self, tracker, hook):
        hook.dispatch("new_battle", _new_battle(0, T0))
        hook.dispatch("chat_message_received", _chat(MSG_BATTLE_STARTED, T0 + 1_000, {"name": "Pirate Cove"}))
        assert not tracker.is_tracking

    def test_battle_started_same_dungeon_keeps_tracking(self, tracker, hook):
        hook.dispatch("new_battle", _new_battle(0, T0))
        hook.dispatch("chat_message_received", _chat(MSG_BATTLE_STARTED, T0 + 1_000, {"name": "Chimerical Den"}))
        assert tracker.is_tracking


class TestChatFiltering:
    def test_other_channel_ignored(self, tracker, hook):
        hook.dispatch("new_battle", _new_battle(0, T0))
        hook.dispatch("chat_message_received", _chat(MSG_PARTY_FAILED, T0, chan="/chat_channel_types/general"))
        assert tracker.is_tracking

    def test_player_message_ignored(self, tracker, hook):
        hook.dispatch("new_battle", _new_battle(0, T0))
        hook.dispatch("chat_message_received", _chat(MSG_PARTY_FAILED, T0, system=False))
        assert tracker.is_tracking

    def test_unusable_timestamp_dropped(self, tracker, hook):
        hook.dispatch("new_battle", _new_battle(0, T0))
        message = _chat(MSG_PARTY_FAILED, T0)
        message["message"]["t"] = "not a time"
        hook.dispatch("chat_message_received", message)
        assert tracker.is_tracking


class TestPostStartScan:
    def test_key_counts_before_start_seed_anchor(self, tracker, hook):
        hook.dispatch("chat_message_received", _key_counts(T0 - 2_000, {"Alice": 3, "Bob": 2}))
        hook.dispatch("new_battle", _new_battle(0, T0))
        live = tracker.get_current_run()
        assert live.chat_anchored
        assert live.key_counts == {"Alice": 3, "Bob": 2}

    def test_old_key_counts_ignored(self, tracker, hook):
        hook.dispatch("chat_message_received", _key_counts(T0 - 600_000, {"Alice": 3}))
        hook.dispatch("new_battle", _new_battle(0, T0))
        assert not tracker.get_current_run().chat_anchored

    def test_seeded_anchor_closes_with_next_key_count(self, tracker, hook, updates):
        hook.dispatch("chat_message_received", _key_counts(T0 - 2_000, {"Alice": 3}))
        hook.dispatch("new_battle", _new_battle(0, T0))
        hook.dispatch("chat_message_received", _key_counts(T0 + 598_000, {"Alice": 4}))
        [outcome] = _outcomes(updates)
        assert outcome.duration == 600_000

    def test_transcript_fallback(self, hook, game_data, run_store, clock):
        line = "[1/5 10:00:05] Key counts: [Alice - 3], [Bob - 2]"
        anchor = parse_timestamp(line, 2026)
        t = DungeonTracker(hook, game_data, run_store, transcript=ListTranscript([line]), clock=clock, year=2026)
        t.start(check_active=False)
        hook.dispatch("new_battle", _new_battle(0, anchor + 2_000))
        live = t.get_current_run()
        assert live.chat_anchored
        assert live.key_counts == {"Alice": 3, "Bob": 2}
        t.dispose()


class TestHibernation:
    def test_hidden_then_visible_flags_run(self, tracker, hook, run_store):
        hook.dispatch("new_battle", _new_battle(0, T0))
        tracker.on_visibility_change(True)
        tracker.on_visibility_change(False)
        assert tracker.get_current_run().hibernation_detected
        assert run_store.load_snapshot()["hibernation_detected"] is True

    def test_visible_without_hidden_is_noop(self, tracker, hook):
        hook.dispatch("new_battle", _new_battle(0, T0))
        tracker.on_visibility_change(False)
        assert not tracker.get_current_run().hibernation_detected

    def test_idle_hibernation_not_carried_into_next_run(self, tracker, hook):
        tracker.on_visibility_change(True)
        tracker.on_visibility_change(False)
        hook.dispatch("new_battle", _new_battle(0, T0))
        assert not tracker.get_current_run().hibernation_detected


class TestCallbacks:
    def test_callback_errors_contained(self, tracker, hook, updates):
        def broken(live, outcome=None):
            raise RuntimeError("ui exploded")

        tracker.on_update(broken)
        hook.dispatch("new_battle", _new_battle(0, T0))
        assert tracker.is_tracking
        assert updates[-1][0].current_wave == 0

    def test_off_update(self, tracker, hook):
        seen = []
        callback = lambda live, outcome=None: seen.append(live)  # noqa: E731
        tracker.on_update(callback)
        tracker.off_update(callback)
        hook.dispatch("new_battle", _new_battle(0, T0))
        assert seen == []


class TestQueries:
    def test_get_stats(self, tracker, run_store):
        from dungeontracker.core.run_store import CompletedRun

        for i, duration in enumerate([60_000, 70_000, 80_000]):
            run_store.save_run(CompletedRun(
                dungeon_name="Chimerical Den",
                duration=duration,
                team_key="Alice,Bob",
                timestamp=to_iso(T0 + i * 3_600_000),
                validated=True,
                dungeon_hrid=DEN,
                tier=1,
            ))
        stats = tracker.get_stats()
        assert stats.avg_time == 70_000
        assert stats.fastest_time == 60_000
        assert stats.slowest_time == 80_000
        assert tracker.get_stats(DEN, 1).total_runs == 3
        assert tracker.get_stats(DEN, 2).total_runs == 0
        assert len(tracker.get_run_history(DEN, 1)) == 3

    def test_backfill_without_transcript(self, tracker):
        result = tracker.backfill_from_chat_history()
        assert result.runs_added == 0

    def test_backfill_from_transcript(self, hook, game_data, run_store, clock):
        transcript = ListTranscript([
            "[1/5 10:00:00] Battle started: Chimerical Den",
            "[1/5 10:00:05] Key counts: [Alice - 3], [Bob - 2]",
            "[1/5 10:12:45] Key counts: [Alice - 5], [Bob - 4]",
        ])
        t = DungeonTracker(hook, game_data, run_store, transcript=transcript, clock=clock, year=2026)
        result = t.backfill_from_chat_history()
        assert result.runs_added == 1
        assert t.get_all_runs()[0].duration == 760_000


class TestDispose:
    def test_dispose_unsubscribes_and_clears(self, hook, game_data, run_store, clock):
        t = DungeonTracker(hook, game_data, run_store, clock=clock)
        t.start(check_active=False)
        hook.dispatch("new_battle", _new_battle(0, T0))
        t.dispose()
        assert hook.handler_count() == 0
        assert not t.is_tracking
        assert run_store.load_snapshot() is None
        hook.dispatch("new_battle", _new_battle(0, T0))
        assert not t.is_tracking
