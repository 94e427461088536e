"""Tests for transcript annotations (per-run time labels)."""

from dungeontracker.core.chat_grammar import parse_lines
from dungeontracker.reporting.annotations import (
    RATING_CANCELED,
    RATING_FAILED,
    RATING_FAST,
    RATING_NORMAL,
    RATING_SLOW,
    annotate_events,
    format_minutes,
    rate_duration,
    transcript_stats,
)
from dungeontracker.reporting.stats import RunStats


def _events(*lines):
    return parse_lines(lines, year=2026)


def _started(clock: str, name: str = "Chimerical Den") -> str:
    return f"[1/5 {clock}] Battle started: {name}"


def _keys(clock: str) -> str:
    return f"[1/5 {clock}] Key counts: [Alice - 3], [Bob - 2]"


DEN_WITH_FAIL = (
    _started("10:00:00"),
    _keys("10:00:05"),
    _keys("10:10:05"),
    _keys("10:22:05"),
    "[1/5 10:30:00] Party failed on wave 12",
)


class TestFormatting:
    def test_format_minutes(self):
        assert format_minutes(272_000) == "4m 32s"
        assert format_minutes(59_999) == "0m 59s"


class TestRateDuration:
    STATS = RunStats(total_runs=3, avg_time=700_000, fastest_time=600_000, slowest_time=800_000)

    def test_fast_within_ten_percent_of_best(self):
        assert rate_duration(650_000, self.STATS) == RATING_FAST

    def test_slow_near_worst(self):
        assert rate_duration(730_000, self.STATS) == RATING_SLOW

    def test_normal_between(self):
        assert rate_duration(700_000, self.STATS) == RATING_NORMAL

    def test_no_stats_is_normal(self):
        assert rate_duration(1, None) == RATING_NORMAL
        assert rate_duration(1, RunStats()) == RATING_NORMAL


class TestAnnotateEvents:
    def test_labels_and_ratings(self):
        annotations = annotate_events(_events(*DEN_WITH_FAIL))
        assert [a.label for a in annotations] == ["10m 0s", "12m 0s", "FAILED"]
        assert [a.rating for a in annotations] == [RATING_FAST, RATING_SLOW, RATING_FAILED]
        assert all(a.dungeon_name == "Chimerical Den" for a in annotations)

    def test_attempt_before_fail_has_no_average(self):
        first, second, _ = annotate_events(_events(*DEN_WITH_FAIL))
        assert first.average_label == "Average: 10m 0s"
        assert second.average_label is None

    def test_running_average(self):
        annotations = annotate_events(_events(
            _started("10:00:00"),
            _keys("10:00:00"),
            _keys("10:10:00"),
            _keys("10:30:00"),
            _keys("10:35:00"),
        ))
        assert [a.average_label for a in annotations] == [
            "Average: 10m 0s",
            "Average: 15m 0s",
            "Average: 11m 40s",
        ]

    def test_stored_stats_preferred(self):
        stored = {"Chimerical Den": RunStats(total_runs=5, fastest_time=300_000, slowest_time=1_200_000)}
        annotations = annotate_events(_events(*DEN_WITH_FAIL), stored)
        assert [a.rating for a in annotations[:2]] == [RATING_NORMAL, RATING_NORMAL]

    def test_canceled(self):
        [annotation] = annotate_events(_events(
            _keys("10:00:05"),
            "[1/5 10:05:00] Battle ended: canceled",
        ))
        assert annotation.label == "canceled"
        assert annotation.rating == RATING_CANCELED

    def test_unknown_dungeon_has_no_average(self):
        [annotation] = annotate_events(_events(_keys("10:00:05"), _keys("10:10:05")))
        assert annotation.dungeon_name == "Unknown"
        assert annotation.average_label is None
        assert annotation.rating == RATING_NORMAL

    def test_fallback_name(self):
        [annotation] = annotate_events(
            _events(_keys("10:00:05"), _keys("10:10:05")),
            fallback_dungeon_name="Pirate Cove",
        )
        assert annotation.dungeon_name == "Pirate Cove"
        assert annotation.average_label == "Average: 10m 0s"

    def test_trailing_key_count_unlabeled(self):
        assert annotate_events(_events(_keys("10:00:05"))) == []


class TestTranscriptStats:
    def test_unknown_excluded(self):
        stats = transcript_stats(_events(
            _keys("09:00:00"),
            _keys("09:10:00"),
            _started("10:00:00"),
            _keys("10:00:05"),
            _keys("10:20:05"),
        ))
        assert list(stats) == ["Chimerical Den"]
        assert stats["Chimerical Den"].total_runs == 1
