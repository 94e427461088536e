"""Transcript annotations — per-run time labels for key-count lines.

Each key-count line gets a label describing what followed it:

    next key count  → run duration, rated fast / normal / slow
    party failed    → "FAILED"
    battle ended    → "canceled"

Successful runs in a known dungeon also get a running average across the
transcript. Ratings compare against stored stats for the dungeon when
there are any, else against stats computed from the transcript itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from dungeontracker.backfill import UNKNOWN_DUNGEON, derive_runs, nearest_dungeon_name
from dungeontracker.core.chat_grammar import ChatEvent, ChatEventType, elapsed_ms
from dungeontracker.reporting.stats import RunStats, compute_stats, group_by_dungeon

FAST_FACTOR = 1.10  # within 10% of the fastest run
SLOW_FACTOR = 0.90  # within 10% of the slowest run

RATING_FAST = "fast"
RATING_NORMAL = "normal"
RATING_SLOW = "slow"
RATING_FAILED = "failed"
RATING_CANCELED = "canceled"


@dataclass(frozen=True)
class Annotation:
    timestamp: int
    text: str
    dungeon_name: str
    label: str
    rating: str
    duration: int | None = None
    average_label: str | None = None


def format_minutes(ms: float) -> str:
    """``272000`` → ``"4m 32s"``."""
    total_seconds = int(ms // 1000)
    return f"{total_seconds // 60}m {total_seconds % 60}s"


def rate_duration(duration: int, stats: RunStats | None) -> str:
    if stats is None or stats.fastest_time <= 0 or stats.slowest_time <= 0:
        return RATING_NORMAL
    if duration <= stats.fastest_time * FAST_FACTOR:
        return RATING_FAST
    if duration >= stats.slowest_time * SLOW_FACTOR:
        return RATING_SLOW
    return RATING_NORMAL


def transcript_stats(
    events: list[ChatEvent],
    fallback_dungeon_name: str | None = None,
) -> dict[str, RunStats]:
    """Per-dungeon stats from the transcript alone, no storage."""
    runs = [
        r for r in derive_runs(events, fallback_dungeon_name)
        if r.dungeon_name != UNKNOWN_DUNGEON
    ]
    return {g.label: g.stats for g in group_by_dungeon(runs)}


def annotate_events(
    events: list[ChatEvent],
    stored_stats: Mapping[str, RunStats] | None = None,
    fallback_dungeon_name: str | None = None,
) -> list[Annotation]:
    """Label every key-count event in a sorted event list."""
    in_memory = transcript_stats(events, fallback_dungeon_name)
    stored_stats = stored_stats or {}
    cumulative: dict[str, list[int]] = {}
    annotations: list[Annotation] = []

    for i, event in enumerate(events):
        if event.type is not ChatEventType.KEY_COUNT:
            continue
        nxt = events[i + 1] if i + 1 < len(events) else None
        if nxt is None:
            continue
        name = nearest_dungeon_name(events, i, fallback_dungeon_name)

        if nxt.type is ChatEventType.KEY_COUNT:
            duration = elapsed_ms(event.timestamp, nxt.timestamp)
            stats = None
            if name != UNKNOWN_DUNGEON:
                stored = stored_stats.get(name)
                stats = stored if stored and stored.total_runs > 0 else in_memory.get(name)

            # A key count followed by a failure means the next attempt died,
            # so that line does not close a run for the running average
            after = events[i + 2] if i + 2 < len(events) else None
            next_attempt_failed = after is not None and after.type in (
                ChatEventType.FAIL, ChatEventType.CANCEL,
            )

            average_label = None
            if name != UNKNOWN_DUNGEON and not next_attempt_failed:
                totals = cumulative.setdefault(name, [0, 0])
                totals[0] += 1
                totals[1] += duration
                average_label = f"Average: {format_minutes(totals[1] // totals[0])}"

            annotations.append(Annotation(
                timestamp=event.timestamp,
                text=event.text,
                dungeon_name=name,
                label=format_minutes(duration),
                rating=rate_duration(duration, stats),
                duration=duration,
                average_label=average_label,
            ))
        elif nxt.type is ChatEventType.FAIL:
            annotations.append(Annotation(
                timestamp=event.timestamp,
                text=event.text,
                dungeon_name=name,
                label="FAILED",
                rating=RATING_FAILED,
            ))
        elif nxt.type is ChatEventType.CANCEL:
            annotations.append(Annotation(
                timestamp=event.timestamp,
                text=event.text,
                dungeon_name=name,
                label="canceled",
                rating=RATING_CANCELED,
            ))

    return annotations


def stats_by_dungeon(runs) -> dict[str, RunStats]:
    """Stored-history stats keyed by dungeon name, for ``annotate_events``."""
    return {g.label: compute_stats(g.runs) for g in group_by_dungeon(runs)}
