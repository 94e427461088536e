"""Backfill — rebuild run history from the rendered chat transcript.

Usage:
    result = backfill_from_transcript(FileTranscript("party.log"), run_store)
    print(result.runs_added, result.teams)

Idempotent: safe to re-run. Runs already stored (same team, start within
10 s, duration within 2 s) are not written again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from dungeontracker.core.chat_grammar import (
    ChatEvent,
    ChatEventType,
    elapsed_ms,
    parse_lines,
    to_iso,
)
from dungeontracker.core.dungeons import team_key
from dungeontracker.core.run_store import SOURCE_CHAT_BACKFILL, CompletedRun, RunStore
from dungeontracker.core.transcript import TranscriptSource

logger = logging.getLogger(__name__)

UNKNOWN_DUNGEON = "Unknown"


@dataclass(frozen=True)
class BackfillResult:
    runs_added: int
    teams: list[str] = field(default_factory=list)


def nearest_dungeon_name(
    events: list[ChatEvent],
    index: int,
    fallback: str | None = None,
) -> str:
    """Name from the closest battle-start before *index*.

    Best effort: assumes messages arrived in order. Falls back to
    *fallback* (e.g. the active run's dungeon), then ``"Unknown"``.
    """
    for event in reversed(events[:index]):
        if event.type is ChatEventType.BATTLE_START and event.dungeon_name:
            return event.dungeon_name
    return fallback or UNKNOWN_DUNGEON


def derive_runs(
    events: list[ChatEvent],
    fallback_dungeon_name: str | None = None,
) -> list[CompletedRun]:
    """Fold a sorted event list into completed runs.

    Only key-count → key-count pairs are runs. A key count followed by a
    fail or cancel is an attempt that did not finish.
    """
    runs: list[CompletedRun] = []
    for i, event in enumerate(events[:-1]):
        if event.type is not ChatEventType.KEY_COUNT:
            continue
        nxt = events[i + 1]
        if nxt.type is not ChatEventType.KEY_COUNT:
            continue

        runs.append(
            CompletedRun(
                dungeon_name=nearest_dungeon_name(events, i, fallback_dungeon_name),
                duration=elapsed_ms(event.timestamp, nxt.timestamp),
                team_key=team_key(event.team),
                timestamp=to_iso(event.timestamp),
                source=SOURCE_CHAT_BACKFILL,
                validated=True,
                key_counts=dict(event.key_counts),
            )
        )
    return runs


def backfill_from_transcript(
    source: TranscriptSource,
    run_store: RunStore,
    *,
    year: int | None = None,
    fallback_dungeon_name: str | None = None,
) -> BackfillResult:
    """Scan the whole transcript once and store every completed run found.

    Never raises: any failure is logged and reported as zero runs added.
    """
    try:
        events = parse_lines(source.get_visible_log_lines(), year=year)
        runs = derive_runs(events, fallback_dungeon_name)

        runs_added = 0
        teams: set[str] = set()
        for run in runs:
            teams.add(run.team_key)
            if run_store.save_run(run):
                runs_added += 1
    except Exception:
        logger.exception("Backfill failed")
        return BackfillResult(runs_added=0, teams=[])

    logger.info(
        "Backfill complete: %d event(s), %d run(s) derived, %d added",
        len(events), len(runs), runs_added,
    )
    return BackfillResult(runs_added=runs_added, teams=sorted(teams))
