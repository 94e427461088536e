"""Run statistics — pure aggregation over a list of CompletedRun.

All functions take the materialized history (newest first, as stored) and
return plain values or small dataclasses. Nothing here touches storage.
"""

from __future__ import annotations

from dataclasses import dataclass

from dungeontracker.core.run_store import CompletedRun


@dataclass(frozen=True)
class RunStats:
    total_runs: int = 0
    avg_time: float = 0
    fastest_time: int = 0
    slowest_time: int = 0
    avg_wave_time: float = 0


@dataclass(frozen=True)
class RunGroup:
    label: str
    runs: list[CompletedRun]
    stats: RunStats


def compute_stats(runs: list[CompletedRun]) -> RunStats:
    """Average, fastest and slowest duration. Zeros for an empty list."""
    if not runs:
        return RunStats()

    durations = [r.duration for r in runs]
    wave_avgs = [r.avg_wave_time for r in runs if r.avg_wave_time is not None]
    return RunStats(
        total_runs=len(runs),
        avg_time=sum(durations) / len(durations),
        fastest_time=min(durations),
        slowest_time=max(durations),
        avg_wave_time=sum(wave_avgs) / len(wave_avgs) if wave_avgs else 0,
    )


def filter_runs(
    runs: list[CompletedRun],
    dungeon_name: str | None = None,
    team_key: str | None = None,
    source: str | None = None,
    dungeon_key: str | None = None,
    validated_only: bool = False,
) -> list[CompletedRun]:
    """Keep runs matching every given filter. ``None`` means "any"."""
    result = runs
    if dungeon_name is not None:
        result = [r for r in result if r.dungeon_name == dungeon_name]
    if team_key is not None:
        result = [r for r in result if r.team_key == team_key]
    if source is not None:
        result = [r for r in result if r.source == source]
    if dungeon_key is not None:
        result = [r for r in result if r.dungeon_key == dungeon_key]
    if validated_only:
        result = [r for r in result if r.validated]
    return list(result)


def _group(runs: list[CompletedRun], label_of) -> list[RunGroup]:
    buckets: dict[str, list[CompletedRun]] = {}
    for run in runs:
        buckets.setdefault(label_of(run), []).append(run)
    return [
        RunGroup(label=label, runs=group, stats=compute_stats(group))
        for label, group in sorted(buckets.items())
    ]


def group_by_dungeon(runs: list[CompletedRun]) -> list[RunGroup]:
    return _group(runs, lambda r: r.dungeon_name or "Unknown")


def group_by_team(runs: list[CompletedRun]) -> list[RunGroup]:
    return _group(runs, lambda r: r.team_key or "Solo")


def personal_best(runs: list[CompletedRun]) -> CompletedRun | None:
    """Fastest run; the most recent one wins a tie."""
    best = None
    for run in runs:
        if best is None or run.duration < best.duration:
            best = run
    return best


def last_runs(runs: list[CompletedRun], count: int = 10) -> list[CompletedRun]:
    return runs[:count]


def dungeon_names(runs: list[CompletedRun]) -> list[str]:
    """Sorted distinct dungeon names, for filter pickers."""
    return sorted({r.dungeon_name for r in runs if r.dungeon_name})


def team_keys(runs: list[CompletedRun]) -> list[str]:
    return sorted({r.team_key for r in runs if r.team_key})
