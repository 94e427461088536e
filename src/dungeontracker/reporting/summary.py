"""One-line completion summary for a finished run."""

from __future__ import annotations

from dungeontracker.core.run_store import CompletedRun
from dungeontracker.reporting.stats import compute_stats, personal_best


def format_clock(ms: float) -> str:
    """``125000`` → ``"2:05"``."""
    total_seconds = int(ms // 1000)
    return f"{total_seconds // 60}:{total_seconds % 60:02d}"


def completion_summary(run: CompletedRun, history: list[CompletedRun]) -> str:
    """Compare *run* with earlier runs of the same dungeon.

    *history* is newest first and may already contain *run*.
    """
    earlier = [r for r in history if r != run]
    everything = [run] + earlier

    tier = f" T{run.tier}" if run.tier is not None else ""
    message = f"{run.dungeon_name}{tier} completed in {format_clock(run.duration)}"
    if run.avg_wave_time:
        message += f" (avg {format_clock(run.avg_wave_time)}/wave)"

    if earlier:
        diff = run.duration - earlier[0].duration
        direction = "faster" if diff < 0 else "slower"
        message += f" | {format_clock(abs(diff))} {direction} than last"

    stats = compute_stats(everything)
    if stats.total_runs > 1:
        diff = run.duration - stats.avg_time
        direction = "faster" if diff < 0 else "slower"
        message += f" | {format_clock(abs(diff))} {direction} than avg"

    best = personal_best(everything)
    if best is not None and run.duration <= best.duration:
        message += " | NEW PB!"
    elif best is not None:
        message += f" | PB: {format_clock(best.duration)} (+{format_clock(run.duration - best.duration)})"

    if not run.validated:
        message += " | unvalidated"
    return message
