"""Dungeon tracker reporting module.

Usage:
    from dungeontracker.reporting import compute_stats, group_by_dungeon, completion_summary

    runs = run_store.get_all_runs()
    for group in group_by_dungeon(runs):
        print(group.label, group.stats.avg_time)
"""

from .stats import (
    RunGroup,
    RunStats,
    compute_stats,
    dungeon_names,
    filter_runs,
    group_by_dungeon,
    group_by_team,
    last_runs,
    personal_best,
    team_keys,
)
from .annotations import Annotation, annotate_events, format_minutes
from .summary import completion_summary, format_clock

__all__ = [
    "RunGroup",
    "RunStats",
    "compute_stats",
    "dungeon_names",
    "filter_runs",
    "group_by_dungeon",
    "group_by_team",
    "last_runs",
    "personal_best",
    "team_keys",
    "Annotation",
    "annotate_events",
    "format_minutes",
    "completion_summary",
    "format_clock",
]
