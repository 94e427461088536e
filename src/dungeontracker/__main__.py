"""CLI entry point: python -m dungeontracker <command> [options]

Commands:
    backfill TRANSCRIPT     add runs found in a saved party-chat log
    annotate TRANSCRIPT     label each run in a saved log with its time
    replay EVENTS.jsonl     feed recorded push messages through a tracker
    history                 list stored runs
    stats                   aggregate stored runs per dungeon
    clear --yes             delete stored runs
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from dungeontracker.backfill import backfill_from_transcript
from dungeontracker.config import TrackerConfig, load_config
from dungeontracker.core.chat_grammar import parse_iso_timestamp, parse_lines
from dungeontracker.core.dungeons import StaticGameData
from dungeontracker.core.hooks import MessageHook
from dungeontracker.core.payloads import ACTIONS_UPDATED
from dungeontracker.core.run_store import RunStore
from dungeontracker.core.store import build_store
from dungeontracker.core.transcript import FileTranscript
from dungeontracker.reporting import (
    annotate_events,
    compute_stats,
    completion_summary,
    filter_runs,
    format_clock,
    group_by_dungeon,
    group_by_team,
)
from dungeontracker.reporting.annotations import stats_by_dungeon
from dungeontracker.tracker import DungeonTracker

console = Console()

RATING_STYLES = {
    "fast": "green",
    "slow": "red",
    "failed": "bold red",
    "canceled": "yellow",
}


def _load_config(path: Path | None) -> TrackerConfig:
    if path is None:
        return TrackerConfig()
    if not path.exists():
        console.print(f"[red]Error: config file not found: {path}[/red]")
        sys.exit(1)
    return load_config(path)


def _runs_table(title: str, runs) -> Table:
    table = Table(title=title)
    table.add_column("Started")
    table.add_column("Dungeon")
    table.add_column("Team")
    table.add_column("Time", justify="right")
    table.add_column("Source")
    table.add_column("Validated", justify="center")
    for run in runs:
        table.add_row(
            run.timestamp,
            run.dungeon_name,
            run.team_key or "Solo",
            format_clock(run.duration),
            run.source,
            "yes" if run.validated else "no",
        )
    return table


def _stats_table(title: str, groups) -> Table:
    table = Table(title=title)
    table.add_column(title.split()[0])
    table.add_column("Runs", justify="right")
    table.add_column("Average", justify="right")
    table.add_column("Fastest", justify="right")
    table.add_column("Slowest", justify="right")
    for group in groups:
        s = group.stats
        table.add_row(
            group.label,
            str(s.total_runs),
            format_clock(s.avg_time),
            format_clock(s.fastest_time),
            format_clock(s.slowest_time),
        )
    return table


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------


def _cmd_backfill(args, config: TrackerConfig, run_store: RunStore) -> int:
    result = backfill_from_transcript(FileTranscript(args.transcript), run_store, year=args.year)
    console.print(f"Added [bold]{result.runs_added}[/bold] run(s)")
    for team in result.teams:
        console.print(f"  {team or 'Solo'}")
    return 0


def _cmd_annotate(args, config: TrackerConfig, run_store: RunStore) -> int:
    events = parse_lines(FileTranscript(args.transcript).get_visible_log_lines(), year=args.year)
    annotations = annotate_events(events, stats_by_dungeon(run_store.get_all_runs()))

    table = Table(title=f"Runs in {args.transcript}")
    table.add_column("Key counts at")
    table.add_column("Dungeon")
    table.add_column("Result", justify="right")
    table.add_column("Running average", justify="right")
    for a in annotations:
        style = RATING_STYLES.get(a.rating, "")
        label = f"[{style}]{a.label}[/{style}]" if style else a.label
        table.add_row(a.text.split("]", 1)[0].lstrip("["), a.dungeon_name, label, a.average_label or "")
    console.print(table)
    return 0


def _cmd_replay(args, config: TrackerConfig, run_store: RunStore) -> int:
    hook = MessageHook()
    game_data = StaticGameData.with_known_dungeons(config.dungeons)
    now = {"ms": 0}
    transcript = FileTranscript(args.transcript) if args.transcript else None
    tracker = DungeonTracker(
        hook, game_data, run_store,
        config=config,
        transcript=transcript,
        clock=lambda: now["ms"],
        year=args.year,
    )

    outcomes = []

    def on_update(live, outcome=None):
        if outcome is not None:
            outcomes.append(outcome)
            history = run_store.get_runs_by_name(outcome.run.dungeon_name)
            console.print(completion_summary(outcome.run, history))

    tracker.on_update(on_update)
    tracker.start(check_active=False)

    with open(args.events) as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                console.print(f"[yellow]Skipping line {lineno}: {exc}[/yellow]")
                continue

            at = parse_iso_timestamp(record.get("at"))
            if at is not None:
                now["ms"] = at

            message_type = record.get("type")
            data = record.get("data") or {}
            if message_type == "current_actions":
                game_data.set_current_actions(data if isinstance(data, list) else [])
                tracker.check_for_active_dungeon()
            elif message_type == "visibility":
                tracker.on_visibility_change(bool(data.get("hidden")))
            else:
                if message_type == ACTIONS_UPDATED:
                    game_data.apply_actions_updated(data)
                hook.dispatch(message_type, data)

    live = tracker.get_current_run()
    tracker.dispose()

    saved = sum(1 for o in outcomes if o.saved)
    console.print(f"Replayed {len(outcomes)} completion(s), {saved} saved")
    if live is not None:
        console.print(
            f"Still in progress: {live.dungeon_name} wave {live.current_wave}/{live.max_waves or '?'}"
        )
    return 0


def _cmd_history(args, config: TrackerConfig, run_store: RunStore) -> int:
    runs = filter_runs(
        run_store.get_all_runs(),
        dungeon_name=args.dungeon,
        team_key=args.team,
        validated_only=args.validated,
    )
    if args.group_by == "dungeon":
        console.print(_stats_table("Dungeon history", group_by_dungeon(runs)))
    elif args.group_by == "team":
        console.print(_stats_table("Team history", group_by_team(runs)))
    else:
        shown = runs[: args.limit] if args.limit > 0 else runs
        console.print(_runs_table(f"{len(runs)} run(s)", shown))
    return 0


def _cmd_stats(args, config: TrackerConfig, run_store: RunStore) -> int:
    runs = run_store.get_all_runs()
    overall = compute_stats(runs)
    console.print(
        f"[bold]{overall.total_runs}[/bold] run(s), average {format_clock(overall.avg_time)}, "
        f"fastest {format_clock(overall.fastest_time)}, slowest {format_clock(overall.slowest_time)}"
    )
    if runs:
        console.print(_stats_table("Dungeon stats", group_by_dungeon(runs)))
    return 0


def _cmd_clear(args, config: TrackerConfig, run_store: RunStore) -> int:
    if not args.yes:
        console.print("[red]Refusing to clear history without --yes[/red]")
        return 1
    if args.dungeon_hrid and args.tier is None:
        console.print("[red]--dungeon-hrid needs --tier[/red]")
        return 1
    ok = run_store.clear_history(args.dungeon_hrid, args.tier)
    console.print("History cleared" if ok else "[red]Clear failed, see log[/red]")
    return 0 if ok else 1


COMMANDS = {
    "backfill": _cmd_backfill,
    "annotate": _cmd_annotate,
    "replay": _cmd_replay,
    "history": _cmd_history,
    "stats": _cmd_stats,
    "clear": _cmd_clear,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dungeontracker",
        description="Dungeon run tracker and history",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to tracker YAML config (default: built-in defaults)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("backfill", help="Add runs found in a saved party-chat log")
    p.add_argument("transcript", type=Path)
    p.add_argument("--year", type=int, default=None, help="Year the log was written in")

    p = sub.add_parser("annotate", help="Label each run in a saved party-chat log")
    p.add_argument("transcript", type=Path)
    p.add_argument("--year", type=int, default=None)

    p = sub.add_parser("replay", help="Feed recorded push messages through a tracker")
    p.add_argument("events", type=Path, help="JSONL of {type, data, at}")
    p.add_argument("--transcript", type=Path, default=None, help="Party-chat log for start recovery")
    p.add_argument("--year", type=int, default=None)

    p = sub.add_parser("history", help="List stored runs")
    p.add_argument("--dungeon", default=None, help="Dungeon name")
    p.add_argument("--team", default=None, help="Team key, e.g. Alice,Bob")
    p.add_argument("--validated", action="store_true", help="Only chat-validated runs")
    p.add_argument("--group-by", choices=["dungeon", "team"], default=None)
    p.add_argument("--limit", type=int, default=0)

    sub.add_parser("stats", help="Aggregate stored runs per dungeon")

    p = sub.add_parser("clear", help="Delete stored runs")
    p.add_argument("--dungeon-hrid", default=None)
    p.add_argument("--tier", type=int, default=None)
    p.add_argument("--yes", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = _load_config(args.config)
    try:
        store = build_store(config.storage)
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        return 1

    with store:
        run_store = RunStore(store, config.character_id)
        return COMMANDS[args.command](args, config, run_store)


if __name__ == "__main__":
    sys.exit(main())
