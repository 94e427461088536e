"""Chat grammar — turn one party-chat transcript line into a typed event.

Every line the game renders carries an embedded timestamp of the form
``[M/D h:mm:ss]`` or ``[M/D h:mm:ss AM]``. Four system lines matter:

    Battle started: <dungeon name>
    Key counts: [<player> - <count>], [<player> - <count>], ...
    Party failed on wave <N>
    Battle ended: ...

All functions here are pure. Unparsable input yields ``None`` or an empty
result, never an exception.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable

DAY_MS = 24 * 60 * 60 * 1000

_TIMESTAMP_RE = re.compile(
    r"\[(\d{1,2})/(\d{1,2})\s+(\d{1,2}):(\d{2}):(\d{2})\s*([AP]M)?\]"
)
# [Name - 1,234]; names may not contain brackets or dashes
_KEY_COUNT_RE = re.compile(r"\[([^\[\]-]+?)\s*-\s*([\d,]+)\]")
_PARTY_FAILED_RE = re.compile(r"Party failed on wave (\d+)")
# Player chat renders as "Name: text" before any bracket
_PLAYER_MESSAGE_RE = re.compile(r"^[^\[]+:")

BATTLE_STARTED = "Battle started:"
KEY_COUNTS = "Key counts:"
BATTLE_ENDED = "Battle ended:"
PARTY_FAILED = "Party failed"
_SYSTEM_PREFIXES = (BATTLE_STARTED, KEY_COUNTS, BATTLE_ENDED, PARTY_FAILED)


class ChatEventType(Enum):
    BATTLE_START = "battle_start"
    KEY_COUNT = "key_count"
    FAIL = "fail"
    CANCEL = "cancel"


@dataclass(frozen=True)
class ChatEvent:
    """One recognized system line from the party transcript."""

    type: ChatEventType
    timestamp: int  # epoch ms
    text: str = ""
    dungeon_name: str | None = None
    key_counts: dict[str, int] = field(default_factory=dict)
    wave: int | None = None

    @property
    def team(self) -> list[str]:
        """Sorted player names from a key-count event."""
        return sorted(self.key_counts)


def parse_timestamp(text: str, year: int | None = None) -> int | None:
    """Recover epoch ms from the first ``[M/D h:mm:ss[ AM|PM]]`` in *text*.

    The transcript omits the year, so the date is read against *year*
    (default: the current calendar year).
    """
    match = _TIMESTAMP_RE.search(text)
    if not match:
        return None

    month, day, hour, minute, second = (int(g) for g in match.groups()[:5])
    period = match.group(6)
    if period == "PM" and hour < 12:
        hour += 12
    if period == "AM" and hour == 12:
        hour = 0

    if year is None:
        year = datetime.now().year
    try:
        moment = datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None
    return round(moment.timestamp() * 1000)


def parse_iso_timestamp(value) -> int | None:
    """Convert an ISO-8601 string (or epoch ms number) to epoch ms."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if not isinstance(value, str) or not value:
        return None
    try:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return round(moment.timestamp() * 1000)


def to_iso(ms: int) -> str:
    """Epoch ms → ISO-8601 UTC string."""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def parse_key_counts(text: str) -> dict[str, int]:
    """Extract ``{player: count}`` from a key-count line or metadata string."""
    counts: dict[str, int] = {}
    for name, raw_count in _KEY_COUNT_RE.findall(text):
        counts[name.strip()] = int(raw_count.replace(",", ""))
    return counts


def elapsed_ms(start: int, end: int) -> int:
    """Duration between two transcript timestamps, corrected for midnight.

    Transcript clocks wrap daily, so a negative delta means the second
    message came after midnight.
    """
    duration = end - start
    if duration < 0:
        duration += DAY_MS
    return duration


def is_player_message(text: str) -> bool:
    if text.startswith(_SYSTEM_PREFIXES):
        return False
    return bool(_PLAYER_MESSAGE_RE.match(text))


def extract_dungeon_name(text: str) -> str | None:
    if BATTLE_STARTED not in text:
        return None
    name = text.split(BATTLE_STARTED, 1)[1].split("]", 1)[0].strip()
    return name or None


def parse_line(
    text: str,
    year: int | None = None,
    fallback_timestamp: int | None = None,
) -> ChatEvent | None:
    """Classify one transcript line.

    Returns None for player chat, lines without a usable timestamp, and
    anything that is not one of the four recognized system lines.
    """
    text = (text or "").strip()
    if not text or is_player_message(text):
        return None

    timestamp = parse_timestamp(text, year)
    if timestamp is None:
        timestamp = fallback_timestamp
    if timestamp is None:
        return None

    if BATTLE_STARTED in text:
        name = extract_dungeon_name(text)
        if not name:
            return None
        return ChatEvent(
            type=ChatEventType.BATTLE_START,
            timestamp=timestamp,
            text=text,
            dungeon_name=name,
        )

    if KEY_COUNTS in text:
        counts = parse_key_counts(text.split(KEY_COUNTS, 1)[1])
        if not counts:
            return None
        return ChatEvent(
            type=ChatEventType.KEY_COUNT,
            timestamp=timestamp,
            text=text,
            key_counts=counts,
        )

    failed = _PARTY_FAILED_RE.search(text)
    if failed:
        return ChatEvent(
            type=ChatEventType.FAIL,
            timestamp=timestamp,
            text=text,
            wave=int(failed.group(1)),
        )

    if BATTLE_ENDED in text:
        return ChatEvent(type=ChatEventType.CANCEL, timestamp=timestamp, text=text)

    return None


def parse_lines(lines: Iterable, year: int | None = None) -> list[ChatEvent]:
    """Parse transcript lines into a timestamp-sorted event list.

    Accepts plain strings or objects with ``text`` / ``approx_timestamp``
    attributes. A line delivered twice (same ``line_id``, or same text when
    there is no id, plus the same ``approx_timestamp`` when the text carries no
    timestamp of its own) is only counted once.
    """
    events: list[ChatEvent] = []
    seen: set = set()

    for line in lines:
        if isinstance(line, str):
            text, approx, marker = line, None, line.strip()
        else:
            text = getattr(line, "text", "")
            approx = getattr(line, "approx_timestamp", None)
            line_id = getattr(line, "line_id", None)
            if line_id is not None:
                marker = line_id
            elif _TIMESTAMP_RE.search(text or ""):
                marker = (text or "").strip()
            else:
                # Stamp-less lines repeat verbatim; only their arrival time tells them apart
                marker = ((text or "").strip(), approx)

        if marker in seen:
            continue
        seen.add(marker)

        event = parse_line(text, year=year, fallback_timestamp=approx)
        if event is not None:
            events.append(event)

    # Stable: same-second lines keep transcript order
    events.sort(key=lambda e: e.timestamp)
    return events
