"""ChatTimestampReconciler — authoritative run duration from party chat.

The game broadcasts a "Key counts" line at each run boundary. Those lines
carry server timestamps, so the gap between two consecutive ones is a run
duration that OS sleep or tab throttling cannot corrupt. The first key
count after a start is the start anchor; the next later one is the end
anchor. Two messages bracket exactly one run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from dungeontracker.core.chat_grammar import elapsed_ms

logger = logging.getLogger(__name__)


class KeyCountRole(Enum):
    START = "start"
    END = "end"
    REPEAT = "repeat"  # same or earlier timestamp than the last anchor


@dataclass
class KeyCountMessage:
    timestamp: int
    key_counts: dict[str, int]
    text: str


class ChatTimestampReconciler:
    """Tracks the start/end key-count anchors for one in-flight run."""

    def __init__(self) -> None:
        self.first_timestamp: int | None = None
        self.last_timestamp: int | None = None
        self.battle_started_timestamp: int | None = None
        self.messages: list[KeyCountMessage] = []
        self._closed = False

    @property
    def has_start(self) -> bool:
        return self.first_timestamp is not None

    @property
    def is_closed(self) -> bool:
        """True once an end anchor distinct from the start has been seen."""
        return self._closed

    def observe_battle_start(self, timestamp: int) -> None:
        self.battle_started_timestamp = timestamp

    def seed_start(self, timestamp: int, key_counts: dict[str, int], text: str = "") -> bool:
        """Set the start anchor from a scan of earlier messages.

        No-op when an anchor already exists.
        """
        if self.first_timestamp is not None:
            return False
        self.first_timestamp = timestamp
        self.last_timestamp = timestamp
        self.messages.append(KeyCountMessage(timestamp, dict(key_counts), text))
        return True

    def observe_key_count(
        self,
        timestamp: int,
        key_counts: dict[str, int],
        text: str = "",
        fallback_start: int | None = None,
    ) -> KeyCountRole:
        """Classify a key-count message as the start or end of the run.

        *fallback_start* is the persisted tracked start of a run restored
        after an interruption. When no start anchor survived, the message
        is read as the end anchor against that start instead of opening a
        new, zero-length run.
        """
        if self._closed:
            return KeyCountRole.REPEAT

        if self.last_timestamp is not None and timestamp > self.last_timestamp:
            self.last_timestamp = timestamp
            self.messages.append(KeyCountMessage(timestamp, dict(key_counts), text))
            self._closed = True
            return KeyCountRole.END

        if self.first_timestamp is None:
            # A message at or before the tracked start is that run's own start line
            if fallback_start is not None and timestamp > fallback_start:
                logger.info(
                    "Key counts with no start anchor on a restored run; "
                    "using tracked start %d as anchor",
                    fallback_start,
                )
                self.first_timestamp = fallback_start
                self.last_timestamp = timestamp
                self.messages.append(KeyCountMessage(timestamp, dict(key_counts), text))
                self._closed = True
                return KeyCountRole.END

            self.first_timestamp = timestamp
            self.last_timestamp = timestamp
            self.messages.append(KeyCountMessage(timestamp, dict(key_counts), text))
            return KeyCountRole.START

        return KeyCountRole.REPEAT

    def duration(self) -> int | None:
        """Chat-validated duration in ms, or None without two anchors."""
        if not self._closed or self.first_timestamp is None or self.last_timestamp is None:
            return None
        return elapsed_ms(self.first_timestamp, self.last_timestamp)

    # ------------------------------------------------------------------
    # Snapshot round-trip
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "first_key_count_timestamp": self.first_timestamp,
            "last_key_count_timestamp": self.last_timestamp,
            "battle_started_timestamp": self.battle_started_timestamp,
            "key_count_messages": [
                {"timestamp": m.timestamp, "key_counts": m.key_counts, "text": m.text}
                for m in self.messages
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> ChatTimestampReconciler:
        rec = cls()
        rec.first_timestamp = data.get("first_key_count_timestamp")
        rec.last_timestamp = data.get("last_key_count_timestamp")
        rec.battle_started_timestamp = data.get("battle_started_timestamp")
        for m in data.get("key_count_messages") or []:
            try:
                rec.messages.append(
                    KeyCountMessage(int(m["timestamp"]), dict(m.get("key_counts") or {}), m.get("text", ""))
                )
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed key-count message in snapshot: %r", m)
        return rec
