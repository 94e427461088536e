"""TranscriptSource — where the rendered chat transcript comes from.

The grammar and backfill only need ``get_visible_log_lines()``; whether the
lines come from a rendered page, a saved log file or a test list is the
source's business.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranscriptLine:
    text: str
    approx_timestamp: int | None = None  # epoch ms, used when text has no stamp
    line_id: str | None = None


class TranscriptSource(Protocol):
    def get_visible_log_lines(self) -> list[TranscriptLine]: ...


class ListTranscript:
    """In-memory transcript."""

    def __init__(self, lines=None) -> None:
        self._lines: list[TranscriptLine] = []
        for line in lines or []:
            self.append(line)

    def append(self, line) -> None:
        if isinstance(line, str):
            line = TranscriptLine(text=line)
        self._lines.append(line)

    def get_visible_log_lines(self) -> list[TranscriptLine]:
        return list(self._lines)


class FileTranscript:
    """Saved transcript: one rendered chat line per text line."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def get_visible_log_lines(self) -> list[TranscriptLine]:
        try:
            with open(self._path, encoding="utf-8") as f:
                return [
                    TranscriptLine(text=line.rstrip("\n"), line_id=f"{self._path.name}:{i}")
                    for i, line in enumerate(f, 1)
                    if line.strip()
                ]
        except OSError as exc:
            logger.warning("Cannot read transcript %s: %s", self._path, exc)
            return []
