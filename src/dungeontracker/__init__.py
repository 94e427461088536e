"""dungeontracker — live dungeon-run tracking and run-history analytics."""

__version__ = "0.1.0"
