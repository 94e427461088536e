"""Shared test fixtures for dungeontracker."""

import pytest

from dungeontracker.core.dungeons import StaticGameData
from dungeontracker.core.hooks import MessageHook
from dungeontracker.core.run_store import RunStore
from dungeontracker.core.store import MemoryStore
from dungeontracker.tracker import DungeonTracker

DEN = "/actions/combat/chimerical_den"
T0 = 1_767_600_000_000  # whole seconds, 2026-01-05


class FakeClock:
    """Injectable epoch-ms clock."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def run_store(memory_store):
    return RunStore(memory_store)


@pytest.fixture
def game_data():
    """Known dungeons, with Chimerical Den T1 queued and running."""
    data = StaticGameData.with_known_dungeons()
    data.set_current_actions([{"actionHrid": DEN, "difficultyTier": 1, "isDone": False}])
    return data


@pytest.fixture
def hook():
    return MessageHook()


@pytest.fixture
def tracker(hook, game_data, run_store, clock):
    t = DungeonTracker(hook, game_data, run_store, clock=clock, year=2026)
    t.start(check_active=False)
    yield t
    t.dispose()


@pytest.fixture
def updates(tracker):
    """Every (live, outcome) pair the tracker reports, in order."""
    seen = []
    tracker.on_update(lambda live, outcome=None: seen.append((live, outcome)))
    return seen
