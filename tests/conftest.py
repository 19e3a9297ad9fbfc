"""Shared in-memory fakes for the player, the store and the clock."""

import pytest

from state import PlayerSnapshot, TrackRef, TransportState
from stats import Statistics
from stats_store import StatisticsStore


# ── Fakes ───────────────────────────────────────────────────────────


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


class FakePlayer:
    """Scripted player: each wait_for_event() plays back the next (seconds, subsystems, snapshot) step."""

    def __init__(self, initial: PlayerSnapshot, script=(), paths=None, clock=None):
        self.snapshot = initial
        self.script = list(script)
        self.paths = dict(paths or {})
        self.clock = clock
        self.stickers: dict[tuple[str, str], str] = {}
        self.deleted: list[tuple[str, str]] = []
        self.status_calls = 0

    def status(self) -> PlayerSnapshot:
        self.status_calls += 1
        return self.snapshot

    def wait_for_event(self) -> set[str]:
        secs, subsystems, snapshot = self.script.pop(0)
        if self.clock is not None:
            self.clock.advance(secs)
        self.snapshot = snapshot
        return set(subsystems)

    def resolve(self, track: TrackRef):
        return self.paths.get(track.id)

    def queue(self):
        return [(TrackRef(k), v) for k, v in self.paths.items()]

    def current_path(self):
        if self.snapshot.current is None:
            return None
        return self.paths.get(self.snapshot.current.id)

    def playlist(self, name):
        return []

    def sticker_get(self, uri, name):
        return self.stickers.get((uri, name))

    def sticker_set(self, uri, name, value):
        self.stickers[(uri, name)] = value

    def sticker_delete(self, uri, name):
        self.deleted.append((uri, name))
        self.stickers.pop((uri, name), None)


class InMemoryStore(StatisticsStore):
    def __init__(self, data=None):
        self.data: dict[str, Statistics] = dict(data or {})
        self.writes: list[str] = []

    def read(self, path: str) -> Statistics:
        stats = self.data.get(path, Statistics())
        return Statistics(stats.play_cnt, stats.skip_cnt)

    def write(self, path: str, stats: Statistics) -> None:
        self.writes.append(path)
        self.data[path] = Statistics(stats.play_cnt, stats.skip_cnt)


# ── Helpers ─────────────────────────────────────────────────────────


A, B, C = TrackRef("1"), TrackRef("2"), TrackRef("3")


def snap(transport="play", current=None, next=None, elapsed=0.0, duration=180.0, **flags) -> PlayerSnapshot:
    return PlayerSnapshot(
        transport=TransportState(transport),
        current=current,
        next=next,
        elapsed=elapsed,
        duration=duration,
        **flags,
    )


# ── Shared fixtures ─────────────────────────────────────────────────


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()
