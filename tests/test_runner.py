"""The wait/classify/count loop against a scripted player."""

import pytest

from conftest import A, B, C, FakePlayer, InMemoryStore, snap
from runner import Runner, TrackEvent
from state import IRRELEVANT, Played, Skipped
from stats import Statistics
from stats_store import StatsStoreError

PATHS = {"1": "a.mp3", "2": "b.mp3", "3": "c.mp3"}


def make_runner(clock, store, script, paths=PATHS, hooks=(), **kwargs):
    player = FakePlayer(snap("play", A, next=B, duration=180.0), script=script, paths=paths, clock=clock)
    runner = Runner(player, store, hooks=hooks, clock=clock, **kwargs)
    runner.start()
    return runner, player


class TestCounting:
    def test_full_play_increments_play_count(self, clock, store):
        runner, _ = make_runner(clock, store, [(179.5, {"player"}, snap("play", B, next=C))])

        assert runner.step() == Played(A)
        assert store.data["a.mp3"] == Statistics(1, 0)

    def test_early_advance_increments_skip_count(self, clock, store):
        runner, _ = make_runner(clock, store, [(30.0, {"player"}, snap("play", B, next=C))])

        assert runner.step() == Skipped(A)
        assert store.data["a.mp3"] == Statistics(0, 1)

    def test_counts_accumulate_on_stored_values(self, clock):
        store = InMemoryStore({"a.mp3": Statistics(5, 2)})
        runner, _ = make_runner(clock, store, [(30.0, {"player"}, snap("play", B, next=C))])

        runner.step()

        assert store.data["a.mp3"] == Statistics(5, 3)

    def test_irrelevant_changes_write_nothing(self, clock, store):
        runner, _ = make_runner(clock, store, [
            (10.0, {"player"}, snap("pause", A, next=B, elapsed=10.0)),
            (60.0, {"player"}, snap("play", A, next=B, elapsed=10.0)),
        ])

        assert runner.step() == IRRELEVANT
        assert runner.step() == IRRELEVANT
        assert store.writes == []

    def test_non_player_events_do_not_fetch_status(self, clock, store):
        runner, player = make_runner(clock, store, [(5.0, {"mixer", "options"}, snap("play", B))])
        calls = player.status_calls

        assert runner.step() is None
        assert player.status_calls == calls
        assert store.writes == []

    def test_status_is_fetched_after_waking(self, clock, store):
        runner, player = make_runner(clock, store, [(179.5, {"player", "playlist"}, snap("play", B, next=C))])
        calls = player.status_calls

        runner.step()

        assert player.status_calls == calls + 1


class TestResolution:
    def test_song_gone_from_queue_is_not_counted(self, clock, store):
        runner, _ = make_runner(clock, store, [(179.5, {"player"}, snap("play", B, next=C))],
                                paths={"2": "b.mp3"})

        assert runner.step() == Played(A)
        assert store.writes == []

    def test_remembered_path_counts_consumed_song(self, clock, store):
        runner, player = make_runner(clock, store, [(179.5, {"player"}, snap("play", B, next=C))],
                                     paths=dict(PATHS), cache_paths=True)
        # consume mode drops the finished song before we get to look it up
        del player.paths["1"]

        runner.step()

        assert store.data["a.mp3"] == Statistics(1, 0)

    def test_consume_mode_remembers_paths_without_the_flag(self, clock, store):
        player = FakePlayer(snap("play", A, next=B, consume=True),
                            script=[(179.5, {"player"}, snap("play", B, next=C, consume=True))],
                            paths=dict(PATHS), clock=clock)
        runner = Runner(player, store, clock=clock)
        runner.start()
        del player.paths["1"]

        assert runner.step() == Played(A)
        assert store.data["a.mp3"] == Statistics(1, 0)

    def test_leaving_consume_mode_forgets_paths(self, clock, store):
        player = FakePlayer(snap("play", A, next=B, consume=True),
                            script=[(30.0, {"player"}, snap("play", B, next=C))],
                            paths=dict(PATHS), clock=clock)
        runner = Runner(player, store, clock=clock)
        runner.start()

        runner.step()

        assert runner._paths == {}

    def test_path_cache_only_keeps_current_and_next(self, clock, store):
        runner, _ = make_runner(clock, store, [(179.5, {"player"}, snap("play", B, next=C))],
                                paths=dict(PATHS), cache_paths=True)

        runner.step()

        assert set(runner._paths.values()) == {"b.mp3", "c.mp3"}


class TestHooks:
    def test_hook_receives_updated_counts(self, clock, store):
        events = []
        runner, _ = make_runner(clock, store, [(179.5, {"player"}, snap("play", B, next=C))],
                                hooks=[events.append])

        runner.step()

        assert events == [TrackEvent(action="played", path="a.mp3", statistics=Statistics(1, 0))]

    def test_failing_hook_does_not_stop_counting_or_other_hooks(self, clock, store):
        events = []

        def broken(event):
            raise RuntimeError("no notification daemon")

        runner, _ = make_runner(clock, store, [
            (30.0, {"player"}, snap("play", B, next=C)),
            (30.0, {"player"}, snap("play", C)),
        ], hooks=[broken, events.append])

        runner.step()
        runner.step()

        assert store.data["a.mp3"] == Statistics(0, 1)
        assert store.data["b.mp3"] == Statistics(0, 1)
        assert [e.path for e in events] == ["a.mp3", "b.mp3"]

    def test_store_failure_skips_hooks(self, clock):
        class BrokenStore(InMemoryStore):
            def write(self, path, stats):
                raise StatsStoreError("read-only file system")

        events = []
        runner, _ = make_runner(clock, BrokenStore(), [(30.0, {"player"}, snap("play", B, next=C))],
                                hooks=[events.append])

        assert runner.step() == Skipped(A)
        assert events == []


class TestLoop:
    def test_connection_errors_propagate(self, clock, store):
        class Lost(Exception):
            pass

        runner, player = make_runner(clock, store, [])

        def gone():
            raise Lost("connection closed")
        player.wait_for_event = gone

        with pytest.raises(Lost):
            runner.step()
