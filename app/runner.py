"""
Event loop: wait for MPD, classify, count, notify.

Counting comes first; hooks run after the counters are stored and any
failure in them is only logged.
"""

from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from state import (
    ListenerStateMachine, Outcome, Played, PlayerSnapshot, Skipped, TrackRef,
)
from stats import Statistics
from stats_store import StatisticsStore, StatsStoreError

log = logging.getLogger("mscout.runner")


@dataclass(frozen=True)
class TrackEvent:
    action: str  # "played" or "skipped"
    path: str
    statistics: Statistics


class Runner:
    def __init__(self, player, store: StatisticsStore, hooks: Iterable[Callable[[TrackEvent], None]] = (),
                 clock: Callable[[], float] = time.monotonic, cache_paths: bool = False):
        self.player = player
        self.store = store
        self.hooks = list(hooks)
        self.clock = clock
        self.cache_paths = cache_paths
        self.machine: ListenerStateMachine | None = None
        self._paths: dict[TrackRef, str] = {}

    def start(self) -> None:
        snapshot = self.player.status()
        self.machine = ListenerStateMachine.with_status(snapshot, self.clock)
        self._remember(snapshot)
        log.info("listening, initial state %s", self.machine.state)

    def step(self) -> Outcome | None:
        """One wake-up. Returns the outcome, or None if the player didn't change."""
        if self.machine is None:
            self.start()
        subsystems = self.player.wait_for_event()
        if "player" not in subsystems:
            log.debug("ignoring events %s", sorted(subsystems))
            return None
        # status is fetched after waking; the event itself carries nothing
        snapshot = self.player.status()
        outcome = self.machine.handle_event(snapshot)
        self.apply(outcome)
        self._remember(snapshot)
        return outcome

    def run_forever(self) -> None:
        self.start()
        while True:
            self.step()

    # -------- path resolution --------
    def _remember(self, snapshot: PlayerSnapshot) -> None:
        # consume mode drops finished songs from the queue before we look them up
        if not (self.cache_paths or snapshot.consume):
            self._paths = {}
            return
        keep = {}
        for track in (snapshot.current, snapshot.next):
            if track is None:
                continue
            path = self._paths.get(track) or self.player.resolve(track)
            if path:
                keep[track] = path
        self._paths = keep

    def resolve(self, track: TrackRef) -> str | None:
        path = self.player.resolve(track)
        if path is None and track in self._paths:
            path = self._paths[track]
            log.debug("%s left the queue, using remembered path %s", track, path)
        return path

    # -------- counting --------
    def apply(self, outcome: Outcome) -> TrackEvent | None:
        if isinstance(outcome, Played):
            action = "played"
        elif isinstance(outcome, Skipped):
            action = "skipped"
        else:
            log.debug("nothing to count")
            return None

        path = self.resolve(outcome.track)
        if path is None:
            # typically consume mode already dropped the song from the queue
            log.warning("%s song %s is no longer in the queue, not counted", action, outcome.track)
            return None

        try:
            stats = self.store.read(path)
            if action == "played":
                stats.played()
            else:
                stats.skipped()
            self.store.write(path, stats)
        except StatsStoreError as e:
            log.error("%s %s but couldn't update its stats: %s", action, path, e)
            return None
        log.info("%s %s (played %s, skipped %s)", action, path, stats.play_cnt, stats.skip_cnt)

        event = TrackEvent(action=action, path=path, statistics=stats)
        for hook in self.hooks:
            try:
                hook(event)
            except Exception as e:
                log.warning("hook %s failed for %s: %s", type(hook).__name__, path, e)
        return event
