"""
Listener state machine.

MPD's idle command only says "something in the player subsystem changed".
By comparing the previous listener state with a fresh status snapshot we work
out whether the track that was playing got played to completion, skipped, or
whether the change was irrelevant (seek, pause/resume, queue edits, stop).
"""

from __future__ import annotations
import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Union

log = logging.getLogger("mscout.state")

# Polling and clock measurement lag behind the daemon's own elapsed time.
SLACK_SECS = 1.0


# -------------------------
# Observed player data
# -------------------------
@dataclass(frozen=True)
class TrackRef:
    """A queue entry (MPD song id). Not a path; resolved lazily when needed."""
    id: str

    def __str__(self) -> str:
        return f"#{self.id}"


class TransportState(enum.Enum):
    PLAYING = "play"
    PAUSED = "pause"
    STOPPED = "stop"


@dataclass(frozen=True)
class PlayerSnapshot:
    transport: TransportState
    current: TrackRef | None = None
    next: TrackRef | None = None
    elapsed: float = 0.0
    duration: float | None = None
    repeat: bool = False
    single: bool = False
    consume: bool = False

    @property
    def remaining(self) -> float | None:
        if self.duration is None:
            return None
        if self.elapsed > self.duration:
            log.debug("elapsed %.3f exceeds duration %.3f for %s", self.elapsed, self.duration, self.current)
        return max(self.duration - self.elapsed, 0.0)


# -------------------------
# Classifier memory
# -------------------------
@dataclass(frozen=True)
class Playing:
    current_track: TrackRef
    remaining_secs: float | None
    next_track: TrackRef | None
    started_at: float  # monotonic clock reading


@dataclass(frozen=True)
class Paused:
    current_track: TrackRef
    next_track: TrackRef | None


@dataclass(frozen=True)
class Invalid:
    pass


ListenerState = Union[Playing, Paused, Invalid]


# -------------------------
# Classifier output
# -------------------------
@dataclass(frozen=True)
class Played:
    track: TrackRef


@dataclass(frozen=True)
class Skipped:
    track: TrackRef


@dataclass(frozen=True)
class Irrelevant:
    pass


Outcome = Union[Played, Skipped, Irrelevant]

IRRELEVANT = Irrelevant()
INVALID = Invalid()


class InvariantViolation(Exception):
    """The status snapshot lacks a field the reached branch depends on."""


def state_from_snapshot(snapshot: PlayerSnapshot, now: float) -> ListenerState:
    if snapshot.transport is TransportState.STOPPED:
        return INVALID
    if snapshot.current is None:
        raise InvariantViolation(f"player is {snapshot.transport.value} without a current song")
    if snapshot.transport is TransportState.PLAYING:
        return Playing(
            current_track=snapshot.current,
            remaining_secs=snapshot.remaining,
            next_track=snapshot.next,
            started_at=now,
        )
    return Paused(current_track=snapshot.current, next_track=snapshot.next)


def _is_next(expected: TrackRef | None, actual: TrackRef | None) -> bool:
    return expected is not None and expected == actual


def _played_through(prior: Playing, now: float, inclusive: bool) -> bool:
    if prior.remaining_secs is None:
        # streams and other sources without a duration can't be timed
        return False
    listened = now - prior.started_at + SLACK_SECS
    if inclusive:
        return listened >= prior.remaining_secs
    return listened > prior.remaining_secs


def _from_playing(prior: Playing, new: PlayerSnapshot, now: float) -> Outcome:
    if new.transport is TransportState.STOPPED:
        log.debug("stopped while playing %s", prior.current_track)
        return IRRELEVANT

    if new.transport is TransportState.PAUSED:
        done = _played_through(prior, now, inclusive=False)
        if _is_next(prior.next_track, new.current) and new.single and done:
            log.debug("single mode paused after %s finished", prior.current_track)
            return Played(prior.current_track)
        if done:
            # last song in the queue: paused at the end with nothing to compare against
            log.debug("paused at the end of %s", prior.current_track)
            return Played(prior.current_track)
        log.debug("paused during %s", prior.current_track)
        return IRRELEVANT

    done = _played_through(prior, now, inclusive=True)
    if new.current == prior.current_track and new.repeat and done:
        log.debug("%s repeated", prior.current_track)
        return Played(prior.current_track)
    if _is_next(prior.next_track, new.current):
        if prior.remaining_secs is None:
            log.debug("no duration for %s, can't tell played from skipped", prior.current_track)
            return IRRELEVANT
        return Played(prior.current_track) if done else Skipped(prior.current_track)
    if new.current == prior.current_track:
        log.debug("probably seeked in %s", prior.current_track)
    else:
        log.debug("jumped from %s to %s, not counting", prior.current_track, new.current)
    return IRRELEVANT


def _from_paused(prior: Paused, new: PlayerSnapshot) -> Outcome:
    if new.transport is TransportState.STOPPED:
        return IRRELEVANT
    if _is_next(prior.next_track, new.current) and not new.single:
        return Skipped(prior.current_track)
    if new.current == prior.current_track:
        log.debug("resumed %s", prior.current_track)
    else:
        log.debug("sequence changed while paused, %s -> %s", prior.current_track, new.current)
    return IRRELEVANT


def transition(state: ListenerState, new: PlayerSnapshot, now: float) -> tuple[Outcome, ListenerState]:
    """Classify the change from ``state`` to ``new``; return the outcome and the next state.

    Pure: the result depends only on the arguments. ``now`` is a monotonic
    clock reading taken after the snapshot was fetched.
    """
    if isinstance(state, Playing):
        outcome = _from_playing(state, new, now)
    elif isinstance(state, Paused):
        outcome = _from_paused(state, new)
    else:
        outcome = IRRELEVANT

    try:
        next_state = state_from_snapshot(new, now)
    except InvariantViolation as e:
        log.error("inconsistent player status (%s), resetting listener: previous=%s snapshot=%s", e, state, new)
        return IRRELEVANT, INVALID
    return outcome, next_state


class ListenerStateMachine:
    """Holds the last known player state and classifies each new snapshot against it."""

    def __init__(self, state: ListenerState = INVALID, clock: Callable[[], float] = time.monotonic):
        self.state = state
        self._clock = clock

    @classmethod
    def with_status(cls, snapshot: PlayerSnapshot, clock: Callable[[], float] = time.monotonic) -> "ListenerStateMachine":
        try:
            state = state_from_snapshot(snapshot, clock())
        except InvariantViolation as e:
            log.error("inconsistent initial player status (%s): %s", e, snapshot)
            state = INVALID
        return cls(state, clock)

    def handle_event(self, snapshot: PlayerSnapshot) -> Outcome:
        outcome, self.state = transition(self.state, snapshot, self._clock())
        log.debug("outcome=%s state=%s", outcome, self.state)
        return outcome
