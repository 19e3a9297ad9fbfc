import logging
import os
from contextlib import contextmanager

import mpd

from state import PlayerSnapshot, TrackRef, TransportState

log = logging.getLogger("mscout.mpd")


class PlayerConnectionError(Exception): ...


def _to_float(s):
    if s is None: return None
    try:
        return float(s)
    except (TypeError, ValueError):
        return None


def _flag(s) -> bool:
    # single can be "oneshot" on newer daemons; it still stops after one song
    return s not in (None, "", "0")


def snapshot_from_status(status: dict) -> PlayerSnapshot:
    """Build a PlayerSnapshot from the dict returned by the `status` command."""
    try:
        transport = TransportState(status.get("state", "stop"))
    except ValueError:
        log.warning("unknown player state %r, treating as stopped", status.get("state"))
        transport = TransportState.STOPPED

    elapsed = _to_float(status.get("elapsed"))
    duration = _to_float(status.get("duration"))
    # daemons before 0.20 only report "time: <elapsed>:<total>" in whole seconds
    if (elapsed is None or duration is None) and "time" in status:
        old_elapsed, _, old_total = status["time"].partition(":")
        elapsed = elapsed if elapsed is not None else _to_float(old_elapsed)
        duration = duration if duration is not None else _to_float(old_total)
    if duration is not None and duration <= 0:
        duration = None

    songid = status.get("songid")
    nextsongid = status.get("nextsongid")
    return PlayerSnapshot(
        transport=transport,
        current=TrackRef(songid) if songid is not None else None,
        next=TrackRef(nextsongid) if nextsongid is not None else None,
        elapsed=elapsed or 0.0,
        duration=duration,
        repeat=_flag(status.get("repeat")),
        single=_flag(status.get("single")),
        consume=_flag(status.get("consume")),
    )


class MPDPlayer:
    """
    Player status source and sticker database backed by python-mpd2.
    Connects over a unix socket when one is given and reachable, otherwise TCP.
    """
    def __init__(self, host: str = "127.0.0.1", port: int = 6600, socket_path: str | None = None,
                 password: str | None = None, timeout: int = 10):
        self.host = host
        self.port = port
        self.socket_path = socket_path
        self.password = password
        self.client = mpd.MPDClient()
        self.client.timeout = timeout
        # idle must block until the daemon reports something
        self.client.idletimeout = None
        self.via_socket = False

    @contextmanager
    def _guard(self, what: str):
        try:
            yield
        except (mpd.ConnectionError, OSError) as e:
            raise PlayerConnectionError(f"{what} failed: {e}") from e

    def connect(self) -> "MPDPlayer":
        if self.socket_path and os.path.exists(self.socket_path):
            try:
                log.debug("connecting to unix socket %s", self.socket_path)
                self.client.connect(self.socket_path)
                self.via_socket = True
            except (mpd.ConnectionError, OSError) as e:
                log.info("unix socket %s unusable (%s), falling back to %s:%s",
                         self.socket_path, e, self.host, self.port)
        if not self.via_socket:
            log.debug("connecting to %s:%s", self.host, self.port)
            with self._guard(f"connecting to {self.host}:{self.port}"):
                self.client.connect(self.host, self.port)
        if self.password:
            with self._guard("password"):
                try:
                    self.client.password(self.password)
                except mpd.CommandError as e:
                    raise PlayerConnectionError(f"authentication rejected: {e}") from e
        log.info("connected to mpd %s", self.client.mpd_version)
        return self

    def close(self) -> None:
        try:
            self.client.close()
            self.client.disconnect()
        except (mpd.ConnectionError, OSError) as e:
            log.debug("disconnect failed: %s", e)

    # -------- player status source --------
    def status(self) -> PlayerSnapshot:
        with self._guard("status"):
            return snapshot_from_status(self.client.status())

    def wait_for_event(self) -> set[str]:
        """Block until the daemon reports changed subsystems."""
        with self._guard("idle"):
            return set(self.client.idle())

    def resolve(self, track: TrackRef) -> str | None:
        with self._guard("playlistid"):
            try:
                songs = self.client.playlistid(track.id)
            except mpd.CommandError as e:
                log.debug("%s not in queue: %s", track, e)
                return None
        return songs[0].get("file") if songs else None

    def queue(self) -> list[tuple[TrackRef, str]]:
        with self._guard("playlistinfo"):
            return [(TrackRef(song["id"]), song["file"]) for song in self.client.playlistinfo()]

    def current_path(self) -> str | None:
        with self._guard("currentsong"):
            return self.client.currentsong().get("file")

    def playlist(self, name: str) -> list[str]:
        with self._guard("listplaylist"):
            try:
                return list(self.client.listplaylist(name))
            except mpd.CommandError as e:
                log.error("stored playlist %r not available: %s", name, e)
                return []

    def music_directory(self) -> str | None:
        """Only answered by the daemon for clients connected over the unix socket."""
        with self._guard("config"):
            try:
                config = self.client.config()
            except mpd.CommandError as e:
                log.debug("config command refused: %s", e)
                return None
        if isinstance(config, dict):
            return config.get("music_directory")
        return config or None

    # -------- sticker database --------
    def sticker_get(self, uri: str, name: str) -> str | None:
        with self._guard("sticker get"):
            try:
                return self.client.sticker_get("song", uri, name)
            except mpd.CommandError as e:
                # "no such sticker" is the normal answer for untouched songs
                log.debug("no sticker %s for %s: %s", name, uri, e)
                return None

    def sticker_set(self, uri: str, name: str, value: str) -> None:
        with self._guard("sticker set"):
            self.client.sticker_set("song", uri, name, value)

    def sticker_delete(self, uri: str, name: str) -> None:
        with self._guard("sticker delete"):
            self.client.sticker_delete("song", uri, name)
