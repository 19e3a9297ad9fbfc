"""
Where statistics live.

- StickerStore: MPD sticker database, keyed by the path relative to MPD's music directory.
- TagStore: embedded in the audio file itself, so it survives moves and renames.
Both read fresh on every call and report absence as zero counters.
"""

from __future__ import annotations
import logging
import os
from abc import ABC, abstractmethod

import mpd
import mutagen
from mutagen import MutagenError
from mutagen.flac import FLAC
from mutagen.id3 import COMM, ID3, ID3NoHeaderError
from mutagen.mp4 import MP4, MP4FreeForm
from mutagen.oggopus import OggOpus
from mutagen.oggvorbis import OggVorbis

from stats import MARKER, Statistics

log = logging.getLogger("mscout.store")


class StatsStoreError(Exception): ...


class StatisticsStore(ABC):
    @abstractmethod
    def read(self, path: str) -> Statistics:
        ...

    @abstractmethod
    def write(self, path: str, stats: Statistics) -> None:
        ...


class StickerStore(StatisticsStore):
    def __init__(self, player):
        self.player = player

    def read(self, path: str) -> Statistics:
        raw = self.player.sticker_get(path, MARKER)
        if raw is None:
            return Statistics()
        try:
            return Statistics.from_json(raw)
        except ValueError as e:
            log.warning("corrupt sticker on %s (%s), removing it", path, e)
            try:
                self.player.sticker_delete(path, MARKER)
            except mpd.CommandError as err:
                log.warning("failed to delete sticker on %s: %s", path, err)
            return Statistics()

    def write(self, path: str, stats: Statistics) -> None:
        log.info("setting stats %s on %s in sticker database", stats, path)
        try:
            self.player.sticker_set(path, MARKER, stats.to_json())
        except mpd.CommandError as e:
            raise StatsStoreError(f"couldn't store sticker on {path}: {e}") from e


_VORBIS_KEY = MARKER.upper()
_COMM_KEY = f"COMM:{MARKER}:eng"
_MP4_KEY = f"----:com.apple.iTunes:{MARKER}"

# container formats by extension; anything else is refused untouched
_FORMATS = {
    ".mp3": "id3",
    ".flac": "vorbis", ".ogg": "vorbis", ".oga": "vorbis", ".opus": "vorbis",
    ".m4a": "mp4", ".m4b": "mp4", ".mp4": "mp4",
}


class TagStore(StatisticsStore):
    """
    Statistics in a comment embedded in the file.
    MP3 files get an ID3 COMM frame (lang eng, desc = marker), FLAC and Ogg
    files a Vorbis comment field named after the marker, MP4 files an iTunes
    freeform atom. Other formats are rejected with StatsStoreError.
    """

    def __init__(self, root_dir: str):
        self.root_dir = root_dir

    def absolute(self, path: str) -> str:
        return os.path.join(self.root_dir, path)

    def _format(self, full: str) -> str:
        ext = os.path.splitext(full)[1].lower()
        try:
            return _FORMATS[ext]
        except KeyError:
            raise StatsStoreError(f"can't store statistics in {ext or 'extensionless'} file {full}") from None

    # -------- ID3 --------
    def _load_id3(self, full: str) -> ID3:
        try:
            return ID3(full)
        except ID3NoHeaderError:
            log.info("no id3 tag in %s, starting a fresh one", full)
            return ID3()
        except (MutagenError, OSError) as e:
            raise StatsStoreError(f"couldn't read tags of {full}: {e}") from e

    def _read_id3(self, full: str) -> str | None:
        frame = self._load_id3(full).get(_COMM_KEY)
        return frame.text[0] if frame is not None and frame.text else None

    def _write_id3(self, full: str, text: str) -> None:
        tag = self._load_id3(full)
        tag.add(COMM(encoding=3, lang="eng", desc=MARKER, text=[text]))
        try:
            tag.save(full, v2_version=4)
        except (MutagenError, OSError) as e:
            raise StatsStoreError(f"couldn't write tags of {full}: {e}") from e

    # -------- Vorbis comments --------
    def _load_vorbis(self, full: str):
        try:
            # .ogg may hold either Vorbis or Opus, let mutagen look
            audio = mutagen.File(full, options=[FLAC, OggVorbis, OggOpus])
        except (MutagenError, OSError) as e:
            raise StatsStoreError(f"couldn't read tags of {full}: {e}") from e
        if audio is None:
            raise StatsStoreError(f"{full} is not a FLAC, Ogg Vorbis or Opus file")
        if audio.tags is None:
            log.info("no vorbis comment block in %s, starting a fresh one", full)
            audio.add_tags()
        return audio

    def _read_vorbis(self, full: str) -> str | None:
        values = self._load_vorbis(full).tags.get(_VORBIS_KEY)
        return values[0] if values else None

    def _write_vorbis(self, full: str, text: str) -> None:
        audio = self._load_vorbis(full)
        audio.tags[_VORBIS_KEY] = [text]
        try:
            audio.save()
        except (MutagenError, OSError) as e:
            raise StatsStoreError(f"couldn't write tags of {full}: {e}") from e

    # -------- MP4 freeform atoms --------
    def _load_mp4(self, full: str) -> MP4:
        try:
            audio = MP4(full)
        except (MutagenError, OSError) as e:
            raise StatsStoreError(f"couldn't read tags of {full}: {e}") from e
        if audio.tags is None:
            log.info("no ilst atom in %s, starting a fresh one", full)
            audio.add_tags()
        return audio

    def _read_mp4(self, full: str) -> str | None:
        values = self._load_mp4(full).tags.get(_MP4_KEY)
        return bytes(values[0]).decode("utf-8", errors="replace") if values else None

    def _write_mp4(self, full: str, text: str) -> None:
        audio = self._load_mp4(full)
        audio.tags[_MP4_KEY] = [MP4FreeForm(text.encode("utf-8"))]
        try:
            audio.save()
        except (MutagenError, OSError) as e:
            raise StatsStoreError(f"couldn't write tags of {full}: {e}") from e

    # -------- public API --------
    def read(self, path: str) -> Statistics:
        full = self.absolute(path)
        fmt = self._format(full)
        if fmt == "id3":
            raw = self._read_id3(full)
        elif fmt == "vorbis":
            raw = self._read_vorbis(full)
        else:
            raw = self._read_mp4(full)
        if raw is None:
            return Statistics()
        try:
            return Statistics.from_json(raw)
        except ValueError as e:
            # overwritten by the next write
            log.warning("invalid statistics comment in %s (%s), treating as empty", full, e)
            return Statistics()

    def write(self, path: str, stats: Statistics) -> None:
        full = self.absolute(path)
        fmt = self._format(full)
        log.info("attaching stats %s to %s", stats, full)
        if fmt == "id3":
            self._write_id3(full, stats.to_json())
        elif fmt == "vorbis":
            self._write_vorbis(full, stats.to_json())
        else:
            self._write_mp4(full, stats.to_json())
