import os
import sys
import signal
import logging
import argparse
import json

from mpd_client import MPDPlayer, PlayerConnectionError
from runner import Runner
from stats import Statistics
from stats_store import StickerStore, TagStore, StatsStoreError
from hooks import CommandHook, DesktopNotifier
from notifier import from_env as webhook_notifier_from_env
from notifier_gotify import from_env as gotify_notifier_from_env


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


# -------------------------
# Configuration via ENV VARS
# -------------------------
MPD_HOST = os.getenv("MPD_HOST", "127.0.0.1")
MPD_PORT = int(os.getenv("MPD_PORT", "6600"))
MPD_SOCKET = os.getenv("MPD_SOCKET", os.path.expanduser("~/.local/run/mpd/socket"))
MPD_PASSWORD = os.getenv("MPD_PASSWORD")
LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING").upper()

USE_TAGS = _env_flag("MSCOUT_USE_TAGS")
ROOT_DIR = os.getenv("MSCOUT_ROOT_DIR")
CACHE_PATHS = _env_flag("MSCOUT_CACHE_PATHS")
HOOK_COMMAND = os.getenv("MSCOUT_HOOK_COMMAND")
DESKTOP_NOTIFY = _env_flag("MSCOUT_DESKTOP_NOTIFY")
LOCK_FILE = os.getenv(
    "MSCOUT_LOCK_FILE",
    os.path.join(os.getenv("XDG_RUNTIME_DIR", "/tmp"), "mscout.lock"),
)

log = logging.getLogger("mscout")


def setup_logging(verbosity: int) -> None:
    if verbosity <= 0:
        level = getattr(logging, LOG_LEVEL, logging.WARNING)
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,  # ensure our config is used even if libs pre-configure logging
    )
    log.debug("log level set to %s", logging.getLevelName(level))


def _count(value: str) -> int:
    n = int(value)
    if n < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {value}")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mscout",
        description="Tracks played and skipped songs in mpd and stores the statistics "
                    "in mpd stickers or in the songs' own tags.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="more output, repeat for debug logs")
    parser.add_argument("-t", "--use-tags", action="store_true", default=USE_TAGS,
                        help="store statistics in the files' tags instead of mpd stickers; "
                             "tags survive file moves, stickers don't")
    parser.add_argument("-r", "--root-dir", default=ROOT_DIR,
                        help="mpd music directory, needed with --use-tags unless connected over the unix socket")
    parser.add_argument("-p", "--socket", default=MPD_SOCKET,
                        help="mpd unix socket, preferred over TCP when it exists (default: %(default)s)")
    parser.add_argument("-a", "--address",
                        help=f"mpd address HOST:PORT, disables the unix socket (default: {MPD_HOST}:{MPD_PORT})")
    parser.add_argument("--password", default=MPD_PASSWORD, help="mpd password")

    sub = parser.add_subparsers(dest="command", required=True)

    listen = sub.add_parser("listen", help="listen for mpd events and count plays and skips")
    listen.add_argument("--lock-file", default=LOCK_FILE, help="single instance lock (default: %(default)s)")
    listen.add_argument("--cache-paths", action="store_true", default=CACHE_PATHS,
                        help="always remember song paths while they are queued; done "
                             "automatically while consume mode is on")

    get = sub.add_parser("get-stats", help="show statistics of songs")
    get.add_argument("path", nargs="*", help="song path relative to the mpd music directory")
    get.add_argument("-c", "--current", action="store_true", help="the song currently playing")
    get.add_argument("-Q", "--queue", action="store_true", help="every song in the queue")
    get.add_argument("-P", "--playlist", action="append", default=[], metavar="NAME",
                     help="every song of a stored playlist, may be repeated")
    get.add_argument("-s", "--stats", action="store_true", help="show the counters instead of the rating")
    get.add_argument("-j", "--json", action="store_true", help="print the counters as json lines, implies --stats")

    put = sub.add_parser("set-stats", help="overwrite statistics of a song")
    put.add_argument("path", nargs="?", help="song path relative to the mpd music directory")
    put.add_argument("-c", "--current", action="store_true", help="the song currently playing")
    put.add_argument("-s", "--stats", help='statistics as json, e.g. {"play_cnt": 11, "skip_cnt": 0}')
    put.add_argument("-p", "--play-count", type=_count)
    put.add_argument("-u", "--skip-count", type=_count)
    return parser


def connect(args) -> MPDPlayer:
    explicit = args.address is not None or "MPD_HOST" in os.environ
    host, _, port = (args.address or f"{MPD_HOST}:{MPD_PORT}").rpartition(":")
    if not host:
        host, port = port, str(MPD_PORT)
    player = MPDPlayer(
        host=host,
        port=int(port),
        socket_path=None if explicit else args.socket,
        password=args.password,
    )
    return player.connect()


def build_store(args, player):
    if not args.use_tags:
        return StickerStore(player)
    root = args.root_dir
    if not root and player.via_socket:
        root = player.music_directory()
    if not root:
        raise SystemExit("tags need the music directory: connect over the unix socket or pass --root-dir")
    if not os.path.isdir(root):
        raise SystemExit(f"invalid root dir {root}")
    log.debug("music directory is %s", root)
    return TagStore(root)


def build_hooks() -> list:
    hooks = []
    webhook = webhook_notifier_from_env()     # ok if NOTIFY_WEBHOOK_URL is empty
    gotify = gotify_notifier_from_env()       # ok if GOTIFY_URL/TOKEN missing
    for notifier in (webhook, gotify):
        if notifier.enabled:
            hooks.append(notifier)
    if DESKTOP_NOTIFY:
        hooks.append(DesktopNotifier())
    if HOOK_COMMAND:
        hooks.append(CommandHook(HOOK_COMMAND))
    return hooks


# -------------------------
# Single instance lock
# -------------------------
class LockFile:
    def __init__(self, path: str):
        self.path = path
        self.held = False

    def acquire(self) -> None:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            if not self._stale():
                raise SystemExit(f"another listener is running (lock file {self.path})")
            log.info("removing stale lock file %s", self.path)
            os.unlink(self.path)
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        self.held = True

    def _stale(self) -> bool:
        try:
            with open(self.path) as f:
                pid = int(f.read().strip())
        except (OSError, ValueError):
            return True
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return True
        except PermissionError:
            return False
        return False

    def release(self) -> None:
        if not self.held:
            return
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass
        self.held = False


def _shutdown(signum, frame):
    log.info("received %s, shutting down", signal.Signals(signum).name)
    raise SystemExit(0)


# -------------------------
# Commands
# -------------------------
def _songs(args, player) -> list[str]:
    songs = []
    if args.current:
        current = player.current_path()
        if current is None:
            raise SystemExit("no song is currently playing")
        songs.append(current)
    if getattr(args, "queue", False):
        songs.extend(path for _, path in player.queue())
    for name in getattr(args, "playlist", []):
        songs.extend(player.playlist(name))
    if isinstance(args.path, list):
        songs.extend(args.path)
    elif args.path:
        songs.append(args.path)
    return songs


def format_stats(path: str, stats: Statistics, raw: bool, as_json: bool) -> str:
    if raw and as_json:
        return json.dumps({"path": path, "play_cnt": stats.play_cnt, "skip_cnt": stats.skip_cnt})
    if raw:
        return f"{path}: play count {stats.play_cnt}, skip count {stats.skip_cnt}"
    return f"{path}: rating {stats.rating:.2f}"


def get_stats(args, player, store) -> int:
    songs = _songs(args, player)
    if not songs:
        log.error("no songs given, use paths, --current, --queue or --playlist")
        return 2
    failed = 0
    for song in songs:
        try:
            stats = store.read(song)
        except StatsStoreError as e:
            log.error("%s", e)
            failed += 1
            continue
        print(format_stats(song, stats, args.stats or args.json, args.json))
    return 1 if failed else 0


def set_stats(args, player, store) -> int:
    if args.stats is not None and (args.play_count is not None or args.skip_count is not None):
        log.error("--stats can't be combined with --play-count/--skip-count")
        return 2
    if args.stats is None and args.play_count is None and args.skip_count is None:
        log.error("nothing to set, use --stats, --play-count or --skip-count")
        return 2
    songs = _songs(args, player)
    if len(songs) != 1:
        log.error("set-stats needs exactly one song, a path or --current")
        return 2
    song = songs[0]

    try:
        if args.stats is not None:
            try:
                stats = Statistics.from_json(args.stats)
            except ValueError as e:
                log.error("error while parsing stats: %s", e)
                return 2
        else:
            stats = store.read(song)
            if args.play_count is not None:
                stats.play_cnt = args.play_count
            if args.skip_count is not None:
                stats.skip_cnt = args.skip_count
        store.write(song, stats)
    except StatsStoreError as e:
        log.error("failed to set stats: %s", e)
        return 1
    log.info("stats %s set on %s", stats, song)
    return 0


def listen(args, player, store) -> int:
    lock = LockFile(args.lock_file)
    lock.acquire()
    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    hooks = build_hooks()
    webhook = webhook_notifier_from_env()
    gotify = gotify_notifier_from_env()

    def alert(level: str, title: str, message: str):
        # each notifier ignores the call if not configured or below min_level
        webhook.send(level, title, message)
        gotify.send(level, title, message)

    runner = Runner(player, store, hooks=hooks, cache_paths=args.cache_paths)
    log.info("listening for mpd events, storing stats in %s, %d hook(s)",
             "tags" if args.use_tags else "stickers", len(hooks))
    try:
        runner.run_forever()
    except PlayerConnectionError as e:
        log.error("lost connection to mpd: %s", e)
        alert("ERROR", "Connection to mpd lost", str(e))
        return 1
    finally:
        lock.release()
    return 0


COMMANDS = {"listen": listen, "get-stats": get_stats, "set-stats": set_stats}


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        player = connect(args)
    except PlayerConnectionError as e:
        log.error("%s", e)
        return 1
    try:
        store = build_store(args, player)
        return COMMANDS[args.command](args, player, store)
    except PlayerConnectionError as e:
        log.error("%s", e)
        return 1
    finally:
        player.close()


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
