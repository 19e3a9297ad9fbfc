"""
Local side effects for counted tracks.

- CommandHook: runs a user command built from a template, e.g.
  MSCOUT_HOOK_COMMAND='my-script {action} {path} {play_cnt} {skip_cnt}'.
  The same values are exported as MSCOUT_ACTION, MSCOUT_PATH, ... env vars.
- DesktopNotifier: pops up a desktop notification through notify-send.
Both are best-effort; the runner logs anything they raise.
"""

from __future__ import annotations
import logging
import os
import shlex
import subprocess

from notifier import describe

log = logging.getLogger("mscout.hooks")

NOTIFY_ICON = "/usr/share/icons/Adwaita/scalable/devices/media-optical-dvd-symbolic.svg"


def _fields(event) -> dict:
    return {
        "action": event.action,
        "path": event.path,
        "play_cnt": event.statistics.play_cnt,
        "skip_cnt": event.statistics.skip_cnt,
        "rating": f"{event.statistics.rating:.2f}",
    }


class CommandHook:
    def __init__(self, template: str, timeout: int = 30):
        self.template = template
        self.timeout = timeout

    def build(self, event) -> list[str]:
        fields = _fields(event)
        # split first so paths with spaces stay one argument
        return [part.format(**fields) for part in shlex.split(self.template)]

    def __call__(self, event) -> None:
        argv = self.build(event)
        env = dict(os.environ)
        env.update({f"MSCOUT_{k.upper()}": str(v) for k, v in _fields(event).items()})
        log.debug("running hook %s", argv)
        result = subprocess.run(argv, env=env, capture_output=True, text=True, timeout=self.timeout)
        if result.returncode != 0:
            log.warning("hook %s exited with %s: %s", argv[0], result.returncode, result.stderr.strip())


class DesktopNotifier:
    def __init__(self, summary: str = "mscout", expire_ms: int = 10000):
        self.summary = summary
        self.expire_ms = expire_ms

    def __call__(self, event) -> None:
        title, _ = describe(event)
        subprocess.run(
            ["notify-send", "--urgency=low", f"--expire-time={self.expire_ms}",
             f"--icon={NOTIFY_ICON}", self.summary, title],
            check=True, capture_output=True, timeout=5,
        )
