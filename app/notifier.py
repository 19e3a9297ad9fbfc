"""
Simple webhook notifier.

- Sends a POST with JSON body to NOTIFY_WEBHOOK_URL for every counted track,
  and for operational alerts (startup, connection loss).
- Respects NOTIFY_MIN_LEVEL; track events are sent at INFO.
- Best-effort: failures are logged but do not crash the listener.
"""

from __future__ import annotations
import os
import logging
import requests

_LEVELS = {
    "DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50
}

log = logging.getLogger("mscout.notifier")


def describe(event) -> tuple[str, str]:
    """Title and message for a counted track."""
    name = os.path.basename(event.path) or event.path
    stats = event.statistics
    return (
        f"{event.action.capitalize()}: {name}",
        f"{event.path}\nplayed {stats.play_cnt}, skipped {stats.skip_cnt}, rating {stats.rating:.2f}",
    )


class Notifier:
    def __init__(self, webhook_url: str | None, min_level: str = "INFO", app_tag: str = "mscout"):
        self.webhook_url = webhook_url.strip() if webhook_url else None
        self.min_level = _LEVELS.get(min_level.upper(), 20)
        self.app_tag = app_tag

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def send(self, level: str, title: str, message: str, extra: dict | None = None):
        if not self.webhook_url:
            return
        lvl = _LEVELS.get(level.upper(), 30)
        if lvl < self.min_level:
            return

        payload = {
            "level": level.upper(),
            "title": f"{self.app_tag}: {title}",
            "message": message,
            "extra": extra or {},
        }
        try:
            # Slack/Discord-compatible webhooks also accept this
            resp = requests.post(self.webhook_url, json=payload, timeout=5)
            resp.raise_for_status()
        except requests.RequestException as e:
            log.warning("Notification send failed: %s", e)

    def __call__(self, event) -> None:
        title, message = describe(event)
        self.send("INFO", title, message, {
            "action": event.action,
            "path": event.path,
            "play_cnt": event.statistics.play_cnt,
            "skip_cnt": event.statistics.skip_cnt,
        })


def from_env() -> Notifier:
    return Notifier(
        webhook_url=os.getenv("NOTIFY_WEBHOOK_URL"),
        min_level=os.getenv("NOTIFY_MIN_LEVEL", "INFO"),
        app_tag=os.getenv("APP_TAG", "mscout"),
    )
