# core/notifications.py
import asyncio
import requests
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Callable, Set
from core.config import settings
from core.logging_config import logger


SUCCESS = "success"
INFO = "info"
WARNING = "warning"
ERROR = "error"


# -----------------------------------------------------
# Send webhook (Discord, Slack, etc.)
# -----------------------------------------------------
def send_webhook_message(message: str):
    webhook_url = settings.SYNC_WEBHOOK_URL
    if not webhook_url:
        logger.debug("Webhook URL not configured: skipping.")
        return

    try:
        payload = {"content": message}
        response = requests.post(webhook_url, json=payload, timeout=10)
        logger.info(f"Webhook sent (status {response.status_code})")
    except Exception as e:
        logger.warning(f"Webhook failed: {e}")


@dataclass(frozen=True)
class Notification:
    level: str
    title: str
    message: str = ""
    retryable: bool = False
    created_at: datetime = field(default_factory=datetime.now)


# -----------------------------------------------------
# User-visible notification sink
# -----------------------------------------------------
class Notifier:
    """
    Collects user-facing notifications raised by the sync layer.

    The UI (out of scope here) drains ``notifications`` or registers a
    listener. Every notification is also logged, and warnings/errors are
    forwarded to the sync webhook when one is configured.
    """

    def __init__(self, forward_to_webhook: Optional[bool] = None):
        self.notifications: List[Notification] = []
        self._listeners: List[Callable[[Notification], None]] = []
        if forward_to_webhook is None:
            forward_to_webhook = bool(settings.SYNC_WEBHOOK_URL)
        self.forward_to_webhook = forward_to_webhook
        self._deliveries: Set[asyncio.Future] = set()

    def add_listener(self, listener: Callable[[Notification], None]):
        self._listeners.append(listener)

    def notify(self, level: str, title: str, message: str = "", retryable: bool = False) -> Notification:
        note = Notification(level=level, title=title, message=message, retryable=retryable)
        self.notifications.append(note)

        log = logger.warning if level in (WARNING, ERROR) else logger.info
        log(f"[{level.upper()}] {title}{': ' + message if message else ''}")

        for listener in list(self._listeners):
            try:
                listener(note)
            except Exception as e:
                logger.warning(f"Notification listener failed: {e}")

        if self.forward_to_webhook and level in (WARNING, ERROR):
            self._forward(f"{title}: {message}" if message else title)

        return note

    def _forward(self, text: str):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            send_webhook_message(text)
            return

        # Off the event loop; requests blocks
        delivery = loop.run_in_executor(None, send_webhook_message, text)
        self._deliveries.add(delivery)
        delivery.add_done_callback(self._deliveries.discard)

    async def flush(self):
        """Wait for webhook posts still in flight."""
        if self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    def success(self, title: str, message: str = "") -> Notification:
        return self.notify(SUCCESS, title, message)

    def info(self, title: str, message: str = "") -> Notification:
        return self.notify(INFO, title, message)

    def warning(self, title: str, message: str = "") -> Notification:
        return self.notify(WARNING, title, message)

    def error(self, title: str, message: str = "", retryable: bool = False) -> Notification:
        return self.notify(ERROR, title, message, retryable=retryable)

    def titles(self, level: Optional[str] = None) -> List[str]:
        return [n.title for n in self.notifications if level is None or n.level == level]

    def clear(self):
        self.notifications.clear()
