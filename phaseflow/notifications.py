"""
Notification sink for NotifyUsers side effects.

Every notification is logged. Desktop delivery through notify-send
(freedesktop compliant: mako, dunst, GNOME, KDE) is opt-in via
DESKTOP_NOTIFICATIONS=true.
"""

import logging
import shutil
import subprocess

from phaseflow.workflow.events import NotifyUsers

logger = logging.getLogger(__name__)

MAX_NOTIFICATION_LENGTH = 200

# notification kind -> notify-send urgency
KIND_URGENCY = {
    "phase_completion": "normal",
}


def notify_desktop(title: str, message: str, urgency: str = "normal") -> bool:
    """Send a desktop notification. Returns True if notify-send succeeded."""
    if not shutil.which("notify-send"):
        logger.debug("notify-send not found, skipping notification")
        return False

    if len(message) > MAX_NOTIFICATION_LENGTH:
        message = message[:MAX_NOTIFICATION_LENGTH] + "..."

    try:
        result = subprocess.run([
            "notify-send",
            "--urgency", urgency,
            "--app-name", "phaseflow",
            title,
            message,
        ], capture_output=True, text=True, timeout=5)
    except subprocess.TimeoutExpired:
        logger.warning("notify-send timed out")
        return False
    except OSError as e:
        logger.warning(f"Failed to run notify-send: {e}")
        return False

    if result.returncode != 0:
        logger.warning(f"notify-send failed (exit {result.returncode}): {result.stderr}")
        return False
    return True


class Notifier:
    """Hands NotifyUsers effects to the work item's team."""

    def __init__(self, desktop: bool = False):
        self.desktop = desktop
        self.sent: list[NotifyUsers] = []

    def send(self, notification: NotifyUsers) -> None:
        logger.info(
            f"[NOTIFY] {notification.work_item_id} ({notification.scope}): {notification.message}"
        )
        self.sent.append(notification)
        if self.desktop:
            notify_desktop(
                f"phaseflow: {notification.work_item_id}",
                notification.message,
                KIND_URGENCY.get(notification.kind, "normal"),
            )
