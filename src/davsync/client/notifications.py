"""User-facing notifications for davsync.

This module provides:
- Native OS notifications (Windows toast, macOS notification center, Linux notify-send)
- Notifier: logs every notice, optionally shows it on the desktop, and
  rate-limits repeated notices that share a key
- Helpers building the sync-related notices
"""

from __future__ import annotations

import logging
import os
import platform
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto

from davsync.core.types import SyncReport

logger = logging.getLogger(__name__)

APP_NAME = "davsync"


class NotificationType(Enum):
    """Type of notification."""

    INFO = auto()
    WARNING = auto()
    ERROR = auto()


@dataclass
class Notification:
    """Represents a notification to display."""

    title: str
    message: str
    type: NotificationType = NotificationType.INFO


def _notify_windows(notification: Notification) -> bool:
    """Send notification on Windows using a PowerShell toast.

    Title and message reach the script through environment variables and
    are never parsed as PowerShell.
    """
    ps_script = f'''
    [Windows.UI.Notifications.ToastNotificationManager, Windows.UI.Notifications, ContentType = WindowsRuntime] | Out-Null
    $template = [Windows.UI.Notifications.ToastNotificationManager]::GetTemplateContent([Windows.UI.Notifications.ToastTemplateType]::ToastText02)
    $text = $template.GetElementsByTagName("text")
    $text.Item(0).AppendChild($template.CreateTextNode($env:DAVSYNC_NOTIFY_TITLE)) | Out-Null
    $text.Item(1).AppendChild($template.CreateTextNode($env:DAVSYNC_NOTIFY_MESSAGE)) | Out-Null
    $toast = [Windows.UI.Notifications.ToastNotification]::new($template)
    [Windows.UI.Notifications.ToastNotificationManager]::CreateToastNotifier("{APP_NAME}").Show($toast)
    '''
    env = dict(
        os.environ,
        DAVSYNC_NOTIFY_TITLE=notification.title,
        DAVSYNC_NOTIFY_MESSAGE=notification.message,
    )
    try:
        subprocess.run(
            ["powershell", "-ExecutionPolicy", "Bypass", "-Command", ps_script],
            capture_output=True,
            check=False,
            env=env,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )
        return True
    except OSError as e:
        logger.debug("Windows notification failed: %s", e)
        return False


def _notify_macos(notification: Notification) -> bool:
    """Send notification on macOS using osascript."""
    title = notification.title.replace('\\', '\\\\').replace('"', '\\"')
    message = notification.message.replace('\\', '\\\\').replace('"', '\\"')
    script = f'display notification "{message}" with title "{title}"'
    try:
        subprocess.run(["osascript", "-e", script], capture_output=True, check=True)
        return True
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug("macOS notification failed: %s", e)
        return False


def _notify_linux(notification: Notification) -> bool:
    """Send notification on Linux using notify-send."""
    urgency = "critical" if notification.type is NotificationType.ERROR else "normal"
    try:
        subprocess.run(
            [
                "notify-send",
                "--urgency", urgency,
                "--app-name", APP_NAME,
                notification.title,
                notification.message,
            ],
            capture_output=True,
            check=True,
        )
        return True
    except FileNotFoundError:
        logger.debug("notify-send not found")
        return False
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug("Linux notification failed: %s", e)
        return False


def send_notification(notification: Notification) -> bool:
    """Show a native desktop notification.

    Returns:
        True if notification was sent, False if failed or unavailable.
    """
    system = platform.system()
    if system == "Windows":
        return _notify_windows(notification)
    if system == "Darwin":
        return _notify_macos(notification)
    if system == "Linux":
        return _notify_linux(notification)
    logger.warning("Notifications not supported on %s", system)
    return False


_LOG_LEVELS = {
    NotificationType.INFO: logging.INFO,
    NotificationType.WARNING: logging.WARNING,
    NotificationType.ERROR: logging.ERROR,
}


class Notifier:
    """Delivers notices to the log and, optionally, the desktop.

    Notices sent through notify_once() with the same key are suppressed
    until ``cooldown`` seconds have passed since the last delivered one.
    """

    def __init__(
        self,
        desktop: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.desktop = desktop
        self._clock = clock
        self._last_sent: dict[str, float] = {}
        self.history: list[Notification] = []

    def notify(self, notification: Notification) -> bool:
        """Deliver a notice. Returns True if a desktop notification was shown."""
        self.history.append(notification)
        logger.log(
            _LOG_LEVELS[notification.type], "%s: %s", notification.title, notification.message
        )
        if self.desktop:
            return send_notification(notification)
        return False

    def notify_once(self, key: str, notification: Notification, cooldown: float) -> bool:
        """Deliver a notice unless one with the same key went out recently.

        Returns:
            True if the notice was delivered (not suppressed).
        """
        now = self._clock()
        last = self._last_sent.get(key)
        if last is not None and now - last < cooldown:
            logger.debug("Suppressed repeated notice %r", key)
            return False
        self._last_sent[key] = now
        self.notify(notification)
        return True


def not_configured_notice() -> Notification:
    return Notification(
        title="davsync - Not Configured",
        message="No WebDAV server is enabled. Enable at least one in the settings.",
        type=NotificationType.WARNING,
    )


def sync_failures_notice(failed: dict[str, str]) -> Notification | None:
    """One notice summarizing every failed path, or None if nothing failed."""
    if not failed:
        return None
    if len(failed) == 1:
        path, reason = next(iter(failed.items()))
        message = f"Failed to sync {path}: {reason}"
    else:
        message = f"{len(failed)} files failed to sync"
    return Notification(
        title="davsync - Sync Failed",
        message=message,
        type=NotificationType.ERROR,
    )


def sync_complete_notice(report: SyncReport) -> Notification | None:
    """Summarize a successful run, or None when nothing changed."""
    parts = []
    if report.uploaded:
        parts.append(f"{len(report.uploaded)} uploaded")
    if report.downloaded:
        parts.append(f"{len(report.downloaded)} downloaded")
    if report.deleted:
        parts.append(f"{len(report.deleted)} deleted")
    if report.moved:
        parts.append(f"{len(report.moved)} moved")
    if not parts:
        return None
    return Notification(
        title="davsync - Sync Complete",
        message=", ".join(parts),
        type=NotificationType.INFO,
    )


def unverified_deletions_notice(paths: list[str]) -> Notification | None:
    if not paths:
        return None
    return Notification(
        title="davsync - Deletion Unverified",
        message=f"{len(paths)} remote file(s) could not be confirmed deleted: "
        + ", ".join(sorted(paths)[:5]),
        type=NotificationType.WARNING,
    )


def sync_timeout_notice(minutes: float) -> Notification:
    return Notification(
        title="davsync - Sync Timed Out",
        message=f"Sync did not finish within {minutes:g} minutes and was reset.",
        type=NotificationType.ERROR,
    )
