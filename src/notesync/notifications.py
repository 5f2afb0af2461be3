"""Desktop notifications for finished sync runs.

Each platform maps a Notification to the argv of its notifier:
    | platform.system() | Notifier                           |
    |-------------------|------------------------------------|
    | Linux             | notify-send                        |
    | Darwin            | osascript (notification center)    |
    | Windows           | PowerShell toast                   |

Notifying is best effort: failures are logged at DEBUG and never affect
the sync itself.
"""

from __future__ import annotations

import logging
import platform
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto

from notesync.core.types import OutcomeKind, SyncReport

logger = logging.getLogger(__name__)

APP_NAME = "notesync"
NOTIFY_TIMEOUT = 10.0


class NotificationType(Enum):
    """Severity of a notification."""

    INFO = auto()
    WARNING = auto()
    ERROR = auto()


@dataclass
class Notification:
    """A notification to display."""

    title: str
    message: str
    type: NotificationType = NotificationType.INFO


def _linux_command(notification: Notification) -> list[str]:
    urgency = "critical" if notification.type == NotificationType.ERROR else "normal"
    return [
        "notify-send",
        "--urgency", urgency,
        "--app-name", APP_NAME,
        notification.title,
        notification.message,
    ]


def _macos_command(notification: Notification) -> list[str]:
    title = notification.title.replace('"', '\\"')
    message = notification.message.replace('"', '\\"')
    return ["osascript", "-e", f'display notification "{message}" with title "{title}"']


def _windows_command(notification: Notification) -> list[str]:
    # Single quotes are doubled inside PowerShell string literals
    title = notification.title.replace("'", "''")
    message = notification.message.replace("'", "''")
    script = (
        "[Windows.UI.Notifications.ToastNotificationManager, Windows.UI.Notifications, "
        "ContentType = WindowsRuntime] | Out-Null; "
        "$xml = [Windows.UI.Notifications.ToastNotificationManager]::GetTemplateContent("
        "[Windows.UI.Notifications.ToastTemplateType]::ToastText02); "
        "$texts = $xml.GetElementsByTagName('text'); "
        f"$texts.Item(0).AppendChild($xml.CreateTextNode('{title}')) | Out-Null; "
        f"$texts.Item(1).AppendChild($xml.CreateTextNode('{message}')) | Out-Null; "
        "$toast = [Windows.UI.Notifications.ToastNotification]::new($xml); "
        f"[Windows.UI.Notifications.ToastNotificationManager]::CreateToastNotifier('{APP_NAME}').Show($toast)"
    )
    return ["powershell", "-ExecutionPolicy", "Bypass", "-Command", script]


NOTIFIERS: dict[str, Callable[[Notification], list[str]]] = {
    "Linux": _linux_command,
    "Darwin": _macos_command,
    "Windows": _windows_command,
}


def send_notification(notification: Notification) -> bool:
    """Show a desktop notification.

    Args:
        notification: What to show.

    Returns:
        True if the notifier ran successfully, False otherwise.
    """
    system = platform.system()
    build_command = NOTIFIERS.get(system)
    if build_command is None:
        logger.warning("Notifications not supported on %s", system)
        return False

    argv = build_command(notification)
    try:
        subprocess.run(
            argv,
            capture_output=True,
            check=True,
            timeout=NOTIFY_TIMEOUT,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )
    except FileNotFoundError:
        logger.debug("Notifier %s not found", argv[0])
        return False
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("Notification via %s failed: %s", argv[0], e)
        return False
    return True


# Title and severity per final outcome; anything else is a failure
_REPORT_STYLES: dict[OutcomeKind, tuple[str, NotificationType]] = {
    OutcomeKind.SUCCESS: ("Sync Complete", NotificationType.INFO),
    OutcomeKind.CANCELLED: ("Sync Cancelled", NotificationType.WARNING),
}
_FAILURE_STYLE = ("Sync Failed", NotificationType.ERROR)


def notify_report(report: SyncReport) -> bool:
    """Notify the user that a sync run finished.

    The summary line of the report is the notification body.

    Returns:
        True if the notification was shown.
    """
    title, kind = _REPORT_STYLES.get(report.outcome.kind, _FAILURE_STYLE)
    return send_notification(Notification(title=title, message=report.summary, type=kind))
