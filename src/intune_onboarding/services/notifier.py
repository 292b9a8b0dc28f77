"""
User-facing notifications, dialogs and alerts through osascript.

Every message passes through the log as well, which makes the log file the
run's audit trail.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Optional, Sequence

from intune_onboarding.errors import ErrorCode, NotifierError, UserCancelled
from intune_onboarding.utils.shell import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

OSASCRIPT = "/usr/bin/osascript"


class PromptType(str, Enum):
    BUTTON = "buttonPrompt"
    TEXT = "textPrompt"
    PASSWORD = "passwordPrompt"


def _quote(text: str) -> str:
    """Quote a Python string as an AppleScript string literal."""
    return '"' + str(text).replace("\\", "\\\\").replace('"', '\\"') + '"'


def _button_list(buttons: Sequence[str]) -> str:
    return "{" + ", ".join(_quote(b) for b in buttons) + "}"


def _cancelled(result: CommandResult) -> bool:
    return "-128" in result.stderr or "User canceled" in result.stderr


class Notifier:
    """Displays status messages and prompts to the console user."""

    def __init__(self, title: str, subtitle: str, runner: Optional[CommandRunner] = None,
                 notification_delay: float = 2.0, sleep: Callable[[float], None] = time.sleep):
        self.title = title
        self.subtitle = subtitle
        # presentation is never a dry-run concern, so use a live runner
        self.runner = runner or CommandRunner()
        self.notification_delay = notification_delay
        self.sleep = sleep

    def notify(self, message: str, *, suppress_notification: bool = False,
               delay: Optional[float] = None, level: int = logging.INFO) -> bool:
        """
        Log a message and show it as a notification.

        Returns:
            False when the notification could not be displayed
        """
        logger.log(level, message)
        if suppress_notification:
            return True

        script = (f"display notification {_quote(message)} with title {_quote(self.title)} "
                  f"subtitle {_quote(self.subtitle)}")
        result = self.runner.run([OSASCRIPT, "-e", script])
        self.sleep(self.notification_delay if delay is None else delay)
        if not result.ok:
            logger.warning(f"Failed to display notification. Error: '{result.returncode}' "
                           f"({ErrorCode.NOTIFICATION_FAILED.value})")
            return False
        return True

    def dialog(self, message: str, *, title: Optional[str] = None, subtitle: Optional[str] = None,
               buttons: Sequence[str] = ("Cancel", "Ok"), default_button: int = 1,
               cancel_button: Optional[str] = None, icon: Optional[str] = None,
               prompt: PromptType = PromptType.BUTTON) -> str:
        """
        Display a dialog and return the pressed button or the entered text.

        Raises:
            UserCancelled: the user pressed the cancel button
            NotifierError: the dialog could not be displayed
        """
        text = f"{subtitle or self.subtitle}\n{message}"
        script = f"display dialog {_quote(text)} with title {_quote(title or self.title)}"
        if prompt is not PromptType.BUTTON:
            script += ' default answer ""'
            if prompt is PromptType.PASSWORD:
                script += " with hidden answer"
        script += f" buttons {_button_list(buttons)} default button {default_button}"
        if cancel_button:
            script += f" cancel button {_quote(cancel_button)}"
        if icon:
            script += f" with icon POSIX file {_quote(icon)}" if "/" in icon else f" with icon {icon}"

        returned = "button returned" if prompt is PromptType.BUTTON else "text returned"
        result = self.runner.run([OSASCRIPT, "-e", f"{returned} of ({script})"])

        # the reply is never logged, it may be a password
        logger.info(f"Dialog: {message}")
        if not result.ok:
            if _cancelled(result):
                logger.info("User cancelled dialog.")
                raise UserCancelled(ErrorCode.DIALOG_CANCELLED, "User cancelled dialog")
            logger.error(f"Failed to display dialog. Error: '{result.stderr.strip()}'")
            raise NotifierError(ErrorCode.DIALOG_FAILED, f"Failed to display dialog: {result.stderr.strip()}")
        return result.stdout.rstrip("\n")

    def alert(self, alert_text: str, message: str, *, severity: str = "informational",
              buttons: Sequence[str] = ("Ok",), default_button: int = 1,
              cancel_button: Optional[str] = None, giving_up_after: Optional[int] = None) -> str:
        """Display an alert and return the pressed button."""
        if severity not in ("informational", "warning", "critical"):
            severity = "informational"
        script = (f"display alert {_quote(alert_text)} message {_quote(message)} as {severity} "
                  f"buttons {_button_list(buttons)} default button {default_button}")
        if cancel_button:
            script += f" cancel button {_quote(cancel_button)}"
        if giving_up_after:
            script += f" giving up after {int(giving_up_after)}"

        result = self.runner.run([OSASCRIPT, "-e", f"button returned of ({script})"])
        logger.info(f"Alert: {alert_text} - {message}")
        if not result.ok:
            if _cancelled(result):
                logger.info("User cancelled alert.")
                raise UserCancelled(ErrorCode.ALERT_CANCELLED, "User cancelled alert")
            logger.error(f"Failed to display alert. Error: '{result.stderr.strip()}'")
            raise NotifierError(ErrorCode.ALERT_FAILED, f"Failed to display alert: {result.stderr.strip()}")
        return result.stdout.rstrip("\n")
