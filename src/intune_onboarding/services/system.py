"""
Facts about the local Mac and a few fire-and-forget OS actions.

Elevation, OS version, console user, serial number and application
presence are plain lookups consumed by the workflow's precondition checks.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Callable, Dict, Optional

from intune_onboarding.models.device import Device
from intune_onboarding.services.base import BaseService
from intune_onboarding.utils.shell import CommandRunner

logger = logging.getLogger(__name__)

# Marketing names shown in the unsupported-OS alert
MACOS_NAMES = {
    11: "macOS Big Sur",
    12: "macOS Monterey",
    13: "macOS Ventura",
    14: "macOS Sonoma",
    15: "macOS Sequoia",
    26: "macOS Tahoe",
}


class MacSystem(BaseService):
    """Local system facts: elevation, OS version, console user, hardware serial."""

    def __init__(self, runner: Optional[CommandRunner] = None,
                 geteuid: Callable[[], int] = os.geteuid):
        super().__init__(runner)
        self._geteuid = geteuid

    def is_elevated(self) -> bool:
        return self._geteuid() == 0

    def os_version(self) -> str:
        return self._read(["/usr/bin/sw_vers", "-productVersion"]) or "unknown"

    def os_major_version(self) -> int:
        match = re.match(r"(\d+)", self.os_version())
        return int(match.group(1)) if match else 0

    @staticmethod
    def os_name(major: int) -> str:
        return MACOS_NAMES.get(major, f"macOS {major}")

    def console_user(self) -> str:
        return self._read(["/usr/bin/stat", "-f%Su", "/dev/console"])

    def serial_number(self) -> str:
        """Hardware serial number, normalized; "" when it cannot be read."""
        output = self._read(["/usr/sbin/system_profiler", "SPHardwareDataType"])
        for line in output.splitlines():
            if "Serial Number" in line and ":" in line:
                raw = line.split(":", 1)[1].strip()
                return Device(serial_number=raw).serial_number if raw else ""
        logger.warning("Could not read the hardware serial number")
        return ""

    def app_installed(self, app_name: str) -> bool:
        return self._run(["/usr/bin/open", "-Ra", app_name]).ok

    def open_app(self, app_path: str) -> bool:
        result = self._run(["/usr/bin/open", "-a", app_path], mutates=True)
        if not result.ok:
            logger.warning(f"Failed to open {app_path}: {result.stderr.strip()}")
        return result.ok

    def open_url(self, url: str) -> bool:
        if not url:
            return False
        result = self._run(["/usr/bin/open", "-gj", url], mutates=True)
        if not result.ok:
            logger.warning(f"Failed to open {url}: {result.stderr.strip()}")
        return result.ok

    def install_updates(self) -> bool:
        """Install all pending software updates."""
        result = self._run(["/usr/sbin/softwareupdate", "-i", "-a"], mutates=True, timeout=3600)
        if not result.ok:
            logger.warning(f"softwareupdate failed: {result.output.strip()}")
        return result.ok

    def status(self) -> Dict[str, Any]:
        return {
            "elevated": self.is_elevated(),
            "os_version": self.os_version(),
            "console_user": self.console_user(),
            "serial_number": self.serial_number(),
        }
