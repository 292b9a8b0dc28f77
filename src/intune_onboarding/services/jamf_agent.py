"""
Local side of Jamf management removal: the MDM profile, the jamf binary
framework and any remaining configuration profiles.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from intune_onboarding.errors import ErrorCode, ManagementRemovalError
from intune_onboarding.services.base import BaseService
from intune_onboarding.utils.shell import CommandRunner

logger = logging.getLogger(__name__)

JAMF_MDM_PROFILE_ID = "00000000-0000-0000-A000-4A414D460003"
JAMF_BINARY = "/usr/local/bin/jamf"
PROFILES = "/usr/bin/profiles"


class ManagementAgent(BaseService):
    """Wraps the jamf binary and the profiles tool for local deregistration."""

    def __init__(self, runner: Optional[CommandRunner] = None, jamf_binary: str = JAMF_BINARY):
        super().__init__(runner)
        self.jamf_binary = jamf_binary

    def is_enrolled(self) -> bool:
        """True while the Jamf MDM enrollment profile is installed."""
        return JAMF_MDM_PROFILE_ID in self._read([PROFILES, "-C"])

    def has_agent(self) -> bool:
        return bool(self._read(["/usr/bin/which", "jamf"]))

    def stop_self_service(self) -> None:
        result = self._run(["/usr/bin/killall", "Self Service"], mutates=True)
        if not result.ok:
            logger.debug("Self Service was not running")

    def remove_management_profile(self) -> None:
        """
        Ask the jamf binary to remove its MDM profile.

        Raises:
            ManagementRemovalError: MDM_PROFILE_REMOVAL_FAILED
        """
        result = self._run([self.jamf_binary, "removeMdmProfile"], mutates=True)
        if not result.ok:
            raise ManagementRemovalError(
                ErrorCode.MDM_PROFILE_REMOVAL_FAILED,
                f"jamf removeMdmProfile failed: {result.output.strip()}",
            )

    def remove_agent_framework(self) -> None:
        """
        Remove the jamf binary and its framework.

        Raises:
            ManagementRemovalError: FRAMEWORK_REMOVAL_FAILED
        """
        result = self._run([self.jamf_binary, "removeFramework"], mutates=True)
        if not result.ok:
            raise ManagementRemovalError(
                ErrorCode.FRAMEWORK_REMOVAL_FAILED,
                f"jamf removeFramework failed: {result.output.strip()}",
            )

    def list_profile_identifiers(self) -> List[str]:
        identifiers = []
        for line in self._read([PROFILES, "-L"]).splitlines():
            if "attribute" not in line:
                continue
            fields = line.split()
            if len(fields) >= 4:
                identifiers.append(fields[3])
        return identifiers

    def remove_all_configuration_profiles(self, user: str) -> int:
        """
        Remove every configuration profile, per identifier first and then
        with a forced bulk removal.

        Returns:
            The number of individually listed profiles.

        Raises:
            ManagementRemovalError: CONFIGURATION_PROFILE_REMOVAL_FAILED when
                the bulk removal fails
        """
        as_user = ["/usr/bin/sudo", "-u", user] if user else []
        identifiers = self.list_profile_identifiers()
        if not identifiers:
            logger.info("No System Profiles to remove...")
        for identifier in identifiers:
            logger.info(f"Attempting to remove System Profile '{identifier}'...")
            result = self._run([*as_user, PROFILES, "-R", "-p", identifier], mutates=True)
            if not result.ok:
                logger.warning(f"Failed to remove System Profile '{identifier}'")

        result = self._run([*as_user, PROFILES, "remove", "-forced", "-all", "-v"], mutates=True)
        if not result.ok:
            raise ManagementRemovalError(
                ErrorCode.CONFIGURATION_PROFILE_REMOVAL_FAILED,
                f"Failed to remove configuration profiles: {result.output.strip()}",
            )
        return len(identifiers)

    def status(self) -> Dict[str, Any]:
        return {"enrolled": self.is_enrolled(), "agent_installed": self.has_agent()}
