"""
Active Directory binding and mobile account conversion.

Handles:
1. Detecting and removing the Active Directory binding, including the
   directory search paths it leaves behind
2. Classifying local accounts from their AuthenticationAuthority records
3. Converting AD mobile accounts into plain local accounts without losing
   the password hash
"""

from __future__ import annotations

import logging
import plistlib
import time
from typing import Any, Callable, Dict, List, Optional
from xml.parsers.expat import ExpatError

from intune_onboarding.errors import DirectoryError, ErrorCode
from intune_onboarding.models.device import AccountType, LocalAccount, StepOutcome
from intune_onboarding.services.base import BaseService
from intune_onboarding.utils.shell import CommandRunner

logger = logging.getLogger(__name__)

DSCL = "/usr/bin/dscl"
DSCONFIGAD = "/usr/sbin/dsconfigad"
DSEDITGROUP = "/usr/sbin/dseditgroup"
AUTHORITY_ATTRIBUTE = "AuthenticationAuthority"

# Attributes that identify an account as an Active Directory mobile account
MOBILE_ACCOUNT_ATTRIBUTES = (
    "cached_groups",
    "cached_auth_policy",
    "CopyTimestamp",
    "AltSecurityIdentities",
    "SMBPrimaryGroupSID",
    "OriginalAuthenticationAuthority",
    "OriginalNodeName",
    "SMBSID",
    "SMBScriptPath",
    "SMBPasswordLastSet",
    "SMBGroupRID",
    "PrimaryNTDomain",
    "AppleMetaRecordName",
    "MCXSettings",
    "MCXFlags",
)

# Removal order matters: removing the ShadowHash reference (or anything
# before these two) makes opendirectoryd drop ShadowHashData immediately.
PASSWORD_MIGRATION_ORDER = ("Kerberosv5", "LocalCachedUser")


class DirectoryIdentityAdapter(BaseService):
    """Reads and mutates the local directory node's view of binding and accounts."""

    def __init__(self, runner: Optional[CommandRunner] = None, settle_delay: float = 20.0,
                 sleep: Callable[[float], None] = time.sleep):
        super().__init__(runner)
        self.settle_delay = settle_delay
        self.sleep = sleep

    # ---- Binding -------------------------------------------------------------

    def is_bound(self) -> bool:
        nodes = self._read([DSCL, "localhost", "-list", "."])
        return "Active Directory" in nodes

    def _ad_search_path(self) -> Optional[str]:
        output = self._read([DSCL, "/Search", "-read", ".", "CSPSearchPath"])
        for line in output.splitlines():
            if "Active Directory" in line:
                return line.split("CSPSearchPath:", 1)[-1].strip()
        return None

    def unbind(self) -> StepOutcome:
        """
        Remove the Active Directory binding.

        Search path cleanup runs even when dsconfigad reports a failure so a
        half-removed binding does not keep the AD node in /Search.

        Raises:
            DirectoryError: UNBIND_FAILED when dsconfigad exits non-zero
        """
        if not self.is_bound():
            return StepOutcome.skipped("unbind", "Not bound to Active Directory. Skipping unbind...")

        search_path = self._ad_search_path()
        removal = self._run([DSCONFIGAD, "-remove", "-force", "-u", "none", "-p", "none"], mutates=True)

        for node in ("/Search/Contacts", "/Search"):
            if search_path:
                cleanup = self._run([DSCL, node, "-delete", ".", "CSPSearchPath", search_path], mutates=True)
                if not cleanup.ok:
                    logger.warning(f"Failed to remove '{search_path}' from {node}: {cleanup.stderr.strip()}")
            policy = self._run(
                [DSCL, node, "-change", ".", "SearchPolicy",
                 "dsAttrTypeStandard:CSPSearchPath", "dsAttrTypeStandard:NSPSearchPath"],
                mutates=True,
            )
            if not policy.ok:
                logger.warning(f"Failed to reset {node} search policy: {policy.stderr.strip()}")

        if not removal.ok:
            raise DirectoryError(
                ErrorCode.UNBIND_FAILED,
                f"Failed to unbind from Active Directory. Error: '{removal.returncode}'",
            )
        return StepOutcome.success("unbind", "Unbound from Active Directory.")

    # ---- Accounts ------------------------------------------------------------

    def list_local_users(self, min_uid: int = 500) -> List[str]:
        """Names of accounts with a UniqueID above ``min_uid``."""
        users = []
        for line in self._read([DSCL, ".", "list", "/Users", "UniqueID"]).splitlines():
            parts = line.split()
            if len(parts) < 2:
                continue
            try:
                uid = int(parts[-1])
            except ValueError:
                continue
            if uid > min_uid:
                users.append(parts[0])
        return users

    def _read_attribute(self, user: str, attribute: str) -> Optional[str]:
        output = self._read([DSCL, ".", "-read", f"/Users/{user}", attribute])
        if not output:
            return None
        value = output.split(":", 1)[-1].strip()
        return value or None

    def authentication_authority(self, user: str) -> Optional[List[str]]:
        """The user's AuthenticationAuthority entries, None if the record cannot be read."""
        result = self._run([DSCL, "-plist", ".", "-read", f"/Users/{user}", AUTHORITY_ATTRIBUTE])
        if not result.ok or not result.stdout.strip():
            return None
        try:
            record = plistlib.loads(result.stdout.encode("utf-8"))
        except (plistlib.InvalidFileException, ExpatError) as e:
            logger.warning(f"Unreadable {AUTHORITY_ATTRIBUTE} for {user}: {e}")
            return None
        for key, value in record.items():
            if key.endswith(AUTHORITY_ATTRIBUTE):
                return [str(v) for v in value]
        return []

    def read_account(self, user: str) -> LocalAccount:
        uid = self._read_attribute(user, "UniqueID")
        return LocalAccount(
            name=user,
            uid=int(uid) if uid and uid.isdigit() else None,
            home_directory=self._read_attribute(user, "NFSHomeDirectory"),
            authentication_authority=tuple(self.authentication_authority(user) or ()),
        )

    def account_type(self, user: str) -> AccountType:
        entries = self.authentication_authority(user)
        if entries is None:
            return AccountType.UNKNOWN
        account = LocalAccount(name=user, authentication_authority=tuple(entries))
        return AccountType.NETWORK_CACHED if account.is_network_cached else AccountType.LOCAL

    def migrate_password(self, user: str) -> List[str]:
        """
        Detach the password from the directory while keeping the local hash.

        Only the Kerberosv5 and LocalCachedUser entries are removed, in that
        order; the ShadowHash entry stays. There is no rollback for this.

        Returns:
            The removed entries.
        """
        entries = self.authentication_authority(user)
        if entries is None:
            raise DirectoryError(
                ErrorCode.PASSWORD_MIGRATION_FAILED,
                f"Cannot read {AUTHORITY_ATTRIBUTE} for '{user}'",
            )

        logger.warning(f"Migrating '{user}' password; {AUTHORITY_ATTRIBUTE} changes cannot be rolled back")
        removed = []
        for marker in PASSWORD_MIGRATION_ORDER:
            entry = next((e for e in entries if marker in e), None)
            if entry is None:
                continue
            result = self._run(
                [DSCL, "-plist", ".", "-delete", f"/Users/{user}", AUTHORITY_ATTRIBUTE, entry],
                mutates=True,
            )
            if result.ok:
                removed.append(entry)
            else:
                logger.warning(f"Failed to remove {marker} entry for '{user}': {result.stderr.strip()}")
        return removed

    def _strip_mobile_attributes(self, user: str) -> List[str]:
        """Delete the mobile account attributes; returns the ones that failed."""
        failures = []
        for attribute in MOBILE_ACCOUNT_ATTRIBUTES:
            result = self._run([DSCL, ".", "-delete", f"/Users/{user}", attribute], mutates=True)
            if not result.ok:
                logger.warning(f"Failed to remove account attribute '{attribute}'!")
                failures.append(attribute)
        return failures

    def reload_directory_services(self) -> None:
        self._run(["/usr/bin/killall", "opendirectoryd"], mutates=True)
        if not self.dry_run:
            self.sleep(self.settle_delay)

    def convert(self, user: str, make_admin: bool = False) -> StepOutcome:
        """
        Convert an Active Directory mobile account to a local account.

        Raises:
            DirectoryError: CONVERSION_FAILED when the account is still a mobile
                account after the conversion; the account must not be left like that
        """
        if self.account_type(user) is not AccountType.NETWORK_CACHED:
            return StepOutcome.skipped("convert", f"{user} is not a mobile account. Skipping conversion...")

        logger.info(f"Converting {user} to a local account...")
        failed_attributes = self._strip_mobile_attributes(user)
        self.migrate_password(user)
        self.reload_directory_services()

        if self.dry_run:
            logger.info(f"DRY RUN: skipping post-conversion check for {user}")
        elif self.account_type(user) is AccountType.NETWORK_CACHED:
            raise DirectoryError(
                ErrorCode.CONVERSION_FAILED,
                f"Error converting the {user} account! Terminating execution...",
            )

        home = self._read_attribute(user, "NFSHomeDirectory")
        if home:
            logger.info(f"Updating {home} permissions for the {user} account, this could take a while...")
            chown = self._run(["/usr/sbin/chown", "-R", user, home], mutates=True, timeout=3600)
            if not chown.ok:
                logger.warning(f"Failed to update {home} ownership: {chown.stderr.strip()}")

        groups = ["staff"] + (["admin"] if make_admin else [])
        for group in groups:
            result = self._run([DSEDITGROUP, "-o", "edit", "-a", user, "-t", "user", group], mutates=True)
            if not result.ok:
                logger.warning(f"Failed to add {user} to the {group} group: {result.stderr.strip()}")

        detail = f"{user} was successfully converted to a local account."
        if make_admin:
            detail += " Admin rights granted."
        if failed_attributes:
            detail += f" {len(failed_attributes)} attribute(s) could not be removed: {', '.join(failed_attributes)}"
        return StepOutcome.success("convert", detail)

    def status(self) -> Dict[str, Any]:
        return {"bound": self.is_bound()}
