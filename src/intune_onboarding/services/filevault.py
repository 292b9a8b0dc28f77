"""
FileVault state and actions for the console user.

fdesetup is driven non-interactively with ``-inputplist``: the user name and
the password collected through a password dialog are supplied on stdin.
"""

from __future__ import annotations

import logging
import plistlib
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from intune_onboarding.errors import (
    ConvergenceError,
    EncryptionError,
    ErrorCode,
    UserCancelled,
)
from intune_onboarding.models.device import EncryptionState, StepOutcome
from intune_onboarding.services.base import BaseService
from intune_onboarding.services.notifier import Notifier, PromptType
from intune_onboarding.services.system import MacSystem
from intune_onboarding.utils.retry import converge
from intune_onboarding.utils.shell import CommandRunner

logger = logging.getLogger(__name__)

FDESETUP = "/usr/bin/fdesetup"
FILEVAULT_ICON = "/System/Library/CoreServices/CoreTypes.bundle/Contents/Resources/FileVaultIcon.icns"
ERROR_MARKERS = ("Error", "FileVault was not disabled")


@dataclass(frozen=True)
class FileVaultAction:
    name: str
    arguments: Tuple[str, ...]
    title: str
    subtitle: str
    button: str
    target: Optional[EncryptionState]


ACTIONS: Dict[str, FileVaultAction] = {
    "enable": FileVaultAction(
        "enable", ("enable",), "Enable FileVault", "FileVault needs to be enabled!",
        "Enable FileVault", EncryptionState.ON,
    ),
    "disable": FileVaultAction(
        "disable", ("disable",), "Disable FileVault", "FileVault needs to be disabled!",
        "Disable FileVault", EncryptionState.OFF,
    ),
    "reissue_key": FileVaultAction(
        "reissue_key", ("changerecovery", "-personal"), "Reissue FileVault Key",
        "FileVault needs to reissue the key!", "Reissue Key", None,
    ),
}


class EncryptionController(BaseService):
    """Queries and changes FileVault state on behalf of the console user."""

    def __init__(self, notifier: Notifier, system: MacSystem,
                 runner: Optional[CommandRunner] = None, max_attempts: int = 3,
                 sleep: Callable[[float], None] = time.sleep):
        super().__init__(runner)
        self.notifier = notifier
        self.system = system
        self.max_attempts = max_attempts
        self.sleep = sleep

    def state(self) -> EncryptionState:
        output = self._read([FDESETUP, "status"])
        if "FileVault is On" not in output and "FileVault is Off" not in output:
            return EncryptionState.UNKNOWN
        # encryption/decryption running, or a deferred enable waiting for a restart
        if "in progress" in output or "after the next restart" in output:
            return EncryptionState.TRANSITION_PENDING
        if "FileVault is On." in output:
            return EncryptionState.ON
        return EncryptionState.OFF

    def authorized_user(self) -> str:
        """
        The console user, provided FileVault lists them as an authorized user.

        Raises:
            EncryptionError: FILEVAULT_UNAUTHORIZED_USER otherwise
        """
        user = self.system.console_user()
        uuid = self._read(["/usr/bin/dscl", ".", "-read", f"/Users/{user}", "GeneratedUID"])
        uuid = uuid.split(":", 1)[-1].strip()

        if user and uuid:
            for line in self._read([FDESETUP, "list"]).splitlines():
                name, _, listed_uuid = line.partition(",")
                if listed_uuid.strip() == uuid and name.strip() == user:
                    return user

        raise EncryptionError(
            ErrorCode.FILEVAULT_UNAUTHORIZED_USER,
            f"{user or 'The console user'} is not a FileVault authorized user",
        )

    def _skip_reason(self, action: FileVaultAction) -> Optional[StepOutcome]:
        step = _step_name(action)
        state = self.state()
        if action.target is EncryptionState.ON:
            if state is EncryptionState.ON:
                return StepOutcome.skipped(
                    step, f"FileVault is already enabled. Skipping '{action.title}'...",
                    code=ErrorCode.FILEVAULT_ALREADY_ENABLED,
                )
            return None
        # every other action needs an encrypted disk
        if state not in (EncryptionState.ON, EncryptionState.TRANSITION_PENDING):
            return StepOutcome.skipped(
                step, f"FileVault is not enabled ({state.value}). Skipping '{action.title}'...",
                code=ErrorCode.FILEVAULT_NOT_ENABLED,
            )
        return None

    def perform(self, action: str, max_attempts: Optional[int] = None) -> StepOutcome:
        """
        Run a FileVault action, prompting the console user for their password.

        Failed attempts are retried up to ``max_attempts`` times; exhausting
        them returns a Failed outcome instead of raising so the workflow can
        carry on without the FileVault change.

        Raises:
            EncryptionError: FILEVAULT_INVALID_ACTION or FILEVAULT_UNAUTHORIZED_USER
            UserCancelled: FILEVAULT_USER_CANCELLED when the password prompt is cancelled
        """
        action_def = ACTIONS.get(action)
        if action_def is None:
            raise EncryptionError(ErrorCode.FILEVAULT_INVALID_ACTION, f"Invalid FileVault action '{action}'")

        skipped = self._skip_reason(action_def)
        if skipped is not None:
            return skipped

        user = self.authorized_user()
        attempts = max_attempts or self.max_attempts
        if self.dry_run:
            return StepOutcome.skipped(_step_name(action_def), f"DRY RUN: would perform '{action_def.title}' for {user}")

        def attempt(n: int) -> bool:
            try:
                password = self.notifier.dialog(
                    f"Enter {user}'s password:",
                    title=action_def.title,
                    subtitle=action_def.subtitle,
                    buttons=("Cancel", action_def.button),
                    default_button=2,
                    cancel_button="Cancel",
                    icon=FILEVAULT_ICON,
                    prompt=PromptType.PASSWORD,
                )
            except UserCancelled:
                raise UserCancelled(
                    ErrorCode.FILEVAULT_USER_CANCELLED, f"User cancelled '{action_def.title}' action!"
                )

            self.notifier.notify(f"Attempting FileVault action '{action_def.title}'...", delay=1)
            answers = plistlib.dumps({"Username": user, "Password": password}).decode("utf-8")
            result = self._run([FDESETUP, *action_def.arguments, "-inputplist"], input=answers, mutates=True)

            output = result.output
            if not result.ok or any(marker in output for marker in ERROR_MARKERS):
                self.notifier.notify(
                    f"Error performing FileVault action '{action_def.title}' Attempt ({n}/{attempts}). {output.strip()}"
                )
                return False

            if action_def.target is not None:
                after = self.state()
                if after not in (action_def.target, EncryptionState.TRANSITION_PENDING):
                    self.notifier.notify(
                        f"FileVault action '{action_def.title}' reported success but FileVault is still "
                        f"'{after.value}' Attempt ({n}/{attempts})."
                    )
                    return False
            return True

        try:
            used = converge(
                attempt,
                attempts=attempts,
                failure_code=ErrorCode.FILEVAULT_ACTION_FAILED,
                sleep=self.sleep,
                description=f"FileVault action '{action_def.title}'",
            )
        except ConvergenceError as e:
            return StepOutcome.failed(
                _step_name(action_def),
                e.code,
                f"A maximum of {attempts} retries has been reached. "
                f"Continuing without performing FileVault action '{action_def.name}'...",
                attempts=e.attempts,
            )
        return StepOutcome.success(
            _step_name(action_def), f"Successfully performed FileVault action '{action_def.title}'!", attempts=used
        )

    def status(self) -> Dict[str, Any]:
        return {"filevault": self.state().value}


def _step_name(action: FileVaultAction) -> str:
    return "encryption-" + action.name.replace("_", "-")
