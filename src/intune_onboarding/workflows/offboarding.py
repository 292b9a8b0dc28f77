"""
Offboarding workflow.

Moves a Mac from Active Directory + Jamf to Intune:
preconditions -> unbind -> account conversion -> Jamf removal ->
FileVault disable -> Company Portal hand-off.

Hard failures end the run with their exit code; soft failures are recorded
in the audit record and the run carries on.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Tuple

from intune_onboarding import __version__
from intune_onboarding.config import Config
from intune_onboarding.errors import (
    ConvergenceError,
    DirectoryError,
    EncryptionError,
    ErrorCode,
    ManagementAPIError,
    ManagementRemovalError,
    NotifierError,
    OffboardingError,
    PreconditionError,
    TokenError,
)
from intune_onboarding.logger import log_run_summary, log_step_action
from intune_onboarding.models.device import Device, StepOutcome
from intune_onboarding.services.directory import DirectoryIdentityAdapter
from intune_onboarding.services.filevault import EncryptionController
from intune_onboarding.services.jamf import ManagementAPIClient
from intune_onboarding.services.jamf_agent import ManagementAgent
from intune_onboarding.services.notifier import Notifier
from intune_onboarding.services.system import MacSystem
from intune_onboarding.utils.retry import poll_until
from intune_onboarding.utils.shell import CommandRunner

logger = logging.getLogger(__name__)


class OffboardingOrchestrator:
    """Sequences the offboarding steps and owns the run's audit record."""

    def __init__(
        self,
        config: Config,
        *,
        runner: CommandRunner,
        notifier: Notifier,
        system: MacSystem,
        directory: DirectoryIdentityAdapter,
        encryption: EncryptionController,
        agent: ManagementAgent,
        api_client: Optional[ManagementAPIClient] = None,
        sleep: Callable[[float], None] = time.sleep,
        dry_run: bool = False,
    ):
        self.config = config
        self.runner = runner
        self.notifier = notifier
        self.system = system
        self.directory = directory
        self.encryption = encryption
        self.agent = agent
        self.api_client = api_client
        self.sleep = sleep
        self.dry_run = dry_run
        self._outcomes: List[StepOutcome] = []
        self._current_step = "preconditions"
        self.device: Optional[Device] = None

    @classmethod
    def from_config(cls, config: Config, dry_run: bool = False) -> "OffboardingOrchestrator":
        runner = CommandRunner(dry_run=dry_run)
        notifier = Notifier(config.display_name, config.company_name)
        system = MacSystem(runner)
        return cls(
            config,
            runner=runner,
            notifier=notifier,
            system=system,
            directory=DirectoryIdentityAdapter(runner, settle_delay=config.settle_delay),
            encryption=EncryptionController(notifier, system, runner,
                                            max_attempts=config.filevault_max_attempts),
            agent=ManagementAgent(runner),
            api_client=ManagementAPIClient.from_config(config, dry_run=dry_run),
            dry_run=dry_run,
        )

    @property
    def outcomes(self) -> Tuple[StepOutcome, ...]:
        return tuple(self._outcomes)

    def _record(self, outcome: StepOutcome) -> StepOutcome:
        self._outcomes.append(outcome)
        log_step_action(outcome.step, outcome.label(), outcome.detail,
                        int(outcome.code) if outcome.code is not None else None)
        if outcome.detail:
            self.notifier.notify(outcome.detail, suppress_notification=True)
        return outcome

    def _alert(self, alert_text: str, message: str, button: str) -> None:
        try:
            self.notifier.alert(alert_text, message, severity="critical", buttons=(button,))
        except NotifierError as e:
            logger.warning(f"Alert not acknowledged: {e} ({int(e.code)})")

    # ========== Run ==========

    def run(self) -> int:
        """Execute the workflow and return the process exit code."""
        started = time.monotonic()
        exit_code = ErrorCode.SUCCESS
        self.notifier.notify(f"Running {self.config.display_name} version {__version__}",
                             suppress_notification=True)
        try:
            self._check_preconditions()
            self._unbind()
            self._convert_accounts()
            self._offboard_management()
            self._disable_encryption()
            self._hand_off()
        except OffboardingError as e:
            exit_code = e.code
            self.notifier.notify(f"{e} Terminating execution!", level=logging.ERROR)
            self._record(StepOutcome.failed(self._current_step, e.code, str(e),
                                            attempts=getattr(e, "attempts", 1) or 1))
        finally:
            self._release_token()
            log_run_summary(self._outcomes, int(exit_code), time.monotonic() - started)
        return int(exit_code)

    # ========== Preconditions ==========

    def _check_preconditions(self) -> None:
        self._current_step = "elevation"
        if not self.system.is_elevated():
            if not self.dry_run:
                raise PreconditionError(ErrorCode.NOT_ELEVATED, "This tool must be run as root.")
            logger.warning("DRY RUN: not running as root, continuing anyway")

        self._current_step = "os-version"
        supported = self.config.supported_os_major_version
        version = self.system.os_version()
        major = self.system.os_major_version()
        name = self.system.os_name(major)
        if major < supported:
            self.notifier.notify(f"Unsupported OS '{name} ({version})', please upgrade.")
            self._alert(f"OS needs to be at least '{self.system.os_name(supported)} ({supported})'",
                        "Please upgrade and try again!", "Upgrade macOS")
            if self.config.install_updates_when_unsupported:
                self.system.install_updates()
            raise PreconditionError(ErrorCode.OS_NOT_SUPPORTED, f"Unsupported OS '{name} ({version})'.")
        self.notifier.notify(f"Supported OS version '{name} ({version})', continuing...")

        self._current_step = "company-portal"
        portal = self.config.company_portal_name
        if not self.system.app_installed(portal):
            self.notifier.notify(f"{portal} application not installed, contact support!")
            self._alert(f"{portal} app is not installed", "In order to continue, please contact support!",
                        "Contact Support")
            self.system.open_url(self.config.support_link)
            raise PreconditionError(ErrorCode.COMPANY_PORTAL_MISSING, f"{portal} is not installed.")
        self.notifier.notify(f"{portal} application is installed, continuing...")

    # ========== Directory ==========

    def _unbind(self) -> None:
        self._current_step = "unbind"
        if not self.config.unbind_from_directory:
            return
        try:
            self._record(self.directory.unbind())
        except DirectoryError as e:
            self._record(StepOutcome.failed("unbind", e.code, str(e)))

    def _convert_accounts(self) -> None:
        self._current_step = "convert"
        if not self.config.convert_accounts:
            return
        for user in self.directory.list_local_users(self.config.min_user_uid):
            try:
                self._record(self.directory.convert(user, make_admin=self.config.set_admin_rights))
            except DirectoryError as e:
                if e.fatal:
                    raise
                self._record(StepOutcome.failed("convert", e.code, str(e)))

    # ========== Jamf ==========

    def _offboard_management(self) -> None:
        self._current_step = "management-offboard"
        if not self.config.offboard_management:
            return

        enrolled = self.agent.is_enrolled()
        has_agent = self.agent.has_agent()
        if not enrolled and not has_agent:
            self._record(StepOutcome.skipped("management-offboard", "Not JAMF managed. Skipping JAMF offboarding..."))
            return

        self.notifier.notify("JAMF offboarding has started...")
        self.notifier.notify("Stopping Self Service process...")
        self.agent.stop_self_service()

        if enrolled:
            if not self._remove_through_api():
                self._remove_profile_locally()
            self._await_profile_removal()
        else:
            self.notifier.notify("Not JAMF managed. Skipping JAMF management removal...")

        if has_agent:
            self._current_step = "remove-agent-framework"
            self.notifier.notify("Removing JAMF Framework...")
            try:
                self.agent.remove_agent_framework()
                self._record(StepOutcome.success("remove-agent-framework"))
            except ManagementRemovalError as e:
                self._record(StepOutcome.failed("remove-agent-framework", e.code, str(e)))

        self._current_step = "remove-configuration-profiles"
        self.notifier.notify("Removing all Configuration Profiles...")
        try:
            removed = self.agent.remove_all_configuration_profiles(self.system.console_user())
            self._record(StepOutcome.success("remove-configuration-profiles",
                                             f"{removed} listed profile(s) removed"))
        except ManagementRemovalError as e:
            self._record(StepOutcome.failed("remove-configuration-profiles", e.code, str(e)))

        self._record(StepOutcome.success("management-offboard", "JAMF Offboarding is complete!"))

    def _remove_through_api(self) -> bool:
        """Send UnmanageDevice; False when the API is unavailable or failed."""
        if self.api_client is None:
            return False
        self._current_step = "dispatch-command"
        self.notifier.notify("Removing JAMF management through API...")
        serial = self.system.serial_number()
        try:
            device_id = self.api_client.unmanage(serial)
        except (TokenError, ManagementAPIError) as e:
            self._record(StepOutcome.failed("dispatch-command", e.code, str(e)))
            return False
        self.device = Device(
            serial_number=serial,
            management_id=device_id,
            local_user=self.directory.read_account(self.system.console_user()),
        )
        self._record(StepOutcome.success(
            "dispatch-command",
            f"UnmanageDevice sent to device [{device_id}] (serial {self.device.serial_number}, "
            f"user {self.device.local_user.name})",
        ))
        return True

    def _remove_profile_locally(self) -> None:
        self._current_step = "remove-mdm-profile"
        self.notifier.notify("Removing JAMF management profile...")
        try:
            self.agent.remove_management_profile()
            self._record(StepOutcome.success("remove-mdm-profile"))
        except ManagementRemovalError as e:
            self._record(StepOutcome.failed("remove-mdm-profile", e.code, str(e)))

    def _await_profile_removal(self) -> None:
        self._current_step = "management-convergence"
        if self.dry_run:
            self._record(StepOutcome.skipped("management-convergence",
                                             "DRY RUN: not waiting for the JAMF management profile removal"))
            return

        def retry_local_removal():
            try:
                self.agent.remove_management_profile()
            except ManagementRemovalError as e:
                logger.warning(str(e))

        attempts = self.config.convergence_retries + 1
        try:
            used = poll_until(
                lambda: not self.agent.is_enrolled(),
                retry_local_removal,
                attempts=attempts,
                failure_code=ErrorCode.MANAGEMENT_REMOVAL_FAILED,
                delay=self.config.convergence_interval,
                sleep=self.sleep,
                description="JAMF management profile removal",
            )
        except ConvergenceError as e:
            raise ConvergenceError(
                e.code, "JAMF management profile could not be removed!", attempts=e.attempts
            )
        self._record(StepOutcome.success("management-convergence", "JAMF management profile removed.",
                                         attempts=used))

    # ========== FileVault / hand-off ==========

    def _disable_encryption(self) -> None:
        self._current_step = "encryption-disable"
        try:
            self._record(self.encryption.perform("disable"))
        except (NotifierError, EncryptionError) as e:
            self._record(StepOutcome.failed("encryption-disable", e.code, str(e)))

    def _hand_off(self) -> None:
        self._current_step = "hand-off"
        self.notifier.notify(f"Starting {self.config.company_portal_name}...")
        self.system.open_app(self.config.company_portal_path)
        self.notifier.notify("Displaying documentation...")
        self.system.open_url(self.config.documentation_link)

    def _release_token(self) -> None:
        if self.api_client is None:
            return
        try:
            if self.api_client.tokens.has_token:
                self.api_client.tokens.invalidate()
                self._record(StepOutcome.success("token-invalidate"))
        except TokenError as e:
            self._record(StepOutcome.failed("token-invalidate", e.code, str(e)))
        finally:
            self.api_client.close()
