# src/intune_onboarding/config.py

import os
import subprocess
import logging
from typing import Any, Dict, Optional, Tuple

from .utils.credential_manager import KeychainCredentialManager
from .utils.yaml_loader import load_yaml

logger = logging.getLogger(__name__)


class Config:
    """Configuration manager for the Intune onboarding tool."""

    SECRET_KEYS = ("JAMF_API_USER", "JAMF_API_PASSWORD")

    def __init__(self, settings: Optional[Dict[str, Any]] = None,
                 credential_manager: Optional[KeychainCredentialManager] = None):
        """Initialize configuration from settings.yaml (or an explicit settings dict)."""
        self.settings = settings if settings is not None else load_yaml('settings.yaml')
        self.credentials = credential_manager or KeychainCredentialManager(self.display_name)
        self._secrets_cache: Dict[str, str] = {}

    def _section(self, name: str) -> Dict[str, Any]:
        return self.settings.get(name) or {}

    # ========== Company / presentation ==========

    @property
    def company_name(self) -> str:
        return self._section('company').get('name', 'MEM.Zone IT')

    @property
    def display_name(self) -> str:
        return self._section('company').get('display_name', 'Intune Onboarding Tool')

    @property
    def support_link(self) -> str:
        return self._section('company').get('support_link', '')

    @property
    def documentation_link(self) -> str:
        return self._section('company').get('documentation_link', '')

    @property
    def company_portal_name(self) -> str:
        return self._section('intune').get('company_portal_name', 'Company Portal')

    @property
    def company_portal_path(self) -> str:
        return self._section('intune').get('company_portal_path', '/Applications/Company Portal.app/')

    # ========== Feature toggles ==========

    @property
    def convert_accounts(self) -> bool:
        return bool(self._section('features').get('convert_accounts', True))

    @property
    def unbind_from_directory(self) -> bool:
        return bool(self._section('features').get('unbind_from_directory', True))

    @property
    def set_admin_rights(self) -> bool:
        return bool(self._section('features').get('set_admin_rights', True))

    @property
    def offboard_management(self) -> bool:
        return bool(self._section('features').get('offboard_management', True))

    # ========== Workflow tuning ==========

    @property
    def supported_os_major_version(self) -> int:
        return int(self._section('os').get('supported_major_version', 12))

    @property
    def install_updates_when_unsupported(self) -> bool:
        return bool(self._section('os').get('install_updates_when_unsupported', True))

    @property
    def min_user_uid(self) -> int:
        return int(self._section('accounts').get('min_uid', 500))

    @property
    def settle_delay(self) -> float:
        return float(self._section('accounts').get('settle_delay', 20))

    @property
    def filevault_max_attempts(self) -> int:
        return int(self._section('filevault').get('max_attempts', 3))

    @property
    def convergence_interval(self) -> float:
        return float(self._section('management').get('convergence_interval', 15))

    @property
    def convergence_retries(self) -> int:
        return int(self._section('management').get('convergence_retries', 4))

    # ========== Management API ==========

    @property
    def api_url(self) -> Optional[str]:
        url = os.getenv('JAMF_API_URL') or self._section('jamf').get('api_url')
        return url.rstrip('/') if url else None

    @property
    def api_timeout(self) -> float:
        return float(self._section('jamf').get('timeout', 30))

    def get_jamf_credentials(self) -> Tuple[Optional[str], Optional[str]]:
        """Get the Jamf API user and password."""
        return self.get_secret("JAMF_API_USER"), self.get_secret("JAMF_API_PASSWORD")

    @property
    def api_enabled(self) -> bool:
        """API-based MDM removal needs a URL and both credentials."""
        if not self.api_url:
            return False
        user, password = self.get_jamf_credentials()
        return bool(user and password)

    # ========== Logging ==========

    @property
    def log_dir(self) -> str:
        default = f"/Library/Logs/{self.company_name}/{self.display_name}"
        return self._section('logging').get('dir') or default

    @property
    def log_level(self) -> str:
        return self._section('logging').get('level', 'INFO')

    # ========== Secrets ==========

    def _get_from_onepassword(self, op_path: str) -> Optional[str]:
        """Retrieve a secret with the 1Password CLI."""
        try:
            result = subprocess.run(
                ['op', 'read', op_path],
                capture_output=True,
                text=True,
                timeout=10
            )
        except subprocess.TimeoutExpired:
            logger.error("1Password CLI timed out")
            return None
        except FileNotFoundError:
            logger.error("1Password CLI (op) not found")
            return None

        if result.returncode == 0:
            return result.stdout.strip()
        logger.error(f"1Password error: {result.stderr.strip()}")
        return None

    def get_secret(self, key: str, use_cache: bool = True) -> Optional[str]:
        """
        Get a secret value by key.
        Checks cache, environment variables, the keychain, then 1Password.
        """
        if use_cache and key in self._secrets_cache:
            return self._secrets_cache[key]

        value = os.getenv(key) or self.credentials.get_credential(key)

        if not value:
            op_path = self._section('onepassword').get('paths', {}).get(key.lower())
            if op_path:
                value = self._get_from_onepassword(op_path)

        if value and use_cache:
            self._secrets_cache[key] = value
        return value or None

    # ========== Configuration Validation ==========

    def get_configuration_summary(self) -> Dict[str, Any]:
        """Get a summary of the configuration status."""
        user, password = self.get_jamf_credentials()
        return {
            'company_name': self.company_name,
            'display_name': self.display_name,
            'features': {
                'unbind_from_directory': self.unbind_from_directory,
                'convert_accounts': self.convert_accounts,
                'set_admin_rights': self.set_admin_rights,
                'offboard_management': self.offboard_management,
            },
            'supported_os_major_version': self.supported_os_major_version,
            'api_url_configured': bool(self.api_url),
            'api_credentials_configured': bool(user and password),
            'api_removal_enabled': bool(self.api_url and user and password),
            'log_dir': self.log_dir,
        }

    def validate_configuration(self, verbose: bool = False) -> bool:
        """
        Validate that the configuration can drive a run.

        Missing API credentials are not an error (removal falls back to the
        local jamf binary) but are reported.

        Args:
            verbose: If True, log detailed status

        Returns:
            True if the configuration is usable
        """
        summary = self.get_configuration_summary()
        problems = []

        if self.supported_os_major_version < 1:
            problems.append("os.supported_major_version must be a positive major version")
        if not self.company_portal_path:
            problems.append("intune.company_portal_path is empty")
        if self.filevault_max_attempts < 1:
            problems.append("filevault.max_attempts must be at least 1")
        if self.convergence_retries < 0 or self.convergence_interval < 0:
            problems.append("management convergence settings must not be negative")

        if summary['api_url_configured'] and not summary['api_credentials_configured']:
            logger.warning("Jamf API URL is set but credentials are missing - falling back to local MDM removal")

        if verbose:
            logger.info("Configuration Status:")
            for feature, enabled in summary['features'].items():
                logger.info(f"  {feature}: {'✓' if enabled else '✗'}")
            logger.info(f"  Jamf API removal: {'✓' if summary['api_removal_enabled'] else '✗'}")
            logger.info(f"  Minimum OS major version: {summary['supported_os_major_version']}")

        for problem in problems:
            logger.error(f"Invalid configuration: {problem}")
        return not problems
