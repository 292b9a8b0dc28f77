"""System keychain access for the management API credentials."""

import logging
from typing import Optional

import keyring
from keyring.errors import KeyringError

logger = logging.getLogger(__name__)


class KeychainCredentialManager:
    """Reads credentials stored in the system keychain through keyring."""

    def __init__(self, service_name: str = "Intune Onboarding Tool"):
        """Initialize credential manager."""
        self.service_name = service_name

    def get_credential(self, target_name: str, username: Optional[str] = None) -> Optional[str]:
        """
        Get a credential from the keychain.

        Args:
            target_name: The key of the stored credential (e.g. "JAMF_API_PASSWORD")
            username: Account name of the keychain item; defaults to target_name

        Returns:
            The credential value if found, None otherwise
        """
        try:
            password = keyring.get_password(self.service_name, username or target_name)
        except KeyringError as e:
            logger.error(f"Error accessing keychain item {target_name}: {e}")
            return None

        if password:
            logger.debug(f"Found keychain credential for {target_name}")
            return password
        logger.debug(f"Keychain credential not found for {target_name}")
        return None
