"""
Jamf Pro API client used to release the device from Jamf management.

This module handles:
1. Bearer token acquisition, expiry tracking and invalidation
2. Computer ID lookup by serial number (Classic API, XML)
3. MDM command dispatch (e.g. UnmanageDevice)
"""

from __future__ import annotations

import logging
import time
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from intune_onboarding.config import Config
from intune_onboarding.errors import ErrorCode, ManagementAPIError, TokenError
from intune_onboarding.models.device import BearerToken, Device

log = logging.getLogger(__name__)

UNMANAGE_COMMAND = "UnmanageDevice"


def parse_expiry(value: str) -> int:
    """Convert the API's ISO-8601 ``expires`` value to epoch seconds (UTC)."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fractional seconds vary in precision, drop them
    if "." in text:
        head, _, tail = text.partition(".")
        offset = ""
        for sign in ("+", "-"):
            if sign in tail:
                offset = sign + tail.split(sign, 1)[1]
                break
        text = head + offset
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


class ManagementTokenCache:
    """
    Owns the API bearer token.

    Callers never read the token directly; ``ensure_valid`` hands out the
    cached token only while it has not expired and fetches a new one otherwise.
    """

    TOKEN_ENDPOINT = "/api/v1/auth/token"
    INVALIDATE_ENDPOINT = "/api/v1/auth/invalidate-token"

    def __init__(self, client: httpx.Client, username: str, password: str,
                 clock: Callable[[], float] = time.time):
        self.client = client
        self.username = username
        self.password = password
        self.clock = clock
        self._token: Optional[BearerToken] = None

    @property
    def has_token(self) -> bool:
        return self._token is not None

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
    )
    def _post_token_request(self) -> httpx.Response:
        return self.client.post(self.TOKEN_ENDPOINT, auth=(self.username, self.password))

    def _acquire(self) -> BearerToken:
        log.info("No valid API token available, getting new token...")
        try:
            resp = self._post_token_request()
        except httpx.HTTPError as e:
            raise TokenError(ErrorCode.TOKEN_ACQUISITION_FAILED, f"Token request failed: {e}")

        if resp.status_code >= 400:
            raise TokenError(
                ErrorCode.TOKEN_ACQUISITION_FAILED,
                f"POST {self.TOKEN_ENDPOINT} -> {resp.status_code}: {resp.text[:200]}",
            )
        try:
            payload = resp.json()
        except ValueError:
            payload = {}

        value = payload.get("token") if isinstance(payload, dict) else None
        expires = payload.get("expires") if isinstance(payload, dict) else None
        if not value or not expires:
            raise TokenError(ErrorCode.TOKEN_ACQUISITION_FAILED, "Failed to get a valid API token!")
        try:
            expires_at = parse_expiry(str(expires))
        except ValueError:
            raise TokenError(ErrorCode.TOKEN_ACQUISITION_FAILED, f"Unparseable token expiry '{expires}'")

        token = BearerToken(value=value, expires_at_epoch=expires_at)
        if not token.is_valid(self.clock()):
            raise TokenError(ErrorCode.TOKEN_ACQUISITION_FAILED, "API returned an already expired token")
        log.info("API token successfully retrieved!")
        return token

    def ensure_valid(self) -> BearerToken:
        """
        Return a token that has not expired, fetching a new one when needed.

        Raises:
            TokenError: TOKEN_ACQUISITION_FAILED
        """
        now = self.clock()
        if self._token is not None and self._token.is_valid(now):
            log.debug(f"API token valid until the following epoch time: {self._token.expires_at_epoch}")
            return self._token

        self._token = None
        self._token = self._acquire()
        return self._token

    def invalidate(self) -> bool:
        """
        Invalidate the held token on the server.

        Returns:
            False when there was no token to invalidate.

        Raises:
            TokenError: TOKEN_INVALIDATION_FAILED for any response other than 204/401
        """
        if self._token is None:
            return False

        try:
            resp = self.client.post(
                self.INVALIDATE_ENDPOINT,
                headers={"Authorization": f"Bearer {self._token.value}"},
            )
        except httpx.HTTPError as e:
            raise TokenError(ErrorCode.TOKEN_INVALIDATION_FAILED, f"Token invalidation failed: {e}")

        if resp.status_code == 204:
            log.info("Token successfully invalidated!")
        elif resp.status_code == 401:
            log.info("Token already invalid!")
        else:
            raise TokenError(
                ErrorCode.TOKEN_INVALIDATION_FAILED,
                f"An unknown error occurred invalidating the token! ({resp.status_code})",
            )
        self._token = None
        return True


class ManagementAPIClient:
    """
    Minimal Jamf Pro client used by the offboarding workflow.

    Requires:
      - jamf.api_url (or JAMF_API_URL)
      - JAMF_API_USER / JAMF_API_PASSWORD
    """

    def __init__(self, base_url: str, username: str, password: str, timeout: float = 30.0,
                 dry_run: bool = False, clock: Callable[[], float] = time.time,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.dry_run = dry_run
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)
        self.tokens = ManagementTokenCache(self.client, username, password, clock=clock)

    @classmethod
    def from_config(cls, config: Config, dry_run: bool = False) -> Optional["ManagementAPIClient"]:
        """Build a client, or return None when API removal is not configured."""
        if not config.api_enabled:
            log.info("Jamf API removal not configured")
            return None
        username, password = config.get_jamf_credentials()
        log.debug(f"Jamf API client initialized with base URL: {config.api_url}")
        return cls(config.api_url, username, password, timeout=config.api_timeout, dry_run=dry_run)

    def close(self) -> None:
        self.client.close()

    def _headers(self, accept: str = "application/xml") -> Dict[str, str]:
        token = self.tokens.ensure_valid()
        return {"Authorization": f"Bearer {token.value}", "Accept": accept}

    def resolve_device_id(self, serial_number: str) -> int:
        """
        Look up the Jamf computer ID for a serial number.

        Raises:
            ManagementAPIError: DEVICE_NOT_FOUND
            TokenError: TOKEN_ACQUISITION_FAILED
        """
        serial = Device(serial_number=serial_number or "").serial_number
        if not serial:
            raise ManagementAPIError(ErrorCode.DEVICE_NOT_FOUND, "No serial number to look up")

        path = f"/JSSResource/computers/serialnumber/{serial}/subset/general"
        headers = self._headers()
        try:
            resp = self.client.get(path, headers=headers)
        except httpx.HTTPError as e:
            raise ManagementAPIError(ErrorCode.DEVICE_NOT_FOUND, f"Device lookup failed: {e}")

        if resp.status_code != 200:
            raise ManagementAPIError(
                ErrorCode.DEVICE_NOT_FOUND,
                f"GET {path} -> {resp.status_code}: {resp.text[:200]}",
            )

        try:
            raw_id = ET.fromstring(resp.text).findtext("./general/id")
        except ET.ParseError as e:
            raise ManagementAPIError(ErrorCode.DEVICE_NOT_FOUND, f"Unreadable device record: {e}")

        try:
            device_id = int((raw_id or "").strip())
        except ValueError:
            device_id = 0
        if device_id <= 0:
            raise ManagementAPIError(
                ErrorCode.DEVICE_NOT_FOUND, f"Invalid device id '{raw_id}' [{serial}]"
            )
        log.info(f"Resolved device {serial} to Jamf ID {device_id}")
        return device_id

    def dispatch_command(self, device_id: int, command: str) -> None:
        """
        Send an MDM command to a computer. 201 Created is the only success.

        Raises:
            ManagementAPIError: COMMAND_DISPATCH_FAILED
            TokenError: TOKEN_ACQUISITION_FAILED
        """
        path = f"/JSSResource/computercommands/command/{command}/id/{device_id}"
        if self.dry_run:
            log.info(f"DRY RUN: POST {self.base_url}{path}")
            return

        headers = self._headers()
        headers["Content-Type"] = "application/xml"
        try:
            resp = self.client.post(path, headers=headers)
        except httpx.HTTPError as e:
            raise ManagementAPIError(ErrorCode.COMMAND_DISPATCH_FAILED, f"Command '{command}' failed: {e}")

        if resp.status_code != 201:
            raise ManagementAPIError(
                ErrorCode.COMMAND_DISPATCH_FAILED,
                f"Failed to perform command '{command}' on device [{device_id}]! ({resp.status_code})",
            )
        log.info(f"Successfully performed command '{command}' on device [{device_id}]!")

    def unmanage(self, serial_number: str) -> int:
        """Resolve the device and send UnmanageDevice; returns the Jamf ID."""
        device_id = self.resolve_device_id(serial_number)
        self.dispatch_command(device_id, UNMANAGE_COMMAND)
        return device_id
