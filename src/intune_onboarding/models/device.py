# from __future__ import annotations

import re
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from intune_onboarding.errors import ErrorCode


# ---- Enumerations ------------------------------------------------------------

class AccountType(str, Enum):
	LOCAL = "Local"
	NETWORK_CACHED = "NetworkCached"
	UNKNOWN = "Unknown"


class EncryptionState(str, Enum):
	ON = "On"
	OFF = "Off"
	TRANSITION_PENDING = "TransitionPending"
	UNKNOWN = "Unknown"


class StepStatus(str, Enum):
	SUCCESS = "Success"
	SKIPPED = "Skipped"
	RETRIED = "Retried"
	FAILED = "Failed"


# ---- Device and accounts -----------------------------------------------------

# Authentication authority markers of an Active Directory mobile account
NETWORK_AUTHORITY_MARKERS = (";LocalCachedUser;", "/Active Directory/")


class LocalAccount(BaseModel):
	model_config = ConfigDict(frozen=True)

	name: str
	uid: Optional[int] = None
	home_directory: Optional[str] = None
	authentication_authority: Tuple[str, ...] = ()

	@property
	def is_network_cached(self) -> bool:
		return any(
			marker in entry
			for entry in self.authentication_authority
			for marker in NETWORK_AUTHORITY_MARKERS
		)


class Device(BaseModel):
	model_config = ConfigDict(frozen=True)

	serial_number: str
	management_id: Optional[int] = None
	local_user: Optional[LocalAccount] = None

	@field_validator("serial_number")
	@classmethod
	def _normalize_serial(cls, value: str) -> str:
		return re.sub(r"[^A-Za-z0-9]", "", value).upper()


# ---- Management API token ----------------------------------------------------

class BearerToken(BaseModel):
	model_config = ConfigDict(frozen=True)

	value: str
	expires_at_epoch: int

	def is_valid(self, now: float) -> bool:
		return bool(self.value) and self.expires_at_epoch > now

	def __repr__(self) -> str:
		# never leak the token value into logs
		return f"BearerToken(expires_at_epoch={self.expires_at_epoch})"

	__str__ = __repr__


# ---- Workflow audit record ---------------------------------------------------

class StepOutcome(BaseModel):
	"""One entry of the run's audit record."""
	model_config = ConfigDict(frozen=True)

	step: str
	status: StepStatus
	attempts: int = 1
	code: Optional[ErrorCode] = None
	detail: str = ""

	@classmethod
	def success(cls, step: str, detail: str = "", attempts: int = 1) -> "StepOutcome":
		status = StepStatus.RETRIED if attempts > 1 else StepStatus.SUCCESS
		return cls(step=step, status=status, attempts=attempts, detail=detail)

	@classmethod
	def skipped(cls, step: str, detail: str = "", code: Optional[ErrorCode] = None) -> "StepOutcome":
		return cls(step=step, status=StepStatus.SKIPPED, code=code, detail=detail)

	@classmethod
	def failed(cls, step: str, code: ErrorCode, detail: str = "", attempts: int = 1) -> "StepOutcome":
		return cls(step=step, status=StepStatus.FAILED, code=code, attempts=attempts, detail=detail)

	@property
	def succeeded(self) -> bool:
		return self.status in (StepStatus.SUCCESS, StepStatus.RETRIED)

	def label(self) -> str:
		if self.status is StepStatus.RETRIED:
			return f"Retried({self.attempts})"
		if self.status is StepStatus.FAILED and self.code is not None:
			return f"Failed({int(self.code)})"
		return self.status.value

	def __str__(self) -> str:
		return f"{self.step}={self.label()}"


__all__ = [
	"AccountType", "EncryptionState", "StepStatus", "LocalAccount", "Device",
	"BearerToken", "StepOutcome", "NETWORK_AUTHORITY_MARKERS",
]
