"""
Exit codes and exceptions for the onboarding tool.

Every failure the tool can report maps to an ``ErrorCode``. Codes are grouped in
ranges of ten per step so that a code alone identifies both the failing step and
the cause:

    11        Company Portal not installed
    100 - 109 elevation
    120 - 149 notifications, dialogs and alerts
    150 - 159 OS version check
    160 - 169 FileVault actions
    170 - 179 directory unbind
    180 - 189 password migration
    190 - 199 mobile account conversion
    200 - 209 management API token
    210 - 219 management API commands
    220 - 229 management removal
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Optional


class ErrorCode(IntEnum):
    SUCCESS = 0
    COMPANY_PORTAL_MISSING = 11
    NOT_ELEVATED = 100
    NOTIFICATION_FAILED = 120
    DIALOG_FAILED = 130
    DIALOG_CANCELLED = 131
    ALERT_FAILED = 140
    ALERT_CANCELLED = 141
    OS_NOT_SUPPORTED = 150
    FILEVAULT_INVALID_ACTION = 160
    FILEVAULT_UNAUTHORIZED_USER = 161
    FILEVAULT_ALREADY_ENABLED = 162
    FILEVAULT_NOT_ENABLED = 163
    FILEVAULT_USER_CANCELLED = 164
    FILEVAULT_ACTION_FAILED = 165
    UNBIND_FAILED = 170
    PASSWORD_MIGRATION_FAILED = 180
    CONVERSION_FAILED = 190
    TOKEN_ACQUISITION_FAILED = 200
    TOKEN_INVALIDATION_FAILED = 201
    COMMAND_DISPATCH_FAILED = 210
    DEVICE_NOT_FOUND = 211
    MANAGEMENT_REMOVAL_FAILED = 220
    MDM_PROFILE_REMOVAL_FAILED = 221
    FRAMEWORK_REMOVAL_FAILED = 222
    CONFIGURATION_PROFILE_REMOVAL_FAILED = 223


class ErrorCategory(str, Enum):
    PRECONDITION = "Precondition"
    PRESENTATION = "Presentation"
    TRANSIENT_OS = "Transient-OS"
    USER_DECLINED = "UserDeclined"
    UNAUTHORIZED = "Unauthorized"
    CONVERGENCE_TIMEOUT = "Convergence-Timeout"
    REMOTE_API = "Remote-API"
    UNRECOVERABLE_STATE = "Unrecoverable-State"


_CATEGORIES = {
    ErrorCode.COMPANY_PORTAL_MISSING: ErrorCategory.PRECONDITION,
    ErrorCode.NOT_ELEVATED: ErrorCategory.PRECONDITION,
    ErrorCode.OS_NOT_SUPPORTED: ErrorCategory.PRECONDITION,
    ErrorCode.FILEVAULT_INVALID_ACTION: ErrorCategory.PRECONDITION,
    ErrorCode.NOTIFICATION_FAILED: ErrorCategory.PRESENTATION,
    ErrorCode.DIALOG_FAILED: ErrorCategory.PRESENTATION,
    ErrorCode.ALERT_FAILED: ErrorCategory.PRESENTATION,
    ErrorCode.DIALOG_CANCELLED: ErrorCategory.USER_DECLINED,
    ErrorCode.ALERT_CANCELLED: ErrorCategory.USER_DECLINED,
    ErrorCode.FILEVAULT_USER_CANCELLED: ErrorCategory.USER_DECLINED,
    ErrorCode.FILEVAULT_UNAUTHORIZED_USER: ErrorCategory.UNAUTHORIZED,
    ErrorCode.FILEVAULT_ALREADY_ENABLED: ErrorCategory.TRANSIENT_OS,
    ErrorCode.FILEVAULT_NOT_ENABLED: ErrorCategory.TRANSIENT_OS,
    ErrorCode.FILEVAULT_ACTION_FAILED: ErrorCategory.TRANSIENT_OS,
    ErrorCode.UNBIND_FAILED: ErrorCategory.TRANSIENT_OS,
    ErrorCode.PASSWORD_MIGRATION_FAILED: ErrorCategory.UNRECOVERABLE_STATE,
    ErrorCode.CONVERSION_FAILED: ErrorCategory.UNRECOVERABLE_STATE,
    ErrorCode.TOKEN_ACQUISITION_FAILED: ErrorCategory.REMOTE_API,
    ErrorCode.TOKEN_INVALIDATION_FAILED: ErrorCategory.REMOTE_API,
    ErrorCode.COMMAND_DISPATCH_FAILED: ErrorCategory.REMOTE_API,
    ErrorCode.DEVICE_NOT_FOUND: ErrorCategory.REMOTE_API,
    ErrorCode.MANAGEMENT_REMOVAL_FAILED: ErrorCategory.CONVERGENCE_TIMEOUT,
    ErrorCode.MDM_PROFILE_REMOVAL_FAILED: ErrorCategory.TRANSIENT_OS,
    ErrorCode.FRAMEWORK_REMOVAL_FAILED: ErrorCategory.TRANSIENT_OS,
    ErrorCode.CONFIGURATION_PROFILE_REMOVAL_FAILED: ErrorCategory.TRANSIENT_OS,
}

FATAL_CATEGORIES = frozenset({
    ErrorCategory.PRECONDITION,
    ErrorCategory.CONVERGENCE_TIMEOUT,
    ErrorCategory.UNRECOVERABLE_STATE,
})


def category_of(code: ErrorCode) -> Optional[ErrorCategory]:
    """Return the taxonomy category of an exit code (None for SUCCESS)."""
    return _CATEGORIES.get(ErrorCode(code))


def is_fatal(code: ErrorCode) -> bool:
    """True when a failure with this code must end the run."""
    return category_of(code) in FATAL_CATEGORIES


class OffboardingError(RuntimeError):
    """Base error carrying the exit code of the step that failed."""

    def __init__(self, code: ErrorCode, message: str = ""):
        self.code = ErrorCode(code)
        super().__init__(message or self.code.name.replace("_", " ").capitalize())

    @property
    def category(self) -> Optional[ErrorCategory]:
        return category_of(self.code)

    @property
    def fatal(self) -> bool:
        return is_fatal(self.code)


class PreconditionError(OffboardingError):
    pass


class NotifierError(OffboardingError):
    pass


class UserCancelled(NotifierError):
    pass


class DirectoryError(OffboardingError):
    pass


class EncryptionError(OffboardingError):
    pass


class TokenError(OffboardingError):
    pass


class ManagementAPIError(OffboardingError):
    pass


class ManagementRemovalError(OffboardingError):
    pass


class ConvergenceError(OffboardingError):
    """A bounded retry ran out of attempts."""

    def __init__(self, code: ErrorCode, message: str = "", attempts: int = 0):
        super().__init__(code, message)
        self.attempts = attempts
