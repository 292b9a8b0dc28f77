import pytest

from intune_onboarding.errors import (
    ConvergenceError,
    ErrorCategory,
    ErrorCode,
    OffboardingError,
    UserCancelled,
    category_of,
    is_fatal,
)


@pytest.mark.parametrize("code", [
    ErrorCode.COMPANY_PORTAL_MISSING,
    ErrorCode.NOT_ELEVATED,
    ErrorCode.OS_NOT_SUPPORTED,
    ErrorCode.PASSWORD_MIGRATION_FAILED,
    ErrorCode.CONVERSION_FAILED,
    ErrorCode.MANAGEMENT_REMOVAL_FAILED,
])
def test_fatal_codes(code):
    assert is_fatal(code)


@pytest.mark.parametrize("code", [
    ErrorCode.UNBIND_FAILED,
    ErrorCode.FILEVAULT_ACTION_FAILED,
    ErrorCode.FILEVAULT_USER_CANCELLED,
    ErrorCode.TOKEN_ACQUISITION_FAILED,
    ErrorCode.DEVICE_NOT_FOUND,
    ErrorCode.COMMAND_DISPATCH_FAILED,
    ErrorCode.DIALOG_FAILED,
])
def test_soft_codes(code):
    assert not is_fatal(code)


def test_every_failure_code_has_a_category():
    for code in ErrorCode:
        if code is ErrorCode.SUCCESS:
            assert category_of(code) is None
        else:
            assert isinstance(category_of(code), ErrorCategory)


def test_exit_code_values_are_stable():
    assert int(ErrorCode.COMPANY_PORTAL_MISSING) == 11
    assert int(ErrorCode.FILEVAULT_ACTION_FAILED) == 165
    assert int(ErrorCode.DEVICE_NOT_FOUND) == 211
    assert int(ErrorCode.MANAGEMENT_REMOVAL_FAILED) == 220


def test_token_codes():
    assert [int(code) for code in ErrorCode if 200 <= code < 210] == [200, 201]


def test_error_carries_code_and_category():
    err = UserCancelled(ErrorCode.FILEVAULT_USER_CANCELLED, "User cancelled")
    assert isinstance(err, OffboardingError)
    assert isinstance(err, RuntimeError)
    assert err.code == 164
    assert err.category is ErrorCategory.USER_DECLINED
    assert not err.fatal


def test_default_message_and_attempts():
    err = ConvergenceError(ErrorCode.MANAGEMENT_REMOVAL_FAILED, attempts=5)
    assert str(err) == "Management removal failed"
    assert err.attempts == 5
    assert err.fatal
