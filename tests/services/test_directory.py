import pytest

from conftest import LOCAL_AUTHORITY, MOBILE_AUTHORITY, RecordingSleep
from intune_onboarding.errors import DirectoryError, ErrorCode
from intune_onboarding.models.device import AccountType, StepStatus
from intune_onboarding.services.directory import MOBILE_ACCOUNT_ATTRIBUTES, DirectoryIdentityAdapter


@pytest.fixture
def directory(mac):
    return DirectoryIdentityAdapter(mac, settle_delay=20, sleep=RecordingSleep())


def test_unbind_twice_is_success_then_skipped(mac, directory):
    first = directory.unbind()
    state_after_first = mac.bound
    second = directory.unbind()

    assert first.status is StepStatus.SUCCESS
    assert second.status is StepStatus.SKIPPED
    assert state_after_first is False
    assert mac.bound is False
    assert mac.count("/usr/sbin/dsconfigad") == 1


def test_unbind_cleans_search_paths(mac, directory):
    directory.unbind()

    deletes = [c for c in mac.calls if c[:1] == ("/usr/bin/dscl",) and "-delete" in c and "CSPSearchPath" in c]
    assert [c[1] for c in deletes] == ["/Search/Contacts", "/Search"]
    assert all(c[-1] == "/Active Directory/CORP/All Domains" for c in deletes)
    assert mac.count("/usr/bin/dscl", "/Search", "-change") == 1


def test_unbind_failure_raises_soft_error(mac, directory):
    mac.unbind_rc = 70

    with pytest.raises(DirectoryError) as exc:
        directory.unbind()

    assert exc.value.code == ErrorCode.UNBIND_FAILED
    assert not exc.value.fatal


def test_list_local_users_filters_system_accounts(mac, directory):
    mac.add_user("jdoe", uid=501)
    mac.add_user("admin", uid=502, authority=LOCAL_AUTHORITY)

    assert directory.list_local_users(500) == ["jdoe", "admin"]


def test_account_type(mac, directory):
    mac.add_user("jdoe")
    mac.add_user("admin", uid=502, authority=LOCAL_AUTHORITY)

    assert directory.account_type("jdoe") is AccountType.NETWORK_CACHED
    assert directory.account_type("admin") is AccountType.LOCAL
    assert directory.account_type("ghost") is AccountType.UNKNOWN


def test_convert_local_account_is_skipped_without_mutation(mac, directory):
    mac.add_user("admin", uid=502, authority=LOCAL_AUTHORITY)
    before = mac.authority("admin")

    outcome = directory.convert("admin")

    assert outcome.status is StepStatus.SKIPPED
    assert mac.authority("admin") == before
    assert not any("-delete" in c for c in mac.calls)


def test_convert_mobile_account(mac, directory):
    mac.add_user("jdoe")

    outcome = directory.convert("jdoe", make_admin=True)

    assert outcome.status is StepStatus.SUCCESS
    assert mac.authority("jdoe") == [MOBILE_AUTHORITY[2]]
    assert directory.account_type("jdoe") is AccountType.LOCAL
    assert ("jdoe", "staff") in mac.group_adds
    assert ("jdoe", "admin") in mac.group_adds
    assert mac.count("/usr/sbin/chown", "-R", "jdoe", "/Users/jdoe") == 1
    assert directory.sleep.calls == [20]


def test_password_migration_removes_kerberos_before_local_cached_user(mac, directory):
    mac.add_user("jdoe")

    removed = directory.migrate_password("jdoe")

    assert removed == MOBILE_AUTHORITY[:2]
    deletes = [c[-1] for c in mac.calls if c[:2] == ("/usr/bin/dscl", "-plist") and "-delete" in c]
    assert deletes == MOBILE_AUTHORITY[:2]
    assert MOBILE_AUTHORITY[2] in mac.authority("jdoe")


def test_password_migration_of_unreadable_record_is_fatal(directory):
    with pytest.raises(DirectoryError) as exc:
        directory.migrate_password("ghost")
    assert exc.value.code == ErrorCode.PASSWORD_MIGRATION_FAILED
    assert exc.value.fatal


def test_conversion_that_does_not_stick_is_fatal(mac, directory):
    mac.add_user("jdoe")
    mac.sticky_users.add("jdoe")

    with pytest.raises(DirectoryError) as exc:
        directory.convert("jdoe")

    assert exc.value.code == ErrorCode.CONVERSION_FAILED
    assert exc.value.fatal


def test_attribute_removal_failures_are_counted_not_fatal(mac, directory):
    mac.add_user("jdoe")
    mac.failing_attributes.update({"SMBSID", "MCXFlags"})

    outcome = directory.convert("jdoe")

    assert outcome.succeeded
    assert "2 attribute(s) could not be removed" in outcome.detail
    assert mac.count("/usr/bin/dscl", ".", "-delete") == len(MOBILE_ACCOUNT_ATTRIBUTES)


def test_dry_run_convert_does_not_touch_the_account(mac, directory):
    mac.add_user("jdoe")
    mac.dry_run = True

    outcome = directory.convert("jdoe")

    assert outcome.succeeded
    assert mac.authority("jdoe") == MOBILE_AUTHORITY
    assert directory.sleep.calls == []


def test_read_account(mac, directory):
    mac.add_user("jdoe", uid=502)

    account = directory.read_account("jdoe")

    assert (account.name, account.uid, account.home_directory) == ("jdoe", 502, "/Users/jdoe")
    assert account.is_network_cached


def test_read_account_of_missing_user(directory):
    account = directory.read_account("nobody")

    assert (account.uid, account.home_directory, account.authentication_authority) == (None, None, ())
