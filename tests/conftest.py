"""Shared fakes: a scripted Mac behind CommandRunner, a recording notifier, sleep and clock."""

import logging
import plistlib
from typing import Dict, List, Optional

import pytest

from intune_onboarding.config import Config
from intune_onboarding.errors import ErrorCode, UserCancelled
from intune_onboarding.services.directory import DirectoryIdentityAdapter
from intune_onboarding.services.filevault import EncryptionController
from intune_onboarding.services.jamf_agent import JAMF_MDM_PROFILE_ID, ManagementAgent
from intune_onboarding.services.system import MacSystem
from intune_onboarding.utils.shell import CommandResult
from intune_onboarding.workflows.offboarding import OffboardingOrchestrator

MOBILE_AUTHORITY = [
    ";Kerberosv5;;jdoe@CORP.EXAMPLE.COM;CORP.EXAMPLE.COM;",
    ";LocalCachedUser;/Active Directory/CORP/All Domains:jdoe:1A2B3C4D-0000-0000-0000-000000000001",
    ";ShadowHash;HASHLIST:<SALTED-SHA512-PBKDF2,SRP-RFC5054-4096-SHA512-PBKDF2>",
]
LOCAL_AUTHORITY = [";ShadowHash;HASHLIST:<SALTED-SHA512-PBKDF2,SRP-RFC5054-4096-SHA512-PBKDF2>"]
AD_SEARCH_PATH = "/Active Directory/CORP/All Domains"


class FakeMac:
    """
    Answers the exact commands the services issue and keeps the resulting
    machine state, so tests can assert on both.
    """

    def __init__(self):
        self.dry_run = False
        self.calls: List[tuple] = []
        self.inputs: List[Optional[str]] = []

        self.os_version = "14.4.1"
        self.serial = "C02XL0GHJGH5"
        self.console_user = "jdoe"
        self.apps = {"Company Portal"}
        self.opened: List[str] = []
        self.updates_installed = False

        self.bound = True
        self.unbind_rc = 0
        self.users: Dict[str, dict] = {}
        self.sticky_users = set()
        self.failing_attributes = set()
        self.group_adds: List[tuple] = []

        self.filevault = "On"
        self.filevault_users = ["jdoe"]
        self.filevault_failures = 0
        self.filevault_stuck = False

        self.enrolled = False
        self.sticky_enrollment = False
        self.agent = False
        self.mdm_removals = 0
        self.profiles = ["com.corp.wifi", "com.corp.vpn"]
        self.profiles_removed: List[str] = []

    # ---- setup helpers ----

    def add_user(self, name, uid=501, authority=None, guid=None):
        self.users[name] = {
            "uid": uid,
            "home": f"/Users/{name}",
            "authority": list(MOBILE_AUTHORITY if authority is None else authority),
            "guid": guid or f"GUID-{name.upper()}",
        }
        return self.users[name]

    def authority(self, name):
        return list(self.users[name]["authority"])

    def count(self, *prefix):
        return sum(1 for c in self.calls if c[:len(prefix)] == prefix)

    # ---- CommandRunner interface ----

    def run(self, args, *, input=None, mutates=False, timeout=None):
        args = tuple(str(a) for a in args)
        self.calls.append(args)
        self.inputs.append(input)
        if mutates and self.dry_run:
            return CommandResult(args, 0)
        return self._dispatch(args, input)

    def _ok(self, args, stdout=""):
        return CommandResult(args, 0, stdout, "")

    def _fail(self, args, stderr="failed", rc=1):
        return CommandResult(args, rc, "", stderr)

    def _dispatch(self, args, input):
        tool = args[0]
        if tool == "/usr/bin/dscl":
            return self._dscl(args)
        if tool == "/usr/sbin/dsconfigad":
            if self.unbind_rc == 0:
                self.bound = False
                return self._ok(args)
            return self._fail(args, "dsconfigad: Node name wasn't found", self.unbind_rc)
        if tool == "/usr/bin/killall":
            return self._ok(args)
        if tool == "/usr/sbin/chown":
            return self._ok(args)
        if tool == "/usr/sbin/dseditgroup":
            self.group_adds.append((args[4], args[-1]))
            return self._ok(args)
        if tool == "/usr/bin/fdesetup":
            return self._fdesetup(args, input)
        if tool == "/usr/bin/stat":
            return self._ok(args, self.console_user + "\n")
        if tool == "/usr/bin/sw_vers":
            return self._ok(args, self.os_version + "\n")
        if tool == "/usr/sbin/system_profiler":
            return self._ok(args, "Hardware:\n\n    Hardware Overview:\n\n"
                                  f"      Serial Number (system): {self.serial}\n")
        if tool == "/usr/bin/open":
            if args[1] == "-Ra":
                return self._ok(args) if args[2] in self.apps else self._fail(args, "Unable to find application")
            self.opened.append(args[-1])
            return self._ok(args)
        if tool == "/usr/sbin/softwareupdate":
            self.updates_installed = True
            return self._ok(args)
        if tool == "/usr/bin/which":
            return self._ok(args, "/usr/local/bin/jamf\n") if self.agent else self._fail(args, "")
        if tool == "/usr/local/bin/jamf":
            return self._jamf(args)
        if tool == "/usr/bin/profiles" or tool == "/usr/bin/sudo":
            return self._profiles(args)
        return self._fail(args, f"unexpected command: {' '.join(args)}", 127)

    def _dscl(self, args):
        if args[1:] == ("localhost", "-list", "."):
            nodes = ["BSD", "Contacts", "Local", "Search"]
            if self.bound:
                nodes.insert(0, "Active Directory")
            return self._ok(args, "\n".join(nodes) + "\n")
        if args[1] in ("/Search", "/Search/Contacts"):
            if args[2] == "-read":
                lines = ["CSPSearchPath:", " /Local/Default"]
                if self.bound:
                    lines.append(f" {AD_SEARCH_PATH}")
                return self._ok(args, "\n".join(lines) + "\n")
            return self._ok(args)
        if args[1:4] == (".", "list", "/Users"):
            lines = ["_mbsetupuser 248", "root 0", "daemon 1"]
            lines += [f"{name} {user['uid']}" for name, user in self.users.items()]
            return self._ok(args, "\n".join(lines) + "\n")
        if args[1] == "-plist":
            user = self.users.get(args[4].rsplit("/", 1)[-1])
            if user is None:
                return self._fail(args, "eDSRecordNotFound", 56)
            if args[3] == "-read":
                record = {"dsAttrTypeStandard:AuthenticationAuthority": user["authority"]}
                return self._ok(args, plistlib.dumps(record).decode("utf-8"))
            if args[3] == "-delete":
                if args[4].rsplit("/", 1)[-1] not in self.sticky_users:
                    user["authority"].remove(args[6])
                return self._ok(args)
        if args[1] == ".":
            user = self.users.get(args[3].rsplit("/", 1)[-1])
            if user is None:
                return self._fail(args, "eDSRecordNotFound", 56)
            if args[2] == "-delete":
                if args[4] in self.failing_attributes:
                    return self._fail(args, "eDSAttributeNotFound", 181)
                return self._ok(args)
            if args[2] == "-read":
                values = {"UniqueID": user["uid"], "NFSHomeDirectory": user["home"], "GeneratedUID": user["guid"]}
                if args[4] not in values:
                    return self._fail(args, "No such key", 181)
                return self._ok(args, f"{args[4]}: {values[args[4]]}\n")
        return self._fail(args, f"unexpected dscl call: {' '.join(args)}")

    def _fdesetup(self, args, input):
        if args[1] == "status":
            return self._ok(args, f"FileVault is {self.filevault}.\n")
        if args[1] == "list":
            lines = [f"{name},{self.users[name]['guid']}" for name in self.filevault_users if name in self.users]
            return self._ok(args, "\n".join(lines) + "\n")
        if args[-1] == "-inputplist":
            answers = plistlib.loads(input.encode("utf-8"))
            assert set(answers) == {"Username", "Password"}
            if self.filevault_failures:
                self.filevault_failures -= 1
                return self._fail(args, "Error: User could not be authenticated.")
            if args[1] == "disable":
                if not self.filevault_stuck:
                    self.filevault = "Off"
                return self._ok(args, "FileVault has been disabled.\n")
            if args[1] == "enable":
                if not self.filevault_stuck:
                    self.filevault = "On"
                return self._ok(args, "Restart your computer to finish enabling FileVault.\n")
            return self._ok(args, "New personal recovery key = 'ABCD-EFGH'\n")
        return self._fail(args, "Usage: fdesetup")

    def _jamf(self, args):
        if args[1] == "removeMdmProfile":
            self.mdm_removals += 1
            if not self.sticky_enrollment:
                self.enrolled = False
            return self._ok(args)
        if args[1] == "removeFramework":
            self.agent = False
            return self._ok(args)
        return self._fail(args, "Unknown verb")

    def _profiles(self, args):
        if args[0] == "/usr/bin/sudo":
            args = args[3:]
        if args[1:] == ("-C",):
            if self.enrolled:
                return self._ok(args, "_computerlevel[1] attribute: profileIdentifier: "
                                      f"{JAMF_MDM_PROFILE_ID}\nThere are 1 system configuration profiles installed\n")
            return self._ok(args, "There are no system configuration profiles installed\n")
        if args[1:] == ("-L",):
            lines = [f"_computerlevel[{i}] attribute: profileIdentifier: {p}" for i, p in enumerate(self.profiles, 1)]
            lines.append(f"There are {len(self.profiles)} configuration profiles installed")
            return self._ok(args, "\n".join(lines) + "\n")
        if args[1:3] == ("-R", "-p"):
            self.profiles_removed.append(args[3])
            return self._ok(args)
        if args[1:] == ("remove", "-forced", "-all", "-v"):
            self.profiles = []
            return self._ok(args)
        return self._fail(args, "profiles: unknown verb")


class FakeNotifier:
    """Records every message; dialogs answer from ``responses`` or raise when cancelled."""

    def __init__(self):
        self.notifications: List[str] = []
        self.dialogs: List[dict] = []
        self.alerts: List[tuple] = []
        self.password = "correct horse battery staple"
        self.cancel_dialogs = False

    def notify(self, message, *, suppress_notification=False, delay=None, level=logging.INFO):
        logging.getLogger("tests.notifier").log(level, message)
        self.notifications.append(message)
        return True

    def dialog(self, message, **kwargs):
        self.dialogs.append(dict(kwargs, message=message))
        if self.cancel_dialogs:
            raise UserCancelled(ErrorCode.DIALOG_CANCELLED, "User cancelled dialog")
        return self.password

    def alert(self, alert_text, message, **kwargs):
        self.alerts.append((alert_text, message))
        return kwargs.get("buttons", ("Ok",))[0]


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds):
        self.calls.append(seconds)


class FakeClock:
    def __init__(self, now=1_760_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class NoCredentials:
    def get_credential(self, target_name, username=None):
        return None


def make_settings(**sections):
    settings = {
        "company": {"name": "Example IT", "display_name": "Intune Onboarding Tool",
                    "support_link": "https://support.example.com",
                    "documentation_link": "https://docs.example.com/intune"},
        "features": {"convert_accounts": True, "unbind_from_directory": True,
                     "set_admin_rights": False, "offboard_management": True},
        "os": {"supported_major_version": 12, "install_updates_when_unsupported": True},
        "accounts": {"min_uid": 500, "settle_delay": 20},
        "intune": {"company_portal_name": "Company Portal",
                   "company_portal_path": "/Applications/Company Portal.app/"},
        "filevault": {"max_attempts": 3},
        "management": {"convergence_interval": 15, "convergence_retries": 4},
        "jamf": {"api_url": "", "timeout": 5},
    }
    for name, values in sections.items():
        settings.setdefault(name, {}).update(values)
    return settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in ("JAMF_API_URL", "JAMF_API_USER", "JAMF_API_PASSWORD"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def mac():
    return FakeMac()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def config():
    return Config(settings=make_settings(), credential_manager=NoCredentials())


@pytest.fixture
def build(mac, notifier):
    """Build an orchestrator wired to the fake Mac; returns (orchestrator, sleeps)."""

    def _build(config, api_client=None, dry_run=False, euid=0):
        sleeps = RecordingSleep()
        system = MacSystem(mac, geteuid=lambda: euid)
        orchestrator = OffboardingOrchestrator(
            config,
            runner=mac,
            notifier=notifier,
            system=system,
            directory=DirectoryIdentityAdapter(mac, settle_delay=config.settle_delay, sleep=RecordingSleep()),
            encryption=EncryptionController(notifier, system, mac, max_attempts=config.filevault_max_attempts,
                                            sleep=RecordingSleep()),
            agent=ManagementAgent(mac),
            api_client=api_client,
            sleep=sleeps,
            dry_run=dry_run,
        )
        return orchestrator, sleeps

    return _build
