"""
Test fixtures and utilities for the host hardener test suite.

Provides an in-memory system state that stands in for a live host, plus
common fixtures used across multiple test modules.
"""

import re
import shlex
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from host_hardener.core.config import HardenerConfig
from host_hardener.core.models import OSType, ServiceStatus, SystemInfo
from host_hardener.engine.runner import StepContext
from host_hardener.system.base import SystemState


SSHD_CONFIG_PATH = "/etc/ssh/sshd_config"

SAMPLE_SSHD_CONFIG = """\
# This is the sshd server system-wide configuration file.

Include /etc/ssh/sshd_config.d/*.conf

#Port 22
#AddressFamily any
#ListenAddress 0.0.0.0

#LoginGraceTime 2m
#PermitRootLogin prohibit-password
#StrictModes yes
#MaxAuthTries 6

#PubkeyAuthentication yes
#PasswordAuthentication yes
KbdInteractiveAuthentication no
UsePAM yes

X11Forwarding yes
PrintMotd no
AcceptEnv LANG LC_*
Subsystem sftp /usr/lib/openssh/sftp-server
"""

SSHD_ALIASES = {"challengeresponseauthentication": "kbdinteractiveauthentication"}

DEFAULT_SERVICES = (
    "ssh.service",
    "cron.service",
    "fail2ban.service",
    "clamav-freshclam.service",
    "clamav-daemon.service",
    "apparmor.service",
    "auditd.service",
)


def _ok(stdout: str = "") -> Dict[str, Any]:
    return {'stdout': stdout, 'stderr': '', 'exit_code': 0, 'execution_time_ms': 0, 'success': True}


def _failed(exit_code: int = 1, stderr: str = "simulated failure") -> Dict[str, Any]:
    return {'stdout': '', 'stderr': stderr, 'exit_code': exit_code,
            'execution_time_ms': 0, 'success': False}


class FakeSystem(SystemState):
    """
    In-memory host: files, packages, a service registry, ufw and sockets.

    Every mutating call is appended to ``events`` so tests can assert on
    the order in which the host was changed.
    """

    def __init__(self, files: Optional[Dict[str, str]] = None,
                 services: Sequence[str] = DEFAULT_SERVICES):
        self.files: Dict[str, str] = dict(files or {})
        self.modes: Dict[str, int] = {}
        self.unreadable: Set[str] = set()
        self.unwritable: Set[str] = set()

        self.admin = True
        self.pm: Optional[str] = "apt-get"

        self.refresh_ok = True
        self.failing_packages: Set[str] = set()
        self.installed: List[str] = []

        self.registry: Dict[str, ServiceStatus] = {name: ServiceStatus.STOPPED for name in services}
        if "ssh.service" in self.registry:
            self.registry["ssh.service"] = ServiceStatus.RUNNING
        self.enabled: Set[str] = set()
        self.failing_services: Set[str] = set()
        self.list_calls = 0

        self.listening: Set[int] = {22}
        self.ssh_listener = "sshd"
        self.bind_ssh_on_restart = True
        # Settings a drop-in under sshd_config.d would force, as sshd -T reports them
        self.sshd_overrides: Dict[str, str] = {}

        self.ufw_active = False
        self.ufw_rules: List[str] = []
        self.aa_status_output = "apparmor module is loaded.\n42 profiles are in enforce mode.\n"

        # Command prefix (as a string) -> canned result
        self.command_results: Dict[str, Dict[str, Any]] = {}
        self.commands: List[List[str]] = []
        self.events: List[Tuple[str, str]] = []

    # Filesystem

    def read_file(self, file_path: str) -> str:
        if file_path in self.unreadable:
            raise PermissionError(f"Permission denied: {file_path}")
        if file_path not in self.files:
            raise FileNotFoundError(f"No such file: {file_path}")
        return self.files[file_path]

    def write_file(self, file_path: str, content: str, mode: Optional[int] = None) -> None:
        if file_path in self.unwritable:
            raise PermissionError(f"Permission denied: {file_path}")
        self.files[file_path] = content
        if mode is not None:
            self.modes[file_path] = mode
        self.events.append(("write", file_path))

    def file_exists(self, file_path: str) -> bool:
        return file_path in self.files

    def copy_file_exclusive(self, source: str, destination: str) -> None:
        if destination in self.files:
            raise FileExistsError(destination)
        self.files[destination] = self.read_file(source)
        self.events.append(("copy", f"{source} -> {destination}"))

    # Platform

    def is_admin(self) -> bool:
        return self.admin

    def package_manager(self) -> Optional[str]:
        return self.pm

    def system_info(self) -> SystemInfo:
        return SystemInfo(
            os_type=OSType.UBUNTU,
            os_version="24.04.3 LTS (Noble Numbat)",
            architecture="x86_64",
            hostname="test-host",
            kernel_version="6.8.0-40-generic",
            package_manager=self.pm
        )

    # Packages

    def refresh_index(self) -> bool:
        self.events.append(("refresh", "apt"))
        return self.refresh_ok

    def install(self, packages: Sequence[str]) -> bool:
        self.events.append(("install", " ".join(packages)))
        if self.failing_packages.intersection(packages):
            return False
        self.installed.extend(packages)
        return True

    # Services

    def list_services(self) -> Set[str]:
        self.list_calls += 1
        return set(self.registry)

    def enable(self, identity: str) -> bool:
        self.events.append(("enable", identity))
        if identity in self.failing_services:
            return False
        self.enabled.add(identity)
        return True

    def restart(self, identity: str) -> bool:
        self.events.append(("restart", identity))
        if identity in self.failing_services:
            return False
        self.registry[identity] = ServiceStatus.RUNNING
        if identity in ("ssh.service", "sshd.service") and self.bind_ssh_on_restart:
            self.listening = {self._configured_ssh_port()}
        return True

    def status(self, identity: str) -> ServiceStatus:
        return self.registry.get(identity, ServiceStatus.UNKNOWN)

    def _configured_ssh_port(self) -> int:
        match = re.search(r'^Port\s+(\d+)', self.files.get(SSHD_CONFIG_PATH, ""), re.MULTILINE)
        return int(match.group(1)) if match else 22

    # Network

    def is_listening(self, port: int, process: Optional[str] = None) -> bool:
        return port in self.listening and process in (None, self.ssh_listener)

    # Commands

    def run_command(self, command: Sequence[str], timeout: Optional[int] = None,
                    env: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        args = list(command)
        line = " ".join(shlex.quote(a) for a in args)
        self.commands.append(args)
        self.events.append(("run", line))

        for prefix, result in self.command_results.items():
            if line.startswith(prefix):
                return result

        return self._simulate(args)

    def _simulate(self, args: List[str]) -> Dict[str, Any]:
        if args[:2] == ["ufw", "allow"]:
            if args[2] not in self.ufw_rules:
                self.ufw_rules.append(args[2])
        elif args[:3] == ["ufw", "delete", "allow"]:
            if args[3] in self.ufw_rules:
                self.ufw_rules.remove(args[3])
        elif args[:2] == ["ufw", "--force"]:
            self.ufw_active = True
        elif args[:2] == ["ufw", "status"]:
            return _ok(self._ufw_status())
        elif args[0] == "aideinit":
            self.files["/var/lib/aide/aide.db.new"] = "aide-db"
        elif args[0] == "cp":
            self.files[args[2]] = self.read_file(args[1])
        elif args[0] == "aa-status":
            return _ok(self.aa_status_output)
        elif args[:2] == ["sshd", "-T"]:
            return _ok(self._effective_sshd_config(args[-1]))
        return _ok()

    def _effective_sshd_config(self, file_path: str) -> str:
        entries = list(self.sshd_overrides.items())
        for line in self.read_file(file_path).splitlines():
            fields = line.split(None, 1)
            if len(fields) == 2 and not fields[0].startswith("#"):
                entries.append((fields[0], fields[1]))

        # First value wins, as in sshd
        effective: Dict[str, str] = {}
        for key, value in entries:
            keyword = SSHD_ALIASES.get(key.lower(), key.lower())
            if keyword not in ("include", "protocol"):
                effective.setdefault(keyword, value)
        return "".join(f"{keyword} {value}\n" for keyword, value in effective.items())

    def _ufw_status(self) -> str:
        if not self.ufw_active:
            return "Status: inactive\n"
        lines = ["Status: active", "", "To                         Action      From",
                 "--                         ------      ----"]
        for rule in self.ufw_rules:
            lines.append(f"{rule:<27}ALLOW       Anywhere")
        return "\n".join(lines) + "\n"

    # Helpers for assertions

    def event_index(self, kind: str, contains: str) -> int:
        """Index of the first event of ``kind`` whose detail contains ``contains``."""
        for index, (event_kind, detail) in enumerate(self.events):
            if event_kind == kind and contains in detail:
                return index
        raise AssertionError(f"No {kind} event containing {contains!r}: {self.events}")

    def snapshots_of(self, file_path: str) -> List[str]:
        return sorted(p for p in self.files if p.startswith(f"{file_path}.bak."))


def failed_result(exit_code: int = 1, stderr: str = "simulated failure") -> Dict[str, Any]:
    return _failed(exit_code, stderr)


@pytest.fixture
def fake_system():
    """A fresh host with a stock sshd_config and the default service registry."""
    return FakeSystem(files={SSHD_CONFIG_PATH: SAMPLE_SSHD_CONFIG})


@pytest.fixture
def config():
    return HardenerConfig()


@pytest.fixture
def context(fake_system, config):
    return StepContext.create(fake_system, config)


@pytest.fixture
def mock_system_info():
    return SystemInfo(
        os_type="ubuntu",
        os_version="24.04.3 LTS",
        architecture="x86_64",
        hostname="test-host",
        kernel_version="6.8.0-40-generic"
    )
