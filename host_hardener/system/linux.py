"""
Live Linux host implementation of the system state interface.

Targets Debian and Ubuntu: apt-get for packages, systemd for services,
``ss`` for listening sockets.
"""

import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Optional, Sequence, Set

from ..core.models import ServiceStatus, SystemInfo
from ..utils.os_detection import detect_os, get_package_manager, get_service_manager, is_admin
from .base import SystemState


logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class LinuxSystem(SystemState):
    """
    Linux handler for Debian-family systems.

    Args:
        listen_attempts: How many times ``is_listening`` polls before giving up
        listen_delay: Seconds between polls
    """

    def __init__(self, listen_attempts: int = 10, listen_delay: float = 0.5):
        self.service_manager = get_service_manager()
        self.listen_attempts = listen_attempts
        self.listen_delay = listen_delay

    # Filesystem

    def read_file(self, file_path: str) -> str:
        # newline='' keeps CRLF byte-exact; surrogateescape keeps non-UTF-8 bytes
        with open(file_path, 'r', encoding='utf-8', errors='surrogateescape', newline='') as f:
            return f.read()

    def write_file(self, file_path: str, content: str, mode: Optional[int] = None) -> None:
        """Write through a temporary file and rename, so readers never see a partial file."""
        target = Path(file_path)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8', errors='surrogateescape', newline='') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())

            if target.exists():
                shutil.copymode(str(target), tmp_path)
                stat_info = target.stat()
                os.chown(tmp_path, stat_info.st_uid, stat_info.st_gid)
            else:
                os.chmod(tmp_path, 0o644)

            if mode is not None:
                os.chmod(tmp_path, mode)

            os.replace(tmp_path, str(target))
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def file_exists(self, file_path: str) -> bool:
        return Path(file_path).exists()

    def copy_file_exclusive(self, source: str, destination: str) -> None:
        with open(source, 'rb') as src, open(destination, 'xb') as dst:
            shutil.copyfileobj(src, dst)
        shutil.copymode(source, destination)

    # Platform

    def is_admin(self) -> bool:
        return is_admin()

    def package_manager(self) -> Optional[str]:
        return get_package_manager()

    def system_info(self) -> SystemInfo:
        return detect_os()

    # Packages

    def refresh_index(self) -> bool:
        result = self.run_command(["apt-get", "update", "-qq"], env=APT_ENV)
        if not result['success']:
            logger.error("apt-get update failed: %s", result['stderr'].strip())
        return result['success']

    def install(self, packages: Sequence[str]) -> bool:
        result = self.run_command(
            ["apt-get", "install", "-yqq", *packages], env=APT_ENV
        )
        if not result['success']:
            logger.error("apt-get install %s failed: %s",
                         " ".join(packages), result['stderr'].strip())
        return result['success']

    # Services

    def list_services(self) -> Set[str]:
        if self.service_manager != "systemctl":
            return set()

        services = set()
        listings = (
            ["systemctl", "list-unit-files", "--type=service", "--no-legend", "--no-pager"],
            ["systemctl", "list-units", "--type=service", "--all", "--no-legend", "--no-pager"],
        )
        for command in listings:
            result = self.run_command(command, timeout=30)
            if not result['success']:
                continue
            for line in result['stdout'].splitlines():
                fields = line.replace('●', ' ').split()
                if fields and fields[0].endswith('.service'):
                    services.add(fields[0])
        return services

    def enable(self, identity: str) -> bool:
        result = self.run_command(["systemctl", "enable", identity], timeout=60)
        return result['success']

    def restart(self, identity: str) -> bool:
        result = self.run_command(["systemctl", "restart", identity])
        if not result['success']:
            logger.error("systemctl restart %s failed: %s", identity, result['stderr'].strip())
        return result['success']

    def status(self, identity: str) -> ServiceStatus:
        result = self.run_command(["systemctl", "is-active", identity], timeout=30)
        state = result['stdout'].strip()
        if state in ("active", "reloading"):
            return ServiceStatus.RUNNING
        if state in ("inactive", "failed", "deactivating"):
            return ServiceStatus.STOPPED
        return ServiceStatus.UNKNOWN

    # Network

    def is_listening(self, port: int, process: Optional[str] = None) -> bool:
        for attempt in range(self.listen_attempts):
            result = self.run_command(["ss", "-H", "-l", "-t", "-n", "-p"], timeout=10)
            if result['success'] and _port_in_ss_output(result['stdout'], port, process):
                return True
            if attempt + 1 < self.listen_attempts:
                time.sleep(self.listen_delay)
        return False


def _port_in_ss_output(output: str, port: int, process: Optional[str] = None) -> bool:
    """Check ``ss -Hltnp`` output for a socket on ``port``, owned by ``process`` if given."""
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 4:
            continue
        _, _, local_port = fields[3].rpartition(':')
        if local_port != str(port):
            continue
        if process is None or f'("{process}",' in line:
            return True
    return False
