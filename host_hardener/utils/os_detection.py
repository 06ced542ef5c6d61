"""
Operating System detection utilities.

Identifies Debian-family hosts, privileges, and the package and service
managers available on the system.
"""

import os
import platform
import shutil
import subprocess
from pathlib import Path
from typing import Dict, Optional, Tuple

from ..core.models import OSType, SystemInfo


SUPPORTED_PACKAGE_MANAGERS = ("apt-get",)


def detect_os(os_release_path: str = "/etc/os-release") -> SystemInfo:
    """
    Detect the current operating system and gather system information.

    Returns:
        SystemInfo: OS type, version, architecture, hostname, kernel and package manager.
    """
    hostname = platform.node()
    architecture = platform.machine()

    if platform.system().lower() != "linux":
        return SystemInfo(
            os_type=OSType.UNKNOWN,
            os_version=platform.release(),
            architecture=architecture,
            hostname=hostname,
            kernel_version=platform.release(),
            package_manager=get_package_manager()
        )

    release_file = Path(os_release_path)
    if release_file.exists():
        os_info = _parse_os_release(release_file)
        os_type = _determine_linux_type(os_info)
        os_version = os_info.get("VERSION", os_info.get("VERSION_ID", "Unknown"))
    else:
        os_type, os_version = _detect_linux_fallback()

    return SystemInfo(
        os_type=os_type,
        os_version=os_version,
        architecture=architecture,
        hostname=hostname,
        kernel_version=platform.release(),
        package_manager=get_package_manager()
    )


def _parse_os_release(os_release_path: Path) -> Dict[str, str]:
    """Parse /etc/os-release file into a dictionary."""
    os_info = {}

    try:
        with open(os_release_path, 'r') as f:
            for line in f:
                line = line.strip()
                if '=' in line and not line.startswith('#'):
                    key, value = line.split('=', 1)
                    os_info[key] = value.strip('"\'')
    except OSError as e:
        raise RuntimeError(f"Cannot read {os_release_path}: {e}")

    return os_info


def _determine_linux_type(os_info: Dict[str, str]) -> OSType:
    """Determine the Linux distribution family from os-release information."""
    id_field = os_info.get("ID", "").lower()
    id_like = os_info.get("ID_LIKE", "").lower()
    name = os_info.get("NAME", "").lower()

    if "ubuntu" in id_field or "ubuntu" in name:
        return OSType.UBUNTU

    if id_field == "debian" or "debian" in name:
        return OSType.DEBIAN

    # Derivatives (Mint, Pop!_OS, Raspberry Pi OS, ...)
    if "ubuntu" in id_like:
        return OSType.UBUNTU
    if "debian" in id_like:
        return OSType.DEBIAN

    return OSType.UNKNOWN


def _detect_linux_fallback() -> Tuple[OSType, str]:
    """Fallback detection for systems without os-release."""
    debian_version = Path("/etc/debian_version")
    if debian_version.exists():
        try:
            return OSType.DEBIAN, debian_version.read_text().strip()
        except OSError:
            pass

    try:
        result = subprocess.run(
            ["lsb_release", "-d"],
            capture_output=True,
            text=True,
            timeout=5
        )
        if result.returncode == 0 and "ubuntu" in result.stdout.lower():
            return OSType.UBUNTU, result.stdout.split(":", 1)[-1].strip()
    except (subprocess.TimeoutExpired, subprocess.SubprocessError, FileNotFoundError):
        pass

    return OSType.UNKNOWN, "Unknown Linux Distribution"


def is_admin() -> bool:
    """
    Check if the current process has administrative privileges.

    Returns:
        bool: True if running as root, False otherwise.
    """
    geteuid = getattr(os, "geteuid", None)
    if geteuid is None:
        return False
    return geteuid() == 0


def get_package_manager() -> Optional[str]:
    """
    Detect a supported system package manager.

    Returns:
        Optional[str]: Package manager command or None if not found.
    """
    for pm in SUPPORTED_PACKAGE_MANAGERS:
        if shutil.which(pm):
            return pm
    return None


def get_service_manager() -> Optional[str]:
    """
    Detect the system service manager.

    Returns:
        Optional[str]: ``systemctl`` or None if systemd is not available.
    """
    if Path("/bin/systemctl").exists() or Path("/usr/bin/systemctl").exists():
        return "systemctl"
    return None

