"""
Run-level preconditions checked before anything on the host is touched.
"""

import logging

from ..core.errors import PrivilegeError, UnsupportedPlatformError
from ..core.models import SystemInfo
from ..system.base import SystemState
from ..utils.os_detection import SUPPORTED_PACKAGE_MANAGERS


logger = logging.getLogger(__name__)


def check_preconditions(state: SystemState) -> SystemInfo:
    """
    Verify privileges and platform support.

    Args:
        state: The host to be hardened

    Returns:
        SystemInfo: Detected host information

    Raises:
        PrivilegeError: If not running as root
        UnsupportedPlatformError: If no supported package manager is present
    """
    if not state.is_admin():
        raise PrivilegeError("This tool must be run as root. Please use sudo.")

    package_manager = state.package_manager()
    if package_manager not in SUPPORTED_PACKAGE_MANAGERS:
        raise UnsupportedPlatformError(
            "Unsupported platform: a Debian-family system with apt-get is required",
            subject=package_manager or "no package manager"
        )

    system_info = state.system_info()
    logger.info("Preconditions met on %s (%s %s)", system_info.hostname,
                system_info.os_type.value, system_info.os_version)
    return system_info
