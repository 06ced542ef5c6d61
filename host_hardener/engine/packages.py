"""
Package manager adapter. Failures are never retried.
"""

import logging

from ..core.errors import PackageInstallError
from ..system.base import SystemState


logger = logging.getLogger(__name__)


class PackageManager:
    """Turns package collaborator failures into ``PackageInstallError``."""

    def __init__(self, state: SystemState):
        self.state = state

    def refresh_index(self) -> None:
        logger.info("Refreshing package index")
        if not self.state.refresh_index():
            raise PackageInstallError("Failed to refresh the package index")

    def install(self, *packages: str) -> None:
        logger.info("Installing %s", " ".join(packages))
        if not self.state.install(list(packages)):
            raise PackageInstallError(
                f"Failed to install {' '.join(packages)}", packages=packages
            )
