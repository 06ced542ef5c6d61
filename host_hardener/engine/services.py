"""
Service reconciler.

Unit names for the same daemon differ between distributions and releases
(``ssh.service`` on Debian/Ubuntu, ``sshd.service`` elsewhere), so the
hardener resolves a logical service against the live registry before
acting on it.
"""

import logging
from typing import Dict, Optional, Sequence

from ..core.errors import ServiceActionError, ServiceNotFoundError
from ..core.models import ServiceHandle, ServiceStatus
from ..system.base import SystemState


logger = logging.getLogger(__name__)


class ServiceReconciler:
    """
    Resolves and drives system services for one run.

    Resolutions are cached per logical name; the registry is not probed
    again for a service that has already been resolved.
    """

    def __init__(self, state: SystemState):
        self.state = state
        self._resolved: Dict[str, ServiceHandle] = {}

    def resolve(self, candidates: Sequence[str], logical_name: Optional[str] = None) -> ServiceHandle:
        """
        Return the first candidate present in the service registry.

        Args:
            candidates: Unit names in priority order (``.service`` optional)
            logical_name: Cache key; defaults to the first candidate

        Raises:
            ServiceNotFoundError: If no candidate is registered
        """
        if not candidates:
            raise ServiceNotFoundError("No service candidates given")

        name = logical_name or candidates[0]
        if name in self._resolved:
            return self._resolved[name]

        registry = self.state.list_services()
        for candidate in candidates:
            identity = _unit_name(candidate)
            if identity in registry:
                handle = ServiceHandle(logical_name=name, identity=identity)
                self._resolved[name] = handle
                logger.debug("Resolved service %s to %s", name, identity)
                return handle

        raise ServiceNotFoundError(
            f"Could not find any of {', '.join(_unit_name(c) for c in candidates)}",
            candidates=[_unit_name(c) for c in candidates]
        )

    def enable(self, handle: ServiceHandle) -> None:
        """Enable a service at boot; enabling an enabled service is a no-op."""
        if not self.state.enable(handle.identity):
            raise ServiceActionError(
                f"Failed to enable {handle.identity}", service=handle.identity, action="enable"
            )
        logger.info("Enabled %s", handle.identity)

    def restart(self, handle: ServiceHandle) -> None:
        """Restart a service, starting it if it was stopped."""
        if not self.state.restart(handle.identity):
            raise ServiceActionError(
                f"Failed to restart {handle.identity}", service=handle.identity, action="restart"
            )
        logger.info("Restarted %s", handle.identity)

    def is_running(self, handle: ServiceHandle) -> bool:
        return self.state.status(handle.identity) == ServiceStatus.RUNNING

    def ensure_running(self, handle: ServiceHandle) -> None:
        """Start the service unless it is already running."""
        if self.is_running(handle):
            logger.debug("%s already running", handle.identity)
            return
        self.restart(handle)

    def enable_now(self, handle: ServiceHandle) -> None:
        """Equivalent of ``systemctl enable --now``."""
        self.enable(handle)
        self.ensure_running(handle)


def _unit_name(name: str) -> str:
    return name if name.endswith(".service") else f"{name}.service"
