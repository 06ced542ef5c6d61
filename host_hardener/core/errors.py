"""
Exception taxonomy for the host hardener.

Pre-run errors (privileges, platform) abort before any mutation. Every
other error is raised from inside a step and is classified by the step
runner according to the step's criticality.
"""

from typing import Optional, Sequence


class HardeningError(Exception):
    """
    Base class for all hardening errors.

    Args:
        message: Human-readable description of the failure
        subject: The directive, service, package or path implicated
    """

    kind = "hardening_error"

    def __init__(self, message: str, subject: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.subject = subject

    def __str__(self) -> str:
        return self.message


class ConfigurationError(HardeningError):
    """Invalid or unreadable tool configuration."""

    kind = "configuration_error"


class PrivilegeError(HardeningError):
    """The process does not run with administrative privileges."""

    kind = "privilege_error"


class UnsupportedPlatformError(HardeningError):
    """The host is not a supported OS family."""

    kind = "unsupported_platform"


class PackageInstallError(HardeningError):
    """The package manager failed to refresh its index or install packages."""

    kind = "package_install_error"

    def __init__(self, message: str, packages: Sequence[str] = ()):
        self.packages = list(packages)
        super().__init__(message, subject=" ".join(self.packages) or None)


class ConfigAccessError(HardeningError):
    """A configuration file could not be read or written."""

    kind = "config_access_error"

    def __init__(self, message: str, path: str, key: Optional[str] = None):
        self.path = path
        self.key = key
        subject = f"{path}: {key}" if key else path
        super().__init__(message, subject=subject)


class ServiceNotFoundError(HardeningError):
    """None of the candidate service names exists in the service registry."""

    kind = "service_not_found"

    def __init__(self, message: str, candidates: Sequence[str] = ()):
        self.candidates = list(candidates)
        super().__init__(message, subject=", ".join(self.candidates) or None)


class ServiceActionError(HardeningError):
    """Enabling, starting or restarting a resolved service failed."""

    kind = "service_action_error"

    def __init__(self, message: str, service: str, action: str):
        self.service = service
        self.action = action
        super().__init__(message, subject=service)


class CommandError(HardeningError):
    """A hardening tool command exited unsuccessfully."""

    kind = "command_error"

    def __init__(self, message: str, command: Sequence[str], exit_code: int = -1,
                 stderr: str = ""):
        self.command = list(command)
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message, subject=" ".join(self.command))


class VerificationFailedError(HardeningError):
    """A step's action completed but the system did not reach the intended state."""

    kind = "verification_failed"
