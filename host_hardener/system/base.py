"""
System state interface for hardening operations.

Every live-host side effect the hardener performs (files, packages,
services, commands, sockets) goes through this interface so that the
engine can be exercised against an in-memory implementation.
"""

import os
import subprocess
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from ..core.models import ServiceStatus, SystemInfo


class SystemState(ABC):
    """
    Abstract base class for the host the hardener mutates.

    Implementations raise ``OSError`` subclasses for filesystem failures
    and report package/service failures through boolean return values.
    """

    # Filesystem

    @abstractmethod
    def read_file(self, file_path: str) -> str:
        """
        Read contents of a text file.

        Raises:
            FileNotFoundError: If file doesn't exist
            PermissionError: If access is denied
        """

    @abstractmethod
    def write_file(self, file_path: str, content: str, mode: Optional[int] = None) -> None:
        """
        Replace the contents of a text file, creating it if needed.

        Args:
            file_path: Path to the file
            content: New file contents
            mode: Permission bits to apply after writing (optional)
        """

    @abstractmethod
    def file_exists(self, file_path: str) -> bool:
        """Check if a file exists."""

    @abstractmethod
    def copy_file_exclusive(self, source: str, destination: str) -> None:
        """
        Copy ``source`` to ``destination`` without ever replacing an existing file.

        Raises:
            FileExistsError: If ``destination`` already exists
        """

    # Platform

    @abstractmethod
    def is_admin(self) -> bool:
        """Whether the process runs with administrative privileges."""

    @abstractmethod
    def package_manager(self) -> Optional[str]:
        """Name of the detected package manager, or None."""

    @abstractmethod
    def system_info(self) -> SystemInfo:
        """Describe the host."""

    # Packages

    @abstractmethod
    def refresh_index(self) -> bool:
        """Refresh the package index."""

    @abstractmethod
    def install(self, packages: Sequence[str]) -> bool:
        """Install packages non-interactively."""

    # Services

    @abstractmethod
    def list_services(self) -> Set[str]:
        """Service identities known to the service registry (e.g. ``ssh.service``)."""

    @abstractmethod
    def enable(self, identity: str) -> bool:
        """Enable a service to start at boot."""

    @abstractmethod
    def restart(self, identity: str) -> bool:
        """Restart a service, starting it if stopped."""

    @abstractmethod
    def status(self, identity: str) -> ServiceStatus:
        """Current runtime state of a service."""

    # Network

    @abstractmethod
    def is_listening(self, port: int, process: Optional[str] = None) -> bool:
        """Whether a TCP socket is listening on ``port``, owned by ``process`` if given."""

    # Commands

    def run_command(self, command: Sequence[str], timeout: Optional[int] = None,
                    env: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Execute a system command.

        Args:
            command: Argument vector
            timeout: Timeout in seconds (None blocks until completion)
            env: Extra environment variables for the child process

        Returns:
            Dict[str, Any]: Execution result with stdout, stderr, and exit code
        """
        start_time = datetime.utcnow()
        cmd_args: List[str] = list(command)
        child_env = {**os.environ, **env} if env else None

        try:
            result = subprocess.run(
                cmd_args,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=child_env,
                check=False
            )

            end_time = datetime.utcnow()
            execution_time_ms = int((end_time - start_time).total_seconds() * 1000)

            return {
                'stdout': result.stdout,
                'stderr': result.stderr,
                'exit_code': result.returncode,
                'execution_time_ms': execution_time_ms,
                'success': result.returncode == 0
            }

        except subprocess.TimeoutExpired:
            return {
                'stdout': '',
                'stderr': f'Command timed out after {timeout} seconds',
                'exit_code': -1,
                'execution_time_ms': (timeout or 0) * 1000,
                'success': False
            }
        except OSError as e:
            return {
                'stdout': '',
                'stderr': str(e),
                'exit_code': -1,
                'execution_time_ms': 0,
                'success': False
            }
