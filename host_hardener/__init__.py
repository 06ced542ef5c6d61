"""
Host Hardener

One-shot, re-runnable hardening for freshly provisioned Debian and Ubuntu
hosts: automatic security updates, firewall, SSH, intrusion detection,
mandatory access control and audit logging.
"""

__version__ = "1.0.0"

from .core.orchestrator import HostHardener
from .core.models import RunReport, StepResult

__all__ = ["HostHardener", "RunReport", "StepResult"]
