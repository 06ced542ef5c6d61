"""
Core orchestrator for the host hardener.

The HostHardener class checks run preconditions, wires the engine's
collaborators to a system state, and executes the hardening catalog.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import List, Optional

from ..core.config import HardenerConfig
from ..core.models import RunReport, Step
from ..engine.preconditions import check_preconditions
from ..engine.runner import StepContext, StepRunner
from ..steps.catalog import build_steps
from ..system.base import SystemState
from ..system.linux import LinuxSystem


logger = logging.getLogger(__name__)


class HostHardener:
    """
    Main orchestrator class for a single hardening run.

    Args:
        config: Loaded configuration (defaults if None)
        state: System to harden (the live host if None)
        steps: Step list override (the standard catalog if None)
    """

    def __init__(self, config: Optional[HardenerConfig] = None,
                 state: Optional[SystemState] = None,
                 steps: Optional[List[Step]] = None,
                 defer_signals: bool = True):
        self.config = config or HardenerConfig()
        self.state = state or LinuxSystem()
        self.steps = steps if steps is not None else build_steps()
        self.defer_signals = defer_signals

    def run(self) -> RunReport:
        """
        Check preconditions, then apply every step in order.

        Returns:
            RunReport: Per-step outcomes

        Raises:
            PrivilegeError: If not running as root (nothing is changed)
            UnsupportedPlatformError: If the host is unsupported (nothing is changed)
        """
        system_info = check_preconditions(self.state)

        report = RunReport(run_id=str(uuid.uuid4()), system_info=system_info)
        context = StepContext.create(self.state, self.config)
        runner = StepRunner(context, defer_signals=self.defer_signals)

        logger.info("Starting hardening run %s with %d steps", report.run_id, len(self.steps))
        report = runner.run(self.steps, report)
        logger.info("Run %s finished: %s", report.run_id, report.status.value)
        return report


def save_report(report: RunReport, output_path: str) -> Path:
    """Save a run report as JSON."""
    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    with open(output_file, 'w') as f:
        json.dump(report.model_dump(mode='json'), f, indent=2)

    return output_file
