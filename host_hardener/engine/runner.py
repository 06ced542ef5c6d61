"""
Step runner for hardening runs.

Executes an ordered list of steps exactly once each. A failing ``fatal``
step aborts the run; a failing ``degraded-continue`` step is recorded and
the run carries on, unless a service it needs does not exist. Termination signals received while a step is running
are held until the step has finished, then abort the run.
"""

import logging
import signal
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence

from ..core.config import HardenerConfig
from ..core.errors import (
    CommandError, HardeningError, ServiceNotFoundError, VerificationFailedError
)
from ..core.models import (
    RunReport, RunStatus, Step, StepCriticality, StepResult, StepStatus
)
from ..system.base import SystemState
from .directives import DirectiveEditor
from .packages import PackageManager
from .services import ServiceReconciler
from .snapshots import SnapshotHelper


logger = logging.getLogger(__name__)

DEFERRED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class StepContext:
    """Collaborators handed to every step callable."""
    state: SystemState
    config: HardenerConfig
    snapshots: SnapshotHelper
    editor: DirectiveEditor
    services: ServiceReconciler
    packages: PackageManager
    facts: Dict[str, Any] = field(default_factory=dict)
    _current: Optional[StepResult] = field(default=None, repr=False)

    @classmethod
    def create(cls, state: SystemState, config: Optional[HardenerConfig] = None) -> "StepContext":
        snapshots = SnapshotHelper(state)
        return cls(
            state=state,
            config=config or HardenerConfig(),
            snapshots=snapshots,
            editor=DirectiveEditor(state, snapshots),
            services=ServiceReconciler(state),
            packages=PackageManager(state),
        )

    def note(self, message: str) -> None:
        """Attach an informational message to the running step's result."""
        logger.info(message)
        if self._current is not None:
            self._current.notes.append(message)

    def run(self, *command: str, ok_codes: Sequence[int] = (0,),
            env: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Run a tool command and require an accepted exit code.

        Raises:
            CommandError: If the exit code is not in ``ok_codes``
        """
        logger.debug("Running: %s", " ".join(command))
        result = self.state.run_command(list(command), env=env)
        if result['exit_code'] not in ok_codes:
            stderr = (result.get('stderr') or '').strip()
            raise CommandError(
                f"{' '.join(command)} exited with {result['exit_code']}"
                + (f": {stderr}" if stderr else ""),
                command=command,
                exit_code=result['exit_code'],
                stderr=stderr
            )
        return result


class StepRunner:
    """
    Executes hardening steps in ordinal order and builds the run report.

    Args:
        context: Collaborators passed to each step
        defer_signals: Hold SIGINT/SIGTERM until the running step finishes
    """

    def __init__(self, context: StepContext, defer_signals: bool = True):
        self.context = context
        self.defer_signals = defer_signals
        self._received_signal: Optional[int] = None

    def run(self, steps: Sequence[Step], report: Optional[RunReport] = None) -> RunReport:
        """
        Execute ``steps`` and return the populated report.

        Raises:
            ValueError: If step names or ordinals are not unique
        """
        ordered = sorted(steps, key=lambda s: s.ordinal)
        _validate_unique(ordered)

        if report is None:
            report = RunReport(run_id=str(uuid.uuid4()))
        report.results = [StepResult.pending(step) for step in ordered]
        report.status = RunStatus.RUNNING
        report.started_at = datetime.utcnow()

        with self._signals_deferred():
            for step, result in zip(ordered, report.results):
                if self._received_signal is not None:
                    report.status = RunStatus.ABORTED
                    report.abort_reason = (
                        f"Interrupted by {signal.Signals(self._received_signal).name}"
                    )
                    logger.error("Run interrupted before step %s", step.name)
                    break

                if self._execute(step, result):
                    report.status = RunStatus.ABORTED
                    report.aborted_by = step.name
                    report.abort_reason = result.reason
                    logger.error("Aborting run: step %s failed", step.name)
                    break
            else:
                report.status = RunStatus.COMPLETED

        report.snapshots = [s.path for s in self.context.snapshots.snapshots]
        report.completed_at = datetime.utcnow()
        report.calculate_summary()
        return report

    def _execute(self, step: Step, result: StepResult) -> bool:
        """Run one step; returns True when its failure must abort the run."""
        ctx = self.context
        result.status = StepStatus.RUNNING
        result.started_at = datetime.utcnow()
        ctx._current = result
        logger.info("[%d] %s", step.ordinal, step.title)

        try:
            if step.precondition is not None and not step.precondition(ctx):
                result.status = StepStatus.SKIPPED
                logger.info("Skipping %s: precondition not met", step.name)
                return False

            step.action(ctx)

            if step.verify is not None and not step.verify(ctx):
                raise VerificationFailedError(
                    f"{step.title}: system did not reach the intended state",
                    subject=step.name
                )

            result.status = StepStatus.SUCCEEDED
            return False

        except ServiceNotFoundError as e:
            # No daemon to protect the host, whatever the step criticality
            return self._record_failure(step, result, e.kind, str(e), e.subject, fatal=True)
        except HardeningError as e:
            return self._record_failure(step, result, e.kind, str(e), e.subject)
        except Exception as e:
            logger.debug("Unexpected error in step %s", step.name, exc_info=True)
            return self._record_failure(step, result, type(e).__name__, str(e), None)
        finally:
            ctx._current = None
            result.finished_at = datetime.utcnow()
            result.execution_time_ms = int(
                (result.finished_at - result.started_at).total_seconds() * 1000
            )

    def _record_failure(self, step: Step, result: StepResult, kind: str,
                        reason: str, subject: Optional[str], fatal: bool = False) -> bool:
        fatal = fatal or step.criticality == StepCriticality.FATAL
        result.status = StepStatus.FAILED
        result.error_kind = kind
        result.reason = reason
        result.subject = subject

        if fatal:
            logger.error("Step %s failed (%s): %s", step.name, kind, reason)
        else:
            logger.warning("Step %s failed, continuing (%s): %s", step.name, kind, reason)
        return fatal

    @contextmanager
    def _signals_deferred(self) -> Iterator[None]:
        self._received_signal = None
        if not self.defer_signals or threading.current_thread() is not threading.main_thread():
            yield
            return

        def _hold(signum: int, frame: Any) -> None:
            self._received_signal = signum
            logger.warning("Received %s; stopping after the current step",
                           signal.Signals(signum).name)

        previous = {sig: signal.signal(sig, _hold) for sig in DEFERRED_SIGNALS}
        try:
            yield
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler if handler is not None else signal.SIG_DFL)


def _validate_unique(steps: List[Step]) -> None:
    names = [s.name for s in steps]
    ordinals = [s.ordinal for s in steps]
    if len(set(names)) != len(names):
        raise ValueError("Step names must be unique")
    if len(set(ordinals)) != len(ordinals):
        raise ValueError("Step ordinals must be unique")
