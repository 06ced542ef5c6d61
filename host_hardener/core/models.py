"""
Data models for the host hardener using Pydantic for validation.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


EXIT_OK = 0
EXIT_FATAL = 1
EXIT_DEGRADED = 2


class OSType(str, Enum):
    """Operating system families the hardener recognises."""
    DEBIAN = "debian"
    UBUNTU = "ubuntu"
    UNKNOWN = "unknown"


class StepCriticality(str, Enum):
    """How a step failure affects the rest of the run."""
    FATAL = "fatal"
    DEGRADED_CONTINUE = "degraded-continue"


class StepStatus(str, Enum):
    """Execution status of a single hardening step."""
    PENDING = "pending"
    RUNNING = "running"
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Execution status of a whole hardening run."""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class ServiceStatus(str, Enum):
    """Runtime state of a system service as reported by the init system."""
    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


class SystemInfo(BaseModel):
    """System information detected during runtime."""
    os_type: OSType
    os_version: str
    architecture: str
    hostname: str
    kernel_version: Optional[str] = None
    package_manager: Optional[str] = None
    detected_at: datetime = Field(default_factory=datetime.utcnow)


class Directive(BaseModel):
    """A single ``KEY VALUE`` setting targeting a line-oriented config file."""
    model_config = ConfigDict(frozen=True)

    path: str
    key: str
    value: str

    @field_validator('key')
    @classmethod
    def validate_key(cls, v: str) -> str:
        """Keys are single whitespace-free tokens."""
        if not v or any(ch.isspace() for ch in v) or v.startswith('#'):
            raise ValueError(f"Invalid directive key: {v!r}")
        return v

    @property
    def line(self) -> str:
        return f"{self.key} {self.value}"


class Snapshot(BaseModel):
    """An immutable timestamped copy of a file taken before it was mutated."""
    model_config = ConfigDict(frozen=True)

    source: str
    path: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ServiceHandle(BaseModel):
    """A registry-confirmed service identity for a logical service."""
    model_config = ConfigDict(frozen=True)

    logical_name: str
    identity: str


class Step(BaseModel):
    """
    Definition of a hardening step.

    ``precondition``, ``action`` and ``verify`` receive the run's
    ``StepContext``. A falsy precondition skips the step; a falsy
    verification fails it.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique step identifier")
    ordinal: int = Field(..., ge=1, description="Position in the run")
    title: str = Field(..., description="Human-readable step title")
    action: Callable[[Any], Any]
    precondition: Optional[Callable[[Any], bool]] = None
    verify: Optional[Callable[[Any], bool]] = None
    criticality: StepCriticality = StepCriticality.FATAL
    remote_access: bool = Field(
        False, description="Step changes how operators reach the host"
    )

    @model_validator(mode='after')
    def validate_remote_access(self) -> "Step":
        """Remote-access steps must be fatal and must verify themselves."""
        if self.remote_access:
            if self.criticality != StepCriticality.FATAL:
                raise ValueError(f"Remote-access step '{self.name}' must be fatal")
            if self.verify is None:
                raise ValueError(f"Remote-access step '{self.name}' requires a verification")
        return self


class StepResult(BaseModel):
    """Outcome of a single step within a run."""
    name: str
    ordinal: int
    title: str
    criticality: StepCriticality
    status: StepStatus = StepStatus.PENDING

    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    execution_time_ms: Optional[int] = None

    # Failure context
    error_kind: Optional[str] = None
    reason: Optional[str] = None
    subject: Optional[str] = None

    notes: List[str] = Field(default_factory=list)

    @classmethod
    def pending(cls, step: Step) -> "StepResult":
        return cls(
            name=step.name,
            ordinal=step.ordinal,
            title=step.title,
            criticality=step.criticality,
        )


class RunReport(BaseModel):
    """Ordered per-step outcomes of one hardening run."""
    run_id: str = Field(..., description="Unique run identifier")
    status: RunStatus = RunStatus.NOT_STARTED
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    system_info: Optional[SystemInfo] = None

    results: List[StepResult] = Field(default_factory=list)
    snapshots: List[str] = Field(default_factory=list)
    aborted_by: Optional[str] = None
    abort_reason: Optional[str] = None

    # Summary statistics
    total_steps: int = 0
    succeeded_steps: int = 0
    failed_steps: int = 0
    skipped_steps: int = 0
    pending_steps: int = 0

    def calculate_summary(self) -> None:
        """Calculate summary statistics from step results."""
        self.total_steps = len(self.results)
        self.succeeded_steps = sum(1 for r in self.results if r.status == StepStatus.SUCCEEDED)
        self.failed_steps = sum(1 for r in self.results if r.status == StepStatus.FAILED)
        self.skipped_steps = sum(1 for r in self.results if r.status == StepStatus.SKIPPED)
        self.pending_steps = sum(1 for r in self.results if r.status == StepStatus.PENDING)

    @property
    def failures(self) -> List[StepResult]:
        return [r for r in self.results if r.status == StepStatus.FAILED]

    @property
    def fatal_failure(self) -> Optional[StepResult]:
        """The step that aborted the run, if any."""
        if self.aborted_by is None:
            return None
        for result in self.results:
            if result.name == self.aborted_by:
                return result
        return None

    @property
    def degraded(self) -> bool:
        """Completed, but at least one degraded-continue step failed."""
        return self.status == RunStatus.COMPLETED and bool(self.failures)

    @property
    def exit_code(self) -> int:
        if self.status != RunStatus.COMPLETED:
            return EXIT_FATAL
        if self.failures:
            return EXIT_DEGRADED
        return EXIT_OK
