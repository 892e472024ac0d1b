"""Data models for provisioning pipelines."""
from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from ..exit_codes import ExitCode

ContextT = TypeVar("ContextT")


class ProvisionError(RuntimeError):
    """Raised by step actions when the step cannot reach its end state."""

    def __init__(self, message: str, *, remediation: str | None = None) -> None:
        """Store an optional remediation hint shown to the user."""
        super().__init__(message)
        self.remediation = remediation


class StepPolicy(str, Enum):
    """What the runner does when a step raises :class:`ProvisionError`."""

    ABORT = "abort"
    WARN = "warn"


class StepStatus(str, Enum):
    """Outcome of a single pipeline step."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    WARNING = "warning"
    FAILED = "failed"
    DEFERRED = "deferred"

    @property
    def halts(self) -> bool:
        """Return ``True`` when no further steps may run after this status."""
        return self in (StepStatus.FAILED, StepStatus.DEFERRED)


class PipelineStatus(str, Enum):
    """Overall result of a pipeline run."""

    COMPLETED = "completed"
    DEFERRED = "deferred"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def exit_code(self) -> ExitCode:
        """Map the pipeline status onto the CLI exit code."""
        if self is PipelineStatus.FAILED:
            return ExitCode.FAILURE
        return ExitCode.OK


@dataclass(slots=True, frozen=True)
class StepOutcome:
    """Outcome of running a step."""

    id: str
    status: StepStatus
    message: str
    remediation: str | None = None
    changed: int = 0
    duration_ms: int | None = None
    data: Mapping[str, Any] | None = None

    @classmethod
    def success(cls, message: str, *, changed: int = 1, **kwargs: Any) -> StepOutcome:
        """Build a successful outcome; the step id is filled in by the runner."""
        return cls(id="", status=StepStatus.SUCCESS, message=message, changed=changed, **kwargs)

    @classmethod
    def skipped(cls, message: str, **kwargs: Any) -> StepOutcome:
        """Build an outcome for a step whose end state already holds."""
        return cls(id="", status=StepStatus.SKIPPED, message=message, changed=0, **kwargs)

    @classmethod
    def warning(cls, message: str, *, changed: int = 0, **kwargs: Any) -> StepOutcome:
        """Build a non-fatal problem outcome."""
        return cls(id="", status=StepStatus.WARNING, message=message, changed=changed, **kwargs)

    @classmethod
    def deferred(cls, message: str, *, changed: int = 0, **kwargs: Any) -> StepOutcome:
        """Build an outcome that hands control back to the user (e.g. restart)."""
        return cls(id="", status=StepStatus.DEFERRED, message=message, changed=changed, **kwargs)


@dataclass(slots=True, frozen=True)
class StepDefinition(Generic[ContextT]):
    """Metadata + callables for one provisioning step.

    ``guard`` returns ``True`` when the step's end state already holds; the
    runner then records a skipped outcome without calling ``action``.
    """

    id: str
    title: str
    action: Callable[[ContextT], StepOutcome]
    guard: Callable[[ContextT], bool] | None = None
    skip_message: str = "Already satisfied."
    policy: StepPolicy = StepPolicy.ABORT


@dataclass(slots=True, frozen=True)
class PipelineSummary:
    """Aggregated summary derived from step outcomes."""

    status: PipelineStatus
    exit_code: int
    totals: Mapping[StepStatus, int]
    failed_step: str | None = None
    changed: int = 0


@dataclass(slots=True, frozen=True)
class PipelineReport:
    """Complete report for a pipeline run."""

    name: str
    outcomes: Sequence[StepOutcome]
    summary: PipelineSummary
    metadata: Mapping[str, Any] | None = None

    def outcome(self, step_id: str) -> StepOutcome | None:
        """Return the outcome recorded for *step_id*, if the step ran."""
        for outcome in self.outcomes:
            if outcome.id == step_id:
                return outcome
        return None


def aggregate_outcomes(outcomes: Iterable[StepOutcome]) -> PipelineSummary:
    """Compute the overall status and exit code for *outcomes*."""
    totals: dict[StepStatus, int] = {status: 0 for status in StepStatus}
    status = PipelineStatus.COMPLETED
    failed_step: str | None = None
    changed = 0
    for outcome in outcomes:
        totals[outcome.status] += 1
        changed += outcome.changed
        if outcome.status is StepStatus.FAILED:
            status = PipelineStatus.FAILED
            failed_step = outcome.id
        elif outcome.status is StepStatus.DEFERRED and status is PipelineStatus.COMPLETED:
            status = PipelineStatus.DEFERRED
    return PipelineSummary(
        status=status,
        exit_code=int(status.exit_code),
        totals=totals,
        failed_step=failed_step,
        changed=changed,
    )


def build_report(
    name: str,
    outcomes: Sequence[StepOutcome],
    metadata: Mapping[str, Any] | None = None,
) -> PipelineReport:
    """Create a full PipelineReport from step outcomes."""
    summary = aggregate_outcomes(outcomes)
    return PipelineReport(name=name, outcomes=tuple(outcomes), summary=summary, metadata=metadata)


def cancelled_report(name: str, message: str) -> PipelineReport:
    """Return the report for a run the user declined before any step ran."""
    summary = PipelineSummary(
        status=PipelineStatus.CANCELLED,
        exit_code=int(ExitCode.OK),
        totals={status: 0 for status in StepStatus},
    )
    return PipelineReport(name=name, outcomes=(), summary=summary, metadata={"message": message})
