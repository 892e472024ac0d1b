"""Sequential step runner shared by the host, guest and verify pipelines."""

from __future__ import annotations

import time
import traceback
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from typing import Generic

from .models import (
    ContextT,
    PipelineReport,
    ProvisionError,
    StepDefinition,
    StepOutcome,
    StepPolicy,
    StepStatus,
    build_report,
)

StepListener = Callable[[StepDefinition[ContextT], StepOutcome], None]


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _coerce_outcome(
    step: StepDefinition[ContextT],
    outcome: StepOutcome,
    duration_ms: int,
) -> StepOutcome:
    coerced = outcome
    if outcome.id != step.id:
        coerced = replace(coerced, id=step.id)
    if outcome.duration_ms is None:
        coerced = replace(coerced, duration_ms=duration_ms)
    return coerced


def _provision_failure(
    step: StepDefinition[ContextT],
    exc: ProvisionError,
    duration_ms: int,
) -> StepOutcome:
    status = StepStatus.WARNING if step.policy is StepPolicy.WARN else StepStatus.FAILED
    return StepOutcome(
        id=step.id,
        status=status,
        message=str(exc),
        remediation=exc.remediation,
        duration_ms=duration_ms,
    )


def _unexpected_failure(
    step: StepDefinition[ContextT],
    exc: Exception,
    duration_ms: int,
) -> StepOutcome:
    return StepOutcome(
        id=step.id,
        status=StepStatus.FAILED,
        message=f"Step '{step.id}' raised an unexpected error: {exc}",
        duration_ms=duration_ms,
        data={
            "exception": repr(exc),
            "traceback": traceback.format_exc(),
        },
    )


def run_step(step: StepDefinition[ContextT], context: ContextT) -> StepOutcome:
    """Evaluate the guard, run the action and translate failures per policy."""
    start = time.perf_counter()
    try:
        if step.guard is not None and step.guard(context):
            return StepOutcome(
                id=step.id,
                status=StepStatus.SKIPPED,
                message=step.skip_message,
                duration_ms=_duration_ms(start),
            )
        outcome = step.action(context)
    except ProvisionError as exc:
        return _provision_failure(step, exc, _duration_ms(start))
    except Exception as exc:
        return _unexpected_failure(step, exc, _duration_ms(start))
    return _coerce_outcome(step, outcome, _duration_ms(start))


class PipelineRunner(Generic[ContextT]):
    """Run an ordered tuple of steps, stopping at the first halting outcome."""

    def __init__(
        self,
        name: str,
        steps: Sequence[StepDefinition[ContextT]],
        *,
        listener: StepListener[ContextT] | None = None,
    ) -> None:
        """Store the pipeline name, its steps and an optional progress listener."""
        self.name = name
        self.steps = tuple(steps)
        self._listener = listener

    def run(
        self,
        context: ContextT,
        *,
        metadata: Mapping[str, object] | None = None,
    ) -> PipelineReport:
        """Run the steps in order and build the pipeline report."""
        start = time.perf_counter()
        outcomes: list[StepOutcome] = []
        for step in self.steps:
            outcome = run_step(step, context)
            outcomes.append(outcome)
            if self._listener is not None:
                self._listener(step, outcome)
            if outcome.status.halts:
                break
        run_metadata: dict[str, object] = {
            "duration_ms": _duration_ms(start),
            "steps_run": len(outcomes),
            "steps_total": len(self.steps),
        }
        if metadata:
            run_metadata.update(metadata)
        return build_report(self.name, outcomes, metadata=run_metadata)
