"""Step pipeline infrastructure."""

from __future__ import annotations

from .engine import PipelineRunner, run_step
from .models import (
    PipelineReport,
    PipelineStatus,
    PipelineSummary,
    ProvisionError,
    StepDefinition,
    StepOutcome,
    StepPolicy,
    StepStatus,
    aggregate_outcomes,
    build_report,
    cancelled_report,
)
from .utils import serialize_report

__all__ = [
    "PipelineReport",
    "PipelineRunner",
    "PipelineStatus",
    "PipelineSummary",
    "ProvisionError",
    "StepDefinition",
    "StepOutcome",
    "StepPolicy",
    "StepStatus",
    "aggregate_outcomes",
    "build_report",
    "cancelled_report",
    "run_step",
    "serialize_report",
]
