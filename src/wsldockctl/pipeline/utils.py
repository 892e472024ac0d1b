"""Helpers for serialising pipeline reports."""
from __future__ import annotations

from collections.abc import Mapping, Sequence

from .models import PipelineReport, StepStatus


def _sanitize_payload(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize_payload(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_sanitize_payload(item) for item in value]
    return str(value)


def serialize_report(report: PipelineReport) -> dict[str, object]:
    """Convert a pipeline report into a JSON-serialisable mapping."""
    totals = {
        status.value: int(report.summary.totals.get(status, 0))
        for status in StepStatus
    }
    summary_payload: dict[str, object] = {
        "status": report.summary.status.value,
        "exit_code": report.summary.exit_code,
        "changed": report.summary.changed,
        "totals": totals,
    }
    if report.summary.failed_step:
        summary_payload["failed_step"] = report.summary.failed_step
    steps_payload: list[dict[str, object]] = []
    for outcome in report.outcomes:
        step_payload: dict[str, object] = {
            "id": outcome.id,
            "status": outcome.status.value,
            "message": outcome.message,
            "changed": outcome.changed,
        }
        if outcome.remediation:
            step_payload["remediation"] = outcome.remediation
        if outcome.duration_ms is not None:
            step_payload["duration_ms"] = outcome.duration_ms
        if outcome.data:
            step_payload["data"] = _sanitize_payload(outcome.data)
        steps_payload.append(step_payload)

    metadata_payload = _sanitize_payload(report.metadata) if report.metadata else {}
    return {
        "pipeline": report.name,
        "summary": summary_payload,
        "steps": steps_payload,
        "metadata": metadata_payload,
    }
