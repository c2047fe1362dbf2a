"""Per-phase aggregation and formatting of batch results."""

from __future__ import annotations

from typing import Any

from bulkops.models.batch_result import BatchResult
from bulkops.models.run_report import PhaseSummary, SampleRunReport


def summarize_phase(phase: str, result: BatchResult) -> PhaseSummary:
    """Collapse a BatchResult into the counts reported for a workflow phase."""
    summary = result.summary()
    return PhaseSummary(
        phase=phase,
        records=len(result.outcomes),
        successful=result.successful,
        failed=result.failed,
        duration_seconds=result.duration_seconds,
        status=result.status,
        errors=list(summary["errors"]),  # type: ignore[arg-type]
    )


def aggregate_phases(phases: list[PhaseSummary]) -> dict[str, Any]:
    """Aggregate phase summaries into totals."""
    return {
        "phases": len(phases),
        "records": sum(p.records for p in phases),
        "successful": sum(p.successful for p in phases),
        "failed": sum(p.failed for p in phases),
        "duration_seconds": round(sum(p.duration_seconds for p in phases), 2),
        "errors": [error for p in phases for error in p.errors],
    }


def format_phase_line(summary: PhaseSummary) -> str:
    """One line per phase, e.g. 'create: 100 records, 100 ok, 0 failed in 3.21s'."""
    line = (
        f"{summary.phase}: {summary.records} records, {summary.successful} ok, "
        f"{summary.failed} failed in {summary.duration_seconds:.2f}s"
    )
    if summary.status:
        line += f" (status: {summary.status})"
    return line


def format_run_report(report: SampleRunReport, show_failures: bool = False, limit: int = 10) -> str:
    """Format a sample run as a human-readable block."""
    lines = [
        f"[SUMMARY] Table: {report.table_logical_name} "
        f"({'elastic' if report.elastic else 'standard'}, delete via {report.deletion_strategy})",
        f"  Recommended parallelism: {report.recommended_parallelism}",
        f"  Max parallelism used: {report.max_parallelism}",
    ]
    lines.extend(f"  {format_phase_line(summary)}" for summary in report.phases)

    if show_failures:
        errors = [error for p in report.phases for error in p.errors]
        if errors:
            lines.append(f"  Errors ({len(errors)}):")
            for error in errors[:limit]:
                lines.append(f"    - {error}")
            if len(errors) > limit:
                lines.append(f"    ... and {len(errors) - limit} more")

    return "\n".join(lines)
