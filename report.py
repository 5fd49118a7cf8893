from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from errors import ReportWriteError
from loadgen import RequestOutcome


@dataclass(frozen=True)
class DurationStats:
    min_ns: int
    avg_ns: int
    max_ns: int


@dataclass(frozen=True)
class OutcomeSummary:
    total: int
    success_count: int
    error_count: int
    response_codes: dict[int, int] = field(default_factory=dict)
    durations: tuple[int, ...] = ()


@dataclass(frozen=True)
class CycleStats:
    cycle_number: int
    total_requests: int
    success_count: int
    error_count: int
    duration: Optional[DurationStats]
    response_codes: dict[int, int]


@dataclass(frozen=True)
class Report:
    total_cycles: int
    total_requests: int
    success_count: int
    error_count: int
    duration: Optional[DurationStats]
    response_codes: dict[int, int]
    cycle_details: tuple[CycleStats, ...]


def summarize_durations(durations: Sequence[int]) -> Optional[DurationStats]:
    # No successes means no latency to report, not a latency of zero.
    if not durations:
        return None
    return DurationStats(
        min_ns=min(durations),
        avg_ns=sum(durations) // len(durations),
        max_ns=max(durations),
    )


def summarize_outcomes(outcomes: Iterable[RequestOutcome]) -> OutcomeSummary:
    total = 0
    errors = 0
    codes: Counter[int] = Counter()
    durations: list[int] = []
    for outcome in outcomes:
        total += 1
        if outcome.ok:
            codes[outcome.status_code] += 1
            durations.append(outcome.duration_ns)
        else:
            errors += 1
    return OutcomeSummary(
        total=total,
        success_count=total - errors,
        error_count=errors,
        response_codes=dict(sorted(codes.items())),
        durations=tuple(durations),
    )


def cycle_stats_from_summary(cycle_number: int, summary: OutcomeSummary) -> CycleStats:
    return CycleStats(
        cycle_number=cycle_number,
        total_requests=summary.total,
        success_count=summary.success_count,
        error_count=summary.error_count,
        duration=summarize_durations(summary.durations),
        response_codes=dict(summary.response_codes),
    )


def build_cycle_stats(cycle_number: int, outcomes: Iterable[RequestOutcome]) -> CycleStats:
    return cycle_stats_from_summary(cycle_number, summarize_outcomes(outcomes))


class RunAccumulator:
    """Run-wide totals, mutated only by the run controller between cycles."""

    def __init__(self) -> None:
        self._total = 0
        self._errors = 0
        self._codes: Counter[int] = Counter()
        self._durations: list[int] = []

    def add(self, summary: OutcomeSummary) -> None:
        self._total += summary.total
        self._errors += summary.error_count
        self._codes.update(summary.response_codes)
        self._durations.extend(summary.durations)

    def snapshot(self) -> OutcomeSummary:
        return OutcomeSummary(
            total=self._total,
            success_count=self._total - self._errors,
            error_count=self._errors,
            response_codes=dict(sorted(self._codes.items())),
            durations=tuple(self._durations),
        )


def build_report(cycle_details: Sequence[CycleStats], overall: OutcomeSummary) -> Report:
    return Report(
        total_cycles=len(cycle_details),
        total_requests=overall.total,
        success_count=overall.success_count,
        error_count=overall.error_count,
        duration=summarize_durations(overall.durations),
        response_codes=dict(overall.response_codes),
        cycle_details=tuple(cycle_details),
    )


# ---- formatting ----


def format_ms(duration_ns: int) -> float:
    return round(duration_ns / 1_000_000, 3)


def format_seconds(duration_ns: int) -> str:
    return f"{duration_ns / 1_000_000_000:.3f} seconds"


def format_minutes(duration_ns: int) -> str:
    return f"{duration_ns / 60_000_000_000:.3f} minutes"


def _duration_fields(duration: Optional[DurationStats]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for label in ("avg", "min", "max"):
        value = getattr(duration, f"{label}_ns") if duration is not None else None
        fields[f"{label}_duration_ms"] = format_ms(value) if value is not None else None
        fields[f"{label}_duration_sec"] = (
            format_seconds(value) if value is not None else None
        )
        fields[f"{label}_duration_min"] = (
            format_minutes(value) if value is not None else None
        )
    return fields


def _codes_dict(codes: dict[int, int]) -> dict[str, int]:
    return {str(code): count for code, count in sorted(codes.items())}


def cycle_stats_to_dict(stats: CycleStats) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "cycle_number": stats.cycle_number,
        "total_requests": stats.total_requests,
        "success_count": stats.success_count,
        "error_count": stats.error_count,
    }
    payload.update(_duration_fields(stats.duration))
    payload["response_codes"] = _codes_dict(stats.response_codes)
    return payload


def report_to_dict(report: Report) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "total_cycles": report.total_cycles,
        "total_requests": report.total_requests,
        "success_count": report.success_count,
        "error_count": report.error_count,
    }
    payload.update(_duration_fields(report.duration))
    payload["response_codes"] = _codes_dict(report.response_codes)
    payload["cycle_details"] = [cycle_stats_to_dict(item) for item in report.cycle_details]
    return payload


def write_report_json(output_path: Path, report: Report) -> None:
    try:
        output_path.write_text(json.dumps(report_to_dict(report), indent=2), encoding="utf-8")
    except OSError as exc:
        raise ReportWriteError(f"Failed to write report to {output_path}: {exc}") from exc


def _fmt(value: Optional[float], digits: int = 2) -> str:
    if value is None:
        return "-"
    return f"{value:.{digits}f}"


def _ms(duration: Optional[DurationStats], label: str) -> Optional[float]:
    if duration is None:
        return None
    return getattr(duration, f"{label}_ns") / 1_000_000


def _codes_cell(codes: dict[int, int]) -> str:
    if not codes:
        return "-"
    return ", ".join(f"{code}: {count}" for code, count in sorted(codes.items()))


def write_summary_markdown(
    output_path: Path,
    run_name: str,
    resolved_config: dict[str, Any],
    report: Report,
) -> None:
    generated_at = datetime.now(timezone.utc).isoformat()
    lines: list[str] = []
    lines.append(f"# HTTP Cycle Load Test Summary - {run_name}")
    lines.append("")
    lines.append(f"Generated at (UTC): `{generated_at}`")
    lines.append("")
    lines.append("## Configuration")
    lines.append("")
    lines.append("```json")
    lines.append(json.dumps(resolved_config, indent=2))
    lines.append("```")
    lines.append("")
    lines.append("## Overall")
    lines.append("")
    lines.append("| Cycles | Req | OK | Errors | Min ms | Avg ms | Max ms | Response codes |")
    lines.append("|---:|---:|---:|---:|---:|---:|---:|---|")
    lines.append(
        "| "
        f"{report.total_cycles} | "
        f"{report.total_requests} | "
        f"{report.success_count} | "
        f"{report.error_count} | "
        f"{_fmt(_ms(report.duration, 'min'))} | "
        f"{_fmt(_ms(report.duration, 'avg'))} | "
        f"{_fmt(_ms(report.duration, 'max'))} | "
        f"{_codes_cell(report.response_codes)} |"
    )
    lines.append("")
    lines.append("## Cycles")
    lines.append("")
    lines.append("| Cycle | Req | OK | Errors | Min ms | Avg ms | Max ms | Response codes |")
    lines.append("|---:|---:|---:|---:|---:|---:|---:|---|")
    for stats in report.cycle_details:
        lines.append(
            "| "
            f"{stats.cycle_number} | "
            f"{stats.total_requests} | "
            f"{stats.success_count} | "
            f"{stats.error_count} | "
            f"{_fmt(_ms(stats.duration, 'min'))} | "
            f"{_fmt(_ms(stats.duration, 'avg'))} | "
            f"{_fmt(_ms(stats.duration, 'max'))} | "
            f"{_codes_cell(stats.response_codes)} |"
        )

    try:
        output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    except OSError as exc:
        raise ReportWriteError(f"Failed to write summary to {output_path}: {exc}") from exc
