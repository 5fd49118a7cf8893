from __future__ import annotations

from pathlib import Path

from prometheus_client import CollectorRegistry, Gauge, generate_latest

from errors import ReportWriteError
from report import Report


def build_registry(report: Report) -> CollectorRegistry:
    registry = CollectorRegistry()

    cycles = Gauge(
        "cycleload_cycles",
        "Number of completed cycles in the run.",
        registry=registry,
    )
    cycles.set(report.total_cycles)

    requests = Gauge(
        "cycleload_requests",
        "Requests issued during the run by outcome.",
        ["outcome"],
        registry=registry,
    )
    requests.labels(outcome="success").set(report.success_count)
    requests.labels(outcome="error").set(report.error_count)

    codes = Gauge(
        "cycleload_response_codes",
        "Completed responses by HTTP status code.",
        ["code"],
        registry=registry,
    )
    for code, count in sorted(report.response_codes.items()):
        codes.labels(code=str(code)).set(count)

    if report.duration is not None:
        latency = Gauge(
            "cycleload_request_duration_seconds",
            "Latency of successful requests across the run.",
            ["stat"],
            registry=registry,
        )
        latency.labels(stat="min").set(report.duration.min_ns / 1e9)
        latency.labels(stat="avg").set(report.duration.avg_ns / 1e9)
        latency.labels(stat="max").set(report.duration.max_ns / 1e9)

    return registry


def render_metrics(report: Report) -> str:
    return generate_latest(build_registry(report)).decode("utf-8")


def write_metrics(output_path: Path, report: Report) -> None:
    try:
        output_path.write_text(render_metrics(report), encoding="utf-8")
    except OSError as exc:
        raise ReportWriteError(f"Failed to write metrics to {output_path}: {exc}") from exc
