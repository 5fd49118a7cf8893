# tests/test_metrics_export.py
from __future__ import annotations

from pathlib import Path

import pytest
from prometheus_client.parser import text_string_to_metric_families

from errors import ReportWriteError
from metrics_export import render_metrics, write_metrics
from report import DurationStats, Report


def _report(duration) -> Report:
    return Report(
        total_cycles=3,
        total_requests=12,
        success_count=9,
        error_count=3,
        duration=duration,
        response_codes={200: 7, 503: 2},
        cycle_details=(),
    )


def _samples(text: str) -> dict[tuple[str, tuple], float]:
    samples: dict[tuple[str, tuple], float] = {}
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            samples[(sample.name, tuple(sorted(sample.labels.items())))] = sample.value
    return samples


def test_render_metrics_exposes_counts_and_latency() -> None:
    text = render_metrics(_report(DurationStats(min_ns=5_000_000, avg_ns=250_000_000, max_ns=2_000_000_000)))
    samples = _samples(text)

    assert samples[("cycleload_cycles", ())] == 3
    assert samples[("cycleload_requests", (("outcome", "success"),))] == 9
    assert samples[("cycleload_requests", (("outcome", "error"),))] == 3
    assert samples[("cycleload_response_codes", (("code", "200"),))] == 7
    assert samples[("cycleload_response_codes", (("code", "503"),))] == 2
    assert samples[("cycleload_request_duration_seconds", (("stat", "min"),))] == pytest.approx(0.005)
    assert samples[("cycleload_request_duration_seconds", (("stat", "avg"),))] == pytest.approx(0.25)
    assert samples[("cycleload_request_duration_seconds", (("stat", "max"),))] == pytest.approx(2.0)


def test_render_metrics_omits_latency_without_successes() -> None:
    text = render_metrics(_report(None))

    assert "cycleload_request_duration_seconds" not in text
    assert "cycleload_requests" in text


def test_write_metrics(tmp_path: Path) -> None:
    path = tmp_path / "metrics.prom"

    write_metrics(path, _report(None))

    assert ("cycleload_cycles", ()) in _samples(path.read_text(encoding="utf-8"))


def test_write_metrics_failure(tmp_path: Path) -> None:
    with pytest.raises(ReportWriteError):
        write_metrics(tmp_path / "missing" / "metrics.prom", _report(None))
