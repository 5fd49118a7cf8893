# tests/test_cli.py
from __future__ import annotations

import json
from pathlib import Path

import pytest

import cycleload
from errors import ConfigError, ReportWriteError
from report import Report
from runner import RunConfig


def _empty_report(config: RunConfig) -> Report:
    return Report(
        total_cycles=config.max_cycles,
        total_requests=0,
        success_count=0,
        error_count=0,
        duration=None,
        response_codes={},
        cycle_details=(),
    )


def test_parser_defaults() -> None:
    args = cycleload.build_parser().parse_args([])

    assert args.url == "http://localhost:8025/"
    assert args.fan_out == 200
    assert args.concurrency == 50
    assert args.max_cycles == 3000
    assert args.report_filename == "api_test_detailed_report.json"


@pytest.mark.parametrize(
    "argv",
    [
        ["--fan-out", "0"],
        ["--concurrency", "0"],
        ["--max-cycles", "-1"],
        ["--timeout-s", "0"],
        ["--report-filename", " "],
    ],
)
def test_invalid_arguments_exit_with_usage_error(argv: list[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cycleload.main(argv)

    assert excinfo.value.code == 2


def test_main_runs_and_writes_outputs(monkeypatch, tmp_path: Path, capsys) -> None:
    seen: list[RunConfig] = []

    async def fake_run(config: RunConfig) -> Report:
        seen.append(config)
        return _empty_report(config)

    monkeypatch.setattr(cycleload, "run_load_test", fake_run)

    code = cycleload.main(
        [
            "--url", "http://target.test/",
            "--fan-out", "20",
            "--concurrency", "4",
            "--max-cycles", "2",
            "--output-dir", str(tmp_path),
            "--run-name", "cli",
        ]
    )

    assert code == 0
    assert seen[0].fan_out == 20
    assert seen[0].concurrency == 4
    run_dirs = list(tmp_path.iterdir())
    assert len(run_dirs) == 1
    saved = json.loads((run_dirs[0] / "api_test_detailed_report.json").read_text(encoding="utf-8"))
    assert saved["total_cycles"] == 2
    assert "Outputs written to" in capsys.readouterr().out


def test_main_reports_config_errors(monkeypatch) -> None:
    async def fake_run(config: RunConfig) -> Report:
        raise ConfigError("url must be an absolute http(s) URL")

    monkeypatch.setattr(cycleload, "run_load_test", fake_run)

    assert cycleload.main(["--url", "nope"]) == 2


def test_main_write_failure_is_terminal_for_reporting_only(monkeypatch, caplog) -> None:
    async def fake_run(config: RunConfig) -> Report:
        return _empty_report(config)

    def failing_write(config: RunConfig, report: Report) -> Path:
        raise ReportWriteError("disk full")

    monkeypatch.setattr(cycleload, "run_load_test", fake_run)
    monkeypatch.setattr(cycleload, "write_outputs", failing_write)

    with caplog.at_level("ERROR", logger="cycleload"):
        code = cycleload.main(["--max-cycles", "1"])

    assert code == 1
    assert "disk full" in caplog.text
    assert "Run summary (not persisted)" in caplog.text
