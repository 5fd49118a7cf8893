from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import urlparse

import httpx

from errors import ConfigError, ReportWriteError
from loadgen import (
    Clock,
    HttpxTransport,
    RequestOutcome,
    Transport,
    execute_request,
    make_admission_gate,
)
from metrics_export import write_metrics
from report import (
    CycleStats,
    Report,
    RunAccumulator,
    build_report,
    cycle_stats_from_summary,
    format_ms,
    summarize_outcomes,
    write_report_json,
    write_summary_markdown,
)

logger = logging.getLogger(__name__)


@dataclass
class RunConfig:
    url: str = "http://localhost:8025/"
    fan_out: int = 200
    concurrency: int = 50
    max_cycles: int = 3000
    timeout_s: float = 30.0
    output_dir: Path = Path("runs")
    run_name: Optional[str] = None
    report_filename: str = "api_test_detailed_report.json"


def _positive_int(value: Any, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")


def validate_config(config: RunConfig) -> None:
    if not isinstance(config.url, str) or not config.url.strip():
        raise ConfigError("url must be a non-empty string")
    parsed = urlparse(config.url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ConfigError(f"url must be an absolute http(s) URL, got {config.url!r}")
    _positive_int(config.fan_out, "fan_out")
    _positive_int(config.concurrency, "concurrency")
    _positive_int(config.max_cycles, "max_cycles")
    if config.timeout_s <= 0:
        raise ConfigError(f"timeout_s must be > 0, got {config.timeout_s}")
    if not config.report_filename.strip():
        raise ConfigError("report_filename cannot be empty")


async def run_cycle(
    fan_out: int,
    url: str,
    gate: asyncio.Semaphore,
    transport: Transport,
    clock: Clock = time.perf_counter_ns,
) -> list[RequestOutcome]:
    if fan_out < 0:
        raise ConfigError(f"fan_out must be >= 0, got {fan_out}")
    if fan_out == 0:
        return []

    tasks = [
        asyncio.create_task(execute_request(task_id, url, gate, transport, clock))
        for task_id in range(fan_out)
    ]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def _log_cycle(stats: CycleStats, max_cycles: int) -> None:
    avg_ms = format_ms(stats.duration.avg_ns) if stats.duration is not None else None
    logger.info(
        "Cycle %d/%d done: %d requests, %d ok, %d errors, avg %s ms",
        stats.cycle_number,
        max_cycles,
        stats.total_requests,
        stats.success_count,
        stats.error_count,
        "-" if avg_ms is None else f"{avg_ms:.3f}",
    )


async def run_cycles(
    config: RunConfig,
    transport: Transport,
    clock: Clock = time.perf_counter_ns,
    on_cycle_complete: Optional[Callable[[CycleStats], None]] = None,
) -> Report:
    validate_config(config)
    gate = make_admission_gate(config.concurrency)
    accumulator = RunAccumulator()
    cycle_details: list[CycleStats] = []

    for cycle_number in range(1, config.max_cycles + 1):
        logger.info("Starting cycle %d/%d", cycle_number, config.max_cycles)
        outcomes = await run_cycle(config.fan_out, config.url, gate, transport, clock)
        summary = summarize_outcomes(outcomes)
        stats = cycle_stats_from_summary(cycle_number, summary)
        cycle_details.append(stats)
        accumulator.add(summary)
        _log_cycle(stats, config.max_cycles)
        if on_cycle_complete is not None:
            on_cycle_complete(stats)

    return build_report(cycle_details, accumulator.snapshot())


async def run_load_test(
    config: RunConfig,
    transport: Optional[Transport] = None,
    on_cycle_complete: Optional[Callable[[CycleStats], None]] = None,
) -> Report:
    validate_config(config)
    if transport is not None:
        return await run_cycles(config, transport, on_cycle_complete=on_cycle_complete)

    max_connections = max(config.concurrency, 1)
    limits = httpx.Limits(
        max_connections=max_connections,
        max_keepalive_connections=max_connections,
    )
    async with httpx.AsyncClient(limits=limits) as client:
        return await run_cycles(
            config,
            HttpxTransport(client, timeout_s=float(config.timeout_s)),
            on_cycle_complete=on_cycle_complete,
        )


def _ensure_output_dir(base_output_dir: Path, run_name: Optional[str]) -> Path:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    normalized_run_name = (run_name or "run").strip().replace(" ", "_")
    output_dir = base_output_dir / f"{normalized_run_name}_{timestamp}"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


def resolved_config_dict(config: RunConfig, output_dir: Path) -> dict[str, Any]:
    payload = asdict(config)
    payload["output_dir"] = str(config.output_dir)
    payload["resolved_run_dir"] = str(output_dir)
    payload["written_at_utc"] = datetime.now(timezone.utc).isoformat()
    return payload


def write_outputs(config: RunConfig, report: Report) -> Path:
    try:
        output_dir = _ensure_output_dir(config.output_dir, config.run_name)
        resolved_config = resolved_config_dict(config, output_dir)
        (output_dir / "config.json").write_text(
            json.dumps(resolved_config, indent=2), encoding="utf-8"
        )
    except OSError as exc:
        raise ReportWriteError(
            f"Failed to prepare output directory under {config.output_dir}: {exc}"
        ) from exc

    write_report_json(output_dir / config.report_filename, report)
    write_summary_markdown(
        output_path=output_dir / "summary.md",
        run_name=config.run_name or "run",
        resolved_config=resolved_config,
        report=report,
    )
    write_metrics(output_dir / "metrics.prom", report)
    return output_dir
