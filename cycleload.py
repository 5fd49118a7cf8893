from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from errors import ConfigError, ReportWriteError
from report import report_to_dict
from runner import RunConfig, run_load_test, write_outputs

logger = logging.getLogger("cycleload")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cycleload",
        description="Fire sequential cycles of concurrent GET requests and report latency.",
    )

    parser.add_argument("--url", default="http://localhost:8025/")
    parser.add_argument(
        "--fan-out",
        type=int,
        default=200,
        help="Requests launched per cycle.",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=50,
        help="Maximum requests in flight at once, shared across all cycles.",
    )
    parser.add_argument("--max-cycles", type=int, default=3000)
    parser.add_argument("--timeout-s", type=float, default=30.0)

    parser.add_argument("--output-dir", type=Path, default=Path("runs"))
    parser.add_argument("--run-name", default=None)
    parser.add_argument("--report-filename", default="api_test_detailed_report.json")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
    )

    return parser


def _validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if args.fan_out <= 0:
        parser.error("--fan-out must be > 0")
    if args.concurrency <= 0:
        parser.error("--concurrency must be > 0")
    if args.max_cycles <= 0:
        parser.error("--max-cycles must be > 0")
    if args.timeout_s <= 0:
        parser.error("--timeout-s must be > 0")
    if not args.report_filename.strip():
        parser.error("--report-filename cannot be empty")


def _config_from_args(args: argparse.Namespace) -> RunConfig:
    return RunConfig(
        url=args.url,
        fan_out=args.fan_out,
        concurrency=args.concurrency,
        max_cycles=args.max_cycles,
        timeout_s=args.timeout_s,
        output_dir=args.output_dir,
        run_name=args.run_name,
        report_filename=args.report_filename,
    )


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _validate_args(parser, args)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = _config_from_args(args)
    try:
        report = asyncio.run(run_load_test(config))
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130

    try:
        output_dir = write_outputs(config, report)
    except ReportWriteError as exc:
        logger.error("%s", exc)
        overall = report_to_dict(report)
        overall.pop("cycle_details")
        logger.error("Run summary (not persisted): %s", json.dumps(overall))
        return 1

    print(f"Run complete. Outputs written to: {output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
