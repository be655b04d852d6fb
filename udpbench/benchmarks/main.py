from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from ..corpus import load_corpus
from ..endpoints import configure_logger
from .aggregate import ServerResult
from .charts import render_charts
from .config import (
    DEFAULT_CLIENTS,
    DEFAULT_DELAY_MS,
    DEFAULT_MAX_WINDOWS,
    DEFAULT_RUNS_REQUIRED,
    DEFAULT_WAIT_BETWEEN_TESTS_MS,
    DEFAULT_WINDOW_MS,
    BenchmarkPlan,
    BenchmarkSettings,
    env_flag,
    env_float,
    env_int,
    load_targets,
)
from .report import format_report, write_artifacts
from .runner import BenchmarkRunner

LOGGER = logging.getLogger("udpbench.benchmark")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    env = os.environ
    parser = argparse.ArgumentParser(description="UDP Throughput Benchmark Harness")
    parser.add_argument(
        "--target",
        action="append",
        default=[],
        metavar="NAME=HOST[:PORT]",
        help="Server to benchmark; may be repeated",
    )
    parser.add_argument(
        "--plan-path",
        default=env.get("UDPBENCH_PLAN_PATH"),
        help="Optional JSON file listing {name, address, protocol} targets",
    )
    parser.add_argument(
        "--clients",
        type=int,
        default=env_int(env, "CLIENTS_TO_WAIT_FOR", DEFAULT_CLIENTS),
        help="Number of client endpoints per test",
    )
    parser.add_argument(
        "--delay-ms",
        type=float,
        default=env_float(env, "DELAY", DEFAULT_DELAY_MS),
        help="Milliseconds between bursts",
    )
    parser.add_argument(
        "--wait-between-tests-ms",
        type=float,
        default=env_float(env, "WAIT_TIME_BETWEEN_TESTS", DEFAULT_WAIT_BETWEEN_TESTS_MS),
        help="Cooldown between servers in milliseconds",
    )
    parser.add_argument(
        "--window-ms",
        type=float,
        default=env_float(env, "WINDOW_MS", DEFAULT_WINDOW_MS),
        help="Sampling window length in milliseconds",
    )
    parser.add_argument(
        "--runs",
        type=int,
        default=env_int(env, "RUNS_REQUIRED", DEFAULT_RUNS_REQUIRED),
        help="Non-empty windows required per server",
    )
    parser.add_argument(
        "--max-windows",
        type=int,
        default=env_int(env, "MAX_WINDOWS", DEFAULT_MAX_WINDOWS),
        help="Give up on a server after this many windows (0 waits forever)",
    )
    parser.add_argument(
        "--warmup-ms",
        type=float,
        default=env_float(env, "WARMUP_MS", 0.0),
        help="Send for this long before sampling starts",
    )
    parser.add_argument(
        "--bind-host",
        default=env.get("BIND_HOST", "0.0.0.0"),
        help="Local address client endpoints bind to",
    )
    parser.add_argument(
        "--corpus-path",
        default=env.get("UDPBENCH_CORPUS_PATH"),
        help="Text file with one message per line (defaults to the built-in corpus)",
    )
    parser.add_argument(
        "--log-messages",
        action="store_true",
        default=env_flag(env, "LOG_MESSAGES"),
        help="Log every received datagram",
    )
    parser.add_argument(
        "--message-log-path",
        default=env.get("MESSAGE_LOG_PATH"),
        help="Write the per-datagram log to this file instead of the console",
    )
    parser.add_argument(
        "--output-dir",
        default=env.get("BENCHMARK_OUTPUT_DIR"),
        help="Directory to store benchmark artefacts (charts, CSV files, manifest)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the planned targets without executing them",
    )
    parser.add_argument(
        "--log-level",
        default=env.get("BENCHMARK_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def build_plan(args: argparse.Namespace) -> BenchmarkPlan:
    settings = BenchmarkSettings(
        clients=args.clients,
        delay_s=args.delay_ms / 1000.0,
        cooldown_s=args.wait_between_tests_ms / 1000.0,
        window_s=args.window_ms / 1000.0,
        runs_required=args.runs,
        max_windows=args.max_windows,
        warmup_s=args.warmup_ms / 1000.0,
        bind_host=args.bind_host,
        log_messages=args.log_messages,
    )
    return BenchmarkPlan(targets=load_targets(args.plan_path, args.target), settings=settings)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        plan = build_plan(args)
        corpus = load_corpus(args.corpus_path)
    except (ValueError, OSError) as exc:
        LOGGER.error("Invalid benchmark configuration: %s", exc)
        return 2

    settings = plan.settings
    LOGGER.info(
        "Benchmarking %d server(s): %d clients, %d messages per burst, %.0fms delay",
        len(plan),
        settings.clients,
        len(corpus),
        settings.delay_s * 1000,
    )

    if args.dry_run:
        _print_plan(plan)
        return 0

    message_logger = None
    if settings.log_messages:
        log_path = Path(args.message_log_path) if args.message_log_path else None
        message_logger = configure_logger(log_path)

    runner = BenchmarkRunner(settings, corpus, message_logger=message_logger)
    try:
        results = asyncio.run(runner.run_all(plan.targets))
    except KeyboardInterrupt:
        print("benchmark interrupted", file=sys.stderr)
        return 130

    print(format_report(results))

    if args.output_dir:
        output_dir = Path(args.output_dir)
        charts = render_charts(results, runner.window_frames, output_dir)
        write_artifacts(output_dir, results, runner.window_frames, settings, charts)

    return _exit_code(results)


def _exit_code(results: list[ServerResult]) -> int:
    unreachable = [result.name for result in results if not result.reachable]
    if unreachable:
        LOGGER.warning("Unreachable targets: %s", ", ".join(unreachable))
        return 1
    return 0


def _print_plan(plan: BenchmarkPlan) -> None:
    settings = plan.settings
    for target in plan:
        print(f"Target: {target.name} ({target.protocol}://{target.address})")
    print(
        f"  clients={settings.clients}, delay={settings.delay_s * 1000:.0f}ms, "
        f"window={settings.window_s * 1000:.0f}ms, runs={settings.runs_required}, "
        f"max_windows={settings.max_windows or 'unbounded'}, "
        f"warmup={settings.warmup_s * 1000:.0f}ms, cooldown={settings.cooldown_s * 1000:.0f}ms"
    )


if __name__ == "__main__":
    sys.exit(main())
