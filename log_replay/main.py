#!/usr/bin/env python3
"""
Main entry point for replaying captured HTTP request logs.

Usage:
    python replay_logs.py get-logs --since 10
    python replay_logs.py replay -f logs/logs.ndjson --ip 203.0.113.7 -d 5 --http 2
"""

import argparse
import asyncio
import os
import sys
from datetime import datetime, timezone
from typing import List, Optional

from .config import DEFAULT_LOG_FILE, DEFAULT_TABLE, ReplayOptions, SourceConfig
from .dispatch import open_dispatcher
from .log_source import ClickHouseLogSource, read_log_file, write_log_file
from .models import EmptyBatchError, LogReplayError, ReplayReport
from .remap import remap_records
from .replay import replay_requests
from .statistics import aggregate_outcomes, print_summary, save_raw_outcomes, save_report
from .utils import hostname_of


def run_get_logs(config: SourceConfig, since_minutes: int, out_path: str,
                 source: Optional[ClickHouseLogSource] = None) -> str:
    """Fetch logs from the source and write them as ND-JSON. Nothing is written on failure."""
    if source is None:
        source = ClickHouseLogSource(config)
    records = source.fetch_logs(since_minutes)
    try:
        count = write_log_file(out_path, records)
    except OSError as e:
        raise LogReplayError(f"cannot write log file {out_path}: {e}") from e
    print(f"[Source] Wrote {count} logs to {out_path}")
    return out_path


async def run_replay(options: ReplayOptions, dispatch=None) -> str:
    """
    Replay a log file against the target and save the report.
    Returns the report path. dispatch overrides the HTTP dispatcher (tests).
    """
    print(f"\n{'='*60}")
    print(f"Replaying logs: {options.log_file}")
    print(f"Target: {options.target_host or '(original hosts)'}, HTTP/{options.http_version}, "
          f"TLS={'on' if options.use_tls else 'off'}")
    print(f"{'='*60}\n")

    try:
        requests = remap_records(
            read_log_file(options.log_file, skip_malformed=options.skip_malformed),
            target_host=options.target_host,
            use_tls=options.use_tls,
            max_duration_minutes=options.max_duration_minutes,
            max_logs=options.max_logs,
            buffer_ms=options.schedule_buffer_ms,
        )
    except OSError as e:
        raise LogReplayError(f"cannot read log file {options.log_file}: {e}") from e

    if not requests:
        raise EmptyBatchError(f"no logs to replay in {options.log_file}")

    if dispatch is None:
        async with open_dispatcher(options.http_version, options.host_header,
                                   options.timeout_s) as dispatcher:
            outcomes = await replay_requests(requests, dispatcher.dispatch, spin_s=options.spin_s)
    else:
        outcomes = await replay_requests(requests, dispatch, spin_s=options.spin_s)

    report = ReplayReport(
        target_host=options.target_host or hostname_of(requests[0].url),
        http_version=options.http_version,
        date=datetime.now(timezone.utc),
        num_logs=len(requests),
        metrics=aggregate_outcomes(outcomes, successful_only=options.successful_only),
        num_outcomes=len(outcomes),
        num_errors=sum(1 for o in outcomes if o.request_err),
    )

    try:
        report_path = save_report(options.output_dir, report)
        name = os.path.splitext(os.path.basename(report_path))[0]
        raw_path = save_raw_outcomes(options.output_dir, name, outcomes)
    except OSError as e:
        raise LogReplayError(f"cannot write report to {options.output_dir}: {e}") from e

    print(f"\nReplay completed.")
    print(f"  Report saved to: {report_path}")
    print(f"  Raw outcomes saved to: {raw_path}")
    print_summary(report)
    return report_path


def positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    if not number > 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0, got {value}")
    return number


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Replay captured HTTP request logs at their original timing.")
    sub = ap.add_subparsers(dest="command", required=True)

    env = SourceConfig.from_env()
    gl = sub.add_parser("get-logs", help="Fetch recent logs into an ND-JSON file")
    gl.add_argument("--since", type=int, default=10, help="Recency window in minutes (default: 10)")
    gl.add_argument("--out", default=DEFAULT_LOG_FILE, help=f"Output file (default: {DEFAULT_LOG_FILE})")
    gl.add_argument("--ch-host", default=env.host, help="ClickHouse host (env CLICKHOUSE_HOST)")
    gl.add_argument("--ch-port", type=int, default=env.port, help="ClickHouse HTTP port (env CLICKHOUSE_PORT)")
    gl.add_argument("--ch-user", default=env.username, help="ClickHouse user (env CLICKHOUSE_USER)")
    gl.add_argument("--ch-password", default=env.password, help="ClickHouse password (env CLICKHOUSE_PASSWORD)")
    gl.add_argument("--ch-database", default=env.database, help="ClickHouse database (env CLICKHOUSE_DATABASE)")
    gl.add_argument("--table", default=DEFAULT_TABLE, help=f"Log table (default: {DEFAULT_TABLE})")
    gl.add_argument("--node-id", default=None, help="Only logs served by this node")
    gl.add_argument("--user-agent", default=None, help="Only logs with this user agent")
    gl.add_argument("--log-sender", default=None, help="Only logs sent by this sender")

    rp = sub.add_parser("replay", help="Replay an ND-JSON log file and write a report")
    rp.add_argument("-f", dest="log_file", default=DEFAULT_LOG_FILE,
                    help=f"Log file to replay (default: {DEFAULT_LOG_FILE})")
    rp.add_argument("--ip", dest="target_host", default=None,
                    help="Send every request to this IP/host instead of the logged host")
    rp.add_argument("-d", dest="max_duration", type=positive_float, default=None,
                    help="Only replay the first N minutes of the logs (original time)")
    rp.add_argument("-n", dest="max_logs", type=positive_int, default=None,
                    help="Replay at most N logs")
    rp.add_argument("--http", dest="http_version", type=int, choices=[1, 2], default=1,
                    help="HTTP version (default: 1)")
    rp.add_argument("--tls", action=argparse.BooleanOptionalAction, default=True,
                    help="Use https (default: on; HTTP/2 requires it)")
    rp.add_argument("--host-header", default=ReplayOptions.host_header,
                    help=f"Host header and TLS server name (default: {ReplayOptions.host_header})")
    rp.add_argument("--timeout", type=float, default=ReplayOptions.timeout_s,
                    help=f"Per-request timeout in seconds (default: {ReplayOptions.timeout_s:g})")
    rp.add_argument("--include-failures", action="store_true", default=False,
                    help="Aggregate all outcomes, not only status 200 (default: False)")
    rp.add_argument("--skip-malformed", action="store_true", default=False,
                    help="Skip malformed log lines instead of aborting (default: False)")
    rp.add_argument("--output-dir", default=".", help="Directory for the report (default: .)")
    rp.add_argument("--spin-ms", type=float, default=ReplayOptions.spin_s * 1000,
                    help="Window before each due time in which the loop only yields (default: 1)")
    return ap


def options_from_args(args: argparse.Namespace) -> ReplayOptions:
    return ReplayOptions(
        log_file=args.log_file,
        target_host=args.target_host,
        max_duration_minutes=args.max_duration,
        max_logs=args.max_logs,
        http_version=args.http_version,
        use_tls=args.tls,
        host_header=args.host_header,
        timeout_s=args.timeout,
        successful_only=not args.include_failures,
        skip_malformed=args.skip_malformed,
        output_dir=args.output_dir,
        spin_s=args.spin_ms / 1000.0,
    )


def source_config_from_args(args: argparse.Namespace) -> SourceConfig:
    return SourceConfig(
        host=args.ch_host,
        port=args.ch_port,
        username=args.ch_user,
        password=args.ch_password,
        database=args.ch_database,
        table=args.table,
        node_id=args.node_id,
        user_agent=args.user_agent,
        log_sender=args.log_sender,
    )


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        if args.command == "get-logs":
            run_get_logs(source_config_from_args(args), args.since, args.out)
        else:
            if args.http_version == 2 and not args.tls:
                print("Warning: HTTP/2 without TLS falls back to HTTP/1.1 on most servers",
                      file=sys.stderr)
            await run_replay(options_from_args(args))
    except EmptyBatchError as e:
        print(f"Nothing to do: {e}")
        return 0
    except LogReplayError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
