"""
Log source (ClickHouse) and newline-delimited JSON log files.
"""

import json
import os
import sys
from typing import Any, Dict, Iterable, Iterator, List, Optional
from urllib.parse import urlsplit

import clickhouse_connect

from .config import SourceConfig
from .models import LogRecord, MalformedRecordError, SourceUnavailableError
from .utils import format_timestamp, parse_timestamp


def record_from_row(row: Dict[str, Any]) -> LogRecord:
    """
    Build a LogRecord from a JSON object or database row.
    Accepts camelCase (file) or snake_case (database) keys.
    Raises ValueError if a field is missing or has the wrong type.
    """
    if not isinstance(row, dict):
        raise ValueError(f"expected an object, got {type(row).__name__}")

    start = row.get("startTime", row.get("start_time"))
    if start is None:
        raise ValueError("missing startTime")
    url = row.get("url")
    parts = urlsplit(url) if isinstance(url, str) else None
    if parts is None or not parts.scheme or not parts.hostname:
        raise ValueError(f"missing or invalid url: {url!r}")
    try:
        parts.port  # raises ValueError for out-of-range or non-numeric ports
    except ValueError as e:
        raise ValueError(f"invalid url {url!r}: {e}") from e
    fmt = row.get("format")
    if fmt is None:
        fmt = ""
    if not isinstance(fmt, str):
        raise ValueError(f"invalid format: {fmt!r}")

    return LogRecord(start_time=parse_timestamp(start), url=url, format=fmt)


def record_to_json(record: LogRecord) -> str:
    return json.dumps({
        "startTime": format_timestamp(record.start_time),
        "url": record.url,
        "format": record.format,
    })


class ClickHouseLogSource:
    """Reads captured request logs from a ClickHouse table."""

    def __init__(self, config: SourceConfig, client=None):
        self.config = config
        self._client = client

    def _get_client(self):
        if self._client is None:
            cfg = self.config
            try:
                self._client = clickhouse_connect.get_client(
                    host=cfg.host,
                    port=cfg.port,
                    username=cfg.username,
                    password=cfg.password,
                    database=cfg.database,
                )
            except Exception as e:
                raise SourceUnavailableError(
                    f"cannot connect to ClickHouse at {cfg.host}:{cfg.port}: {e}") from e
            print(f"[Source] Connected to ClickHouse at {cfg.host}:{cfg.port}")
        return self._client

    def build_query(self, since_minutes: int) -> tuple:
        """Return (sql, parameters) selecting the window, oldest first."""
        cfg = self.config
        where = ["start_time >= now() - toIntervalMinute({since:UInt32})"]
        params: Dict[str, Any] = {"table": cfg.table, "since": int(since_minutes)}
        for column in ("node_id", "user_agent", "log_sender"):
            value = getattr(cfg, column)
            if value:
                where.append(f"{column} = {{{column}:String}}")
                params[column] = value
        sql = (
            "SELECT start_time, url, format FROM {table:Identifier} "
            f"WHERE {' AND '.join(where)} "
            "ORDER BY start_time ASC"
        )
        return sql, params

    def fetch_logs(self, since_minutes: int) -> List[LogRecord]:
        """Fetch logs from the last since_minutes minutes, ordered by start_time."""
        sql, params = self.build_query(since_minutes)
        client = self._get_client()
        try:
            result = client.query(sql, parameters=params)
            rows = list(result.named_results())
        except Exception as e:
            raise SourceUnavailableError(
                f"query on {self.config.table} (last {since_minutes} min) failed: {e}") from e

        records = []
        for i, row in enumerate(rows):
            try:
                records.append(record_from_row(row))
            except ValueError as e:
                raise SourceUnavailableError(
                    f"row {i} of {self.config.table} is not a valid log record: {e}") from e
        print(f"[Source] Fetched {len(records)} logs from the last {since_minutes} min")
        return records


def write_log_file(path: str, records: Iterable[LogRecord]) -> int:
    """Write records as ND-JSON. Returns the number of lines written."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    count = 0
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(record_to_json(record) + "\n")
            count += 1
    return count


def read_log_file(path: str, skip_malformed: bool = False) -> Iterator[LogRecord]:
    """
    Lazily read an ND-JSON log file.

    Lines must parse into valid records in non-decreasing start_time order.
    A bad line raises MalformedRecordError with its line number, or is
    skipped with a warning when skip_malformed is True.
    """
    last: Optional[LogRecord] = None
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = record_from_row(json.loads(line))
                if last is not None and record.start_time < last.start_time:
                    raise ValueError(
                        f"startTime {format_timestamp(record.start_time)} is earlier than "
                        f"the previous record ({format_timestamp(last.start_time)})")
            except ValueError as e:
                # json.JSONDecodeError is a ValueError
                if not skip_malformed:
                    raise MalformedRecordError(path, line_no, str(e)) from e
                print(f"Warning: skipping {path}:{line_no}: {e}", file=sys.stderr)
                continue
            last = record
            yield record
