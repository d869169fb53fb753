"""
Data structures and exceptions for the log_replay package.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Dict, Any


@dataclass(frozen=True)
class LogRecord:
    """One captured historical request."""
    start_time: datetime  # Original capture time (UTC)
    url: str              # Absolute URL of the requested resource
    format: str           # Content format tag ("car", "raw", ...)


@dataclass(frozen=True)
class ScheduledRequest:
    """A LogRecord moved into the near future, optionally retargeted."""
    scheduled_time: datetime  # start_time + offset
    url: str                  # Rewritten URL (host/scheme)
    format: str
    source: LogRecord


@dataclass(frozen=True)
class RequestOutcome:
    """Result of dispatching one ScheduledRequest."""
    ttfb: Optional[float]  # ms from dispatch start to first body byte
    status: int            # 0 if no response was received
    cache_hit: bool
    format: str
    request_err: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ttfb": self.ttfb,
            "status": self.status,
            "cache_hit": self.cache_hit,
            "format": self.format,
            "request_err": self.request_err,
        }


@dataclass
class MetricsGroup:
    """Aggregated TTFB percentiles over outcomes sharing (status, format, cache_hit)."""
    status: int
    format: str
    cache_hit: bool
    percentiles: Dict[str, Optional[float]]  # p50/p90/p95/p99, None if no ttfb
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "format": self.format,
            "cache_hit": self.cache_hit,
            "ttfb_ms": dict(self.percentiles),
            "count": self.count,
        }


@dataclass
class ReplayReport:
    """Final document written after a replay."""
    target_host: str
    http_version: int
    date: datetime
    num_logs: int
    metrics: List[MetricsGroup] = field(default_factory=list)
    num_outcomes: int = 0
    num_errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_host": self.target_host,
            "http_version": self.http_version,
            "date": self.date.isoformat(),
            "num_logs": self.num_logs,
            "num_outcomes": self.num_outcomes,
            "num_errors": self.num_errors,
            "metrics": [m.to_dict() for m in self.metrics],
        }


class LogReplayError(Exception):
    """Base class for fatal errors of a get-logs or replay invocation."""
    pass


class SourceUnavailableError(LogReplayError):
    """Raised when the log source cannot be reached or queried."""
    pass


class MalformedRecordError(LogReplayError):
    """Raised when a persisted log line is not a valid, ordered record."""

    def __init__(self, path: str, line_no: int, reason: str):
        self.path = path
        self.line_no = line_no
        self.reason = reason
        super().__init__(f"{path}:{line_no}: {reason}")


class EmptyBatchError(LogReplayError):
    """Raised when there are no log records to replay."""
    pass
