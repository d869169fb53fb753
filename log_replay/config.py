"""
Run options for the get-logs and replay commands.
"""

import os
from dataclasses import dataclass
from typing import Optional

from .dispatch import L1S_HOST, REQUEST_TIMEOUT_S
from .remap import SCHEDULE_BUFFER_MS
from .replay import DEFAULT_SPIN_S

DEFAULT_LOG_FILE = "logs/logs.ndjson"
DEFAULT_TABLE = "bandwidth_logs"


@dataclass
class SourceConfig:
    """ClickHouse connection and row filters for fetching logs."""
    host: str = "localhost"
    port: int = 8123
    username: str = "default"
    password: str = ""
    database: str = "default"
    table: str = DEFAULT_TABLE
    node_id: Optional[str] = None
    user_agent: Optional[str] = None
    log_sender: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SourceConfig":
        """Connection settings from CLICKHOUSE_* environment variables."""
        return cls(
            host=os.environ.get("CLICKHOUSE_HOST", "localhost"),
            port=int(os.environ.get("CLICKHOUSE_PORT", "8123")),
            username=os.environ.get("CLICKHOUSE_USER", "default"),
            password=os.environ.get("CLICKHOUSE_PASSWORD", ""),
            database=os.environ.get("CLICKHOUSE_DATABASE", "default"),
        )


@dataclass
class ReplayOptions:
    """Everything the replay command needs."""
    log_file: str = DEFAULT_LOG_FILE
    target_host: Optional[str] = None     # IP/host override for request URLs
    max_duration_minutes: Optional[float] = None
    max_logs: Optional[int] = None
    http_version: int = 1
    use_tls: bool = True                  # HTTP/2 needs TLS in practice
    host_header: str = L1S_HOST
    timeout_s: float = REQUEST_TIMEOUT_S
    successful_only: bool = True
    skip_malformed: bool = False
    output_dir: str = "."
    spin_s: float = DEFAULT_SPIN_S
    schedule_buffer_ms: int = SCHEDULE_BUFFER_MS
