"""
log_replay - Replay captured HTTP request logs against a target server.

This package provides functionality for:
- Fetching request logs from ClickHouse into ND-JSON files
- Remapping historical timestamps into the near future, keeping their spacing
- Replaying requests at their scheduled times and measuring time-to-first-byte
- Aggregating TTFB percentiles and cache-hit breakdowns into a report
"""

from .main import main, run_replay, run_get_logs

__all__ = ['main', 'run_replay', 'run_get_logs']
