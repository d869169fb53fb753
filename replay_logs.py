#!/usr/bin/env python3
"""
HTTP request log replayer.

This is a wrapper script that runs the log_replay package.

    python replay_logs.py get-logs --since 10
    python replay_logs.py replay -f logs/logs.ndjson --ip 203.0.113.7

For full options:
    python replay_logs.py replay --help
"""

from log_replay.main import cli

if __name__ == "__main__":
    cli()
