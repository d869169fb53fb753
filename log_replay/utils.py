"""
Utility functions for timestamps, URLs and timing.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from urllib.parse import urlsplit, urlunsplit

from dateutil import parser as dtparser

# format tag -> Accept header value
ACCEPT_HEADERS = {
    "car": "application/vnd.ipld.car",
    "raw": "application/vnd.ipld.raw",
}


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-ish timestamp (or datetime) into an aware UTC datetime.

    Naive values are taken to be UTC. Raises ValueError on anything else.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        dt = dtparser.isoparse(value.strip())
    else:
        raise ValueError(f"not a timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format a UTC datetime the way the log files store it (millisecond precision, Z suffix)."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def accept_header(fmt: Optional[str]) -> Optional[str]:
    """Accept header for a format tag, or None for unrecognized formats."""
    return ACCEPT_HEADERS.get(fmt or "")


def rewrite_url(url: str, host: Optional[str], use_tls: bool) -> str:
    """
    Force the scheme to https/http and, if host is given, replace the hostname.
    Userinfo, port, path and query are kept.
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.hostname:
        raise ValueError(f"not an absolute URL: {url!r}")
    netloc = parts.netloc
    if host:
        hostname = f"[{host}]" if ":" in host and not host.startswith("[") else host
        netloc = hostname if parts.port is None else f"{hostname}:{parts.port}"
        userinfo, sep, _ = parts.netloc.rpartition("@")
        if sep:
            netloc = f"{userinfo}@{netloc}"
    scheme = "https" if use_tls else "http"
    return urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment))


def hostname_of(url: str) -> str:
    return urlsplit(url).hostname or ""


async def wait_until(target: float, spin_s: float, clock: Callable[[], float] = time.time) -> None:
    """
    Coarse sleep, then yield to the event loop until clock() reaches target.
    spin_s: final window in which we only yield (sleep(0)) and re-check
    """
    while True:
        remaining = target - clock()
        if remaining <= 0:
            return
        if remaining > spin_s:
            await asyncio.sleep(remaining - spin_s)
        else:
            await asyncio.sleep(0)
