"""
Timestamp remapping: move a batch of historical requests into the near future.

Every record is shifted by the same offset so the spacing between requests is
kept exactly. The offset is computed once, from the first (oldest) record:

    offset = (now - first.start_time) + buffer

The buffer guarantees that no request is scheduled in the past by the time
the replay loop starts.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from .models import LogRecord, ScheduledRequest
from .utils import rewrite_url

SCHEDULE_BUFFER_MS = 3000


def remap_records(
    records: Iterable[LogRecord],
    target_host: Optional[str] = None,
    use_tls: bool = True,
    max_duration_minutes: Optional[float] = None,
    max_logs: Optional[int] = None,
    buffer_ms: int = SCHEDULE_BUFFER_MS,
    now: Optional[datetime] = None,
) -> List[ScheduledRequest]:
    """
    Remap records (ordered ascending by start_time) into ScheduledRequests.

    Args:
        records: Ordered records; consumed lazily, never re-sorted
        target_host: Replaces each URL's hostname if given
        use_tls: Scheme is forced to https if True, http otherwise
        max_duration_minutes: Stop at the first record whose original time is
            more than this many minutes after the first record
        max_logs: Stop after this many records
        buffer_ms: Safety margin added to the offset
        now: Wall-clock time at remap start (defaults to the current time)

    Returns:
        ScheduledRequests in input order
    """
    scheduled: List[ScheduledRequest] = []
    if max_logs is not None and max_logs <= 0:
        return scheduled

    first_time: Optional[datetime] = None
    offset = timedelta(0)

    for record in records:
        if first_time is None:
            if now is None:
                now = datetime.now(timezone.utc)
            first_time = record.start_time
            offset = (now - first_time) + timedelta(milliseconds=buffer_ms)

        if max_duration_minutes is not None:
            elapsed_minutes = (record.start_time - first_time).total_seconds() / 60
            if elapsed_minutes > max_duration_minutes:
                break

        scheduled.append(ScheduledRequest(
            scheduled_time=record.start_time + offset,
            url=rewrite_url(record.url, target_host, use_tls),
            format=record.format,
            source=record,
        ))

        if max_logs is not None and len(scheduled) >= max_logs:
            break

    if scheduled:
        span_s = (scheduled[-1].scheduled_time - scheduled[0].scheduled_time).total_seconds()
        print(f"[Remap] {len(scheduled)} requests over {span_s:.1f}s, "
              f"first at {scheduled[0].scheduled_time.isoformat()}")
    return scheduled
