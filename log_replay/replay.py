"""
Replay loop: release each scheduled request at its scheduled time.

Requests are started in scheduled-time order and run concurrently as asyncio
tasks; the loop never waits for a request to finish before starting the next
one. There is no concurrency limit and no retry: the traffic shape of the
original logs is reproduced as closely as the event loop allows.
"""

import asyncio
import json
import time
from typing import Awaitable, Callable, List, Optional, Sequence

from .models import RequestOutcome, ScheduledRequest
from .utils import wait_until

DispatchFn = Callable[[ScheduledRequest], Awaitable[RequestOutcome]]
ProgressFn = Callable[[int, int, RequestOutcome], None]

DEFAULT_SPIN_S = 0.001


def print_progress(index: int, total: int, outcome: RequestOutcome) -> None:
    """Default completion handler: running index, percent done, outcome."""
    pct = (index / total) * 100 if total else 100.0
    print(f"[Replay] {index}/{total} {pct:.2f}% {json.dumps(outcome.to_dict())}")


async def _dispatch_guarded(dispatch: DispatchFn, request: ScheduledRequest) -> RequestOutcome:
    """Turn an exception escaping the dispatch callable into an error outcome."""
    try:
        return await dispatch(request)
    except Exception as e:
        return RequestOutcome(
            ttfb=None,
            status=0,
            cache_hit=False,
            format=request.format,
            request_err=f"{type(e).__name__}: {e}",
        )


async def replay_requests(
    requests: Sequence[ScheduledRequest],
    dispatch: DispatchFn,
    spin_s: float = DEFAULT_SPIN_S,
    on_complete: Optional[ProgressFn] = print_progress,
    clock: Callable[[], float] = time.time,
) -> List[RequestOutcome]:
    """
    Dispatch every request once its scheduled time has arrived.

    Args:
        requests: ScheduledRequests ordered ascending by scheduled_time
        dispatch: Coroutine function producing one RequestOutcome per request
        spin_s: Window before a due time in which the loop only yields
        on_complete: Called as on_complete(index, total, outcome) when each
            request finishes (index is its position in dispatch order)
        clock: Wall-clock source in epoch seconds

    Returns:
        One RequestOutcome per request, in completion order
    """
    total = len(requests)
    outcomes: List[RequestOutcome] = []
    tasks: List[asyncio.Task] = []

    def make_done_callback(index: int) -> Callable[[asyncio.Task], None]:
        def done(task: asyncio.Task) -> None:
            if task.cancelled():
                return
            outcome = task.result()
            outcomes.append(outcome)
            if on_complete:
                on_complete(index, total, outcome)
        return done

    t0 = clock()
    for index, request in enumerate(requests, start=1):
        await wait_until(request.scheduled_time.timestamp(), spin_s, clock)
        task = asyncio.ensure_future(_dispatch_guarded(dispatch, request))
        task.add_done_callback(make_done_callback(index))
        tasks.append(task)

    print(f"[Replay] All {total} requests dispatched in {clock() - t0:.1f}s, "
          f"waiting for in-flight requests...")
    await asyncio.gather(*tasks)
    print(f"[Replay] Finished: {len(outcomes)} outcomes")
    return outcomes
