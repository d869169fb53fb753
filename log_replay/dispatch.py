"""
Request dispatch: send one scheduled request and measure time-to-first-byte.

Two transports share the same contract:
- Http1Dispatcher: aiohttp.ClientSession (HTTP/1.1, keep-alive pool)
- Http2Dispatcher: httpx.AsyncClient with http2 enabled

dispatch() never raises. Network errors, protocol errors and the hard
per-request timeout are recorded in RequestOutcome.request_err.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional

import aiohttp
import httpx

from .models import RequestOutcome, ScheduledRequest
from .utils import accept_header

L1S_HOST = "l1s.strn.pl"
CACHE_STATUS_HEADER = "saturn-cache-status"
REQUEST_TIMEOUT_S = 60.0


@dataclass
class _ResponseProbe:
    """Mutable measurements filled in while a request is in flight."""
    start: float
    status: int = 0
    cache_hit: bool = False
    ttfb: Optional[float] = None
    error: Optional[str] = None

    def first_byte(self) -> None:
        if self.ttfb is None:
            self.ttfb = (time.perf_counter() - self.start) * 1000

    def outcome(self, fmt: str) -> RequestOutcome:
        return RequestOutcome(
            ttfb=self.ttfb,
            status=self.status,
            cache_hit=self.cache_hit,
            format=fmt,
            request_err=self.error,
        )


class Dispatcher(ABC):
    """Base dispatcher: headers, timeout and error capture. Subclasses implement _fetch."""

    http_version = 0

    def __init__(self, host_header: str = L1S_HOST, timeout_s: float = REQUEST_TIMEOUT_S):
        self.host_header = host_header
        self.timeout_s = timeout_s

    def build_headers(self, fmt: str) -> Dict[str, str]:
        headers = {"Host": self.host_header}
        accept = accept_header(fmt)
        if accept:
            headers["Accept"] = accept
        return headers

    @abstractmethod
    async def _fetch(self, request: ScheduledRequest, probe: _ResponseProbe) -> None:
        """Send the request, filling in probe as the response arrives."""

    async def dispatch(self, request: ScheduledRequest) -> RequestOutcome:
        probe = _ResponseProbe(start=time.perf_counter())
        try:
            await asyncio.wait_for(self._fetch(request, probe), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            probe.error = f"TimeoutError: request aborted after {self.timeout_s:g}s"
        except Exception as e:
            probe.error = f"{type(e).__name__}: {e}"
        return probe.outcome(request.format)

    async def __call__(self, request: ScheduledRequest) -> RequestOutcome:
        return await self.dispatch(request)


class Http1Dispatcher(Dispatcher):
    """HTTP/1.1 dispatch over a caller-owned aiohttp session."""

    http_version = 1

    def __init__(self, session: aiohttp.ClientSession, host_header: str = L1S_HOST,
                 timeout_s: float = REQUEST_TIMEOUT_S):
        super().__init__(host_header, timeout_s)
        self.session = session

    async def _fetch(self, request: ScheduledRequest, probe: _ResponseProbe) -> None:
        # SNI must match the Host header when the URL points at a bare IP
        server_hostname = self.host_header if request.url.startswith("https:") else None
        async with self.session.get(
            request.url,
            headers=self.build_headers(request.format),
            server_hostname=server_hostname,
        ) as resp:
            probe.status = resp.status
            probe.cache_hit = resp.headers.get(CACHE_STATUS_HEADER) == "HIT"
            chunk = await resp.content.readany()
            if chunk:
                probe.first_byte()
        # Leaving the context releases the connection without draining the body


class Http2Dispatcher(Dispatcher):
    """HTTP/2 dispatch over a caller-owned httpx client."""

    http_version = 2

    def __init__(self, client: httpx.AsyncClient, host_header: str = L1S_HOST,
                 timeout_s: float = REQUEST_TIMEOUT_S):
        super().__init__(host_header, timeout_s)
        self.client = client

    async def _fetch(self, request: ScheduledRequest, probe: _ResponseProbe) -> None:
        req = self.client.build_request(
            "GET",
            request.url,
            headers=self.build_headers(request.format),
            extensions={"sni_hostname": self.host_header},
        )
        resp = await self.client.send(req, stream=True)
        try:
            probe.status = resp.status_code
            probe.cache_hit = resp.headers.get(CACHE_STATUS_HEADER) == "HIT"
            async for chunk in resp.aiter_bytes():
                if chunk:
                    probe.first_byte()
                    break
        finally:
            await resp.aclose()


@asynccontextmanager
async def open_dispatcher(
    http_version: int = 1,
    host_header: str = L1S_HOST,
    timeout_s: float = REQUEST_TIMEOUT_S,
) -> AsyncIterator[Dispatcher]:
    """
    Create the connection pool for the chosen HTTP version and a dispatcher
    bound to it. The pool is closed when the context exits.
    """
    if http_version == 1:
        # limit=0: no client-side cap on concurrent connections
        connector = aiohttp.TCPConnector(limit=0, ttl_dns_cache=300)
        timeout = aiohttp.ClientTimeout(total=None)  # enforced per request by the dispatcher
        async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
            yield Http1Dispatcher(session, host_header, timeout_s)
    elif http_version == 2:
        limits = httpx.Limits(max_connections=None, max_keepalive_connections=None)
        async with httpx.AsyncClient(http2=True, timeout=None, limits=limits) as client:
            yield Http2Dispatcher(client, host_header, timeout_s)
    else:
        raise ValueError(f"unsupported HTTP version: {http_version}")
