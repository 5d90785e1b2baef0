"""
Per-domain pacing for page fetches.

Each host gets a minimum interval between requests; well-known high-traffic
hosts that block bursts get longer intervals. ``slot()`` additionally bounds
how many fetches to the same host may be in flight at once.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Container, Dict, Mapping, Optional

import structlog

from ..utils.url_utils import base_domain

logger = structlog.get_logger(__name__)

DEFAULT_INTERVAL_MS = 1000

DOMAIN_INTERVALS_MS: Dict[str, int] = {
    "google.com": 2000,
    "bing.com": 2000,
    "amazon.com": 2000,
    "linkedin.com": 3000,
    "facebook.com": 3000,
    "instagram.com": 3000,
    "twitter.com": 2000,
    "x.com": 2000,
    "reddit.com": 2000,
    "wikipedia.org": 500,
    "github.com": 1000,
}

DEFAULT_CONCURRENCY = 2
STRICT_CONCURRENCY = 1
STRICT_DOMAINS = frozenset({"linkedin.com", "facebook.com", "instagram.com"})


@dataclass(slots=True)
class DomainThrottleRecord:
    domain: str
    last_request_at: Optional[float]
    min_interval_ms: int


def _lookup(host: str, table: Container[str]) -> Optional[str]:
    """Return the table key matching ``host`` or its closest parent domain."""
    host = base_domain(host)
    parts = host.split(".")
    for i in range(len(parts) - 1):
        candidate = ".".join(parts[i:])
        if candidate in table:
            return candidate
    return None


class DomainThrottle:
    """Tracks the last request time per host and spaces requests accordingly."""

    def __init__(
        self,
        intervals_ms: Optional[Mapping[str, int]] = None,
        *,
        default_interval_ms: int = DEFAULT_INTERVAL_MS,
        max_domains: int = 1000,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self.intervals_ms: Dict[str, int] = dict(DOMAIN_INTERVALS_MS if intervals_ms is None else intervals_ms)
        self.default_interval_ms = default_interval_ms
        self.max_domains = max_domains
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._records: "OrderedDict[str, DomainThrottleRecord]" = OrderedDict()
        self._semaphores: "OrderedDict[str, asyncio.Semaphore]" = OrderedDict()
        self._lock = asyncio.Lock()
        self.total_wait_seconds = 0.0

    def interval_for(self, domain: str) -> int:
        key = _lookup(domain, self.intervals_ms)
        return self.intervals_ms[key] if key else self.default_interval_ms

    def concurrency_for(self, domain: str) -> int:
        return STRICT_CONCURRENCY if _lookup(domain, STRICT_DOMAINS) else DEFAULT_CONCURRENCY

    def _record(self, domain: str) -> DomainThrottleRecord:
        record = self._records.get(domain)
        if record is None:
            if len(self._records) >= self.max_domains:
                self._records.popitem(last=False)
            record = DomainThrottleRecord(domain, None, self.interval_for(domain))
            self._records[domain] = record
        return record

    async def wait(self, domain: str) -> float:
        """Suspend until ``domain`` may be hit again; returns seconds waited."""
        domain = base_domain(domain)
        async with self._lock:
            record = self._record(domain)
            now = self._clock()
            delay = 0.0
            if record.last_request_at is not None:
                elapsed_ms = (now - record.last_request_at) * 1000.0
                if elapsed_ms < record.min_interval_ms:
                    delay = (record.min_interval_ms - elapsed_ms) / 1000.0
            # Reserve the slot before sleeping so concurrent callers queue behind it
            record.last_request_at = now + delay

        if delay > 0:
            self.total_wait_seconds += delay
            logger.debug("Domain throttle wait", domain=domain, delay=round(delay, 3))
            await self._sleep(delay)
        return delay

    def _semaphore(self, domain: str) -> asyncio.Semaphore:
        sem = self._semaphores.get(domain)
        if sem is None:
            if len(self._semaphores) >= self.max_domains:
                self._semaphores.popitem(last=False)
            sem = asyncio.Semaphore(self.concurrency_for(domain))
            self._semaphores[domain] = sem
        return sem

    @asynccontextmanager
    async def slot(self, domain: str) -> AsyncIterator[float]:
        """Hold a per-host concurrency slot, paced by :meth:`wait`."""
        domain = base_domain(domain)
        async with self._semaphore(domain):
            waited = await self.wait(domain)
            yield waited

    def stats(self) -> Dict[str, Any]:
        return {
            "trackedDomains": len(self._records),
            "maxDomains": self.max_domains,
            "totalWaitSeconds": round(self.total_wait_seconds, 3),
        }
