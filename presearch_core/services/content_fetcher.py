"""
Page fetcher used by the scrape and search-and-scrape flows.

Single fetches are paced per host through :class:`DomainThrottle`, retried
with tenacity on transient failures, and never raise: every per-URL problem
ends up in ``FetchResult.error``. Batches run in fixed-size chunks, each chunk
finishing before the next starts, so peak concurrency never exceeds the
configured limit.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from urllib.parse import urljoin

import aiohttp
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..core.config import FetcherSettings
from ..core.errors import (
    ApiError,
    PresearchError,
    ValidationError,
    error_for_kind,
    kind_for_exception,
    kind_for_status,
)
from ..models.results import FetchResult, PageMeta
from ..utils.url_utils import extract_domain, is_valid_url, normalize_url, validate_fetch_url
from .domain_throttle import DomainThrottle
from .html_extract import extract_images as _extract_images
from .html_extract import extract_links as _extract_links
from .html_extract import extract_main_text, extract_metadata, parse_html

logger = structlog.get_logger(__name__)

# Many sites refuse obvious bot clients, so page fetches look like a browser
BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Upgrade-Insecure-Requests": "1",
    "DNT": "1",
}

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


@dataclass
class BatchFetchReport:
    results: List[FetchResult]
    errors: List[Dict[str, str]] = field(default_factory=list)
    success_rate: float = 0.0
    chunks: List[Dict[str, int]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "errors": list(self.errors),
            "successRate": self.success_rate,
            "chunks": list(self.chunks),
        }


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, PresearchError) and exc.retryable


def _retry_logger(url: str) -> Callable[[RetryCallState], None]:
    def _log(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.info(
            "Retrying page fetch",
            url=url,
            attempt=retry_state.attempt_number,
            error=str(exc) if exc else None,
            sleep=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
        )
    return _log


class ContentFetcher:
    """Fetch pages and reduce them to metadata plus main-content text."""

    def __init__(
        self,
        settings: Optional[FetcherSettings] = None,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        throttle: Optional[DomainThrottle] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        resolve_dns: bool = True,
    ) -> None:
        self.settings = settings or FetcherSettings()
        self.throttle = throttle or DomainThrottle(
            default_interval_ms=self.settings.default_interval_ms,
            max_domains=self.settings.max_tracked_domains,
            sleep=sleep,
        )
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep or asyncio.sleep
        self.resolve_dns = resolve_dns

    def _sess(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "ContentFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _get(self, url: str) -> tuple[int, str, str, str]:
        """Paced GETs with redirects followed by hand.

        Raises typed errors so tenacity can decide on retries. Each redirect
        target goes through the same URL guard as ``url`` before it is
        requested.
        """
        timeout = aiohttp.ClientTimeout(total=self.settings.timeout_ms / 1000.0)
        current = url
        for _ in range(max(0, self.settings.max_redirects) + 1):
            location = ""
            async with self.throttle.slot(extract_domain(current)):
                try:
                    async with self._sess().get(
                        current, headers=BROWSER_HEADERS, timeout=timeout, allow_redirects=False
                    ) as resp:
                        if resp.status in REDIRECT_STATUSES:
                            location = (resp.headers.get("Location") or "").strip()
                            if not location:
                                raise ApiError(
                                    f"HTTP {resp.status} without Location fetching {current}",
                                    status=resp.status,
                                )
                        else:
                            if resp.status >= 400:
                                raise error_for_kind(
                                    kind_for_status(resp.status),
                                    f"HTTP {resp.status} fetching {current}",
                                    status=resp.status,
                                )
                            ctype = (resp.headers.get("Content-Type") or "").lower()
                            if ctype and "html" not in ctype and "xml" not in ctype and not ctype.startswith("text/"):
                                raise ApiError(f"Unsupported content type: {ctype}", status=resp.status)
                            body = await resp.text(errors="replace")
                            return resp.status, body, ctype, current
                except (asyncio.TimeoutError, aiohttp.ClientError, OSError) as exc:
                    kind = kind_for_exception(exc)
                    raise error_for_kind(kind, f"{type(exc).__name__} fetching {current}: {exc}") from exc
            current = await self._redirect_target(current, location)
        raise ApiError(
            f"Too many redirects fetching {url}",
            details={"maxRedirects": self.settings.max_redirects},
        )

    async def _redirect_target(self, source: str, location: str) -> str:
        target = urljoin(source, location)
        if not self.settings.validate_urls:
            if not is_valid_url(target):
                raise ValidationError("Invalid redirect target", details={"url": target})
            return target
        try:
            await validate_fetch_url(target, resolve=self.resolve_dns)
        except ValidationError as exc:
            logger.warning("Blocked redirect target", url=source, target=target, reason=exc.message)
            raise
        logger.debug("Following redirect", url=source, target=target)
        return target

    async def fetch(
        self,
        url: str,
        *,
        include_html: bool = False,
        max_text_length: Optional[int] = None,
        extract_links: bool = False,
        extract_images: bool = False,
    ) -> FetchResult:
        """Fetch one URL; failures are returned in ``FetchResult.error``, never raised."""
        started = time.monotonic()
        url = normalize_url(url)

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        if not is_valid_url(url):
            return FetchResult.failure(url, "Invalid URL format")
        if self.settings.validate_urls:
            try:
                await validate_fetch_url(url, resolve=self.resolve_dns)
            except ValidationError as exc:
                logger.warning("Blocked fetch target", url=url, reason=exc.message)
                return FetchResult.failure(url, exc.message, fetch_time_ms=elapsed_ms())

        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self.settings.max_attempts)),
                wait=wait_exponential(
                    multiplier=self.settings.backoff_base,
                    max=self.settings.backoff_max,
                ),
                retry=retry_if_exception(_is_retryable),
                before_sleep=_retry_logger(url),
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    status, body, ctype, final_url = await self._get(url)
        except PresearchError as exc:
            logger.warning(
                "Page fetch failed",
                url=url,
                attempts=attempts,
                status=exc.status,
                kind=exc.kind.value,
            )
            return FetchResult.failure(
                url, exc.message, status=exc.status,
                fetch_time_ms=elapsed_ms(), attempts=attempts,
            )

        cap = max_text_length if max_text_length is not None else self.settings.max_text_length
        links: List[Dict[str, str]] = []
        images: List[Dict[str, str]] = []
        if "html" in ctype or "xml" in ctype or not ctype:
            # Links and images come first: text extraction strips nav and header in place
            soup = parse_html(body)
            meta = extract_metadata(soup)
            if extract_links:
                links = _extract_links(soup, final_url)
            if extract_images:
                images = _extract_images(soup, final_url)
            text = extract_main_text(soup, max_chars=cap)
        else:
            meta = PageMeta()
            text = body.strip()[:cap]

        result = FetchResult(
            url=url,
            status=status,
            meta=meta,
            text=text,
            text_length=len(text),
            html=body if include_html else None,
            fetch_time_ms=elapsed_ms(),
            links=links,
            images=images,
            attempts=attempts,
        )
        logger.debug("Page fetched", url=url, status=status, text_length=result.text_length)
        return result

    async def fetch_batch(
        self,
        urls: Iterable[str],
        *,
        concurrency: Optional[int] = None,
        **fetch_options: Any,
    ) -> BatchFetchReport:
        """Fetch ``urls`` in sequential chunks of ``concurrency``.

        Duplicate URLs are fetched once. One URL failing never affects its
        siblings; the report lists every failure alongside the results.
        """
        unique = list(dict.fromkeys(normalize_url(u) for u in urls if u and u.strip()))
        size = max(1, concurrency or self.settings.concurrency)

        results: List[FetchResult] = []
        chunks: List[Dict[str, int]] = []
        for index, start in enumerate(range(0, len(unique), size)):
            chunk = unique[start:start + size]
            chunk_started = time.monotonic()
            outcomes = await asyncio.gather(
                *(self.fetch(u, **fetch_options) for u in chunk),
                return_exceptions=True,
            )
            for u, outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.error("Unexpected fetch failure", url=u, error=str(outcome), exc_info=outcome)
                    outcome = FetchResult.failure(u, f"{type(outcome).__name__}: {outcome}")
                results.append(outcome)
            duration_ms = int((time.monotonic() - chunk_started) * 1000)
            chunks.append({"index": index, "size": len(chunk), "durationMs": duration_ms})
            logger.info(
                "Fetch chunk complete",
                chunk=index,
                size=len(chunk),
                duration_ms=duration_ms,
            )

        errors = [{"url": r.url, "error": r.error} for r in results if r.error is not None]
        success_rate = (len(results) - len(errors)) / len(results) if results else 0.0
        logger.info(
            "Batch fetch complete",
            total=len(results),
            failed=len(errors),
            chunks=len(chunks),
            success_rate=round(success_rate, 3),
        )
        return BatchFetchReport(
            results=results,
            errors=errors,
            success_rate=round(success_rate, 4),
            chunks=chunks,
        )

