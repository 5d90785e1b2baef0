"""
Resilient HTTP client for the upstream search API.

Every upstream call (search, node status, health probes) goes through
:meth:`ResilientApiClient.call`, which applies the same policy in a fixed
order:

1. wait for a rate-limit slot;
2. serve cache-eligible calls from the response cache;
3. fail fast with :class:`CircuitOpenError` while the breaker is open;
4. attempt the request ``retries + 1`` times with exponential backoff,
   retrying only network errors, timeouts, 429 and 5xx;
5. record the outcome on the breaker and populate the cache.

Each attempt is reduced to an :class:`AttemptOutcome` so the retry loop is a
plain conditional on :class:`ErrorKind` instead of exception control flow.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

import aiohttp
import structlog

from ..core.config import USER_AGENT, PresearchConfig
from ..core.errors import (
    CircuitOpenError,
    ErrorKind,
    PresearchError,
    error_for_kind,
    kind_for_exception,
    kind_for_status,
)
from ..utils.circuit_breaker import CircuitBreaker
from ..utils.rate_limiter import RateLimiter
from ..utils.retry import calculate_exponential_backoff, parse_retry_after
from .cache import ResponseCache

logger = structlog.get_logger(__name__)

_RATELIMIT_PREFIX = "x-ratelimit-"


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one HTTP attempt: either ``value`` or an error ``kind``."""

    value: Any = None
    kind: Optional[ErrorKind] = None
    message: str = ""
    status: Optional[int] = None
    retry_after: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.kind is None

    @classmethod
    def success(cls, value: Any, status: Optional[int] = None) -> "AttemptOutcome":
        return cls(value=value, status=status)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **kwargs: Any) -> "AttemptOutcome":
        return cls(kind=kind, message=message, **kwargs)

    def to_error(self, **extra_details: Any) -> PresearchError:
        if self.kind is None:
            raise ValueError("A successful outcome has no error")
        details = {**self.details, **extra_details}
        kwargs: Dict[str, Any] = {"status": self.status, "details": details}
        if self.kind in (ErrorKind.RATE_LIMIT, ErrorKind.CIRCUIT_OPEN):
            kwargs["retry_after"] = self.retry_after
        return error_for_kind(self.kind, self.message, **kwargs)


class ResilientApiClient:
    """Owns the rate limiter, response cache and circuit breaker for one upstream.

    The three resilience structures are per-instance, so independent clients
    never share state. Pass ``session`` to reuse an existing
    ``aiohttp.ClientSession``; the client only closes sessions it created.
    """

    def __init__(
        self,
        config: Optional[PresearchConfig] = None,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[ResponseCache] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self.config = config or PresearchConfig()
        cfg = self.config
        self.rate_limiter = rate_limiter or RateLimiter(
            cfg.rate_limit.max_requests, cfg.rate_limit.window_ms
        )
        self.cache = cache or ResponseCache(cfg.cache.ttl_seconds, cfg.cache.max_keys)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name="presearch-api",
            failure_threshold=cfg.circuit_breaker.failure_threshold,
            recovery_timeout=cfg.circuit_breaker.recovery_timeout_ms / 1000.0,
            half_open_max_probes=cfg.circuit_breaker.half_open_max_probes,
        )
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep or asyncio.sleep

        self.upstream_rate_limit: Dict[str, str] = {}
        self.total_requests = 0
        self.total_attempts = 0
        self.total_retries = 0
        self.total_failures = 0

    # ------------------------------------------------------------------ #
    # Session lifecycle
    # ------------------------------------------------------------------ #

    def _default_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _sess(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "ResilientApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.config.base_url}/{path.lstrip('/')}"

    async def call(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Optional[Any] = None,
        use_cache: bool = True,
        retries: Optional[int] = None,
        timeout: Optional[float] = None,
        headers: Optional[Mapping[str, Optional[str]]] = None,
    ) -> Any:
        """Perform one upstream call under the full resilience policy.

        Args:
            method: HTTP method
            path: Path relative to ``base_url`` or an absolute URL
            params: Query parameters
            json: Optional JSON body
            use_cache: Serve/populate the response cache (GET only)
            retries: Extra attempts after the first; defaults to config
            timeout: Per-attempt timeout in seconds; defaults to config
            headers: Extra headers merged over the defaults; ``None`` drops one

        Returns:
            The decoded JSON body

        Raises:
            CircuitOpenError: breaker open, no network attempt was made
            PresearchError: typed error after retries are exhausted or on a
                non-retryable answer
        """
        method = method.upper()
        url = self._url(path)
        self.total_requests += 1

        await self.rate_limiter.permit()

        cacheable = use_cache and self.config.cache.enabled and method == "GET"
        cache_key = ResponseCache.make_key(method, url, params) if cacheable else None
        if cache_key is not None:
            hit, cached = self.cache.lookup(cache_key)
            if hit:
                logger.debug("Cache hit", method=method, url=url)
                return cached

        if not self.circuit_breaker.can_proceed():
            retry_after = self.circuit_breaker.retry_after()
            logger.warning(
                "Circuit breaker open, failing fast",
                breaker=self.circuit_breaker.name,
                retry_after=retry_after,
            )
            raise CircuitOpenError(
                f"Circuit breaker '{self.circuit_breaker.name}' is open",
                retry_after=retry_after,
                details={"url": url},
            )

        max_retries = self.config.retry.retries if retries is None else max(0, retries)
        attempts = max_retries + 1
        per_attempt_timeout = timeout if timeout is not None else self.config.timeout_seconds
        merged_headers = {
            k: v for k, v in {**self._default_headers(), **dict(headers or {})}.items() if v is not None
        }

        try:
            outcome, made = await self._attempt_with_retries(
                method, url, params=params, json_body=json,
                headers=merged_headers, timeout=per_attempt_timeout, attempts=attempts,
            )
        except BaseException:
            # Cancelled or crashed before a verdict; the half-open slot must not leak
            self.circuit_breaker.release_slot()
            raise

        if outcome.kind is None:
            self.circuit_breaker.record_success()
            if cache_key is not None:
                self.cache.set(cache_key, outcome.value)
            return outcome.value

        self.total_failures += 1
        if not outcome.kind.retryable:
            # The upstream answered; only transient failures count against the breaker
            self.circuit_breaker.record_success()
            logger.warning(
                "Upstream call failed (not retryable)",
                method=method,
                url=url,
                status=outcome.status,
                kind=outcome.kind.value,
            )
        else:
            self.circuit_breaker.record_failure()
            logger.error(
                "Upstream call failed after retries",
                method=method,
                url=url,
                attempts=made,
                kind=outcome.kind.value,
                status=outcome.status,
            )
        raise outcome.to_error(attempts=made)

    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None, **options: Any) -> Any:
        return await self.call("GET", path, params=params, **options)

    def clear_cache(self) -> int:
        return self.cache.clear()

    def stats(self) -> Dict[str, Any]:
        rate = self.rate_limiter.stats()
        if self.upstream_rate_limit:
            rate["upstream"] = dict(self.upstream_rate_limit)
        return {
            "rateLimit": rate,
            "cache": self.cache.stats(),
            "circuitBreaker": self.circuit_breaker.get_status(),
            "requests": {
                "total": self.total_requests,
                "attempts": self.total_attempts,
                "retries": self.total_retries,
                "failures": self.total_failures,
            },
        }

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _retry_delay(self, attempt: int, outcome: AttemptOutcome) -> float:
        retry_cfg = self.config.retry
        delay = calculate_exponential_backoff(
            attempt,
            base_delay=retry_cfg.base_delay,
            factor=retry_cfg.factor,
            max_delay=retry_cfg.max_delay,
            jitter_mode=retry_cfg.jitter,
        )
        if outcome.retry_after is not None and outcome.retry_after <= retry_cfg.max_delay:
            delay = outcome.retry_after
        return delay

    async def _attempt_with_retries(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]],
        json_body: Optional[Any],
        headers: Mapping[str, str],
        timeout: float,
        attempts: int,
    ) -> Tuple[AttemptOutcome, int]:
        """Attempt up to ``attempts`` times, stopping on success or a non-retryable answer.

        Returns the last outcome and the number of attempts made.
        """
        outcome = AttemptOutcome.failure(ErrorKind.NETWORK, "no attempt made")
        for attempt in range(1, attempts + 1):
            self.total_attempts += 1
            outcome = await self._attempt(
                method, url, params=params, json_body=json_body,
                headers=headers, timeout=timeout,
            )
            if outcome.kind is None or not outcome.kind.retryable:
                return outcome, attempt
            if attempt < attempts:
                delay = self._retry_delay(attempt, outcome)
                self.total_retries += 1
                logger.warning(
                    "Retrying upstream call",
                    method=method,
                    url=url,
                    attempt=attempt,
                    max_attempts=attempts,
                    kind=outcome.kind.value,
                    status=outcome.status,
                    delay=round(delay, 3),
                )
                await self._sleep(delay)
        return outcome, attempts

    def _capture_rate_headers(self, headers: Mapping[str, str]) -> None:
        for name, value in headers.items():
            lowered = name.lower()
            if lowered.startswith(_RATELIMIT_PREFIX):
                self.upstream_rate_limit[lowered[len(_RATELIMIT_PREFIX):]] = value

    async def _attempt(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]],
        json_body: Optional[Any],
        headers: Mapping[str, str],
        timeout: float,
    ) -> AttemptOutcome:
        try:
            async with self._sess().request(
                method,
                url,
                params=dict(params) if params else None,
                json=json_body,
                headers=dict(headers),
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                self._capture_rate_headers(resp.headers)
                if resp.status >= 400:
                    kind = kind_for_status(resp.status)
                    retry_after = None
                    if resp.status == 429:
                        retry_after = parse_retry_after(resp.headers.get("Retry-After"))
                    body = await resp.text()
                    return AttemptOutcome.failure(
                        kind,
                        f"Upstream returned HTTP {resp.status}",
                        status=resp.status,
                        retry_after=retry_after,
                        details={"url": url, "body": body[:500]},
                    )
                try:
                    data = await resp.json(content_type=None)
                except (ValueError, aiohttp.ContentTypeError) as exc:
                    return AttemptOutcome.failure(
                        ErrorKind.API,
                        f"Invalid JSON from upstream: {exc}",
                        status=resp.status,
                        details={"url": url},
                    )
                return AttemptOutcome.success(data, status=resp.status)
        except (asyncio.TimeoutError, aiohttp.ClientError, OSError) as exc:
            kind = kind_for_exception(exc)
            message = "Upstream request timed out" if kind is ErrorKind.TIMEOUT else f"Network error: {exc}"
            return AttemptOutcome.failure(
                kind,
                message,
                details={"url": url, "errorType": type(exc).__name__},
            )
