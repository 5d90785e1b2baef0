"""
Core configuration for the search core.

Every tunable lives on a small dataclass with the production default, so the
components can be built directly in tests without touching the environment.
``PresearchConfig.from_env()`` applies environment overrides on top of those
defaults; bad values are logged and ignored, and numeric values are clamped
to the supported ranges instead of failing startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

import structlog
from dotenv import load_dotenv

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://na-us-1.presearch.com"
DEFAULT_NODE_BASE_URL = "https://nodes.presearch.com"
USER_AGENT = "presearch-core/1.0"


@dataclass(slots=True)
class RateLimitSettings:
    max_requests: int = 100
    window_ms: int = 60_000


@dataclass(slots=True)
class CacheSettings:
    enabled: bool = True
    ttl_seconds: float = 300.0
    max_keys: int = 1000


@dataclass(slots=True)
class CircuitBreakerSettings:
    failure_threshold: int = 5
    recovery_timeout_ms: int = 60_000
    # None admits every caller while half-open
    half_open_max_probes: Optional[int] = 1


@dataclass(slots=True)
class RetrySettings:
    retries: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 10.0
    jitter: str = "none"


@dataclass(slots=True)
class FetcherSettings:
    concurrency: int = 5
    timeout_ms: int = 15_000
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 8.0
    max_text_length: int = 10_000
    default_interval_ms: int = 1000
    max_tracked_domains: int = 1000
    validate_urls: bool = True
    max_redirects: int = 5


@dataclass(slots=True)
class ProcessingSettings:
    deduplication_threshold: float = 0.85
    similarity_cache_size: int = 10_000
    recent_days: int = 30
    high_quality_threshold: float = 70.0


@dataclass(slots=True)
class PresearchConfig:
    """Top-level settings gathered from the sections above."""

    api_key: str = ""
    node_api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    node_base_url: str = DEFAULT_NODE_BASE_URL
    timeout_ms: int = 10_000
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    circuit_breaker: CircuitBreakerSettings = field(default_factory=CircuitBreakerSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    fetcher: FetcherSettings = field(default_factory=FetcherSettings)
    processing: ProcessingSettings = field(default_factory=ProcessingSettings)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "PresearchConfig":
        """Build a config from environment variables (and ``.env`` when present)."""
        if dotenv:
            load_dotenv()

        cfg = cls()
        cfg.api_key = os.getenv("PRESEARCH_API_KEY", "").strip()
        cfg.node_api_key = os.getenv("PRESEARCH_NODE_API_KEY", "").strip()
        cfg.base_url = (os.getenv("PRESEARCH_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        cfg.node_base_url = (os.getenv("PRESEARCH_NODE_BASE_URL") or DEFAULT_NODE_BASE_URL).rstrip("/")
        cfg.timeout_ms = _env_int("PRESEARCH_TIMEOUT", cfg.timeout_ms, 1000, 30_000)

        cfg.retry.retries = _env_int("PRESEARCH_RETRIES", cfg.retry.retries, 0, 5)
        cfg.retry.base_delay = _env_float("PRESEARCH_RETRY_BASE_DELAY", cfg.retry.base_delay, 0.0, 60.0)
        cfg.retry.max_delay = _env_float("PRESEARCH_RETRY_MAX_DELAY", cfg.retry.max_delay, 0.0, 300.0)

        cfg.rate_limit.max_requests = _env_int("RATE_LIMIT_MAX_REQUESTS", cfg.rate_limit.max_requests, 1, 1000)
        cfg.rate_limit.window_ms = _env_int("RATE_LIMIT_WINDOW_MS", cfg.rate_limit.window_ms, 1000, 3_600_000)

        cache_flag = os.getenv("CACHE_ENABLED")
        if cache_flag is not None:
            cfg.cache.enabled = cache_flag.strip().lower() in {"1", "true", "yes"}
        cfg.cache.ttl_seconds = _env_float("CACHE_TTL", cfg.cache.ttl_seconds, 60.0, 86_400.0)
        cfg.cache.max_keys = _env_int("CACHE_MAX_KEYS", cfg.cache.max_keys, 100, 10_000)

        cfg.circuit_breaker.failure_threshold = _env_int(
            "CIRCUIT_BREAKER_THRESHOLD", cfg.circuit_breaker.failure_threshold, 1, 100
        )
        cfg.circuit_breaker.recovery_timeout_ms = _env_int(
            "CIRCUIT_BREAKER_TIMEOUT_MS", cfg.circuit_breaker.recovery_timeout_ms, 1000, 3_600_000
        )

        cfg.fetcher.concurrency = _env_int("FETCH_CONCURRENCY", cfg.fetcher.concurrency, 1, 50)
        cfg.fetcher.timeout_ms = _env_int("FETCH_TIMEOUT_MS", cfg.fetcher.timeout_ms, 1000, 120_000)
        cfg.fetcher.max_attempts = _env_int("FETCH_MAX_ATTEMPTS", cfg.fetcher.max_attempts, 1, 10)
        cfg.fetcher.max_redirects = _env_int("FETCH_MAX_REDIRECTS", cfg.fetcher.max_redirects, 0, 20)

        cfg.processing.deduplication_threshold = _env_float(
            "DEDUP_SIMILARITY_THRESH", cfg.processing.deduplication_threshold, 0.0, 1.0
        )

        if not cfg.api_key:
            logger.warning(
                "No PRESEARCH_API_KEY configured; upstream calls will be unauthenticated",
            )
        return cfg


def _env_int(name: str, default: int, lo: int, hi: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid integer override ignored", env=name, raw_value=raw)
        return default
    return max(lo, min(hi, value))


def _env_float(name: str, default: float, lo: float, hi: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid float override ignored", env=name, raw_value=raw)
        return default
    return max(lo, min(hi, value))
