import pytest

from presearch_core.core.config import DEFAULT_BASE_URL, PresearchConfig

ENV_NAMES = (
    "PRESEARCH_API_KEY", "PRESEARCH_NODE_API_KEY", "PRESEARCH_BASE_URL", "PRESEARCH_NODE_BASE_URL",
    "PRESEARCH_TIMEOUT", "PRESEARCH_RETRIES", "PRESEARCH_RETRY_BASE_DELAY", "PRESEARCH_RETRY_MAX_DELAY",
    "RATE_LIMIT_MAX_REQUESTS", "RATE_LIMIT_WINDOW_MS", "CACHE_ENABLED", "CACHE_TTL", "CACHE_MAX_KEYS",
    "CIRCUIT_BREAKER_THRESHOLD", "CIRCUIT_BREAKER_TIMEOUT_MS", "FETCH_CONCURRENCY", "FETCH_TIMEOUT_MS",
    "FETCH_MAX_ATTEMPTS", "FETCH_MAX_REDIRECTS", "DEDUP_SIMILARITY_THRESH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = PresearchConfig.from_env(dotenv=False)
    assert cfg.api_key == ""
    assert not cfg.has_api_key
    assert cfg.base_url == DEFAULT_BASE_URL
    assert cfg.timeout_seconds == 10.0
    assert cfg.rate_limit.max_requests == 100
    assert cfg.cache.enabled is True
    assert cfg.circuit_breaker.failure_threshold == 5
    assert cfg.processing.deduplication_threshold == 0.85
    assert cfg.fetcher.max_redirects == 5


def test_overrides(monkeypatch):
    monkeypatch.setenv("PRESEARCH_API_KEY", " key ")
    monkeypatch.setenv("PRESEARCH_BASE_URL", "https://proxy.example/")
    monkeypatch.setenv("PRESEARCH_RETRIES", "1")
    monkeypatch.setenv("CACHE_ENABLED", "false")
    monkeypatch.setenv("FETCH_CONCURRENCY", "8")
    monkeypatch.setenv("FETCH_MAX_REDIRECTS", "0")

    cfg = PresearchConfig.from_env(dotenv=False)

    assert cfg.api_key == "key"
    assert cfg.base_url == "https://proxy.example"
    assert cfg.retry.retries == 1
    assert cfg.cache.enabled is False
    assert cfg.fetcher.concurrency == 8
    assert cfg.fetcher.max_redirects == 0


def test_values_are_clamped(monkeypatch):
    monkeypatch.setenv("PRESEARCH_TIMEOUT", "999999")
    monkeypatch.setenv("PRESEARCH_RETRIES", "50")
    monkeypatch.setenv("CACHE_TTL", "1")
    monkeypatch.setenv("DEDUP_SIMILARITY_THRESH", "1.5")

    cfg = PresearchConfig.from_env(dotenv=False)

    assert cfg.timeout_ms == 30_000
    assert cfg.retry.retries == 5
    assert cfg.cache.ttl_seconds == 60.0
    assert cfg.processing.deduplication_threshold == 1.0


def test_invalid_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "lots")
    monkeypatch.setenv("CACHE_TTL", "forever")
    cfg = PresearchConfig.from_env(dotenv=False)
    assert cfg.rate_limit.max_requests == 100
    assert cfg.cache.ttl_seconds == 300.0


def test_instances_do_not_share_sections():
    a, b = PresearchConfig(), PresearchConfig()
    a.retry.retries = 0
    assert b.retry.retries == 3
