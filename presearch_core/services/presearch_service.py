"""
Facade over the API client, result processor and content fetcher.

This is the surface the protocol layer calls: it owns one
:class:`ResilientApiClient`, one :class:`ResultProcessor` and one
:class:`ContentFetcher`; all calls made through one service instance share
the resilience state of that client.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import structlog

from ..core.config import PresearchConfig
from ..core.errors import ApiError, ErrorKind, PresearchError, ValidationError
from ..logging_config import bind_request_context
from ..models.search import DEFAULT_IP, SearchRequest
from .api_client import ResilientApiClient
from .content_fetcher import BatchFetchReport, ContentFetcher
from .result_processor import ProcessedResults, ResultProcessor

logger = structlog.get_logger(__name__)

SEARCH_PATH = "/v1/search"
HEALTHCHECK_QUERY = "healthcheck"


def extract_raw_results(payload: Any) -> List[Any]:
    """Find the result list in an upstream search response."""
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, Mapping):
        return []
    data = payload.get("data")
    if isinstance(data, Mapping):
        for key in ("standardResults", "results"):
            if isinstance(data.get(key), list):
                return data[key]
    for key in ("standardResults", "results"):
        if isinstance(payload.get(key), list):
            return payload[key]
    return []


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _flag(value: bool) -> str:
    return "true" if value else "false"


class PresearchService:
    """High-level search, scrape and diagnostics operations."""

    def __init__(
        self,
        config: Optional[PresearchConfig] = None,
        *,
        client: Optional[ResilientApiClient] = None,
        processor: Optional[ResultProcessor] = None,
        fetcher: Optional[ContentFetcher] = None,
    ) -> None:
        self.config = config or PresearchConfig()
        self.client = client or ResilientApiClient(self.config)
        self.processor = processor or ResultProcessor(self.config.processing)
        self.fetcher = fetcher or ContentFetcher(self.config.fetcher)

    async def close(self) -> None:
        await self.client.close()
        await self.fetcher.close()

    async def __aenter__(self) -> "PresearchService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def search(self, request: Union[SearchRequest, Mapping[str, Any]]) -> ProcessedResults:
        """Run one upstream search and process the results.

        Raises:
            ValidationError: the request is malformed (no network call made)
            PresearchError: the upstream call failed after retries
        """
        if not isinstance(request, SearchRequest):
            request = SearchRequest.parse(dict(request))

        bind_request_context(request_id=uuid.uuid4().hex[:12], operation="search")
        logger.info("Search requested", query=request.query, page=request.page, count=request.count)

        payload = await self.client.get(
            SEARCH_PATH,
            request.to_upstream_params(),
            use_cache=request.use_cache,
        )
        processed = self.processor.process_results(
            extract_raw_results(payload),
            request.query,
            request.processing_params(),
        )
        if isinstance(payload, Mapping) and isinstance(payload.get("meta"), Mapping):
            processed.metadata["upstreamMeta"] = dict(payload["meta"])
        return processed

    async def scrape(self, urls: Iterable[str], **fetch_options: Any) -> BatchFetchReport:
        urls = [u for u in urls if u]
        if not urls:
            raise ValidationError("At least one URL is required")
        bind_request_context(request_id=uuid.uuid4().hex[:12], operation="scrape")
        return await self.fetcher.fetch_batch(urls, **fetch_options)

    async def search_and_scrape(
        self,
        request: Union[SearchRequest, Mapping[str, Any]],
        *,
        max_pages: int = 5,
        **fetch_options: Any,
    ) -> Dict[str, Any]:
        """Search, then fetch the top ``max_pages`` result URLs."""
        processed = await self.search(request)
        urls = [r.url for r in processed.results if r.url][:max(0, max_pages)]
        report = await self.fetcher.fetch_batch(urls, **fetch_options) if urls else BatchFetchReport(results=[])
        return {"search": processed, "pages": report}

    async def node_status(
        self,
        node_api_key: Optional[str] = None,
        *,
        stats: bool = False,
        connected: bool = True,
        disconnected: bool = True,
        include_inactive: bool = False,
    ) -> Dict[str, Any]:
        key = (node_api_key or self.config.node_api_key or "").strip()
        if not key:
            raise ValidationError(
                "Node API key is required; pass node_api_key or set PRESEARCH_NODE_API_KEY"
            )
        url = f"{self.config.node_base_url}/api/nodes/status/{key}"
        params = {
            "stats": _flag(stats),
            "connected": _flag(connected),
            "disconnected": _flag(disconnected),
            "include_inactive": _flag(include_inactive),
        }
        logger.info("Fetching node status", stats=stats, connected=connected)
        # The search API key must not leak to the node API host
        data = await self.client.get(url, params, use_cache=False, headers={"Authorization": None})
        if isinstance(data, Mapping) and data.get("success") is False:
            raise ApiError("Node API returned unsuccessful response", details={"data": dict(data)})
        return {"success": True, "data": data}

    async def health_check(
        self,
        *,
        timeout: float = 5.0,
        include_diagnostics: bool = True,
    ) -> Dict[str, Any]:
        """Probe the upstream with an uncached search; never raises."""
        started = time.perf_counter()
        status: Dict[str, Any] = {
            "id": f"health_{uuid.uuid4().hex[:12]}",
            "timestamp": _now_iso(),
            "status": "unknown",
            "checks": {},
            "diagnostics": {},
            "performance": {},
        }
        checks = status["checks"]

        try:
            payload = await self.client.get(
                SEARCH_PATH,
                {"q": HEALTHCHECK_QUERY, "ip": DEFAULT_IP},
                use_cache=False,
                retries=1,
                timeout=timeout,
            )
            latency_ms = int((time.perf_counter() - started) * 1000)
            checks["connectivity"] = {
                "status": "healthy",
                "latencyMs": latency_ms,
                "message": "API is reachable and responding.",
            }
            authenticated = self.config.has_api_key
            checks["authentication"] = {
                "status": "healthy" if authenticated else "degraded",
                "authenticated": authenticated,
            }
            raw = extract_raw_results(payload)
            valid = isinstance(payload, (Mapping, list))
            checks["response"] = {
                "status": "healthy" if valid else "unhealthy",
                "hasResults": bool(raw),
                "resultCount": len(raw),
            }
            status["status"] = "healthy" if valid else "unhealthy"
        except PresearchError as exc:
            latency_ms = int((time.perf_counter() - started) * 1000)
            detail = {"error": exc.message, "latencyMs": latency_ms}
            if exc.kind is ErrorKind.AUTHENTICATION:
                status["status"] = "unhealthy"
                checks["authentication"] = {"status": "unhealthy", "authenticated": False, **detail}
            elif exc.kind is ErrorKind.RATE_LIMIT:
                status["status"] = "degraded"
                checks["rateLimit"] = {"status": "degraded", "limited": True, **detail}
            elif exc.kind in (ErrorKind.TIMEOUT, ErrorKind.CIRCUIT_OPEN):
                status["status"] = "degraded"
                checks["connectivity"] = {"status": "degraded", **detail}
            else:
                status["status"] = "unhealthy"
                checks["connectivity"] = {"status": "unhealthy", **detail}
            logger.warning("Health check failed", kind=exc.kind.value, error=exc.message)

        if include_diagnostics:
            status["diagnostics"] = self.diagnostics()
        status["performance"] = {
            "totalDurationMs": int((time.perf_counter() - started) * 1000),
            "timestamp": _now_iso(),
        }
        return status

    def diagnostics(self) -> Dict[str, Any]:
        client_stats = self.client.stats()
        return {
            "rateLimit": client_stats["rateLimit"],
            "cache": client_stats["cache"],
            "circuitBreaker": client_stats["circuitBreaker"],
            "requests": client_stats["requests"],
            "processor": self.processor.metrics(),
            "domainThrottle": self.fetcher.throttle.stats(),
        }

    def clear_cache(self) -> int:
        return self.client.clear_cache()
