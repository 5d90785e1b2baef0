"""
Result processing pipeline for upstream search responses.

``ResultProcessor.process_results`` turns the raw upstream list into ranked,
deduplicated, quality-scored :class:`SearchResult` records:

normalise -> category/domain filters -> deduplicate -> score ->
minimum-score filter -> truncate

It never raises. Failures are recorded on the processor's circuit breaker
and returned as a categorised error inside a well-formed envelope.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog

from ..core.config import ProcessingSettings
from ..core.errors import CircuitOpenError, categorize_error
from ..models.results import SearchResult
from ..utils.circuit_breaker import CircuitBreaker
from ..utils.date_utils import is_recent, safe_parse_date
from ..utils.url_utils import domain_matches, extract_domain
from .quality_scorer import QualityScorer
from .result_deduplicator import ResultDeduplicator

logger = structlog.get_logger(__name__)

# Checked in order; the first matching category wins
CATEGORY_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("technology-ai", ("ai", "artificial intelligence", "machine learning", "neural")),
    ("technology-programming", ("programming", "coding", "software", "development")),
    ("technology-blockchain", ("blockchain", "cryptocurrency", "bitcoin")),
    ("science-physics", ("physics", "quantum", "relativity")),
    ("science-biology", ("biology", "genetics", "evolution")),
    ("science-chemistry", ("chemistry", "molecular", "reaction")),
    ("business-general", ("business", "entrepreneur", "startup")),
    ("business-marketing", ("marketing", "advertising", "seo")),
    ("business-finance", ("finance", "investment", "stock")),
    ("health-general", ("health", "medical", "disease")),
    ("health-fitness", ("fitness", "exercise", "nutrition")),
    ("education-general", ("education", "learning", "tutorial")),
    ("education-academic", ("university", "college", "academic")),
    ("news-general", ("news", "breaking", "latest")),
    ("news-politics", ("politics", "government", "election")),
    ("entertainment-movies", ("movie", "film", "cinema")),
    ("entertainment-music", ("music", "song", "album")),
    ("entertainment-gaming", ("game", "gaming", "console")),
)
DEFAULT_CATEGORY = "general"

CONTENT_CATEGORIES = tuple(name for name, _ in CATEGORY_KEYWORDS) + (DEFAULT_CATEGORY,)

_CATEGORY_PATTERNS = tuple(
    (name, re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")\b"))
    for name, keywords in CATEGORY_KEYWORDS
)

_URL_KEYS = ("url", "link")
_TITLE_KEYS = ("title", "name")
_DESCRIPTION_KEYS = ("description", "snippet", "summary")
_DATE_KEYS = ("publishedDate", "published_date", "date", "age")
_ALIASED = frozenset(_URL_KEYS + _TITLE_KEYS + _DESCRIPTION_KEYS + _DATE_KEYS + ("position",))


def categorize_content(title: str, description: str) -> str:
    text = f"{title} {description}".lower()
    for name, pattern in _CATEGORY_PATTERNS:
        if pattern.search(text):
            return name
    return DEFAULT_CATEGORY


def _first(raw: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


@dataclass
class ProcessedResults:
    results: List[SearchResult]
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "results": [r.to_dict() for r in self.results],
            "metadata": dict(self.metadata),
        }
        if self.error is not None:
            out["error"] = self.error
        return out


class ResultProcessor:
    """Normalise, filter, deduplicate and score one batch of upstream results."""

    def __init__(
        self,
        settings: Optional[ProcessingSettings] = None,
        *,
        deduplicator: Optional[ResultDeduplicator] = None,
        scorer: Optional[QualityScorer] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.settings = settings or ProcessingSettings()
        self.deduplicator = deduplicator or ResultDeduplicator(
            self.settings.deduplication_threshold,
            self.settings.similarity_cache_size,
        )
        self.scorer = scorer or QualityScorer()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="result-processor")
        self._reset_counters()

    def _reset_counters(self) -> None:
        self.processed_queries = 0
        self.successful_queries = 0
        self.total_results = 0
        self.deduplicated_results = 0
        self.errors = 0
        self.average_processing_time_ms = 0.0

    # ------------------------------------------------------------------ #
    # Normalisation
    # ------------------------------------------------------------------ #

    def normalize_result(self, raw: Mapping[str, Any], index: int) -> SearchResult:
        """Map one upstream record (with its field aliases) to a ``SearchResult``."""
        url = str(_first(raw, _URL_KEYS) or "").strip()
        title = str(_first(raw, _TITLE_KEYS) or "Untitled").strip()
        description = str(_first(raw, _DESCRIPTION_KEYS) or "").strip()
        position = raw.get("position")
        if not isinstance(position, int) or isinstance(position, bool) or position <= 0:
            position = index + 1
        published = safe_parse_date(_first(raw, _DATE_KEYS))
        return SearchResult(
            url=url,
            title=title,
            description=description,
            position=position,
            domain=extract_domain(url) or "unknown",
            content_category=categorize_content(title, description),
            is_recent=is_recent(published, days=self.settings.recent_days),
            published_date=published,
            extra={k: v for k, v in raw.items() if k not in _ALIASED},
        )

    # ------------------------------------------------------------------ #
    # Pipeline
    # ------------------------------------------------------------------ #

    def process_results(
        self,
        raw_results: Optional[Sequence[Any]],
        query: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> ProcessedResults:
        started = time.perf_counter()
        params = dict(params or {})
        raw_list = list(raw_results or [])

        self.processed_queries += 1
        self.total_results += len(raw_list)

        try:
            if not self.circuit_breaker.can_proceed():
                raise CircuitOpenError(
                    "Result processing circuit breaker is open",
                    retry_after=self.circuit_breaker.retry_after(),
                )

            results: List[SearchResult] = []
            skipped = 0
            for index, raw in enumerate(raw_list):
                if not isinstance(raw, Mapping):
                    skipped += 1
                    continue
                results.append(self.normalize_result(raw, index))
            if skipped:
                logger.warning("Skipped malformed upstream results", query=query, skipped=skipped)

            categories = params.get("content_categories") or []
            if categories:
                wanted = set(categories)
                results = [r for r in results if r.content_category in wanted]

            excluded = params.get("exclude_domains") or []
            if excluded:
                results = [r for r in results if not any(domain_matches(r.domain, d) for d in excluded)]

            dedup = self.deduplicator.deduplicate(results)
            results = dedup.results
            self.deduplicated_results += len(results)

            results = [
                replace(r, quality_score=self.scorer.score(r, index))
                for index, r in enumerate(results)
            ]

            min_score = params.get("min_quality_score")
            if isinstance(min_score, (int, float)) and not isinstance(min_score, bool) and min_score > 0:
                results = [r for r in results if (r.quality_score or 0) >= min_score]

            count = params.get("count")
            if isinstance(count, int) and count > 0:
                results = results[:count]

            elapsed_ms = self._record_time(started)
            self.circuit_breaker.record_success()
            logger.info(
                "Processed search results",
                query=query,
                total=len(raw_list),
                processed=len(results),
                duplicates=len(dedup.duplicates),
                processing_time_ms=elapsed_ms,
            )
            return ProcessedResults(
                results=results,
                metadata={
                    "query": query,
                    "processingTimeMs": elapsed_ms,
                    "deduplication": dedup.metrics,
                    "qualityMetrics": self.quality_metrics(results),
                    "total": len(raw_list),
                    "processed": len(results),
                    "filteredOut": len(raw_list) - len(results),
                    "skipped": skipped,
                },
            )
        except CircuitOpenError as exc:
            self.errors += 1
            logger.warning("Result processing rejected, circuit open", query=query)
            return self._error_envelope(exc, query, started)
        except Exception as exc:
            self.errors += 1
            self.circuit_breaker.record_failure()
            logger.error("Result processing failed", query=query, error=str(exc), exc_info=True)
            return self._error_envelope(exc, query, started)

    def _error_envelope(self, exc: Exception, query: str, started: float) -> ProcessedResults:
        return ProcessedResults(
            results=[],
            metadata={
                "query": query,
                "processingTimeMs": int((time.perf_counter() - started) * 1000),
            },
            error=categorize_error(exc),
        )

    def _record_time(self, started: float) -> int:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        # Averaged over successful runs only; error envelopes are not timed
        self.successful_queries += 1
        n = self.successful_queries
        self.average_processing_time_ms = (
            self.average_processing_time_ms * (n - 1) + elapsed_ms
        ) / n
        return elapsed_ms

    def quality_metrics(self, results: Sequence[SearchResult]) -> Dict[str, Any]:
        scores = [r.quality_score for r in results if r.quality_score is not None]
        if not scores:
            return {
                "averageQualityScore": 0.0,
                "highQualityResults": 0,
                "highQualityRatio": 0.0,
                "totalScoredResults": 0,
            }
        high = sum(1 for s in scores if s >= self.settings.high_quality_threshold)
        return {
            "averageQualityScore": round(sum(scores) / len(scores), 2),
            "highQualityResults": high,
            "highQualityRatio": round(high / len(results), 4),
            "totalScoredResults": len(scores),
        }

    def metrics(self) -> Dict[str, Any]:
        return {
            "processedQueries": self.processed_queries,
            "successfulQueries": self.successful_queries,
            "totalResults": self.total_results,
            "deduplicatedResults": self.deduplicated_results,
            "errors": self.errors,
            "averageProcessingTimeMs": round(self.average_processing_time_ms, 2),
            "circuitBreaker": self.circuit_breaker.get_status(),
            "config": {
                "deduplicationThreshold": self.deduplicator.similarity_threshold,
                "highQualityThreshold": self.settings.high_quality_threshold,
                "recentDays": self.settings.recent_days,
            },
        }

    def reset(self) -> None:
        self._reset_counters()
        self.deduplicator.clear_cache()
        self.circuit_breaker.reset()
