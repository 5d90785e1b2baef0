"""
Services package public API.

    from presearch_core.services import PresearchService, ContentFetcher
"""

from .api_client import AttemptOutcome, ResilientApiClient
from .cache import ResponseCache
from .content_fetcher import BatchFetchReport, ContentFetcher
from .domain_throttle import DomainThrottle
from .presearch_service import PresearchService
from .quality_scorer import QualityScorer
from .result_deduplicator import DeduplicationReport, ResultDeduplicator
from .result_processor import ProcessedResults, ResultProcessor

__all__ = [
    "AttemptOutcome",
    "ResilientApiClient",
    "ResponseCache",
    "BatchFetchReport",
    "ContentFetcher",
    "DomainThrottle",
    "PresearchService",
    "QualityScorer",
    "DeduplicationReport",
    "ResultDeduplicator",
    "ProcessedResults",
    "ResultProcessor",
]
