"""
Models package for the search core
"""

from .results import (
    DuplicateRecord,
    FetchResult,
    PageMeta,
    SearchResult,
)
from .search import (
    DEFAULT_IP,
    GeoLocation,
    SearchRequest,
)

__all__ = [
    "DuplicateRecord",
    "FetchResult",
    "PageMeta",
    "SearchResult",
    "DEFAULT_IP",
    "GeoLocation",
    "SearchRequest",
]
