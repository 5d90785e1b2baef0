"""
presearch_core: resilient search client and result pipeline for the
Presearch web-search API.
"""

from .core.config import PresearchConfig
from .core.errors import ErrorKind, PresearchError
from .logging_config import configure_logging
from .models.results import FetchResult, SearchResult
from .models.search import SearchRequest
from .services.presearch_service import PresearchService

__version__ = "1.0.0"

__all__ = [
    "PresearchConfig",
    "ErrorKind",
    "PresearchError",
    "configure_logging",
    "FetchResult",
    "SearchResult",
    "SearchRequest",
    "PresearchService",
    "__version__",
]
