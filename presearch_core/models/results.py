"""
Records produced by the search core.

``SearchResult`` and ``FetchResult`` are the only shapes handed back to the
protocol layer; ``to_dict()`` renders them with the camelCase keys that layer
expects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class SearchResult:
    """A single normalised upstream result.

    Instances are immutable; scoring produces a copy via ``dataclasses.replace``.
    """

    url: str
    title: str
    description: str
    position: int
    domain: str
    content_category: str = "general"
    quality_score: Optional[float] = None
    is_recent: bool = False
    published_date: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "position": self.position,
            "domain": self.domain,
            "contentCategory": self.content_category,
            "qualityScore": self.quality_score,
            "isRecent": self.is_recent,
        }
        if self.published_date is not None:
            out["publishedDate"] = self.published_date.isoformat()
        return out


@dataclass(frozen=True)
class DuplicateRecord:
    original: SearchResult
    duplicate: SearchResult
    similarity: float
    reason: str  # "identical_url" | "content_similarity"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalUrl": self.original.url,
            "duplicateUrl": self.duplicate.url,
            "similarity": round(self.similarity, 4),
            "reason": self.reason,
        }


@dataclass
class PageMeta:
    title: Optional[str] = None
    description: Optional[str] = None
    og: Dict[str, str] = field(default_factory=dict)
    twitter: Dict[str, str] = field(default_factory=dict)
    canonical_url: Optional[str] = None
    language: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "title": self.title,
            "description": self.description,
            "og": dict(self.og),
            "twitter": dict(self.twitter),
        }
        if self.canonical_url:
            out["canonicalUrl"] = self.canonical_url
        if self.language:
            out["language"] = self.language
        return out


@dataclass
class FetchResult:
    """Outcome of fetching one URL; ``error`` is set instead of content on failure."""

    url: str
    status: Optional[int] = None
    meta: PageMeta = field(default_factory=PageMeta)
    text: str = ""
    text_length: int = 0
    html: Optional[str] = None
    fetch_time_ms: int = 0
    links: List[Dict[str, str]] = field(default_factory=list)
    images: List[Dict[str, str]] = field(default_factory=list)
    attempts: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, url: str, error: str, *, status: Optional[int] = None,
                fetch_time_ms: int = 0, attempts: int = 0) -> "FetchResult":
        return cls(url=url, status=status, error=error,
                   fetch_time_ms=fetch_time_ms, attempts=attempts)

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"url": self.url, "error": self.error}
        out: Dict[str, Any] = {
            "url": self.url,
            "status": self.status,
            "meta": self.meta.to_dict(),
            "text": self.text,
            "textLength": self.text_length,
            "fetchTimeMs": self.fetch_time_ms,
        }
        if self.html is not None:
            out["html"] = self.html
        if self.links:
            out["links"] = list(self.links)
        if self.images:
            out["images"] = list(self.images)
        return out
