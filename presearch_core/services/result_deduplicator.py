from __future__ import annotations

import math
import re
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple
from urllib.parse import urlparse

import structlog

from ..models.results import DuplicateRecord, SearchResult

logger = structlog.get_logger(__name__)

TITLE_WEIGHT = 0.4
DESCRIPTION_WEIGHT = 0.4
URL_WEIGHT = 0.2

_PUNCT = re.compile(r"[^\w\s]")


@dataclass
class DeduplicationReport:
    results: List[SearchResult]
    duplicates: List[DuplicateRecord] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "duplicates": [d.to_dict() for d in self.duplicates],
            "metrics": dict(self.metrics),
        }


def _word_counts(text: str) -> Counter:
    return Counter(w for w in (text or "").lower().split() if len(w) > 2)


def _url_identity(url: str) -> str:
    """Scheme-, ``www.``- and trailing-slash-insensitive form of ``url``."""
    p = urlparse((url or "").strip())
    host = (p.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    path = p.path.rstrip("/")
    query = f"?{p.query}" if p.query else ""
    return f"{host}{path}{query}"


class ResultDeduplicator:
    """Removes duplicate search results using URL and content similarity.

    Three passes, each shrinking the work for the next: exact URL matches,
    grouping by a normalised title key, then weighted cosine similarity only
    between members of the same title group.
    """

    def __init__(self, similarity_threshold: float = 0.85, cache_size: int = 10_000) -> None:
        if not 0.0 <= similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be within [0, 1]")
        self.similarity_threshold = similarity_threshold
        self.cache_size = max(1, cache_size)
        self._similarity_cache: "OrderedDict[Tuple[str, str], float]" = OrderedDict()

    @staticmethod
    def title_key(title: str) -> str:
        words = _PUNCT.sub("", (title or "").lower()).split()
        return " ".join(sorted(w for w in words if len(w) > 2))

    def _remember(self, key: Tuple[str, str], value: float) -> None:
        if len(self._similarity_cache) >= self.cache_size:
            self._similarity_cache.popitem(last=False)
        self._similarity_cache[key] = value

    def cosine_similarity(self, a: str, b: str) -> float:
        key = (a, b)
        cached = self._similarity_cache.get(key)
        if cached is not None:
            return cached
        if a == b:
            value = 1.0
        else:
            va, vb = _word_counts(a), _word_counts(b)
            if len(va) > len(vb):
                va, vb = vb, va
            dot = sum(count * vb.get(word, 0) for word, count in va.items())
            mag = math.sqrt(sum(c * c for c in va.values())) * math.sqrt(sum(c * c for c in vb.values()))
            value = dot / mag if mag else 0.0
        self._remember(key, value)
        return value

    def similarity(self, a: SearchResult, b: SearchResult) -> float:
        if a.url and a.url == b.url:
            return 1.0
        title = self.cosine_similarity(a.title, b.title)
        description = self.cosine_similarity(a.description, b.description)
        same_url = 1.0 if _url_identity(a.url) == _url_identity(b.url) else 0.0
        return TITLE_WEIGHT * title + DESCRIPTION_WEIGHT * description + URL_WEIGHT * same_url

    def deduplicate(self, results: Sequence[SearchResult]) -> DeduplicationReport:
        if not results:
            return DeduplicationReport(results=[], duplicates=[], metrics=self._metrics(0, 0, []))

        duplicates: List[DuplicateRecord] = []

        # Exact URL pass
        by_url: Dict[str, SearchResult] = {}
        url_unique: List[SearchResult] = []
        for result in results:
            original = by_url.get(result.url) if result.url else None
            if original is not None:
                duplicates.append(DuplicateRecord(original, result, 1.0, "identical_url"))
                continue
            if result.url:
                by_url[result.url] = result
            url_unique.append(result)

        # Title-key grouping
        groups: Dict[str, List[SearchResult]] = {}
        for result in url_unique:
            groups.setdefault(self.title_key(result.title), []).append(result)

        # Similarity within groups
        rejected = set()
        for members in groups.values():
            if len(members) == 1:
                continue
            accepted: List[SearchResult] = []
            for result in members:
                for ref in accepted:
                    score = self.similarity(result, ref)
                    if score >= self.similarity_threshold:
                        duplicates.append(DuplicateRecord(ref, result, score, "content_similarity"))
                        rejected.add(id(result))
                        break
                else:
                    accepted.append(result)

        unique = [r for r in url_unique if id(r) not in rejected]
        metrics = self._metrics(len(results), len(unique), duplicates)
        logger.info(
            "Result deduplication complete",
            stage="deduplication",
            input_count=len(results),
            output_count=len(unique),
            duplicates_removed=len(duplicates),
            url_duplicates=metrics["urlDuplicates"],
            content_duplicates=metrics["contentDuplicates"],
            similarity_threshold=self.similarity_threshold,
        )
        return DeduplicationReport(results=unique, duplicates=duplicates, metrics=metrics)

    def _metrics(self, original: int, unique: int, duplicates: List[DuplicateRecord]) -> Dict[str, Any]:
        return {
            "originalCount": original,
            "uniqueCount": unique,
            "duplicateCount": len(duplicates),
            "deduplicationRatio": round(len(duplicates) / original, 4) if original else 0.0,
            "urlDuplicates": sum(1 for d in duplicates if d.reason == "identical_url"),
            "contentDuplicates": sum(1 for d in duplicates if d.reason == "content_similarity"),
            "similarityCacheSize": len(self._similarity_cache),
        }

    def clear_cache(self) -> None:
        self._similarity_cache.clear()
