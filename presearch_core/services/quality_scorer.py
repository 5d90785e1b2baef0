"""
Heuristic quality score for search results.

The upstream API only returns title, URL and description, so the score is
built from those plus the upstream rank. Four additive components, each
clamped to its own range, are summed and clamped to [0, 100]:

- rank bonus (0-20)
- title (0-40)
- description (0-35)
- URL authority (0-25)

Scoring is a pure function of ``(result, rank_index)``.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, Optional, Sequence
from urllib.parse import urlparse

from ..models.results import SearchResult
from ..utils.url_utils import base_domain, domain_matches

DESCRIPTIVE_TERMS = (
    "guide",
    "tutorial",
    "overview",
    "introduction",
    "complete",
    "ultimate",
    "best",
    "review",
    "comparison",
    "analysis",
)

GENERIC_TITLES = frozenset({"home", "index", "untitled", "page", "document", "article"})

QUALITY_INDICATORS = (
    "learn",
    "understand",
    "discover",
    "find out",
    "explore",
    "step-by-step",
    "comprehensive",
)

HIGH_AUTHORITY_DOMAINS = (
    "wikipedia.org",
    "github.com",
    "stackoverflow.com",
    "mozilla.org",
    "w3.org",
    "ietf.org",
    "apache.org",
    "gnu.org",
    "mit.edu",
    "stanford.edu",
    "harvard.edu",
    "cambridge.org",
    "ox.ac.uk",
    "nasa.gov",
    "nist.gov",
    "ibm.com",
    "google.com",
    "microsoft.com",
    "amazon.com",
    "apple.com",
    "cloud.google.com",
    "aws.amazon.com",
    "azure.microsoft.com",
)

MEDIUM_AUTHORITY_DOMAINS = (
    "medium.com",
    "reddit.com",
    "quora.com",
    "linkedin.com",
    "forbes.com",
    "techcrunch.com",
    "wired.com",
    "arstechnica.com",
    "nationalgeographic.com",
    "scientificamerican.com",
    "nature.com",
    "britannica.com",
    "investopedia.com",
    "coursera.org",
    "sciencedirect.com",
    "sas.com",
)

DISPOSABLE_TLDS = (".tk", ".ml", ".cf", ".ga", ".click", ".link", ".top")

TITLE_MAX = 40.0
DESCRIPTION_MAX = 35.0
URL_MAX = 25.0

_WORD = re.compile(r"[a-z]+")


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class QualityScorer:
    """Deterministic result scorer; word and domain lists are overridable."""

    def __init__(
        self,
        *,
        descriptive_terms: Sequence[str] = DESCRIPTIVE_TERMS,
        generic_titles: Iterable[str] = GENERIC_TITLES,
        quality_indicators: Sequence[str] = QUALITY_INDICATORS,
        high_authority_domains: Sequence[str] = HIGH_AUTHORITY_DOMAINS,
        medium_authority_domains: Sequence[str] = MEDIUM_AUTHORITY_DOMAINS,
    ) -> None:
        self.descriptive_terms = tuple(t.lower() for t in descriptive_terms)
        self.generic_titles = frozenset(t.lower() for t in generic_titles)
        self.quality_indicators = tuple(t.lower() for t in quality_indicators)
        self.high_authority_domains = tuple(high_authority_domains)
        self.medium_authority_domains = tuple(medium_authority_domains)

    @staticmethod
    def rank_score(rank_index: Optional[int]) -> float:
        if rank_index is None:
            return 0.0
        return float(max(0, 20 - rank_index * 2))

    def title_score(self, title: str) -> float:
        if not title:
            return 0.0
        length = len(title)
        if 30 <= length <= 80:
            score = 25.0
        elif length > 80:
            score = max(15.0, 25.0 - (length - 80) / 10.0)
        else:
            score = min(20.0, length * 0.8)

        lowered = title.lower()
        words = set(_WORD.findall(lowered))
        matched = [t for t in self.descriptive_terms if t in words]
        if matched:
            score += 10.0
        if len(matched) > 1:
            score += 5.0

        stripped = lowered.strip(" \t\n.!?:;-|")
        if stripped in self.generic_titles:
            score -= 5.0
        if "?" in title:
            score += 5.0
        if any(ch.isdigit() for ch in title):
            score += 3.0
        return _clamp(score, 0.0, TITLE_MAX)

    def description_score(self, description: str) -> float:
        if not description:
            return 0.0
        length = len(description)
        if 100 <= length <= 300:
            score = 25.0
        elif length > 300:
            score = max(15.0, 25.0 - (length - 300) / 50.0)
        else:
            score = min(20.0, length / 5.0)

        if length > 200:
            score += 5.0
        if "..." in description or "…" in description or length < 50:
            score -= 5.0
        lowered = description.lower()
        if any(ind in lowered for ind in self.quality_indicators):
            score += 3.0
        return _clamp(score, 0.0, DESCRIPTION_MAX)

    def url_score(self, url: str) -> float:
        if not url:
            return 0.0
        try:
            parsed = urlparse(url)
        except ValueError:
            return 0.0
        host = base_domain(parsed.hostname or "")
        if not host:
            return 0.0

        if any(domain_matches(host, d) for d in self.high_authority_domains):
            return 25.0
        if any(domain_matches(host, d) for d in self.medium_authority_domains):
            return 15.0

        score = 0.0
        if host.endswith((".edu", ".gov")):
            score += 8.0
        elif host.endswith(".org"):
            score += 5.0
        elif host.endswith(".com"):
            score += 3.0
        elif host.endswith(".net"):
            score += 2.0

        if parsed.scheme == "https":
            score += 5.0
        if not parsed.query or len(parsed.query) < 50:
            score += 3.0
        if host.endswith(DISPOSABLE_TLDS):
            score -= 10.0
        if len(host) > 30:
            score -= 5.0
        return _clamp(score, 0.0, URL_MAX)

    def breakdown(self, result: SearchResult, rank_index: Optional[int] = None) -> Dict[str, float]:
        parts = {
            "rank": self.rank_score(rank_index),
            "title": self.title_score(result.title),
            "description": self.description_score(result.description),
            "url": self.url_score(result.url),
        }
        parts["total"] = _clamp(sum(parts.values()), 0.0, 100.0)
        return parts

    def score(self, result: SearchResult, rank_index: Optional[int] = None) -> float:
        return round(self.breakdown(result, rank_index)["total"], 2)
