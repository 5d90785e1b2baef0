"""
HTML parsing helpers for fetched pages.

Functions over an HTML string or an already parsed soup: page metadata
(title, description, Open Graph and Twitter-card tags), main-content text,
links and images. Callers that need several of them parse once with
:func:`parse_html` and pass the soup along.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Union
from urllib.parse import urljoin

from bs4 import BeautifulSoup, NavigableString, Tag

from ..models.results import PageMeta
from ..utils.url_utils import is_valid_url

_PARSER = "html.parser"

# Tried in order; the first container with enough text wins
CONTENT_SELECTORS = (
    "article",
    "main",
    "[role=main]",
    ".content",
    ".main-content",
    ".post-content",
    ".entry-content",
    ".article-content",
    ".article-body",
    "#content",
    "#main",
)

_NOISE_TAGS = (
    "script", "style", "noscript", "template", "iframe", "svg", "canvas",
    "nav", "header", "footer", "aside", "form", "button", "input", "select",
)

# Elements that start a new line of extracted text
_BREAK_TAGS = frozenset((
    "h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "blockquote", "pre", "td", "th", "tr",
    "dt", "dd", "dl", "ul", "ol", "table", "div", "section", "article", "main",
    "figure", "figcaption", "details", "summary", "br", "hr",
))

MIN_CONTAINER_CHARS = 200

_WS = re.compile(r"[ \t\r\f\v]+")
_ANY_WS = re.compile(r"\s+")
_BLANK_LINES = re.compile(r"\n{3,}")

Document = Union[str, BeautifulSoup]


def parse_html(html: Optional[str]) -> BeautifulSoup:
    return BeautifulSoup(html or "", _PARSER)


def _soup(doc: Optional[Document]) -> BeautifulSoup:
    if isinstance(doc, BeautifulSoup):
        return doc
    return parse_html(doc)


def _first_non_empty(*vals: Optional[str]) -> Optional[str]:
    for v in vals:
        if isinstance(v, str) and v.strip():
            return v.strip()
    return None


def extract_metadata(doc: Optional[Document]) -> PageMeta:
    """Extract title, description and social tags from the document head.

    Title falls back from ``<title>`` to ``og:title`` and ``twitter:title``;
    description from ``meta[name=description]`` to the OG/Twitter variants.
    """
    soup = _soup(doc)
    og: Dict[str, str] = {}
    twitter: Dict[str, str] = {}
    named: Dict[str, str] = {}

    for m in soup.find_all("meta"):
        key = (m.get("property") or m.get("name") or "").strip().lower()
        value = m.get("content")
        if not key or value is None:
            continue
        if key.startswith("og:"):
            og[key[3:]] = value.strip()
        elif key.startswith("twitter:"):
            twitter[key[8:]] = value.strip()
        else:
            named[key] = value.strip()

    title_tag = soup.title.get_text(strip=True) if soup.title else None

    canonical = None
    link_canon = soup.find("link", rel=lambda v: bool(v and "canonical" in str(v).lower()))
    if link_canon is not None and link_canon.get("href"):
        canonical = link_canon.get("href")

    language = None
    html_tag = soup.find("html")
    if html_tag is not None and html_tag.has_attr("lang"):
        language = (html_tag.get("lang") or "").strip() or None

    return PageMeta(
        title=_first_non_empty(title_tag, og.get("title"), twitter.get("title")),
        description=_first_non_empty(named.get("description"), og.get("description"), twitter.get("description")),
        og=og,
        twitter=twitter,
        canonical_url=canonical,
        language=language,
    )


def _strip_noise(soup: BeautifulSoup) -> None:
    for el in soup(list(_NOISE_TAGS)):
        el.decompose()


class _LineWriter:
    """Accumulates text nodes into lines, one per block element."""

    def __init__(self) -> None:
        self.lines: List[str] = []
        self._buf: List[str] = []
        self._prefix = ""

    def write(self, text: str) -> None:
        self._buf.append(text)

    def break_line(self) -> None:
        line = _ANY_WS.sub(" ", "".join(self._buf)).strip()
        self._buf = []
        if line:
            self.lines.append(self._prefix + line)
            self._prefix = ""

    def bullet(self) -> None:
        self.break_line()
        self._prefix = "- "


def _walk(node: Tag, out: _LineWriter) -> None:
    for child in node.children:
        if isinstance(child, Tag):
            if child.name not in _BREAK_TAGS:
                _walk(child, out)
                continue
            if child.name == "li":
                out.bullet()
            else:
                out.break_line()
            _walk(child, out)
            out.break_line()
        # Comments, doctypes and CDATA are NavigableString subclasses
        elif type(child) is NavigableString:
            out.write(str(child))


def _block_text(el: Tag) -> str:
    """Every text node under ``el``, one line per block element.

    Text sitting directly in a ``<div>`` or next to a paragraph is kept;
    list items are prefixed with ``- ``.
    """
    out = _LineWriter()
    _walk(el, out)
    out.break_line()
    return "\n".join(out.lines)


def _collapse(text: str) -> str:
    text = _WS.sub(" ", text or "")
    text = "\n".join(line.strip() for line in text.split("\n"))
    return _BLANK_LINES.sub("\n\n", text).strip()


def extract_main_text(doc: Optional[Document], max_chars: Optional[int] = None) -> str:
    """Main-content text with paragraph and heading breaks preserved.

    Scripts, navigation and forms are removed first; then the prioritised
    content selectors are tried before falling back to ``<body>``. A soup
    passed in is modified in place, so take links and images from it first.
    """
    soup = _soup(doc)
    _strip_noise(soup)

    text = ""
    for selector in CONTENT_SELECTORS:
        el = soup.select_one(selector)
        if el is None:
            continue
        candidate = _block_text(el)
        if len(candidate) >= MIN_CONTAINER_CHARS:
            text = candidate
            break

    if not text:
        root = soup.body or soup
        text = _block_text(root)

    if max_chars is not None and len(text) > max_chars:
        text = text[:max_chars].rstrip()
    return text


def extract_links(doc: Optional[Document], base_url: str, limit: int = 100) -> List[Dict[str, str]]:
    """Absolute http(s) links with their anchor text, deduplicated by URL."""
    soup = _soup(doc)
    seen = set()
    out: List[Dict[str, str]] = []
    for a in soup.find_all("a", href=True):
        href = urljoin(base_url, a["href"].strip())
        if not is_valid_url(href) or href in seen:
            continue
        seen.add(href)
        out.append({"url": href, "text": _collapse(a.get_text(" ", strip=True))})
        if len(out) >= limit:
            break
    return out


def extract_images(doc: Optional[Document], base_url: str, limit: int = 50) -> List[Dict[str, str]]:
    soup = _soup(doc)
    seen = set()
    out: List[Dict[str, str]] = []
    for img in soup.find_all("img"):
        src = img.get("src") or img.get("data-src")
        if not src:
            continue
        absolute = urljoin(base_url, src.strip())
        if not is_valid_url(absolute) or absolute in seen:
            continue
        seen.add(absolute)
        out.append({"url": absolute, "alt": (img.get("alt") or "").strip()})
        if len(out) >= limit:
            break
    return out
