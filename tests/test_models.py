import json

import pytest

from presearch_core.core.errors import ValidationError
from presearch_core.models.results import FetchResult, PageMeta, SearchResult
from presearch_core.models.search import DEFAULT_IP, SearchRequest


def test_minimal_request_defaults():
    req = SearchRequest.parse({"query": "  python asyncio  "})
    assert req.query == "python asyncio"
    assert req.page == 1
    assert req.count == 10
    assert req.safe == "1"
    assert req.use_cache is True


def test_upstream_params_default_to_ip():
    params = SearchRequest.parse({"query": "x"}).to_upstream_params()
    assert params == {"q": "x", "page": "1", "count": "10", "safe": "1", "ip": DEFAULT_IP}


def test_upstream_params_with_filters_and_location():
    req = SearchRequest.parse({
        "query": "x",
        "page": 2,
        "count": 20,
        "lang": "en-US",
        "country": "gb",
        "safe": "off",
        "time": "week",
        "location": {"lat": 51.5, "long": -0.12},
    })
    params = req.to_upstream_params()
    assert params["country"] == "GB"
    assert params["safe"] == "0"
    assert params["time"] == "week"
    assert params["lang"] == "en-US"
    assert json.loads(params["location"]) == {"lat": 51.5, "long": -0.12}
    assert "ip" not in params


@pytest.mark.parametrize("value,expected", [
    ("off", "0"), ("0", "0"), ("false", "0"),
    ("moderate", "1"), ("strict", "1"), ("1", "1"), ("True", "1"),
    (1, "1"), (0, "0"), (True, "1"), (False, "0"),
])
def test_safe_search_values(value, expected):
    assert SearchRequest.parse({"query": "x", "safe": value}).safe == expected


@pytest.mark.parametrize("data", [
    {"query": ""},
    {"query": "   "},
    {"query": "x", "page": 0},
    {"query": "x", "count": 0},
    {"query": "x", "count": 101},
    {"query": "x", "country": "usa"},
    {"query": "x", "safe": "maybe"},
    {"query": "x", "time": "decade"},
    {"query": "x", "ip": "999.1.1.1"},
    {"query": "x", "ip": "1.2.3.4", "location": {"lat": 1, "long": 2}},
    {"query": "x", "location": {"lat": 91, "long": 0}},
    {"query": "x", "min_quality_score": 150},
])
def test_invalid_requests_raise_core_validation_error(data):
    with pytest.raises(ValidationError) as info:
        SearchRequest.parse(data)
    assert info.value.details["errors"]


def test_processing_params():
    req = SearchRequest.parse({
        "query": "x", "count": 5, "exclude_domains": ["pinterest.com"], "min_quality_score": 40,
    })
    assert req.processing_params() == {
        "count": 5,
        "content_categories": [],
        "exclude_domains": ["pinterest.com"],
        "min_quality_score": 40,
    }


def test_search_result_to_dict_uses_camel_case():
    result = SearchResult(
        url="https://a.example/", title="T", description="D", position=1, domain="a.example",
        quality_score=55.5,
    )
    out = result.to_dict()
    assert out["contentCategory"] == "general"
    assert out["qualityScore"] == 55.5
    assert out["isRecent"] is False
    assert "publishedDate" not in out


def test_fetch_result_shapes():
    failed = FetchResult.failure("https://a.example/", "HTTP 404", status=404)
    assert not failed.ok
    assert failed.to_dict() == {"url": "https://a.example/", "error": "HTTP 404"}

    ok = FetchResult(url="https://a.example/", status=200, meta=PageMeta(title="A"), text="hi", text_length=2)
    out = ok.to_dict()
    assert out["meta"]["title"] == "A"
    assert out["textLength"] == 2
    assert "html" not in out
