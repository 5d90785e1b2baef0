import pytest

from presearch_core.core.errors import ValidationError
from presearch_core.utils.url_utils import (
    base_domain,
    domain_matches,
    extract_domain,
    is_valid_url,
    normalize_url,
    validate_fetch_url,
)


def test_normalize_adds_scheme_and_lowercases_host():
    assert normalize_url("Example.COM/Path?Q=1") == "https://example.com/Path?Q=1"
    assert normalize_url("HTTP://Example.com") == "http://example.com"
    assert normalize_url("") == ""


@pytest.mark.parametrize("url,expected", [
    ("https://example.com", True),
    ("http://example.com/a", True),
    ("ftp://example.com", False),
    ("https://", False),
    ("", False),
    ("https://example.com/" + "a" * 2100, False),
])
def test_is_valid_url(url, expected):
    assert is_valid_url(url) is expected


def test_extract_domain_strips_port_and_credentials():
    assert extract_domain("https://user:pw@WWW.Example.com:8080/x") == "www.example.com"
    assert extract_domain("not a url") == ""


def test_domain_matching():
    assert base_domain("WWW.Example.com.") == "example.com"
    assert domain_matches("docs.python.org", "python.org")
    assert domain_matches("www.python.org", "python.org")
    assert not domain_matches("notpython.org", "python.org")
    assert not domain_matches("python.org", "")


@pytest.mark.asyncio
@pytest.mark.parametrize("url", [
    "http://localhost:8080/admin",
    "http://api.localhost/",
    "http://127.0.0.1/",
    "http://10.0.0.5/",
    "http://192.168.1.1/",
    "http://169.254.169.254/latest/meta-data",
    "http://100.64.0.1/",
    "http://0.0.0.0/",
    "http://[::1]/",
    "http://[::ffff:127.0.0.1]/",
    "ftp://example.com/file",
])
async def test_internal_targets_are_blocked(url):
    with pytest.raises(ValidationError):
        await validate_fetch_url(url, resolve=False)


@pytest.mark.asyncio
async def test_public_literal_is_allowed():
    assert await validate_fetch_url("https://93.184.216.34/", resolve=False) == "93.184.216.34"


@pytest.mark.asyncio
async def test_hostname_skips_dns_when_resolution_disabled():
    assert await validate_fetch_url("https://example.com/page", resolve=False) == "example.com"
