import aiohttp
import pytest

from conftest import DummyResponse, DummySession, SleepRecorder
from presearch_core.core.config import FetcherSettings
from presearch_core.services.content_fetcher import ContentFetcher

HTML_HEADERS = {"Content-Type": "text/html; charset=utf-8"}

PAGE = """
<html lang="en"><head>
<title>Example Article</title>
<meta name="description" content="An example page.">
</head><body>
<nav><a href="/home">Home</a></nav>
<article><h1>Heading</h1><p>{body}</p><a href="/next">Next page</a><img src="/pic.png" alt="Pic"></article>
</body></html>
""".format(body="Readable content. " * 20)


def html_response(status=200, text=PAGE, **kwargs):
    return DummyResponse(status, text=text, headers=HTML_HEADERS, **kwargs)


def make_fetcher(responses=(), responder=None, **settings):
    settings.setdefault("validate_urls", False)
    session = DummySession(responses, responder=responder)
    sleep = SleepRecorder()
    fetcher = ContentFetcher(FetcherSettings(**settings), session=session, sleep=sleep, resolve_dns=False)
    return fetcher, session, sleep


@pytest.mark.asyncio
async def test_fetch_parses_metadata_and_text():
    fetcher, session, _ = make_fetcher([html_response()])

    result = await fetcher.fetch("https://example.com/article")

    assert result.ok
    assert result.status == 200
    assert result.attempts == 1
    assert result.meta.title == "Example Article"
    assert result.meta.description == "An example page."
    assert result.text.startswith("Heading\nReadable content.")
    assert "Home" not in result.text
    assert result.text_length == len(result.text)
    assert result.html is None
    assert session.calls[0]["headers"]["User-Agent"].startswith("Mozilla/5.0")


@pytest.mark.asyncio
async def test_fetch_optional_html_links_and_images():
    fetcher, _, _ = make_fetcher([html_response()])

    result = await fetcher.fetch(
        "https://example.com/article", include_html=True, extract_links=True, extract_images=True,
    )

    assert result.html == PAGE
    assert {"url": "https://example.com/next", "text": "Next page"} in result.links
    assert result.images == [{"url": "https://example.com/pic.png", "alt": "Pic"}]
    out = result.to_dict()
    assert "html" in out and "links" in out and "images" in out


@pytest.mark.asyncio
async def test_text_is_capped():
    fetcher, _, _ = make_fetcher([html_response()])
    result = await fetcher.fetch("https://example.com/article", max_text_length=50)
    assert len(result.text) <= 50
    assert result.text_length == len(result.text)


@pytest.mark.asyncio
async def test_not_found_is_not_retried():
    fetcher, session, _ = make_fetcher([html_response(404, text="missing")])

    result = await fetcher.fetch("https://example.com/missing")

    assert not result.ok
    assert result.status == 404
    assert result.attempts == 1
    assert "404" in result.error
    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_transient_server_error_is_retried():
    fetcher, session, _ = make_fetcher([html_response(503), html_response()])

    result = await fetcher.fetch("https://example.com/flaky")

    assert result.ok
    assert result.attempts == 2
    assert len(session.calls) == 2


@pytest.mark.asyncio
async def test_network_failure_exhausts_attempts():
    fetcher, session, _ = make_fetcher([aiohttp.ClientConnectionError("refused")], max_attempts=3)

    result = await fetcher.fetch("https://example.com/down")

    assert not result.ok
    assert result.attempts == 3
    assert len(session.calls) == 3
    assert "ClientConnectionError" in result.error


@pytest.mark.asyncio
async def test_binary_content_is_rejected():
    fetcher, session, _ = make_fetcher([
        DummyResponse(200, text="%PDF", headers={"Content-Type": "application/pdf"}),
    ])
    result = await fetcher.fetch("https://example.com/file.pdf")
    assert not result.ok
    assert "content type" in result.error
    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_plain_text_is_returned_as_is():
    fetcher, _, _ = make_fetcher([
        DummyResponse(200, text="  just text  ", headers={"Content-Type": "text/plain"}),
    ])
    result = await fetcher.fetch("https://example.com/robots.txt")
    assert result.text == "just text"
    assert result.meta.title is None


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["http://localhost/admin", "http://127.0.0.1:8080/", "http://10.1.2.3/"])
async def test_internal_targets_are_blocked_before_any_request(url):
    fetcher, session, _ = make_fetcher([html_response()], validate_urls=True)

    result = await fetcher.fetch(url)

    assert not result.ok
    assert "blocked" in result.error
    assert session.calls == []


@pytest.mark.asyncio
async def test_redirect_to_internal_target_is_blocked():
    def responder(method, url):
        if url == "https://example.com/start":
            return DummyResponse(302, headers={"Location": "http://127.0.0.1/secret"})
        return html_response(text="<p>INTERNAL SECRET</p>")

    fetcher, session, _ = make_fetcher(responder=responder, validate_urls=True)

    result = await fetcher.fetch("https://example.com/start")

    assert not result.ok
    assert "blocked" in result.error
    assert result.attempts == 1
    assert [c["url"] for c in session.calls] == ["https://example.com/start"]
    assert session.calls[0]["allow_redirects"] is False


@pytest.mark.asyncio
async def test_redirects_are_followed_after_checking_each_target():
    def responder(method, url):
        if url == "https://example.com/old":
            return DummyResponse(301, headers={"Location": "/moved"})
        if url == "https://example.com/moved":
            return DummyResponse(302, headers={"Location": "https://www.example.org/article"})
        return html_response()

    fetcher, session, _ = make_fetcher(responder=responder, validate_urls=True)

    result = await fetcher.fetch("https://example.com/old", extract_links=True)

    assert result.ok
    assert result.url == "https://example.com/old"
    assert [c["url"] for c in session.calls] == [
        "https://example.com/old",
        "https://example.com/moved",
        "https://www.example.org/article",
    ]
    # Relative links resolve against the page that was finally served
    assert {"url": "https://www.example.org/next", "text": "Next page"} in result.links


@pytest.mark.asyncio
async def test_redirect_loop_stops_at_limit():
    fetcher, session, _ = make_fetcher(
        responder=lambda method, url: DummyResponse(302, headers={"Location": "/loop"}),
        max_redirects=2,
    )

    result = await fetcher.fetch("https://example.com/loop")

    assert not result.ok
    assert "Too many redirects" in result.error
    assert len(session.calls) == 3


@pytest.mark.asyncio
async def test_redirect_without_location_fails():
    fetcher, _, _ = make_fetcher([DummyResponse(302)])
    result = await fetcher.fetch("https://example.com/nowhere")
    assert not result.ok
    assert result.status == 302
    assert "without Location" in result.error


@pytest.mark.asyncio
async def test_invalid_url_is_reported():
    fetcher, session, _ = make_fetcher([html_response()])
    result = await fetcher.fetch("https://")
    assert result.error == "Invalid URL format"
    assert session.calls == []


@pytest.mark.asyncio
async def test_batch_runs_in_bounded_chunks():
    fetcher, session, _ = make_fetcher(
        responder=lambda method, url: html_response(hold=0.01),
        concurrency=5,
    )
    urls = [f"https://site{i}.example/" for i in range(12)]

    report = await fetcher.fetch_batch(urls)

    assert [c["size"] for c in report.chunks] == [5, 5, 2]
    assert [c["index"] for c in report.chunks] == [0, 1, 2]
    assert session.peak_in_flight <= 5
    assert len(report.results) == 12
    assert [r.url for r in report.results] == urls
    assert report.success_rate == 1.0
    assert report.errors == []


@pytest.mark.asyncio
async def test_batch_concurrency_override():
    fetcher, session, _ = make_fetcher(responder=lambda method, url: html_response(hold=0.01))
    report = await fetcher.fetch_batch([f"https://s{i}.example/" for i in range(4)], concurrency=2)
    assert [c["size"] for c in report.chunks] == [2, 2]
    assert session.peak_in_flight <= 2


@pytest.mark.asyncio
async def test_batch_fetches_duplicates_once():
    fetcher, session, _ = make_fetcher(responder=lambda method, url: html_response())

    report = await fetcher.fetch_batch([
        "https://a.example/x", "a.example/x", "https://A.example/x", "",
    ])

    assert len(report.results) == 1
    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_batch_isolates_failures():
    def responder(method, url):
        if "broken" in url:
            return html_response(404, text="gone")
        return html_response()

    fetcher, _, _ = make_fetcher(responder=responder)

    report = await fetcher.fetch_batch([
        "https://ok1.example/", "https://broken.example/", "https://ok2.example/",
    ])

    assert [r.ok for r in report.results] == [True, False, True]
    assert report.errors == [{"url": "https://broken.example/", "error": report.results[1].error}]
    assert report.success_rate == pytest.approx(0.6667)
    assert report.to_dict()["successRate"] == report.success_rate


@pytest.mark.asyncio
async def test_empty_batch():
    fetcher, session, _ = make_fetcher()
    report = await fetcher.fetch_batch([])
    assert report.results == []
    assert report.chunks == []
    assert report.success_rate == 0.0
    assert session.calls == []
