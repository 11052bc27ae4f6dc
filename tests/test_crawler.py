"""
Web Crawler Unit Tests

Verifies URL validation helpers and WebCrawler containment rules
(depth, page budget, excluded directories, same-domain), failure
tolerance and single-page fetching.

Runs offline: pages are served by an ``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import httpx
import pytest

from docvault.core.config import settings
from docvault.core.errors import InvalidURLError, NoContentExtractedError
from docvault.models.schemas import CrawlOptions
from docvault.services.crawler import (
    WebCrawler,
    is_excluded,
    normalize_url,
    page_title,
    validate_and_clean_url,
)

SEED = "https://docs.example.com/"

Serve = Callable[..., httpx.MockTransport]

# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------


class TestValidateUrl:
    """User-supplied URL cleaning."""

    def test_adds_https_scheme(self) -> None:
        assert validate_and_clean_url("example.com") == "https://example.com/"

    def test_keeps_path_and_query(self) -> None:
        url = validate_and_clean_url("http://Example.com/a/b?x=1#frag")

        assert url == "http://Example.com/a/b?x=1"

    @pytest.mark.parametrize(
        "url",
        ["", "   ", "ftp://example.com/file", "https://", "http://exa mple.com"],
    )
    def test_rejects_invalid(self, url: str) -> None:
        with pytest.raises(InvalidURLError):
            validate_and_clean_url(url)

    def test_rejects_bad_port(self) -> None:
        with pytest.raises(InvalidURLError):
            validate_and_clean_url("https://example.com:99999/")


class TestUrlHelpers:
    """Normalization, titles and exclusions."""

    def test_normalize_drops_fragment_and_lowercases_host(self) -> None:
        url = normalize_url("https://Docs.Example.com#top")

        assert url == "https://docs.example.com/"

    def test_page_title_for_root(self) -> None:
        title = page_title("https://example.com/", "example.com")

        assert title == "example.com - Home"

    def test_page_title_from_last_segment(self) -> None:
        url = "https://example.com/docs/getting-started.html"
        title = page_title(url, "example.com")

        assert title == "example.com - Getting Started"

    @pytest.mark.parametrize(
        ("url", "excluded"),
        [
            ("https://x.com/admin/users", True),
            ("https://x.com/admin", True),
            ("https://x.com/administrator", False),
            ("https://x.com/docs/", False),
        ],
    )
    def test_is_excluded(self, url: str, excluded: bool) -> None:
        assert is_excluded(url, ["/admin/"]) is excluded


# ---------------------------------------------------------------------------
# Crawling
# ---------------------------------------------------------------------------


class TestCrawl:
    """Breadth-first crawling against the in-memory docs.example.com site."""

    @pytest.mark.asyncio
    async def test_follows_links_within_depth(self, crawler: WebCrawler) -> None:
        pages = await crawler.crawl(SEED, CrawlOptions(max_depth=2))

        assert [p.url for p in pages] == [
            "https://docs.example.com/",
            "https://docs.example.com/guide/",
            "https://docs.example.com/guide/advanced",
        ]
        assert [p.depth for p in pages] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_depth_limit(self, crawler: WebCrawler) -> None:
        pages = await crawler.crawl(SEED, CrawlOptions(max_depth=1))

        assert {p.url for p in pages} == {
            "https://docs.example.com/",
            "https://docs.example.com/guide/",
        }

    @pytest.mark.asyncio
    async def test_depth_zero_fetches_seed_only(self, crawler: WebCrawler) -> None:
        pages = await crawler.crawl(SEED, CrawlOptions(max_depth=0))

        assert [p.url for p in pages] == [SEED]
        assert "The sky is blue" in pages[0].text

    @pytest.mark.asyncio
    async def test_page_budget(self, crawler: WebCrawler) -> None:
        pages = await crawler.crawl(SEED, CrawlOptions(max_depth=5, max_pages=2))

        assert len(pages) == 2

    @pytest.mark.asyncio
    async def test_excluded_dirs_and_other_hosts_skipped(
        self, crawler: WebCrawler
    ) -> None:
        pages = await crawler.crawl(SEED, CrawlOptions(max_depth=3))
        urls = {p.url for p in pages}

        assert "https://docs.example.com/admin/panel" not in urls
        assert all(url.startswith("https://docs.example.com/") for url in urls)

    @pytest.mark.asyncio
    async def test_custom_exclusions_replace_defaults(self, serve: Serve) -> None:
        crawler = WebCrawler(transport=serve())

        pages = await crawler.crawl(
            SEED, CrawlOptions(max_depth=1, exclude_dirs=["/guide/"])
        )

        assert {p.url for p in pages} == {
            "https://docs.example.com/",
            "https://docs.example.com/admin/panel",
        }

    @pytest.mark.asyncio
    async def test_titles_derive_from_path(self, crawler: WebCrawler) -> None:
        pages = await crawler.crawl(SEED, CrawlOptions(max_depth=1))

        assert pages[0].title == "docs.example.com - Home"
        assert pages[1].title == "docs.example.com - Guide"

    @pytest.mark.asyncio
    async def test_broken_links_are_skipped(self, serve: Serve) -> None:
        site = {
            SEED: (
                "<body><p>Home</p>"
                "<a href='/missing'>x</a><a href='/ok'>ok</a></body>"
            ),
            "https://docs.example.com/ok": "<body><p>Fine</p></body>",
        }
        crawler = WebCrawler(transport=serve(site))

        pages = await crawler.crawl(SEED, CrawlOptions(max_depth=1))

        assert [p.url for p in pages] == [SEED, "https://docs.example.com/ok"]

    @pytest.mark.asyncio
    async def test_unrequestable_link_is_skipped(self, serve: Serve) -> None:
        site = {
            SEED: (
                "<body><p>Home</p>"
                "<a href='/about'>About</a><a href='/bad\x01link'>bad</a></body>"
            ),
            "https://docs.example.com/about": "<body><p>About us</p></body>",
        }
        crawler = WebCrawler(transport=serve(site))

        pages = await crawler.crawl(SEED, CrawlOptions(max_depth=1))

        assert [p.url for p in pages] == [SEED, "https://docs.example.com/about"]

    @pytest.mark.asyncio
    async def test_slow_page_is_skipped(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/slow":
                await asyncio.sleep(5)
                return httpx.Response(200, html="<p>Too late</p>")
            return httpx.Response(200, html="<p>Home</p><a href='/slow'>slow</a>")

        crawler = WebCrawler(transport=httpx.MockTransport(handler))

        pages = await crawler.crawl(SEED, CrawlOptions(max_depth=1, timeout=0.05))

        assert [p.url for p in pages] == [SEED]

    @pytest.mark.asyncio
    async def test_concurrency_defaults_to_setting(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "CRAWL_MAX_CONCURRENCY", 2)
        in_flight = 0
        peak = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            if request.url.path == "/":
                links = "".join(f"<a href='/p{i}'>p{i}</a>" for i in range(6))
                return httpx.Response(200, html=f"<p>Home</p>{links}")
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return httpx.Response(200, html=f"<p>{request.url.path}</p>")

        crawler = WebCrawler(transport=httpx.MockTransport(handler))
        options = CrawlOptions(max_depth=1)

        pages = await crawler.crawl(SEED, options)

        assert options.max_concurrency == 2
        assert len(pages) == 7
        assert peak == 2

    @pytest.mark.asyncio
    async def test_non_html_content_skipped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/":
                return httpx.Response(
                    200, html="<p>Home</p><a href='/data.json'>data</a>"
                )
            return httpx.Response(200, json={"not": "html"})

        crawler = WebCrawler(transport=httpx.MockTransport(handler))

        pages = await crawler.crawl(SEED, CrawlOptions(max_depth=1))

        assert [p.url for p in pages] == [SEED]

    @pytest.mark.asyncio
    async def test_off_site_redirect_skipped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "elsewhere.example.org":
                return httpx.Response(200, html="<p>Elsewhere</p>")
            if request.url.path == "/moved":
                return httpx.Response(
                    301, headers={"Location": "https://elsewhere.example.org/"}
                )
            return httpx.Response(
                200, html="<p>Home</p><a href='/moved'>moved</a>"
            )

        crawler = WebCrawler(transport=httpx.MockTransport(handler))

        pages = await crawler.crawl(SEED, CrawlOptions(max_depth=1))

        assert [p.url for p in pages] == [SEED]

    @pytest.mark.asyncio
    async def test_sends_user_agent(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["User-Agent"])
            return httpx.Response(200, html="<p>Home</p>")

        crawler = WebCrawler(
            user_agent="DocVaultBot/2.0", transport=httpx.MockTransport(handler)
        )
        await crawler.crawl(SEED, CrawlOptions(max_depth=0))

        assert seen == ["DocVaultBot/2.0"]

    @pytest.mark.asyncio
    async def test_unreachable_seed_raises(self, serve: Serve) -> None:
        crawler = WebCrawler(transport=serve({}))

        with pytest.raises(NoContentExtractedError):
            await crawler.crawl(SEED, CrawlOptions(max_depth=2))

    @pytest.mark.asyncio
    async def test_invalid_seed_raises(self, crawler: WebCrawler) -> None:
        with pytest.raises(InvalidURLError):
            await crawler.crawl("ftp://docs.example.com/")


class TestFetchPage:
    """Single page fetching."""

    @pytest.mark.asyncio
    async def test_fetches_without_following_links(self, crawler: WebCrawler) -> None:
        page = await crawler.fetch_page("docs.example.com")

        assert page.url == SEED
        assert page.depth == 0
        assert "Welcome" in page.text

    @pytest.mark.asyncio
    async def test_empty_page_raises(self, serve: Serve) -> None:
        crawler = WebCrawler(
            transport=serve({SEED: "<body><script>x()</script></body>"})
        )

        with pytest.raises(NoContentExtractedError):
            await crawler.fetch_page(SEED)
