"""
Web Crawler

Bounded breadth-first crawler that turns a website into a list of
plain-text pages for the website normalizer.

Traversal rules:
    - The seed is depth 0; links are followed up to ``max_depth`` hops.
    - A link is enqueued once (fragment-less URL), never under an
      excluded path prefix, and only on the seed host when
      ``same_domain_only`` is set. Off-host redirects are dropped too.
    - Pages of one depth level are fetched concurrently, bounded by an
      asyncio.Semaphore, and collected in discovery order.
    - A failed, timed-out, non-HTML or empty page is logged and skipped.
      The crawl only fails when no page at all could be collected.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Final, NamedTuple
from urllib.parse import urldefrag, urlsplit, urlunsplit

import httpx

from docvault.core.config import settings
from docvault.core.errors import InvalidURLError, NoContentExtractedError
from docvault.models.schemas import CrawlOptions
from docvault.services.html import HtmlConverter, ParsedPage

logger = logging.getLogger(__name__)

_PAGE_EXTENSION_RE: Final = re.compile(r"\.(html|htm|php|asp|aspx)$", re.IGNORECASE)
_HTML_CONTENT_TYPES: Final[tuple[str, ...]] = ("text/html", "application/xhtml+xml")


class CrawledPage(NamedTuple):
    """One successfully fetched and converted page."""

    url: str
    title: str
    text: str
    depth: int


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------


def validate_and_clean_url(url: str) -> str:
    """
    Normalize user input into an absolute http(s) URL.

    Adds ``https://`` when no scheme is given.

    Raises:
        InvalidURLError: If the result is not an http(s) URL with a host.
    """
    candidate = url.strip()
    if not candidate or any(ch.isspace() for ch in candidate):
        raise InvalidURLError(f"Invalid URL format: '{url}'")
    if "://" not in candidate:
        candidate = f"https://{candidate}"

    try:
        parts = urlsplit(candidate)
        _ = parts.port  # raises on a malformed port
    except ValueError as exc:
        raise InvalidURLError(f"Invalid URL format: '{url}'") from exc

    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise InvalidURLError(f"Invalid URL format: '{url}'")

    return urlunsplit(
        (parts.scheme.lower(), parts.netloc, parts.path or "/", parts.query, "")
    )


def normalize_url(url: str) -> str:
    """Identity of a URL for the visited set: fragment dropped, empty path = /."""
    without_fragment, _ = urldefrag(url)
    parts = urlsplit(without_fragment)
    return urlunsplit(
        (parts.scheme, parts.netloc.lower(), parts.path or "/", parts.query, "")
    )


def page_title(url: str, hostname: str) -> str:
    """
    Human-readable page title derived from the URL path.

    ``/`` gives "{hostname} - Home"; ``/getting-started.html`` gives
    "{hostname} - Getting Started".
    """
    try:
        path = urlsplit(url).path
    except ValueError:
        return f"{hostname} - Page"

    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        return f"{hostname} - Home"

    clean = re.sub(r"[-_]", " ", segments[-1])
    clean = _PAGE_EXTENSION_RE.sub("", clean)
    title = " ".join(word[:1].upper() + word[1:].lower() for word in clean.split(" "))
    return f"{hostname} - {title}"


def is_excluded(url: str, exclude_dirs: list[str]) -> bool:
    """True when the URL path falls under one of the excluded prefixes."""
    path = urlsplit(url).path or "/"
    if not path.endswith("/"):
        path += "/"
    return any(path.startswith(prefix) for prefix in exclude_dirs)


# ---------------------------------------------------------------------------
# Crawler
# ---------------------------------------------------------------------------


class WebCrawler:
    """
    Async breadth-first website crawler.

    Usage::

        crawler = WebCrawler()
        pages = await crawler.crawl("https://example.com", CrawlOptions(max_depth=1))
        for page in pages:
            print(page.depth, page.title, len(page.text))

    Args:
        user_agent: Value of the User-Agent header on every request.
        transport: Optional httpx transport (tests inject a MockTransport).
        converter: HTML to text converter.
    """

    def __init__(
        self,
        user_agent: str = settings.CRAWL_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
        converter: HtmlConverter | None = None,
    ) -> None:
        self._user_agent = user_agent
        self._transport = transport
        self._converter = converter or HtmlConverter()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def crawl(
        self,
        seed_url: str,
        options: CrawlOptions | None = None,
    ) -> list[CrawledPage]:
        """
        Crawl a website starting at ``seed_url``.

        Args:
            seed_url: Starting page (scheme optional).
            options: Depth, page budget, exclusions and timeouts.

        Returns:
            Collected pages in breadth-first discovery order, at most
            ``options.max_pages`` of them.

        Raises:
            InvalidURLError: If the seed URL is malformed.
            NoContentExtractedError: If no page yielded any text.
        """
        options = options or CrawlOptions()
        seed = normalize_url(validate_and_clean_url(seed_url))
        seed_host = urlsplit(seed).hostname or ""

        logger.info(
            "Starting crawl of %s (max_depth=%d, max_pages=%d)",
            seed,
            options.max_depth,
            options.max_pages,
        )

        visited: set[str] = {seed}
        collected: set[str] = set()
        pages: list[CrawledPage] = []
        semaphore = asyncio.Semaphore(options.max_concurrency)

        async with httpx.AsyncClient(
            timeout=options.timeout,
            follow_redirects=True,
            headers={"User-Agent": self._user_agent},
            transport=self._transport,
        ) as client:
            frontier = [seed]
            depth = 0
            while frontier and len(pages) < options.max_pages:
                level, frontier = frontier, []
                while level and len(pages) < options.max_pages:
                    budget = options.max_pages - len(pages)
                    batch, level = level[:budget], level[budget:]
                    results = await asyncio.gather(
                        *(
                            self._fetch(client, semaphore, url, seed_host, options)
                            for url in batch
                        )
                    )

                    for result in results:
                        if result is None:
                            continue
                        final_url, parsed = result
                        visited.add(final_url)

                        if depth < options.max_depth:
                            for link in parsed.links:
                                candidate = normalize_url(link)
                                if candidate in visited or not self._allowed(
                                    candidate, seed_host, options
                                ):
                                    continue
                                visited.add(candidate)
                                frontier.append(candidate)

                        if final_url in collected or len(pages) >= options.max_pages:
                            continue
                        if not parsed.text:
                            logger.warning("Skipping %s: no text content", final_url)
                            continue

                        collected.add(final_url)
                        pages.append(
                            CrawledPage(
                                url=final_url,
                                title=page_title(final_url, seed_host),
                                text=parsed.text,
                                depth=depth,
                            )
                        )

                depth += 1
                if depth > options.max_depth:
                    break

        if not pages:
            raise NoContentExtractedError(
                f"No content could be extracted from the URL: {seed}"
            )

        logger.info("Crawl of %s finished: %d pages", seed, len(pages))
        return pages

    async def fetch_page(self, url: str, timeout: float = 10.0) -> CrawledPage:
        """
        Fetch and convert a single page without following links.

        Raises:
            InvalidURLError: If the URL is malformed.
            NoContentExtractedError: If the page is unreachable or empty.
        """
        options = CrawlOptions(max_depth=0, max_pages=1, timeout=timeout)
        pages = await self.crawl(url, options)
        return pages[0]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _allowed(url: str, seed_host: str, options: CrawlOptions) -> bool:
        """Containment rules applied to every discovered link."""
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https"):
            return False
        if options.same_domain_only and parts.hostname != seed_host:
            return False
        return not is_excluded(url, options.exclude_dirs)

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
        url: str,
        seed_host: str,
        options: CrawlOptions,
    ) -> tuple[str, ParsedPage] | None:
        """Fetch one page; None when it has to be skipped."""
        async with semaphore:
            try:
                # whole-page deadline; httpx timeouts are per read
                async with asyncio.timeout(options.timeout):
                    response = await client.get(url)
                    response.raise_for_status()
            except TimeoutError:
                logger.warning("Skipping %s: timed out after %ss", url, options.timeout)
                return None
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                logger.warning("Skipping %s: %s", url, exc)
                return None

        final_url = normalize_url(str(response.url))
        if options.same_domain_only and urlsplit(final_url).hostname != seed_host:
            logger.warning("Skipping %s: redirected off-site to %s", url, final_url)
            return None

        content_type = response.headers.get("content-type", "").lower()
        if content_type and not content_type.startswith(_HTML_CONTENT_TYPES):
            logger.warning("Skipping %s: non-HTML content (%s)", url, content_type)
            return None

        parsed = await asyncio.to_thread(
            self._converter.parse, response.text, final_url
        )
        logger.debug(
            "Fetched %s (%d chars, %d links)",
            final_url,
            len(parsed.text),
            len(parsed.links),
        )
        return final_url, parsed
