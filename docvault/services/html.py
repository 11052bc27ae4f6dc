"""
HTML to Text Conversion

Reduces a fetched web page to readable plain text and collects its
outgoing links, using BeautifulSoup with the stdlib ``html.parser``.

Links are read before any element is removed, so navigation menus still
feed the crawler even though their text never reaches the chunker.
"""

from __future__ import annotations

import re
from typing import Final, NamedTuple
from urllib.parse import urldefrag, urljoin, urlsplit

from bs4 import BeautifulSoup

# Elements whose text is never content
SKIPPED_TAGS: Final[tuple[str, ...]] = (
    "script",
    "style",
    "nav",
    "header",
    "footer",
    "noscript",
    "template",
)

# Elements rendered on their own line(s)
BLOCK_TAGS: Final[tuple[str, ...]] = (
    "address", "article", "aside", "blockquote", "br", "dd", "div", "dl",
    "dt", "figcaption", "figure", "form", "h1", "h2", "h3", "h4", "h5", "h6",
    "hr", "li", "main", "ol", "p", "pre", "section", "table", "td", "th",
    "tr", "ul",
)  # fmt: skip

_WHITESPACE_RE = re.compile(r"[ \t\r\f\v\xa0]+")


class ParsedPage(NamedTuple):
    """Text and absolute links of one HTML page."""

    text: str
    links: list[str]


class HtmlConverter:
    """
    Converts HTML documents to plain text.

    Usage::

        parsed = HtmlConverter().parse(html, "https://example.com/docs/")
        parsed.text   # "Getting started\\n\\nInstall the package..."
        parsed.links  # ["https://example.com/docs/install", ...]
    """

    def parse(self, html: str, base_url: str) -> ParsedPage:
        """Extract links (from the raw markup) and readable text."""
        soup = BeautifulSoup(html, "html.parser")
        links = self._extract_links(soup, base_url)

        for tag in soup.find_all(list(SKIPPED_TAGS)):
            # Nested matches die with their ancestor
            if not tag.decomposed:
                tag.decompose()

        return ParsedPage(self._render_text(soup), links)

    def to_text(self, html: str) -> str:
        """Readable text of an HTML document."""
        return self.parse(html, "").text

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_links(soup: BeautifulSoup, base_url: str) -> list[str]:
        """Absolute http(s) hrefs in document order, fragments dropped."""
        seen: set[str] = set()
        links: list[str] = []
        for anchor in soup.find_all("a", href=True):
            href = str(anchor["href"]).strip()
            if not href or href.startswith(("mailto:", "javascript:", "tel:")):
                continue
            try:
                absolute, _ = urldefrag(urljoin(base_url, href))
                scheme = urlsplit(absolute).scheme
            except ValueError:
                continue
            if scheme in ("http", "https") and absolute not in seen:
                seen.add(absolute)
                links.append(absolute)
        return links

    @staticmethod
    def _render_text(soup: BeautifulSoup) -> str:
        """Body text with one line per block and blank-line runs collapsed."""
        root = soup.body or soup
        for tag in root.find_all(list(BLOCK_TAGS)):
            tag.insert_before("\n")
            tag.insert_after("\n")

        lines: list[str] = []
        for raw_line in root.get_text().splitlines():
            line = _WHITESPACE_RE.sub(" ", raw_line).strip()
            if line:
                lines.append(line)
            elif lines and lines[-1]:
                lines.append("")

        return "\n".join(lines).strip()
