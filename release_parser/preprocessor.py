"""
Preprocessor: converts section markup to markdown for the extraction service.

Markdown carries the same list and heading structure in far fewer tokens,
and its text is also what the cache key is computed from, so cosmetic
markup changes on the site (classes, anchors, images) do not invalidate
cached results.

Design principle: NEVER FAIL on bad HTML. Always produce usable output.
"""

import re

import html2text
from bs4 import BeautifulSoup

from .logger import get_module_logger

logger = get_module_logger("preprocessor")

# "#### Download ..." headings link to installers, not changes
DOWNLOAD_HEADING_PATTERN = re.compile(r"^#{4,}\s+Download\b.*$", re.MULTILINE)
# Standalone italic lines are image captions, unless they carry build/release info
CAPTION_LINE_PATTERN = re.compile(
    r"^\s*_(?!.*(?:build|released)[:\s])[^_\n]+_\s*$",
    re.MULTILINE | re.IGNORECASE
)
BLANK_LINES_PATTERN = re.compile(r"\n{3,}")


class Preprocessor:
    """
    Rule-based markup cleanup ahead of markdown conversion.

    Removes heading anchor links, screen-reader-only spans and images, then
    renders the rest with html2text.
    """

    # (tag, class substring) pairs removed with their content
    REMOVE_ELEMENTS = [
        ("a", "sl-anchor-link"),
        ("span", "sr-only"),
    ]

    def __init__(self, bullet_marker: str = "-"):
        self.bullet_marker = bullet_marker

    def _parse(self, html: str) -> BeautifulSoup:
        """
        Parse with html5lib, falling back to lxml and then html.parser.

        html5lib follows the browser algorithm and copes with the worst
        markup; the fallbacks only matter if it raises.
        """
        try:
            return BeautifulSoup(html, "html5lib")
        except Exception as e:
            logger.warning(f"html5lib parsing failed, trying lxml: {e}")
        try:
            return BeautifulSoup(html, "lxml")
        except Exception as e:
            logger.warning(f"lxml parsing also failed: {e}")
        return BeautifulSoup(html, "html.parser")

    def clean(self, html: str) -> str:
        """Strip non-semantic elements and return the body markup."""
        soup = self._parse(html)

        for tag, class_part in self.REMOVE_ELEMENTS:
            for elem in soup.find_all(tag):
                if class_part in " ".join(elem.get("class") or []):
                    elem.decompose()

        for img in soup.find_all("img"):
            img.decompose()

        body = soup.body
        return body.decode_contents() if body else str(soup)

    def _converter(self) -> html2text.HTML2Text:
        converter = html2text.HTML2Text()
        converter.body_width = 0            # Don't wrap lines
        converter.unicode_snob = True       # Keep non-ASCII characters as-is
        converter.ignore_links = True       # Link text only
        converter.ignore_images = True
        converter.ul_item_mark = self.bullet_marker
        return converter

    def to_markdown(self, html: str) -> str:
        """
        Convert section markup to normalized markdown.

        Args:
            html: Section markup (headings included)

        Returns:
            Markdown text; empty when the section has no textual content
        """
        markdown = self._converter().handle(self.clean(html))
        markdown = DOWNLOAD_HEADING_PATTERN.sub("", markdown)
        markdown = CAPTION_LINE_PATTERN.sub("", markdown)
        markdown = BLANK_LINES_PATTERN.sub("\n\n", markdown)
        return markdown.strip()


def to_markdown(html: str) -> str:
    """Convenience function to convert section markup to markdown."""
    return Preprocessor().to_markdown(html)
