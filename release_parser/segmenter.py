"""
Document segmenter: splits a release-notes page into per-version Sections.

Pipeline position: first stage, before any extractor.
Input:  full page markup + the page path it was fetched from
Output: ordered list of Section, each with its accumulated markup and its
        per-category slices

h2 headings carrying a version token ("r32.3.2") open a version; h2
headings without one, and all h3 headings, only switch the category.
"""

import re
from typing import Optional

from .normalizer import clean_text
from .schemas import Section, CategoryRange
from .logger import get_module_logger

logger = get_module_logger("segmenter")

MAIN_PATTERN = re.compile(r"<main\b[^>]*>([\s\S]*?)</main>", re.IGNORECASE)

# Split point before every h2/h3 start tag
HEADING_SPLIT_PATTERN = re.compile(r"(?=<h[23](?:\s[^>]*)?>)", re.IGNORECASE)
H2_PATTERN = re.compile(r"<h2\b([^>]*)>([\s\S]*?)</h2\s*>", re.IGNORECASE)
H3_PATTERN = re.compile(r"<h3\b[^>]*>([\s\S]*?)</h3\s*>", re.IGNORECASE)
HEADING_PATTERN = re.compile(r"<h[23]\b[^>]*>[\s\S]*?</h[23]\s*>", re.IGNORECASE)
ID_ATTR_PATTERN = re.compile(r"\bid\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)
LIST_CONTENT_PATTERN = re.compile(r"<(?:ul|ol|li)[\s>]", re.IGNORECASE)

# <letter><digits>(.<digits>)*, e.g. r32 or r32.3.2
VERSION_PATTERN = re.compile(r"\b([a-z]\d+(?:\.\d+)*)\b", re.IGNORECASE)
# Page-level fallback version, e.g. /designer/release-notes/r30 -> r30
PAGE_VERSION_PATTERN = re.compile(r"\b([a-z]\d+)\b", re.IGNORECASE)


def main_content(html: str) -> str:
    """Inner markup of <main>, or the whole document if there is none."""
    match = MAIN_PATTERN.search(html)
    return match.group(1) if match else html


def find_version(text: str) -> Optional[str]:
    """Version token in a heading, if any."""
    match = VERSION_PATTERN.search(text)
    return match.group(1) if match else None


def page_version(page_path: Optional[str]) -> str:
    """Fallback version derived from the page path."""
    if not page_path:
        return ""
    match = PAGE_VERSION_PATTERN.search(page_path.rsplit("/", 1)[-1]) \
        or PAGE_VERSION_PATTERN.search(page_path)
    return match.group(1) if match else ""


class _SectionBuilder:
    """Mutable accumulator for one version while the page is scanned."""

    def __init__(self, version: str, anchor: str = ""):
        self.version = version
        self.anchor = anchor
        self.parts: list[str] = []
        self.categories: list[CategoryRange] = []

    def build(self, page_url: str) -> Section:
        return Section(
            version=self.version,
            anchor=self.anchor,
            html="".join(self.parts),
            url=f"{page_url}#{self.anchor}" if self.anchor else page_url,
            categories=self.categories
        )


class Segmenter:
    """Splits a page into Sections keyed by version and category."""

    def __init__(self, base_url: str = ""):
        self.base_url = base_url.rstrip("/")

    def segment(self, html: str, page_path: str = "") -> list[Section]:
        """
        Segment a page into version Sections.

        Args:
            html: Full page markup
            page_path: Path the page was fetched from; used for URLs and for
                       the fallback version of content before any version heading

        Returns:
            Sections in order of first appearance. A version heading repeated
            later on the page adds to the existing Section (content appends,
            the last anchor wins).
        """
        page_url = f"{self.base_url}{page_path}"
        fallback_version = page_version(page_path)

        builders: dict[str, _SectionBuilder] = {}
        current: Optional[_SectionBuilder] = None
        current_version = ""
        current_category = ""
        current_anchor = ""

        for part in HEADING_SPLIT_PATTERN.split(main_content(html)):
            if not part:
                continue

            h2 = H2_PATTERN.match(part)
            if h2:
                heading_text = clean_text(h2.group(2))
                version = find_version(heading_text)
                if version:
                    id_match = ID_ATTR_PATTERN.search(h2.group(1))
                    current_version = version
                    current_category = ""
                    if version in builders:
                        current = builders[version]
                        if id_match:
                            current.anchor = id_match.group(1)
                    else:
                        current = _SectionBuilder(version, id_match.group(1) if id_match else "")
                        builders[version] = current
                    current_anchor = current.anchor
                else:
                    if not current_version and fallback_version:
                        current_version = fallback_version
                    current_category = heading_text

            h3 = H3_PATTERN.match(part)
            if h3:
                current_category = clean_text(h3.group(1))

            content = HEADING_PATTERN.sub("", part, count=1) if (h2 or h3) else part
            has_list = bool(LIST_CONTENT_PATTERN.search(content))

            if current is None:
                # Content before the first version heading
                if not has_list:
                    continue
                version = current_version or fallback_version
                if not version:
                    logger.debug(f"Skipping unversioned content on {page_path or 'page'}")
                    continue
                current_version = version
                current = builders.get(version) or _SectionBuilder(version)
                builders.setdefault(version, current)
                current_anchor = current.anchor

            current.parts.append(part)
            if content.strip():
                url = f"{page_url}#{current_anchor}" if current_anchor else page_url
                current.categories.append(
                    CategoryRange(category=current_category, content=content, url=url)
                )

        sections = [b.build(page_url) for b in builders.values()]
        logger.debug(f"Segmented {page_path or 'page'} into {len(sections)} sections")
        return sections
