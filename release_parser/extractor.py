"""
Rule-based entry extraction.

Turns the category slices of a Section into Entry objects without any
external service. Used directly when structured extraction is disabled, and
by the Analyzer as the per-section fallback when the service fails.

Extraction runs as separate passes over flat lists so each heuristic can be
switched off on its own:
  extract_blocks   → list items become Entries, paragraphs become Paragraphs
  fold_paragraphs  → Paragraph text is appended to the preceding Entry
  merge_orphans    → un-ticketed Entries are appended to the preceding ticketed one
"""

import re
from abc import ABC, abstractmethod
from typing import Iterator, Optional, Union

from .normalizer import html_to_text
from .schemas import Section, SectionResult, Entry, Paragraph, ReleaseMetadata
from .logger import get_module_logger

logger = get_module_logger("extractor")

# ul/ol/li open and close tags; list types are treated the same
LIST_TAG_PATTERN = re.compile(r"<(/?)(ul|ol|li)\b[^>]*>", re.IGNORECASE)

# Top-level blocks walked by the pattern extractor, in document order
BLOCK_START_PATTERN = re.compile(r"<(ul|ol|p)\b[^>]*>", re.IGNORECASE)
PARAGRAPH_END_PATTERN = re.compile(r"</p\s*>", re.IGNORECASE)

# Tickets used as a label: "Fixed DSOF-1: ..." or "DSOF-1 - ..."
LABEL_SEPARATOR_PATTERN = re.compile(r"^\s*[:\-–—]+\s*")
LEADING_SEPARATORS = re.compile(r"^[\s\-–—:,.&/]+")
TRAILING_SEPARATORS = re.compile(r"[\s\-–—:,.&/]+$")
EMPTY_BRACKETS_PATTERN = re.compile(r"\(\s*[,;\s]*\)|\[\s*[,;\s]*\]")
INNER_SPACES_PATTERN = re.compile(r"[ \t]{2,}")

# Release metadata is written as "Build: 123 | Starter build: 100 | Released: ..."
BUILD_FIELD = r"(starter\s+)?build\s*(?:number|no\.)?\s*[:#]\s*(\d[\w.\-]*)"
RELEASED_FIELD = r"released\s*:\s*([^|\n]*[^|\s])"
METADATA_FIELD = rf"(?:{BUILD_FIELD}|{RELEASED_FIELD})"

BUILD_PATTERN = re.compile(BUILD_FIELD, re.IGNORECASE)
RELEASED_PATTERN = re.compile(RELEASED_FIELD, re.IGNORECASE)
# A line made only of metadata fields, separated by "|"
METADATA_LINE_PATTERN = re.compile(
    rf"\s*{METADATA_FIELD}(?:\s*\|\s*{METADATA_FIELD})*\s*\|?\s*",
    re.IGNORECASE
)

# Where the preamble of a section (heading, metadata) ends
PREAMBLE_END_PATTERN = re.compile(r"<(?:h3|ul|ol)\b", re.IGNORECASE)

DEFAULT_TICKET_PREFIX = "DSOF"


# --- Nested-list extraction ---

def iter_list_tags(markup: str) -> Iterator[re.Match]:
    """Stream ul/ol/li tags in document order."""
    return LIST_TAG_PATTERN.finditer(markup)


def extract_top_level_items(fragment: str) -> list[str]:
    """
    Return the inner markup of each top-level <li> in a fragment.

    A single forward scan tracks list depth. Capture opens only on an <li>
    seen at depth 1 while nothing is being captured, and closes only on the
    </li> seen back at that depth, so nested items stay inside their parent.

    Args:
        fragment: HTML containing one or more lists

    Returns:
        Raw inner markup per top-level item, nested lists included verbatim
    """
    items = []
    depth = 0
    capture_depth = 0
    capturing = False
    start = 0

    for match in iter_list_tags(fragment):
        is_close = match.group(1) == "/"
        tag = match.group(2).lower()

        if tag in ("ul", "ol"):
            depth += -1 if is_close else 1
        elif not is_close:
            if depth == 1 and not capturing:
                capturing = True
                capture_depth = depth
                start = match.end()
        elif capturing and depth == capture_depth:
            items.append(fragment[start:match.start()])
            capturing = False

    return items


def _find_list_end(markup: str, start: int) -> Optional[int]:
    """Offset just past the close tag matching a list opened before `start`."""
    depth = 1
    for match in iter_list_tags(markup[start:]):
        if match.group(2).lower() == "li":
            continue
        depth += -1 if match.group(1) == "/" else 1
        if depth == 0:
            return start + match.end()
    return None


# --- Ticket and metadata classification ---

def ticket_pattern(prefix: str = DEFAULT_TICKET_PREFIX) -> re.Pattern:
    """Compile the PREFIX-digits ticket pattern."""
    return re.compile(rf"\b{re.escape(prefix)}-\d+\b")


def split_tickets(text: str, pattern: re.Pattern) -> tuple[list[str], str]:
    """
    Separate ticket ids from the description of an item.

    When the tickets act as a label ("Fixed DSOF-1: crash"), the description
    is what follows the label. Otherwise the ids are cut out of the text and
    separator punctuation left at either end is trimmed. The full text is
    returned as description if nothing else remains.

    Returns:
        (unique tickets in order of appearance, description)
    """
    matches = list(pattern.finditer(text))
    if not matches:
        return [], text.strip()

    tickets = list(dict.fromkeys(m.group(0) for m in matches))

    tail = text[matches[-1].end():]
    label = LABEL_SEPARATOR_PATTERN.match(tail)
    if label:
        description = tail[label.end():].strip()
        if description:
            return tickets, description

    description = EMPTY_BRACKETS_PATTERN.sub("", pattern.sub("", text))
    description = TRAILING_SEPARATORS.sub("", LEADING_SEPARATORS.sub("", description))
    description = INNER_SPACES_PATTERN.sub(" ", description).strip()
    return tickets, description or text.strip()


def extract_release_metadata(text: str) -> ReleaseMetadata:
    """
    Pull build numbers and release date out of section text.

    Only lines made entirely of "Key: value" metadata fields are read, so a
    change description that mentions a build or a release is never mistaken
    for metadata. The first value found for each field wins.
    """
    build = ""
    starter_build = ""
    released = ""

    for line in text.split("\n"):
        if not METADATA_LINE_PATTERN.fullmatch(line):
            continue
        for match in BUILD_PATTERN.finditer(line):
            if match.group(1):
                starter_build = starter_build or match.group(2)
            else:
                build = build or match.group(2)
        match = RELEASED_PATTERN.search(line)
        if match:
            released = released or match.group(1).strip(" .,;*")

    return ReleaseMetadata(build=build, starter_build=starter_build, released=released)


def section_preamble(markup: str) -> str:
    """Section markup before its first h3 or list: the heading and metadata lines."""
    match = PREAMBLE_END_PATTERN.search(markup)
    return markup[:match.start()] if match else markup


def is_metadata_line(text: str) -> bool:
    """True for paragraphs whose every line is Build/Starter build/Released fields."""
    lines = [line for line in text.split("\n") if line.strip()]
    return bool(lines) and all(METADATA_LINE_PATTERN.fullmatch(line) for line in lines)


# --- Heuristic passes ---

def fold_paragraphs(items: list[Union[Entry, Paragraph]]) -> list[Entry]:
    """
    Append each Paragraph to the Entry right before it.

    The paragraph is attached only if that entry has the same version and
    category; otherwise it has nothing to describe and is dropped.
    """
    entries: list[Entry] = []
    for item in items:
        if isinstance(item, Entry):
            entries.append(item)
            continue

        if entries and entries[-1].version == item.version \
                and entries[-1].category == item.category:
            last = entries[-1]
            entries[-1] = last.model_copy(
                update={"description": f"{last.description}\n{item.text}"}
            )
        else:
            logger.debug(f"Dropped paragraph with no preceding entry: {item.text[:60]!r}")
    return entries


def merge_orphans(entries: list[Entry]) -> list[Entry]:
    """
    Fold entries without tickets into the nearest preceding ticketed entry.

    The candidate must share version and category. Sibling items of the same
    list block are independent changes and are never merged into each other.
    An orphan with no eligible predecessor is kept as its own entry.
    """
    merged: list[Entry] = []
    for entry in entries:
        if entry.tickets or not merged:
            merged.append(entry)
            continue

        parent_index = None
        for i in range(len(merged) - 1, -1, -1):
            candidate = merged[i]
            if candidate.tickets and candidate.version == entry.version \
                    and candidate.category == entry.category:
                parent_index = i
                break

        if parent_index is None:
            merged.append(entry)
            continue

        parent = merged[parent_index]
        same_list = (
            entry.source_block is not None
            and entry.source_block == parent.source_block
        )
        if same_list:
            merged.append(entry)
        else:
            merged[parent_index] = parent.model_copy(
                update={"description": f"{parent.description}\n{entry.description}"}
            )
    return merged


# --- Extractor interface ---

class BaseSectionExtractor(ABC):
    """Turns one Section into a SectionResult."""

    @abstractmethod
    def extract(self, section: Section) -> SectionResult:
        """
        Extract release metadata and entries from a section.

        Args:
            section: Section produced by the Segmenter

        Returns:
            SectionResult with entries in source order
        """
        pass


class PatternExtractor(BaseSectionExtractor):
    """Deterministic extractor driven by list structure and ticket patterns."""

    def __init__(
        self,
        ticket_prefix: str = DEFAULT_TICKET_PREFIX,
        fold_paragraph_blocks: bool = True,
        merge_orphan_entries: bool = True
    ):
        self.ticket_prefix = ticket_prefix
        self.pattern = ticket_pattern(ticket_prefix)
        self.fold_paragraph_blocks = fold_paragraph_blocks
        self.merge_orphan_entries = merge_orphan_entries

    def extract_blocks(
        self,
        content: str,
        version: str,
        category: str = "",
        url: str = "",
        first_block: int = 0
    ) -> list[Union[Entry, Paragraph]]:
        """
        Walk top-level lists and paragraphs of one category slice.

        Args:
            content: Raw markup of the slice
            version: Version the slice belongs to
            category: Category label of the slice
            url: Deep link recorded on each entry
            first_block: Block index to start numbering list blocks from

        Returns:
            Entries (one per top-level list item) and Paragraphs, in order
        """
        items: list[Union[Entry, Paragraph]] = []
        block_index = first_block
        pos = 0

        while True:
            match = BLOCK_START_PATTERN.search(content, pos)
            if not match:
                break
            tag = match.group(1).lower()

            if tag == "p":
                close = PARAGRAPH_END_PATTERN.search(content, match.end())
                if not close:
                    pos = match.end()
                    continue
                pos = close.end()
                text = html_to_text(content[match.end():close.start()])
                if text and not is_metadata_line(text):
                    items.append(Paragraph(version=version, category=category, text=text))
                continue

            end = _find_list_end(content, match.end())
            if end is None:
                logger.debug(f"Unbalanced <{tag}> in {version}/{category or '-'}")
                pos = match.end()
                continue
            pos = end
            block_index += 1

            for raw in extract_top_level_items(content[match.start():end]):
                text = html_to_text(raw)
                if not text:
                    continue
                tickets, description = split_tickets(text, self.pattern)
                items.append(Entry(
                    version=version,
                    category=category,
                    tickets=tickets,
                    description=description,
                    url=url,
                    source_block=block_index
                ))

        return items

    def extract_entries(self, section: Section) -> list[Entry]:
        """Run block extraction and paragraph folding over every category slice."""
        items: list[Union[Entry, Paragraph]] = []
        next_block = 0
        for part in section.categories:
            part_items = self.extract_blocks(
                part.content,
                section.version,
                part.category,
                part.url or section.url,
                first_block=next_block
            )
            # Block numbers continue across slices so list blocks stay distinct
            next_block = max(
                (i.source_block for i in part_items if isinstance(i, Entry)),
                default=next_block
            )
            items.extend(part_items)

        if self.fold_paragraph_blocks:
            return fold_paragraphs(items)
        return [item for item in items if isinstance(item, Entry)]

    def extract(self, section: Section) -> SectionResult:
        release = extract_release_metadata(html_to_text(section_preamble(section.html)))
        entries = self.extract_entries(section)
        if self.merge_orphan_entries:
            entries = merge_orphans(entries)

        entries = [e.model_copy(update={"release": release}) for e in entries]
        logger.debug(f"{section.version}: {len(entries)} entries (pattern)")
        return SectionResult(
            version=section.version,
            url=section.url,
            release=release,
            entries=entries,
            source="pattern"
        )
