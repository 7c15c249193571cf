"""
Text normalization helpers shared by every pipeline stage.

Entity decoding, tag stripping and whitespace collapsing work on raw
markup strings so they can be applied to slices taken straight out of the
source document.
"""

import html
import re

TAG_PATTERN = re.compile(r"<[^>]+>")

# Tags that end a visual line: nested list items and paragraphs folded into
# an entry keep one line each instead of running together.
LINE_BREAK_PATTERN = re.compile(
    r"<\s*(?:br|/?li|/?p|/?ul|/?ol|/?div|/?h[1-6]|/?tr)\b[^>]*>",
    re.IGNORECASE
)

WHITESPACE_PATTERN = re.compile(r"\s+")


def decode_entities(text: str) -> str:
    """Decode HTML entities; non-breaking spaces become plain spaces."""
    return html.unescape(text).replace("\xa0", " ")


def strip_tags(markup: str) -> str:
    """Remove every tag, keeping only text nodes."""
    return TAG_PATTERN.sub("", markup)


def collapse_whitespace(text: str) -> str:
    """Merge runs of whitespace into single spaces and trim."""
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def clean_text(markup: str) -> str:
    """Single-line text of a fragment (headings, paragraphs)."""
    return collapse_whitespace(decode_entities(strip_tags(markup)))


def html_to_text(markup: str) -> str:
    """
    Multi-line text of a fragment.

    Block boundaries become newlines before tags are stripped; each line is
    then whitespace-collapsed and blank lines are dropped.

    Args:
        markup: HTML fragment (e.g. the inner markup of a list item)

    Returns:
        Newline-joined text, one line per visual block
    """
    # Tags are stripped before entities are decoded so that escaped markup
    # such as "&lt;tag&gt;" survives as literal text.
    text = decode_entities(strip_tags(LINE_BREAK_PATTERN.sub("\n", markup)))
    lines = (collapse_whitespace(line) for line in text.split("\n"))
    return "\n".join(line for line in lines if line)
