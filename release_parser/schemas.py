"""
Pydantic schemas defining the contracts between modules.

Data flow through the pipeline:
  Segmenter  → produces Section (with CategoryRange slices)
  Extractors → consume Section, produce SectionResult (Entry list + ReleaseMetadata)
  Merger     → consumes SectionResult list, produces ReleaseRecord list

ExtractionPayload is the strict shape requested from the extraction service;
CacheRecord is what gets persisted per content hash.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


# --- Segmenter output ---

class CategoryRange(BaseModel):
    """A slice of a section under one category heading."""
    model_config = ConfigDict(frozen=True)

    category: str = ""          # Empty string means "uncategorized"
    content: str = ""           # Raw markup with the heading itself removed
    url: str = ""               # Page URL + the anchor current when the slice was captured


class Section(BaseModel):
    """All content attributed to one version within one document."""
    model_config = ConfigDict(frozen=True)

    version: str
    anchor: str = ""
    html: str = ""              # Full accumulated markup, headings included
    url: str = ""
    categories: list[CategoryRange] = Field(default_factory=list)


# --- Extractor output ---

class ReleaseMetadata(BaseModel):
    """Build identifiers and release date for a version; empty when unknown."""
    build: str = ""
    starter_build: str = ""
    released: str = ""

    def is_empty(self) -> bool:
        return not (self.build or self.starter_build or self.released)


class Entry(BaseModel):
    """
    One discrete change before aggregation.

    Entries are frozen: the paragraph-folding and orphan-merge passes build
    new entries with model_copy() instead of editing them.
    """
    model_config = ConfigDict(frozen=True)

    version: str
    category: str = ""
    tickets: list[str] = Field(default_factory=list)
    description: str
    url: str = ""
    release: Optional[ReleaseMetadata] = None
    # Index of the list block the entry came from; siblings share it
    source_block: Optional[int] = Field(default=None, exclude=True)

    @property
    def ticket_ids(self) -> str:
        """Comma-joined external representation of the ticket set."""
        return ", ".join(self.tickets)


class Paragraph(BaseModel):
    """Prose block that continues the preceding entry's description."""
    model_config = ConfigDict(frozen=True)

    version: str
    category: str = ""
    text: str


class SectionResult(BaseModel):
    """Result of extracting one Section, whichever extractor produced it."""
    version: str
    url: str = ""
    release: ReleaseMetadata = Field(default_factory=ReleaseMetadata)
    entries: list[Entry] = Field(default_factory=list)
    source: str = "pattern"     # "cache", "ai" or "pattern"


# --- Extraction service contract ---

class ExtractedEntry(BaseModel):
    """One entry as returned by the extraction service."""
    category: str
    tickets: str                # Comma-separated ticket ids, or ""
    description: str


class ExtractionPayload(BaseModel):
    """The strict response document requested from the extraction service."""
    release: ReleaseMetadata
    entries: list[ExtractedEntry]


class CacheRecord(BaseModel):
    """Persisted extraction result for one content hash."""
    version: str
    url: str = ""
    release: ReleaseMetadata = Field(default_factory=ReleaseMetadata)
    entries: list[ExtractedEntry] = Field(default_factory=list)


# --- Persisted output ---

class Change(BaseModel):
    """One change inside a release record; serialized with the "ticket-ids" key."""
    model_config = ConfigDict(populate_by_name=True)

    tickets: str = Field(default="", alias="ticket-ids")
    category: str = ""
    description: str


class ReleaseRecord(BaseModel):
    """Per-version aggregate written to the output file."""
    version: str
    build: str = ""
    starter_build: str = ""
    released: str = ""
    url: str = ""
    changes: list[Change] = Field(default_factory=list)
