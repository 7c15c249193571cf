"""
Release Notes Parser

Turns release-note HTML pages into a versioned JSON record of changes.
- Segmenter: splits pages into version/category sections
- PatternExtractor: rule-based entry extraction from list markup
- Analyzer: LLM-based structured extraction with cache and pattern fallback
- Merger: per-version aggregation and scoped merging into existing output

Public API surface:
  Pipeline: ReleaseNotesScraper, extract_releases, Settings
  Pipeline stages: Segmenter, PatternExtractor, Analyzer, Preprocessor
  Data models: Section, Entry, SectionResult, ReleaseRecord
  Infrastructure: ExtractionCache, RateLimiter, Fetcher
  Error types: ConfigurationError (fatal), FetchError, LLMClientError
"""

# --- Pipeline stage classes ---
from .segmenter import Segmenter
from .extractor import PatternExtractor, extract_top_level_items, fold_paragraphs, merge_orphans
from .preprocessor import Preprocessor
from .analyzer import Analyzer

# --- Data models ---
from .schemas import Section, CategoryRange, Entry, SectionResult, ReleaseMetadata, ReleaseRecord

# --- Infrastructure ---
from .extraction_cache import ExtractionCache
from .rate_limiter import RateLimiter
from .fetcher import Fetcher
from .merger import version_matches, build_release_records, merge_scoped

# --- Orchestration ---
from .config import Settings
from .main import ReleaseNotesScraper, extract_releases

# --- Exceptions ---
from .exceptions import ReleaseParserError, ConfigurationError, FetchError, LLMClientError

__version__ = "0.1.0"
__all__ = [
    "Segmenter",
    "PatternExtractor",
    "extract_top_level_items",
    "fold_paragraphs",
    "merge_orphans",
    "Preprocessor",
    "Analyzer",
    "Section",
    "CategoryRange",
    "Entry",
    "SectionResult",
    "ReleaseMetadata",
    "ReleaseRecord",
    "ExtractionCache",
    "RateLimiter",
    "Fetcher",
    "version_matches",
    "build_release_records",
    "merge_scoped",
    "Settings",
    "ReleaseNotesScraper",
    "extract_releases",
    "ReleaseParserError",
    "ConfigurationError",
    "FetchError",
    "LLMClientError",
]
