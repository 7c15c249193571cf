"""
LLM-based section analyzer (structured-extraction adapter).

Sends one Section at a time to the extraction service under a strict JSON
schema, caching results by content hash. Any service failure is confined
to its section: that section is re-extracted by the PatternExtractor.

Per-section flow:
  markdown → hash → cache hit?  ── yes → DONE
                       │ no
                       ▼
               rate limiter → service call ── ok → cache.put → DONE
                                   │ failure
                                   ▼
                          PatternExtractor → DONE
"""

from typing import Optional

from pydantic import ValidationError

from .schemas import Section, SectionResult, Entry, CacheRecord, ExtractionPayload
from .extractor import BaseSectionExtractor, PatternExtractor, DEFAULT_TICKET_PREFIX
from .extraction_cache import ExtractionCache
from .rate_limiter import RateLimiter
from .preprocessor import Preprocessor
from .llm_client import LLMClient, BaseLLMClient, LLMProvider
from .exceptions import ConfigurationError, LLMClientError
from .logger import get_module_logger

logger = get_module_logger("analyzer")


SYSTEM_PROMPT = """You extract structured change lists from software release notes.
Only report what the text says. Never invent entries, tickets or dates."""

# Every field is required and no other properties are allowed, as strict
# structured outputs demand; "absent" is expressed as an empty string.
EXTRACTION_SCHEMA = {
    "type": "object",
    "properties": {
        "release": {
            "type": "object",
            "properties": {
                "build": {"type": "string", "description": "Build number of this release, or empty string"},
                "starter_build": {"type": "string", "description": "Starter build number, or empty string"},
                "released": {"type": "string", "description": "Release date as written, or empty string"},
            },
            "required": ["build", "starter_build", "released"],
            "additionalProperties": False,
        },
        "entries": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "category": {"type": "string", "description": "The section heading this entry falls under (e.g. 'Bug Fixes', 'New Features'), or empty string if none"},
                    "tickets": {"type": "string", "description": "Comma-separated ticket numbers, or empty string if none"},
                    "description": {"type": "string", "description": "Concise description of the change"},
                },
                "required": ["category", "tickets", "description"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["release", "entries"],
    "additionalProperties": False,
}

USER_PROMPT = """Extract release note entries from this markdown.

Rules:
- Each top-level list item is one entry. Nested sub-items belong to their parent entry.
- Identify the category from section headings (e.g. "Bug Fixes", "New Features").
- Return {prefix}-XXXXX ticket numbers exactly as written (comma-separated), or an empty string if none.
- Fill in the build, starter build and release date if the text states them, otherwise use empty strings.
- If there are no entries, return an empty "entries" list. Do not invent entries.

Markdown:
{markdown}"""


def split_ticket_field(value: str) -> list[str]:
    """'DSOF-1, DSOF-2' -> ['DSOF-1', 'DSOF-2'], order kept, duplicates dropped."""
    return list(dict.fromkeys(t.strip() for t in value.split(",") if t.strip()))


def result_from_record(
    record: CacheRecord,
    version: Optional[str] = None,
    url: Optional[str] = None,
    source: str = "cache"
) -> SectionResult:
    """
    Turn a cached/service record into a SectionResult.

    Args:
        record: Record from the cache or a fresh service response
        version: Version to attribute entries to (defaults to the record's)
        url: Deep link for entries (defaults to the record's)
        source: Provenance tag for the result

    Returns:
        SectionResult; entries with an empty description are dropped
    """
    version = version or record.version
    url = url if url is not None else record.url

    entries = [
        Entry(
            version=version,
            category=e.category or "",
            tickets=split_ticket_field(e.tickets or ""),
            description=e.description.strip(),
            url=url,
            release=record.release
        )
        for e in record.entries
        if e.description and e.description.strip()
    ]
    return SectionResult(
        version=version,
        url=url,
        release=record.release,
        entries=entries,
        source=source
    )


class Analyzer(BaseSectionExtractor):
    """Structured extraction through an LLM with cache and pattern fallback."""

    def __init__(
        self,
        llm_client: Optional[BaseLLMClient] = None,
        provider: Optional[LLMProvider] = None,
        cache: Optional[ExtractionCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        preprocessor: Optional[Preprocessor] = None,
        fallback: Optional[BaseSectionExtractor] = None,
        force_refresh: bool = False,
        ticket_prefix: str = DEFAULT_TICKET_PREFIX
    ):
        self.llm_client = llm_client
        # `is None` checks: an empty cache is falsy because it defines __len__
        self.cache = cache if cache is not None else ExtractionCache()
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self.preprocessor = preprocessor or Preprocessor()
        self.fallback = fallback or PatternExtractor(ticket_prefix=ticket_prefix)
        self.force_refresh = force_refresh
        self.ticket_prefix = ticket_prefix

        # Missing credentials must stop the run before any page is fetched
        if self.llm_client is None:
            try:
                self.llm_client = LLMClient.create(provider=provider)
            except LLMClientError as e:
                raise ConfigurationError(
                    f"Failed to initialize LLM client: {e.message}. "
                    "Set AI_TOKEN (or OPENAI_API_KEY / ANTHROPIC_API_KEY), or run with --no-ai.",
                    details={"provider": e.provider}
                )

    def extract(self, section: Section) -> SectionResult:
        """Extract one section, from cache when possible."""
        markdown = self.preprocessor.to_markdown(section.html)
        if not markdown:
            logger.warning(f"[AI fallback] {section.version}: no content to send")
            return self.fallback.extract(section)

        key = self.cache.key_for(markdown)

        if not self.force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info(f"[cache hit] {section.version}")
                self.cache.touch(key)
                return result_from_record(cached, section.version, section.url, source="cache")

        self.rate_limiter.wait()
        logger.info(f"[AI] {section.version}")

        try:
            response = self.llm_client.complete_json(
                prompt=USER_PROMPT.format(prefix=self.ticket_prefix, markdown=markdown),
                schema=EXTRACTION_SCHEMA,
                schema_name="release_entries",
                system_prompt=SYSTEM_PROMPT
            )
            payload = ExtractionPayload.model_validate(response)
        except (LLMClientError, ValidationError) as e:
            logger.warning(f"[AI fallback] {section.version}: {e}")
            return self.fallback.extract(section)

        record = CacheRecord(
            version=section.version,
            url=section.url,
            release=payload.release,
            entries=payload.entries
        )
        self.cache.put(key, record)
        return result_from_record(record, section.version, section.url, source="ai")
