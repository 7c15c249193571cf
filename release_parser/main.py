"""
Main orchestrator for the release notes parser.

Coordinates the pipeline: Fetcher → Segmenter → extractor (Analyzer or
PatternExtractor) → Merger. With the extraction service in use, pages and
sections are processed one at a time behind the rate limiter; in
pattern-only mode pages are fetched and parsed in parallel.
"""

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Union

from .config import Settings
from .segmenter import Segmenter, page_version
from .extractor import BaseSectionExtractor, PatternExtractor, DEFAULT_TICKET_PREFIX
from .preprocessor import Preprocessor
from .extraction_cache import ExtractionCache
from .rate_limiter import RateLimiter
from .analyzer import Analyzer, result_from_record
from .llm_client import LLMClient, LLMProvider, BaseLLMClient
from .fetcher import Fetcher
from .merger import version_matches, build_release_records, merge_into_output
from .schemas import Section, SectionResult, ReleaseRecord
from .exceptions import ConfigurationError, FetchError, LLMClientError
from .logger import get_module_logger, setup_logger

logger = get_module_logger("main")


class ReleaseNotesScraper:
    """
    Main orchestrator for release-notes extraction.

    Runs:
    - run():                fetch pages, extract, write (full or scoped)
    - rebuild_from_cache(): regenerate the output from cached results only
    - repair_urls():        re-fetch pages to fix the URLs stored in the cache
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        use_ai: bool = True,
        force_refresh: bool = False,
        llm_client: Optional[BaseLLMClient] = None,
        fetcher: Optional[Fetcher] = None,
        cache: Optional[ExtractionCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        debug_dir: Union[str, Path, None] = None,
        log_level: Optional[int] = None
    ):
        if log_level is not None:
            setup_logger(level=log_level)

        self.settings = settings or Settings.from_env()
        self.use_ai = use_ai
        self.debug_dir = Path(debug_dir) if debug_dir else None

        self.segmenter = Segmenter(self.settings.base_url)
        self.fetcher = fetcher or Fetcher(self.settings.base_url, self.settings.index_path)
        self.cache = cache if cache is not None else ExtractionCache(self.settings.cache_path)
        self.preprocessor = Preprocessor()
        self.pattern_extractor = PatternExtractor(ticket_prefix=self.settings.ticket_prefix)

        self.extractor: BaseSectionExtractor
        if use_ai:
            self.extractor = Analyzer(
                llm_client=llm_client or self._create_client(),
                cache=self.cache,
                rate_limiter=rate_limiter or RateLimiter(self.settings.min_interval),
                preprocessor=self.preprocessor,
                fallback=self.pattern_extractor,
                force_refresh=force_refresh,
                ticket_prefix=self.settings.ticket_prefix
            )
        else:
            self.extractor = self.pattern_extractor

        logger.info(f"Scraper initialized ({'AI' if use_ai else 'pattern'} extraction)")

    def _create_client(self) -> BaseLLMClient:
        """Build the LLM client from settings; fail fast without credentials."""
        provider = None
        if self.settings.llm_provider:
            try:
                provider = LLMProvider(self.settings.llm_provider.lower())
            except ValueError:
                raise ConfigurationError(f"Unknown LLM provider: {self.settings.llm_provider}")

        # AI_TOKEN belongs to the OpenAI-compatible endpoint
        api_key = self.settings.ai_token if provider in (None, LLMProvider.OPENAI) else None
        try:
            return LLMClient.create(
                provider=provider,
                api_key=api_key,
                model=self.settings.ai_model,
                base_url=self.settings.ai_base_url
            )
        except LLMClientError as e:
            raise ConfigurationError(
                f"Failed to initialize LLM client: {e.message}. "
                "Set AI_TOKEN (or OPENAI_API_KEY / ANTHROPIC_API_KEY), or run with --no-ai.",
                details={"provider": e.provider}
            )

    # --- Single page ---

    def _write_debug(self, sections: list[Section]) -> None:
        if not self.debug_dir:
            return
        self.debug_dir.mkdir(parents=True, exist_ok=True)
        for section in sections:
            path = self.debug_dir / f"{section.version}.md"
            path.write_text(self.preprocessor.to_markdown(section.html), encoding="utf-8")

    def parse_page(
        self,
        html: str,
        page_path: str = "",
        version_filter: Optional[str] = None,
        prefix: bool = True
    ) -> list[SectionResult]:
        """
        Segment one page and extract every (selected) section.

        Args:
            html: Page markup
            page_path: Path the page was fetched from
            version_filter: Only extract sections matching this version
            prefix: Let the filter match dotted descendants

        Returns:
            One SectionResult per section, in page order
        """
        sections = self.segmenter.segment(html, page_path)
        if version_filter:
            sections = [s for s in sections if version_matches(s.version, version_filter, prefix)]

        self._write_debug(sections)
        return [self.extractor.extract(section) for section in sections]

    # --- Page sets ---

    @staticmethod
    def _select_paths(paths: list[str], version_filter: Optional[str], prefix: bool) -> list[str]:
        """Pages that can hold versions selected by the filter."""
        if not version_filter:
            return paths
        selected = []
        for path in paths:
            pv = page_version(path)
            # r32.3 lives on the r32 page; r32 with prefix spans r32.x pages
            if not pv or version_matches(version_filter, pv) or version_matches(pv, version_filter, prefix):
                selected.append(path)
        return selected

    def _process_page(
        self,
        path: str,
        version_filter: Optional[str],
        prefix: bool
    ) -> list[SectionResult]:
        url = self.fetcher.url_for(path)
        logger.info(f"Fetching {url}...")
        try:
            html = self.fetcher.fetch_text(url)
        except FetchError as e:
            logger.warning(f"Failed: {e.message}")
            return []
        results = self.parse_page(html, path, version_filter, prefix)
        logger.info(f"{path}: {sum(len(r.entries) for r in results)} entries")
        return results

    def _process_pages(
        self,
        paths: list[str],
        version_filter: Optional[str],
        prefix: bool
    ) -> list[SectionResult]:
        results: list[SectionResult] = []
        if self.use_ai:
            # Sequential: every section may go through the shared rate limiter
            for path in paths:
                results.extend(self._process_page(path, version_filter, prefix))
            return results

        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as executor:
            for page_results in executor.map(
                lambda p: self._process_page(p, version_filter, prefix), paths
            ):
                results.extend(page_results)
        return results

    # --- Runs ---

    def run(self, version_filter: Optional[str] = None, prefix: bool = True) -> list[dict]:
        """
        Fetch all release pages, extract them and write the output.

        Args:
            version_filter: Scoped run for this version (family); None for a full run
            prefix: Let the filter match dotted descendants

        Returns:
            The full list of release record dicts written to the output file
        """
        paths = self._select_paths(self.fetcher.release_paths(), version_filter, prefix)
        logger.info(f"Found {len(paths)} release pages.")

        results = self._process_pages(paths, version_filter, prefix)
        records = build_release_records(results)
        logger.info(f"Total entries: {sum(len(r.changes) for r in records)}")

        return merge_into_output(self.settings.output_path, records, version_filter, prefix)

    def rebuild_from_cache(self, version_filter: Optional[str] = None, prefix: bool = True) -> list[dict]:
        """
        Regenerate the output from cached extraction results, without fetching.

        Only the current record of each version and page is used; results for
        superseded revisions of an edited page stay in the cache but are skipped.
        """
        results = [
            result_from_record(record)
            for _, record in self.cache.current_records()
            if not version_filter or version_matches(record.version, version_filter, prefix)
        ]
        records = build_release_records(results)
        logger.info(f"Rebuilt {len(records)} releases from {len(results)} cached sections")
        return merge_into_output(self.settings.output_path, records, version_filter, prefix)

    def repair_urls(self, version_filter: Optional[str] = None, prefix: bool = True) -> list[dict]:
        """
        Re-fetch pages to fix the deep links stored in cached records, then
        rebuild the output from the cache. The extraction service is not called.
        """
        updated = 0
        for path in self._select_paths(self.fetcher.release_paths(), version_filter, prefix):
            try:
                html = self.fetcher.fetch_text(self.fetcher.url_for(path))
            except FetchError as e:
                logger.warning(f"Failed: {e.message}")
                continue
            for section in self.segmenter.segment(html, path):
                key = self.cache.key_for(self.preprocessor.to_markdown(section.html))
                if self.cache.update_url(key, section.url):
                    updated += 1
                # The live page content is the current revision
                self.cache.touch(key)

        logger.info(f"Updated {updated} cached URLs")
        return self.rebuild_from_cache(version_filter, prefix)


def extract_releases(
    html: str,
    page_path: str = "",
    ticket_prefix: str = DEFAULT_TICKET_PREFIX,
    base_url: str = ""
) -> list[ReleaseRecord]:
    """Convenience function: pattern-extract one page into release records."""
    extractor = PatternExtractor(ticket_prefix=ticket_prefix)
    sections = Segmenter(base_url).segment(html, page_path)
    return build_release_records(extractor.extract(s) for s in sections)
