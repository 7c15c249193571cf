#!/usr/bin/env python3
"""
Command-line script to scrape release notes into data/releases.json.

Usage:
    python run_scraper.py                     # full run, AI extraction
    python run_scraper.py --no-ai             # pattern extraction only
    python run_scraper.py --version r32.3     # re-run r32.3 and its hotfixes only
    python run_scraper.py --version r32.3 --exact
    python run_scraper.py --force-refresh     # ignore cached AI results
    python run_scraper.py --from-cache        # rebuild output without fetching
    python run_scraper.py --fix-urls          # patch cached deep links, then rebuild
"""

import argparse
import logging
import sys

# Load .env file automatically
from dotenv import load_dotenv
load_dotenv()

from release_parser.config import Settings
from release_parser.main import ReleaseNotesScraper
from release_parser.exceptions import ConfigurationError
from release_parser.logger import setup_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Extract release notes into a versioned JSON record"
    )
    parser.add_argument(
        "--no-ai",
        action="store_true",
        help="Use the pattern extractor only (no extraction service)"
    )
    parser.add_argument(
        "--version",
        dest="version_filter",
        help="Only re-run this version (and its dotted hotfixes) and merge into existing output"
    )
    parser.add_argument(
        "--exact",
        action="store_true",
        help="With --version, match the version exactly instead of by prefix"
    )
    parser.add_argument(
        "--force-refresh", "-f",
        action="store_true",
        help="Skip cached AI results and call the service again"
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--from-cache",
        action="store_true",
        help="Rebuild the output from the AI cache without fetching pages"
    )
    mode.add_argument(
        "--fix-urls",
        action="store_true",
        help="Re-fetch pages to fix URLs in cached results, then rebuild from cache"
    )
    parser.add_argument(
        "--output", "-o",
        help="Output JSON file (default: data/releases.json)"
    )
    parser.add_argument(
        "--cache",
        help="AI cache file (default: data/.ai-cache.json)"
    )
    parser.add_argument(
        "--debug-dir",
        help="Write the markdown of each section to this directory"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging"
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_logger(level=log_level)

    settings = Settings.from_env(output_path=args.output, cache_path=args.cache)
    # Cache-only modes never call the extraction service
    use_ai = not (args.no_ai or args.from_cache or args.fix_urls)
    prefix = not args.exact

    try:
        scraper = ReleaseNotesScraper(
            settings=settings,
            use_ai=use_ai,
            force_refresh=args.force_refresh,
            debug_dir=args.debug_dir
        )
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 2

    if args.from_cache:
        records = scraper.rebuild_from_cache(args.version_filter, prefix)
    elif args.fix_urls:
        records = scraper.repair_urls(args.version_filter, prefix)
    else:
        records = scraper.run(args.version_filter, prefix)

    print(f"Written {len(records)} releases to {settings.output_path}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
