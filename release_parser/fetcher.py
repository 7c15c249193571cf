"""
HTTP fetching of the release-notes index and per-version pages.
"""

import re
from typing import Optional

import requests

from .exceptions import FetchError
from .logger import get_module_logger

logger = get_module_logger("fetcher")

DEFAULT_BASE_URL = "https://help.disguise.one"
DEFAULT_INDEX_PATH = "/designer/release-notes/release-notes"
DEFAULT_RELEASE_LINK_PATTERN = r'href="(/designer/release-notes/r\d+)"'

# Used when the index page is unreachable or lists no release pages
FALLBACK_PATHS = [f"/designer/release-notes/r{n}" for n in range(14, 33)]

USER_AGENT = "release-notes-scraper/0.1"


class Fetcher:
    """Downloads release-note pages over HTTP."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        index_path: str = DEFAULT_INDEX_PATH,
        link_pattern: str = DEFAULT_RELEASE_LINK_PATTERN,
        fallback_paths: Optional[list[str]] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30
    ):
        self.base_url = base_url.rstrip("/")
        self.index_path = index_path
        self.link_pattern = re.compile(link_pattern)
        self.fallback_paths = fallback_paths if fallback_paths is not None else FALLBACK_PATHS
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = USER_AGENT
        self.session = session
        self.timeout = timeout

    def url_for(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def fetch_text(self, url: str) -> str:
        """
        GET a page and return its body.

        Raises:
            FetchError: on network failure or a non-2xx status
        """
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"Failed to fetch {url}: {e}", url=url)

        if not response.ok:
            raise FetchError(
                f"Failed to fetch {url}: {response.status_code}",
                url=url,
                status=response.status_code
            )
        return response.text

    def discover_release_paths(self, index_html: str) -> list[str]:
        """Release page paths linked from the index, in order, deduplicated."""
        paths = list(dict.fromkeys(self.link_pattern.findall(index_html)))
        return paths or list(self.fallback_paths)

    def release_paths(self) -> list[str]:
        """Fetch the index and list release pages, falling back to known paths."""
        try:
            index_html = self.fetch_text(self.url_for(self.index_path))
        except FetchError as e:
            logger.warning(f"Could not fetch index page: {e.message}. Using fallback release page list.")
            return list(self.fallback_paths)
        return self.discover_release_paths(index_html)
