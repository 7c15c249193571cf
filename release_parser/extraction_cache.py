"""
File-based cache of extraction-service results, keyed by content hash.

Benefits:
- Cost savings: identical section content never reaches the service twice
- Determinism: re-runs reproduce the same entries for unchanged pages
- Manual override: a wrong result can be fixed by editing the JSON file
- Rebuilds: the output can be regenerated from the cache alone

The whole cache is one JSON object. It is read once at startup and
rewritten after every put, so a crash loses at most the entry in flight.
"""

import json
import hashlib
import os
import tempfile
from pathlib import Path
from typing import Iterator, Optional, Union

from pydantic import ValidationError

from .schemas import CacheRecord
from .logger import get_module_logger

logger = get_module_logger("extraction_cache")


def content_hash(content: str) -> str:
    """Stable SHA-256 hex digest of normalized section content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _page_of(url: str) -> str:
    # Anchors change when URLs are repaired; the page does not
    return url.split("#", 1)[0]


def _group_of(data: dict) -> tuple[str, str]:
    if not isinstance(data, dict):
        return "", ""
    return str(data.get("version", "")), _page_of(str(data.get("url", "")))


class ExtractionCache:
    """
    JSON-file cache mapping content hashes to CacheRecords.

    Records are kept as raw dicts in insertion order; they are validated
    into CacheRecord on the way out so hand edits that break the schema are
    reported instead of crashing the run.
    """

    def __init__(self, path: Union[str, Path, None] = None):
        """
        Load the cache file.

        Args:
            path: JSON file to persist to. Defaults to ./data/.ai-cache.json
        """
        if path is None:
            path = Path.cwd() / "data" / ".ai-cache.json"

        self.path = Path(path)
        self._records: dict[str, dict] = self._load()

        logger.info(f"Extraction cache loaded: {len(self._records)} entries from {self.path}")

    def _load(self) -> dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Cache file {self.path} unreadable, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Cache file {self.path} is not a JSON object, starting empty")
            return {}
        return data

    def save(self) -> None:
        """Rewrite the whole cache file atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=".cache-", suffix=".json", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._records, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @staticmethod
    def key_for(content: str) -> str:
        """Cache key for normalized content."""
        return content_hash(content)

    def get(self, key: str) -> Optional[CacheRecord]:
        """
        Retrieve the record stored under a key.

        Returns:
            CacheRecord if present and valid, None otherwise
        """
        data = self._records.get(key)
        if data is None:
            logger.debug(f"Cache miss for key: {key[:12]}")
            return None
        try:
            return CacheRecord.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed cache entry {key[:12]}: {e}")
            return None

    def _promote(self, key: str) -> bool:
        """
        Reorder the records of key's version and page so that key comes last.

        Only the slots already held by that group are reshuffled, so the
        group's first position (and with it the rebuild order) is unchanged.
        """
        group = _group_of(self._records[key])
        slots = [k for k, data in self._records.items() if _group_of(data) == group]
        if slots[-1] == key:
            return False
        placed = dict(zip(slots, [k for k in slots if k != key] + [key]))
        self._records = {
            placed.get(k, k): self._records[placed.get(k, k)] for k in self._records
        }
        return True

    def put(self, key: str, record: CacheRecord) -> None:
        """Store a record as the current one for its version and persist immediately."""
        self._records[key] = record.model_dump()
        self._promote(key)
        self.save()
        logger.info(f"Cached {record.version} with key: {key[:12]}")

    def touch(self, key: str) -> bool:
        """
        Make an existing record the current one for its version and page.

        Called on cache hits, so content that goes back to an older revision
        becomes current again without a new service call.

        Returns:
            True if the record was not current before (the file is rewritten)
        """
        if key not in self._records or not self._promote(key):
            return False
        self.save()
        logger.debug(f"Restored {self._records[key].get('version', key[:12])} as current with key: {key[:12]}")
        return True

    def update_url(self, key: str, url: str) -> bool:
        """
        Point an existing record at a new URL.

        Returns:
            True if the record existed and its URL changed
        """
        data = self._records.get(key)
        if data is None or data.get("url") == url:
            return False
        data["url"] = url
        self.save()
        logger.info(f"Updated URL for {data.get('version', key[:12])}: {url}")
        return True

    def records(self) -> Iterator[tuple[str, CacheRecord]]:
        """Iterate over valid records in insertion order."""
        for key in list(self._records):
            record = self.get(key)
            if record is not None:
                yield key, record

    def current_records(self) -> list[tuple[str, CacheRecord]]:
        """
        The most recently stored record for each version and page.

        Edited pages leave their older content hashes behind; those records
        are superseded rather than deleted. Groups keep the position of their
        first appearance, so a rebuild keeps the original page order.
        """
        current: dict[tuple[str, str], tuple[str, CacheRecord]] = {}
        for key, record in self.records():
            current[(record.version, _page_of(record.url))] = (key, record)
        return list(current.values())

    def __contains__(self, key: str) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)
