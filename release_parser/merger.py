"""
Version-scoped merger: aggregates entries into release records and merges
them into the previously persisted output.

A full run replaces the output file. A scoped run (one version, or a dotted
prefix family such as r32.3 → r32.3, r32.3.2) removes only the matching
records from the previous output and appends the recomputed ones; every
other record is carried over as the exact dict that was loaded.
"""

import json
from pathlib import Path
from typing import Iterable, Optional, Union

from .schemas import SectionResult, ReleaseRecord, ReleaseMetadata, Change
from .logger import get_module_logger

logger = get_module_logger("merger")


def version_matches(version: str, version_filter: str, prefix: bool = True) -> bool:
    """
    Check whether a version falls under a filter.

    With prefix matching, "r32" matches "r32", "r32.1" and "r32.1.2" but
    not "r320" or "r3": the filter must be followed by a dot.

    Args:
        version: Recorded version, e.g. "r32.1.2"
        version_filter: Requested version or family, e.g. "r32"
        prefix: Also accept dotted descendants of the filter

    Returns:
        True if the version is selected by the filter
    """
    version = version.lower()
    version_filter = version_filter.lower()
    if version == version_filter:
        return True
    return prefix and version.startswith(version_filter + ".")


def _merge_metadata(current: ReleaseMetadata, new: ReleaseMetadata) -> ReleaseMetadata:
    """First non-empty value per field wins."""
    return ReleaseMetadata(
        build=current.build or new.build,
        starter_build=current.starter_build or new.starter_build,
        released=current.released or new.released
    )


def build_release_records(results: Iterable[SectionResult]) -> list[ReleaseRecord]:
    """
    Aggregate section results into one record per distinct version.

    Versions keep the order they were first seen in; entries keep their
    insertion order. A version with no entries still gets a record so its
    metadata is kept.
    """
    records: dict[str, ReleaseRecord] = {}
    metadata: dict[str, ReleaseMetadata] = {}

    for result in results:
        record = records.get(result.version)
        if record is None:
            record = ReleaseRecord(version=result.version, url=result.url)
            records[result.version] = record
            metadata[result.version] = ReleaseMetadata()
        elif not record.url:
            record.url = result.url

        metadata[result.version] = _merge_metadata(metadata[result.version], result.release)
        record.changes.extend(
            Change(tickets=e.ticket_ids, category=e.category, description=e.description)
            for e in result.entries
        )

    for version, record in records.items():
        record.build = metadata[version].build
        record.starter_build = metadata[version].starter_build
        record.released = metadata[version].released

    return list(records.values())


def merge_scoped(
    existing: list[dict],
    new_records: Iterable[ReleaseRecord],
    version_filter: str,
    prefix: bool = True
) -> list[dict]:
    """
    Replace the records selected by a filter, leaving all others untouched.

    Args:
        existing: Previously persisted records as loaded from disk
        new_records: Freshly computed records for the filtered versions
        version_filter: Version or family that was recomputed
        prefix: Whether the filter also selects dotted descendants

    Returns:
        Kept existing dicts in their original order, followed by the new records
    """
    kept = [
        r for r in existing
        if not (isinstance(r, dict) and version_matches(str(r.get("version", "")), version_filter, prefix))
    ]
    added = [r.model_dump(by_alias=True) for r in new_records]
    logger.info(
        f"Scoped merge for {version_filter}: kept {len(kept)}, "
        f"replaced {len(existing) - len(kept)} with {len(added)}"
    )
    return kept + added


def load_records(path: Union[str, Path]) -> list[dict]:
    """
    Load previously persisted records.

    A missing or unreadable file counts as empty. The unreadable case is
    logged: a scoped run will then write only the recomputed versions.
    """
    path = Path(path)
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read existing output {path}, treating as empty: {e}")
        return []
    if not isinstance(data, list):
        logger.warning(f"Existing output {path} is not a JSON array, treating as empty")
        return []
    return data


def save_records(path: Union[str, Path], records: list[Union[dict, ReleaseRecord]]) -> Path:
    """Write records as an indented JSON array."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = [r.model_dump(by_alias=True) if isinstance(r, ReleaseRecord) else r for r in records]
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path


def merge_into_output(
    path: Union[str, Path],
    records: list[ReleaseRecord],
    version_filter: Optional[str] = None,
    prefix: bool = True
) -> list[dict]:
    """
    Persist records, merging with the existing file on scoped runs.

    Returns:
        The full list of record dicts that was written
    """
    if version_filter:
        data = merge_scoped(load_records(path), records, version_filter, prefix)
    else:
        data = [r.model_dump(by_alias=True) for r in records]
    save_records(path, data)
    logger.info(f"Wrote {len(data)} releases to {path}")
    return data
