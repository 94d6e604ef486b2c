"""
Record identity and catalog consolidation.

Merges freshly collected CallRecords into the persisted catalog. Each call
is identified by its site and number (or its normalized title when it has
no number), so the same call seen on two runs maps to one catalog entry.
"""

import json
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import structlog

from .errors import ConsolidationError
from .models import CallRecord, Catalog
from .normalizer import normalize_title_key, normalize_whitespace

logger = structlog.get_logger(__name__)


PLACEHOLDER_TITLES = {
    "sem título",
    "sem titulo",
    "n/a",
    "na",
    "no title",
    "untitled",
    "null",
    "undefined",
    "-",
}

PLACEHOLDER_PATTERN = re.compile(r"^n/a\s*-\s*sem t[íi]tulo$", re.IGNORECASE)
ANNEX_PATTERN = re.compile(r"^\s*anexo\b", re.IGNORECASE)


def is_valid_title(title: Optional[str]) -> bool:
    """
    Check that a title names an actual call.

    Args:
        title: Candidate title

    Returns:
        True if the title is longer than 3 characters and not a placeholder
    """
    if not title:
        return False
    cleaned = normalize_whitespace(title)
    if len(cleaned) <= 3:
        return False
    lowered = cleaned.lower()
    return lowered not in PLACEHOLDER_TITLES and not PLACEHOLDER_PATTERN.match(lowered)


def is_annex_title(title: Optional[str]) -> bool:
    """True for attachments listed as calls, e.g. "Anexo III – Formulário"."""
    return bool(title and ANNEX_PATTERN.match(title))


def validate_record(record: CallRecord) -> Optional[str]:
    """Return why a record must not enter the catalog, or None."""
    if not is_valid_title(record.title):
        return "invalid title"
    if is_annex_title(record.title):
        return "annex title"
    return None


def identity_key(record: CallRecord) -> str:
    """
    Stable identity of a call across runs.

    Returns:
        "{site}:{number}" when the call has a number, otherwise
        "{site}:title:{normalized title}"
    """
    number = normalize_whitespace(record.external_number or "").replace(" ", "")
    if number:
        return f"{record.source_site_id}:{number}"
    return f"{record.source_site_id}:title:{normalize_title_key(record.title)}"


def is_richer(new: CallRecord, existing: CallRecord) -> bool:
    """
    Decide whether a new record should replace the stored one.

    More documents wins; on equal counts the later collection wins.
    """
    if new.document_count != existing.document_count:
        return new.document_count > existing.document_count
    return new.collected_at > existing.collected_at


@dataclass
class ConsolidationResult:
    """Merged catalog plus what happened to each record."""
    catalog: Catalog
    inserted: int = 0
    replaced: int = 0
    kept: int = 0
    rejected: int = 0
    purged: int = 0


def consolidate(existing: Catalog, new_records: Iterable[CallRecord]) -> ConsolidationResult:
    """
    Merge new records into a catalog.

    The input catalog is not modified. Running consolidate again with the
    same records over its own output changes nothing.

    Args:
        existing: Persisted catalog
        new_records: Records collected in this run, in adapter order

    Returns:
        ConsolidationResult with the new catalog
    """
    catalog = Catalog()
    result = ConsolidationResult(catalog=catalog)

    for key, record in existing.items():
        reason = validate_record(record)
        if reason:
            logger.info("record_purged", key=key, title=record.title, reason=reason)
            result.purged += 1
            continue
        catalog.put(key, record)

    for record in new_records:
        reason = validate_record(record)
        if reason:
            logger.debug("record_rejected", site=record.source_site_id, title=record.title, reason=reason)
            result.rejected += 1
            continue

        key = identity_key(record)
        current = catalog.get(key)
        if current is None:
            catalog.put(key, record)
            result.inserted += 1
        elif is_richer(record, current):
            catalog.put(key, record)
            result.replaced += 1
        else:
            result.kept += 1

    logger.info(
        "consolidation_complete",
        total=len(catalog),
        inserted=result.inserted,
        replaced=result.replaced,
        kept=result.kept,
        rejected=result.rejected,
        purged=result.purged,
    )
    return result


class CatalogStore:
    """
    JSON persistence for the catalog.

    Usage:
        store = CatalogStore("output/editais.json")
        catalog = store.load()
        store.save(consolidate(catalog, records).catalog)
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> Catalog:
        """
        Read the persisted catalog.

        Returns:
            Catalog (empty if the file does not exist)

        Raises:
            ConsolidationError: If the file is unreadable or malformed
        """
        if not self.path.exists():
            logger.info("catalog_missing", path=str(self.path))
            return Catalog()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ConsolidationError(f"Cannot read catalog {self.path}: {e}") from e

        if not isinstance(data, list):
            raise ConsolidationError(f"Catalog {self.path} must be a JSON list")

        records = []
        for index, item in enumerate(data):
            try:
                records.append(CallRecord.from_dict(item))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise ConsolidationError(f"Malformed record #{index} in {self.path}: {e}") from e

        # Invalid records are kept here so consolidate() can count the purge
        catalog = Catalog.from_records(records, identity_key)
        logger.info("catalog_loaded", path=str(self.path), records=len(catalog))
        return catalog

    def save(self, catalog: Catalog) -> None:
        """Write the catalog atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(catalog.to_list(), indent=2, ensure_ascii=False)

        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.info("catalog_saved", path=str(self.path), records=len(catalog))
