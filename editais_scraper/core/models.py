"""
Data models for the editais scraper.

CallRecord is the primary output of every site adapter; Catalog is the
persisted, keyed collection the consolidation engine maintains.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timezone
from typing import Iterable, Iterator, Optional


def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_datetime(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class DocumentReference:
    """A downloaded, classified and validated document artifact."""

    url: str
    path: str  # relative to the artifact root
    declared_type: Optional[str]  # from content-type header or URL suffix
    detected_type: str  # pdf, office_zip_xml, legacy_office, archive, unknown
    size: int
    owner_key: str
    content_hash: str  # sha256 hex

    converted: bool = False
    page_count: Optional[int] = None
    discovery_depth: int = 0

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict) -> "DocumentReference":
        return cls(
            url=data["url"],
            path=data["path"],
            declared_type=data.get("declared_type"),
            detected_type=data.get("detected_type", "unknown"),
            size=int(data.get("size", 0)),
            owner_key=data.get("owner_key", ""),
            content_hash=data["content_hash"],
            converted=bool(data.get("converted", False)),
            page_count=data.get("page_count"),
            discovery_depth=int(data.get("discovery_depth", 0)),
        )


@dataclass
class CallRecord:
    """
    A published funding-opportunity announcement.

    Optional fields are None when the page did not carry the information;
    they are left out of the serialized form instead of being written empty.
    """

    # Identification
    source_site_id: str  # e.g. "fapes", "cnpq", "sigfapes"
    title: str
    external_number: Optional[str] = None  # e.g. "12/2025"

    # Dates
    publication_date: Optional[date] = None
    closing_date: Optional[date] = None

    # Descriptive
    summary: Optional[str] = None
    funding_area: Optional[str] = None
    issuing_body: Optional[str] = None
    amount: Optional[str] = None  # free text, e.g. "R$ 150.000,00"
    status: Optional[str] = None

    # Landing page of the call
    link: Optional[str] = None

    # Documents
    documents: list[DocumentReference] = field(default_factory=list)
    document_urls: list[str] = field(default_factory=list)

    collected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {}
        for k, v in asdict(self).items():
            if k == "documents":
                data[k] = [d.to_dict() for d in self.documents]
            elif isinstance(v, (date, datetime)):
                data[k] = v.isoformat()
            elif v is not None:
                data[k] = v
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CallRecord":
        """Rebuild a record from its serialized form."""
        return cls(
            source_site_id=data["source_site_id"],
            title=data["title"],
            external_number=data.get("external_number"),
            publication_date=_parse_date(data.get("publication_date")),
            closing_date=_parse_date(data.get("closing_date")),
            summary=data.get("summary"),
            funding_area=data.get("funding_area"),
            issuing_body=data.get("issuing_body"),
            amount=data.get("amount"),
            status=data.get("status"),
            link=data.get("link"),
            documents=[DocumentReference.from_dict(d) for d in data.get("documents", [])],
            document_urls=list(data.get("document_urls", [])),
            collected_at=_parse_datetime(data["collected_at"]),
        )

    @property
    def document_count(self) -> int:
        return len(self.documents)


class Catalog:
    """
    Keyed collection of CallRecord, at most one record per identity key.

    Insertion order is preserved so the serialized catalog stays diffable
    between runs.
    """

    def __init__(self, records: Optional[dict[str, CallRecord]] = None):
        self._records: dict[str, CallRecord] = dict(records or {})

    @classmethod
    def from_records(cls, records: Iterable[CallRecord], key_func) -> "Catalog":
        """Build a catalog, later records overwriting earlier ones per key."""
        catalog = cls()
        for record in records:
            catalog.put(key_func(record), record)
        return catalog

    def get(self, key: str) -> Optional[CallRecord]:
        return self._records.get(key)

    def put(self, key: str, record: CallRecord) -> None:
        self._records[key] = record

    def keys(self) -> list[str]:
        return list(self._records.keys())

    def records(self) -> list[CallRecord]:
        return list(self._records.values())

    def items(self) -> list[tuple[str, CallRecord]]:
        return list(self._records.items())

    def copy(self) -> "Catalog":
        return Catalog(self._records)

    def to_list(self) -> list[dict]:
        return [r.to_dict() for r in self._records.values()]

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: str) -> bool:
        return key in self._records

    def __iter__(self) -> Iterator[CallRecord]:
        return iter(self._records.values())

    def __eq__(self, other) -> bool:
        if not isinstance(other, Catalog):
            return NotImplemented
        return self._records == other._records
