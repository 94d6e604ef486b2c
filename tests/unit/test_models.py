"""Tests for data models."""

from datetime import date, datetime, timezone

import pytest

from editais_scraper.core.models import CallRecord, Catalog, DocumentReference


class TestDocumentReference:
    """Tests for DocumentReference model."""

    def test_frozen(self):
        ref = DocumentReference(
            url="https://x.br/a.pdf",
            path="fapes/12_2025/a.pdf",
            declared_type=None,
            detected_type="pdf",
            size=10,
            owner_key="fapes:12/2025",
            content_hash="0" * 64,
        )
        with pytest.raises(AttributeError):
            ref.path = "other.pdf"

    def test_to_dict_omits_none(self):
        ref = DocumentReference(
            url="https://x.br/a.pdf",
            path="a.pdf",
            declared_type=None,
            detected_type="pdf",
            size=10,
            owner_key="k",
            content_hash="0" * 64,
        )
        data = ref.to_dict()
        assert "declared_type" not in data
        assert "page_count" not in data
        assert data["converted"] is False


class TestCallRecord:
    """Tests for CallRecord model."""

    def test_defaults(self):
        record = CallRecord(source_site_id="cnpq", title="Chamada Universal")
        assert record.documents == []
        assert record.document_count == 0
        assert record.collected_at.tzinfo is not None

    def test_to_dict_serializes_dates(self):
        record = CallRecord(
            source_site_id="fapes",
            title="Edital FAPES Nº 12/2025",
            closing_date=date(2025, 6, 30),
            collected_at=datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc),
        )
        data = record.to_dict()

        assert data["closing_date"] == "2025-06-30"
        assert data["collected_at"] == "2025-03-01T12:00:00+00:00"
        assert "publication_date" not in data
        assert "amount" not in data

    def test_from_dict(self):
        data = {
            "source_site_id": "sigfapes",
            "title": "Universal",
            "external_number": "03/2025",
            "publication_date": "2025-01-10",
            "amount": "R$ 150.000,00",
            "documents": [
                {
                    "url": "https://x.br/a.pdf",
                    "path": "sigfapes/03_2025/a.pdf",
                    "detected_type": "pdf",
                    "size": 42,
                    "owner_key": "sigfapes:03/2025",
                    "content_hash": "f" * 64,
                    "page_count": 12,
                }
            ],
            "collected_at": "2025-03-01T12:00:00Z",
        }
        record = CallRecord.from_dict(data)

        assert record.publication_date == date(2025, 1, 10)
        assert record.collected_at == datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert record.documents[0].page_count == 12
        assert record.documents[0].declared_type is None

    def test_from_dict_requires_collected_at(self):
        with pytest.raises(KeyError):
            CallRecord.from_dict({"source_site_id": "fapes", "title": "X"})


class TestCatalog:
    """Tests for Catalog."""

    def test_from_records_last_wins(self):
        a = CallRecord(source_site_id="fapes", title="A")
        b = CallRecord(source_site_id="fapes", title="B")

        catalog = Catalog.from_records([a, b], key_func=lambda r: r.source_site_id)

        assert len(catalog) == 1
        assert catalog.get("fapes") is b
        assert "fapes" in catalog

    def test_iteration_keeps_insertion_order(self):
        catalog = Catalog()
        for key in ("c", "a", "b"):
            catalog.put(key, CallRecord(source_site_id="x", title=key))

        assert [r.title for r in catalog] == ["c", "a", "b"]
        assert catalog.keys() == ["c", "a", "b"]
