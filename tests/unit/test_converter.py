"""Tests for office-to-PDF normalization."""

import pytest
from conftest import make_docx, make_pdf, make_zip

from editais_scraper.core.converter import FormatNormalizer, pdf_page_count
from editais_scraper.core.errors import ConversionError
from editais_scraper.core.signatures import FileKind, classify


class ScriptedNormalizer(FormatNormalizer):
    """FormatNormalizer whose LibreOffice run returns a canned result."""

    def __init__(self, result, **kwargs):
        super().__init__(**kwargs)
        self.result = result
        self.calls = []

    async def _run_conversion(self, data, extension):
        self.calls.append(extension)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class TestPdfPageCount:
    """Tests for pdf_page_count function."""

    def test_counts_pages(self):
        assert pdf_page_count(make_pdf(pages=3)) == 3

    def test_damaged_pdf(self):
        assert pdf_page_count(b"%PDF-1.4\nnot really a pdf") is None


class TestFormatNormalizer:
    """Tests for FormatNormalizer."""

    @pytest.mark.asyncio
    async def test_docx_converted(self):
        """Test a convertible document becomes a PDF."""
        normalizer = ScriptedNormalizer(make_pdf(pages=2))
        data = make_docx()

        result = await normalizer.normalize(data, classify(data))

        assert result.converted is True
        assert result.classification.kind == FileKind.PDF
        assert result.content.startswith(b"%PDF")
        assert normalizer.calls == [".docx"]

    @pytest.mark.asyncio
    async def test_failure_keeps_original(self):
        """Test a failed conversion keeps bytes and classification."""
        normalizer = ScriptedNormalizer(ConversionError("soffice exited with 1"))
        data = make_docx()
        classification = classify(data)

        result = await normalizer.normalize(data, classification)

        assert result.converted is False
        assert result.content == data
        assert result.classification == classification

    @pytest.mark.asyncio
    async def test_non_pdf_output_rejected(self):
        """Test converter output that is not a PDF is discarded."""
        normalizer = ScriptedNormalizer(b"<html>error</html>")
        data = make_docx()

        result = await normalizer.normalize(data, classify(data))

        assert result.converted is False
        assert result.content == data

    @pytest.mark.asyncio
    async def test_spreadsheet_passes_through(self):
        """Test non-document office files are never converted."""
        normalizer = ScriptedNormalizer(make_pdf())
        data = make_zip({"xl/workbook.xml": "<workbook/>"})

        result = await normalizer.normalize(data, classify(data))

        assert result.converted is False
        assert normalizer.calls == []

    @pytest.mark.asyncio
    async def test_disabled(self):
        """Test a disabled normalizer passes everything through."""
        normalizer = ScriptedNormalizer(make_pdf(), enabled=False)
        data = make_docx()

        result = await normalizer.normalize(data, classify(data))

        assert result.converted is False
        assert normalizer.calls == []

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        """Test a missing LibreOffice binary raises ConversionError."""
        normalizer = FormatNormalizer(soffice_binary="definitely-not-soffice-binary")

        with pytest.raises(ConversionError):
            await normalizer.convert_to_pdf(make_docx(), ".docx")
