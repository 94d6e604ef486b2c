"""
Format normalization: office documents to PDF.

Word-processing documents (docx, odt, doc) are converted with LibreOffice
in headless mode. Everything else passes through untouched. A failed
conversion keeps the original bytes and classification, so a document is
never dropped and never labeled PDF when it is not one.
"""

import asyncio
import io
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pdfplumber
import structlog

from .errors import ConversionError
from .signatures import PDF_CLASSIFICATION, Classification, FileKind, sniff

logger = structlog.get_logger(__name__)


@dataclass
class NormalizedDocument:
    """Payload after normalization."""
    content: bytes
    classification: Classification
    converted: bool = False


def pdf_page_count(data: bytes) -> Optional[int]:
    """
    Count pages of a PDF payload.

    Args:
        data: PDF bytes

    Returns:
        Number of pages, or None if the PDF cannot be parsed
    """
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            return len(pdf.pages)
    except Exception as e:
        # pdfminer raises a wide range of parser errors on damaged files
        logger.debug("pdf_parse_failed", error=str(e))
        return None


class FormatNormalizer:
    """
    Converts convertible office documents to PDF via LibreOffice.

    Usage:
        normalizer = FormatNormalizer()
        result = await normalizer.normalize(data, classification)
    """

    def __init__(
        self,
        soffice_binary: str = "soffice",
        timeout: float = 120.0,
        enabled: bool = True,
    ):
        """
        Initialize normalizer.

        Args:
            soffice_binary: LibreOffice executable name or path
            timeout: Seconds allowed per conversion
            enabled: When False every payload passes through
        """
        self.soffice_binary = soffice_binary
        self.timeout = timeout
        self.enabled = enabled

    async def normalize(self, data: bytes, classification: Classification) -> NormalizedDocument:
        """
        Normalize a classified payload.

        Args:
            data: Raw payload
            classification: Result of signatures.classify()

        Returns:
            NormalizedDocument (converted=False when passed through or when
            conversion failed)
        """
        if not self.enabled or not classification.convertible:
            return NormalizedDocument(content=data, classification=classification)

        try:
            pdf_bytes = await self.convert_to_pdf(data, classification.extension)
        except ConversionError as e:
            logger.warning(
                "conversion_failed",
                kind=classification.label,
                error=str(e),
            )
            return NormalizedDocument(content=data, classification=classification)

        logger.info(
            "conversion_complete",
            kind=classification.label,
            size_before=len(data),
            size_after=len(pdf_bytes),
        )
        return NormalizedDocument(
            content=pdf_bytes,
            classification=PDF_CLASSIFICATION,
            converted=True,
        )

    async def convert_to_pdf(self, data: bytes, extension: str) -> bytes:
        """
        Convert an office payload to PDF and verify the result.

        Args:
            data: Office document bytes
            extension: Suffix LibreOffice uses to pick the import filter

        Returns:
            PDF bytes

        Raises:
            ConversionError: If conversion fails or yields an invalid PDF
        """
        pdf_bytes = await self._run_conversion(data, extension)

        if sniff(pdf_bytes) != FileKind.PDF:
            raise ConversionError("converter output is not a PDF")
        pages = pdf_page_count(pdf_bytes)
        if not pages:
            raise ConversionError("converter output has no readable pages")
        return pdf_bytes

    async def _run_conversion(self, data: bytes, extension: str) -> bytes:
        """Run soffice on a temp copy of the payload and read the PDF back."""
        binary = shutil.which(self.soffice_binary)
        if not binary:
            raise ConversionError(f"{self.soffice_binary} not found. Please install LibreOffice")

        with tempfile.TemporaryDirectory(prefix="editais-convert-") as tmp:
            tmp_dir = Path(tmp)
            source = tmp_dir / f"input{extension}"
            source.write_bytes(data)

            process = await asyncio.create_subprocess_exec(
                binary,
                "--headless",
                "--norestore",
                f"-env:UserInstallation=file://{tmp_dir / 'profile'}",
                "--convert-to",
                "pdf",
                "--outdir",
                str(tmp_dir),
                str(source),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                raise ConversionError(f"conversion timed out after {self.timeout}s")

            if process.returncode != 0:
                message = stderr.decode("utf-8", "replace").strip()
                raise ConversionError(f"soffice exited with {process.returncode}: {message}")

            output = tmp_dir / "input.pdf"
            if not output.exists():
                raise ConversionError("soffice produced no output")
            return output.read_bytes()
