"""
Binary signature classification of downloaded payloads.

The magic number at the start of the payload decides the format. URL
suffixes and declared content types are frequently wrong or missing on
the crawled sites, so they are consulted only when the bytes are
inconclusive.
"""

import io
import zipfile
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

import structlog

logger = structlog.get_logger(__name__)


class FileKind(str, Enum):
    """Format family detected from the payload signature."""
    PDF = "pdf"
    OFFICE_ZIP_XML = "office_zip_xml"  # docx, xlsx, pptx, odt...
    LEGACY_OFFICE = "legacy_office"  # OLE compound file: doc, xls, ppt
    ARCHIVE = "archive"  # zip, rar, 7z
    UNKNOWN = "unknown"


class OfficeSubtype(str, Enum):
    """What an office container holds."""
    DOCUMENT = "document"
    SPREADSHEET = "spreadsheet"
    PRESENTATION = "presentation"


PDF_MAGIC = b"%PDF"
ZIP_MAGIC = b"PK\x03\x04"
OLE_MAGIC = b"\xd0\xcf\x11\xe0"
RAR_MAGIC = b"Rar!\x1a\x07"
SEVEN_ZIP_MAGIC = b"7z\xbc\xaf\x27\x1c"

# URL / content-type hints, checked against the lowercased URL and header
SPREADSHEET_HINTS = [".xlsx", ".xls", ".ods", "excel", "spreadsheet", "planilha"]
PRESENTATION_HINTS = [".pptx", ".ppt", ".odp", "powerpoint", "presentation", "apresentacao", "apresentação"]

# Declared types inferred from URL suffix or content-type header
EXTENSION_TYPES = {
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".odt": "application/vnd.oasis.opendocument.text",
    ".rtf": "application/rtf",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ods": "application/vnd.oasis.opendocument.spreadsheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".odp": "application/vnd.oasis.opendocument.presentation",
    ".zip": "application/zip",
    ".rar": "application/vnd.rar",
    ".7z": "application/x-7z-compressed",
    ".txt": "text/plain",
    ".csv": "text/csv",
}
MIME_EXTENSIONS = {mime: ext for ext, mime in EXTENSION_TYPES.items()}

# Formats without a magic number; a URL or header may name them
UNSIGNED_EXTENSIONS = {".rtf", ".txt", ".csv"}

# Extension and MIME type per detected kind
_OFFICE_ZIP_FORMATS = {
    OfficeSubtype.DOCUMENT: (".docx", EXTENSION_TYPES[".docx"]),
    OfficeSubtype.SPREADSHEET: (".xlsx", EXTENSION_TYPES[".xlsx"]),
    OfficeSubtype.PRESENTATION: (".pptx", EXTENSION_TYPES[".pptx"]),
}
_ODF_FORMATS = {
    OfficeSubtype.DOCUMENT: (".odt", EXTENSION_TYPES[".odt"]),
    OfficeSubtype.SPREADSHEET: (".ods", EXTENSION_TYPES[".ods"]),
    OfficeSubtype.PRESENTATION: (".odp", EXTENSION_TYPES[".odp"]),
}
_LEGACY_FORMATS = {
    OfficeSubtype.DOCUMENT: (".doc", EXTENSION_TYPES[".doc"]),
    OfficeSubtype.SPREADSHEET: (".xls", EXTENSION_TYPES[".xls"]),
    OfficeSubtype.PRESENTATION: (".ppt", EXTENSION_TYPES[".ppt"]),
}


@dataclass(frozen=True)
class Classification:
    """Result of classifying a payload."""

    kind: FileKind
    extension: str
    mime_type: str
    subtype: Optional[OfficeSubtype] = None
    odf: bool = False

    @property
    def convertible(self) -> bool:
        """True for word-processing documents that can become PDF."""
        if self.subtype != OfficeSubtype.DOCUMENT:
            return False
        return self.kind in (FileKind.OFFICE_ZIP_XML, FileKind.LEGACY_OFFICE)

    @property
    def is_known(self) -> bool:
        return self.kind != FileKind.UNKNOWN

    @property
    def label(self) -> str:
        """Short label stored on DocumentReference.detected_type."""
        if self.subtype and self.kind in (FileKind.OFFICE_ZIP_XML, FileKind.LEGACY_OFFICE):
            return f"{self.kind.value}:{self.subtype.value}"
        return self.kind.value


PDF_CLASSIFICATION = Classification(
    kind=FileKind.PDF,
    extension=".pdf",
    mime_type="application/pdf",
)


def sniff(data: bytes) -> FileKind:
    """
    Classify a payload by its leading magic number only.

    Args:
        data: Raw payload

    Returns:
        FileKind (UNKNOWN when no signature matches)
    """
    if not data:
        return FileKind.UNKNOWN
    if data.startswith(PDF_MAGIC):
        return FileKind.PDF
    if data.startswith(ZIP_MAGIC):
        return FileKind.OFFICE_ZIP_XML
    if data.startswith(OLE_MAGIC):
        return FileKind.LEGACY_OFFICE
    if data.startswith(RAR_MAGIC) or data.startswith(SEVEN_ZIP_MAGIC):
        return FileKind.ARCHIVE
    return FileKind.UNKNOWN


def looks_like_html(data: bytes) -> bool:
    """
    Detect HTML pages served in place of a document (login walls, 404s).

    Args:
        data: Raw payload

    Returns:
        True if the payload starts with an HTML document marker
    """
    head = data[:512].lstrip(b"\xef\xbb\xbf").lstrip().lower()
    return head.startswith(b"<!doctype html") or head.startswith(b"<html")


def declared_type(url: str = "", content_type: str = "") -> Optional[str]:
    """
    Media type a server or link claims for a resource.

    The content-type header wins over the URL suffix, except for the
    generic application/octet-stream.

    Args:
        url: Resource URL
        content_type: Content-Type header value

    Returns:
        MIME type or None
    """
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime and mime not in ("application/octet-stream", "binary/octet-stream"):
        return mime

    suffix = _url_suffix(url)
    if suffix:
        return EXTENSION_TYPES.get(suffix)
    return mime or None


def _url_suffix(url: str) -> str:
    path = urlparse(url or "").path.lower()
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return "." + name.rsplit(".", 1)[-1]


def _hint_subtype(url: str, content_type: str) -> Optional[OfficeSubtype]:
    haystack = f"{url or ''} {content_type or ''}".lower()
    if any(hint in haystack for hint in SPREADSHEET_HINTS):
        return OfficeSubtype.SPREADSHEET
    if any(hint in haystack for hint in PRESENTATION_HINTS):
        return OfficeSubtype.PRESENTATION
    return None


def _inspect_zip(data: bytes) -> tuple[Optional[OfficeSubtype], bool, bool]:
    """
    Look inside a ZIP container.

    Returns:
        (subtype, is_odf, readable). subtype is None for a readable archive
        that is not an office container.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = archive.namelist()
            if "mimetype" in names:
                mimetype = archive.read("mimetype").decode("ascii", "ignore")
                if "opendocument.text" in mimetype:
                    return OfficeSubtype.DOCUMENT, True, True
                if "opendocument.spreadsheet" in mimetype:
                    return OfficeSubtype.SPREADSHEET, True, True
                if "opendocument.presentation" in mimetype:
                    return OfficeSubtype.PRESENTATION, True, True
    except (zipfile.BadZipFile, KeyError, OSError, ValueError):
        return None, False, False

    if any(n.startswith("word/") for n in names):
        return OfficeSubtype.DOCUMENT, False, True
    if any(n.startswith("xl/") for n in names):
        return OfficeSubtype.SPREADSHEET, False, True
    if any(n.startswith("ppt/") for n in names):
        return OfficeSubtype.PRESENTATION, False, True
    return None, False, True


def classify(data: bytes, url: str = "", content_type: str = "") -> Classification:
    """
    Classify a payload into one of the known format families.

    The byte signature decides the kind. URL and content type only refine
    office containers whose internals cannot be read, and name the file
    when the signature is inconclusive.

    Args:
        data: Raw payload
        url: Source URL (hint only)
        content_type: Declared Content-Type (hint only)

    Returns:
        Classification
    """
    kind = sniff(data)

    if kind == FileKind.PDF:
        return PDF_CLASSIFICATION

    if kind == FileKind.OFFICE_ZIP_XML:
        subtype, odf, readable = _inspect_zip(data)
        if readable and subtype is None:
            return Classification(FileKind.ARCHIVE, ".zip", EXTENSION_TYPES[".zip"])
        if subtype is None:
            subtype = _hint_subtype(url, content_type) or OfficeSubtype.DOCUMENT
            odf = _url_suffix(url) in (".odt", ".ods", ".odp")
        formats = _ODF_FORMATS if odf else _OFFICE_ZIP_FORMATS
        extension, mime = formats[subtype]
        return Classification(kind, extension, mime, subtype=subtype, odf=odf)

    if kind == FileKind.LEGACY_OFFICE:
        subtype = _hint_subtype(url, content_type) or OfficeSubtype.DOCUMENT
        extension, mime = _LEGACY_FORMATS[subtype]
        return Classification(kind, extension, mime, subtype=subtype)

    if kind == FileKind.ARCHIVE:
        if data.startswith(RAR_MAGIC):
            return Classification(kind, ".rar", EXTENSION_TYPES[".rar"])
        return Classification(kind, ".7z", EXTENSION_TYPES[".7z"])

    # Inconclusive signature: fall back to what the server claims, except
    # for formats whose signature we would have recognized
    mime = declared_type(url, content_type)
    extension = _url_suffix(url)
    if extension not in UNSIGNED_EXTENSIONS:
        extension = MIME_EXTENSIONS.get(mime or "", "")
    if extension not in UNSIGNED_EXTENSIONS:
        extension = ".bin"
        mime = "application/octet-stream"
    logger.debug("signature_inconclusive", url=url, declared=mime)
    return Classification(
        kind=FileKind.UNKNOWN,
        extension=extension,
        mime_type=mime or "application/octet-stream",
    )
