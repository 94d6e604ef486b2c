"""
Document acquisition: fetch, classify, normalize, validate, store.

Artifacts are content-addressed: the sha256 of the stored bytes decides
whether a document is new. A document whose hash is already known reuses
the existing artifact path, whatever its URL or filename.
"""

import asyncio
import hashlib
import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

import httpx
import structlog

from .converter import FormatNormalizer, pdf_page_count
from .discovery import DiscoveredLink
from .errors import ContentValidationError, TransientNetworkError
from .http_client import FetchedResource, HttpClient
from .models import DocumentReference
from .normalizer import filename_from_url, slugify
from .signatures import Classification, FileKind, classify, declared_type, looks_like_html

logger = structlog.get_logger(__name__)


def content_hash(data: bytes) -> str:
    """Return the sha256 hex digest of a payload."""
    return hashlib.sha256(data).hexdigest()


def validate_payload(url: str, data: bytes, classification: Classification) -> None:
    """
    Reject payloads that are not usable documents.

    A payload is valid when it classifies as a known kind, or when it is
    non-empty and not an HTML page.

    Raises:
        ContentValidationError: For empty payloads and HTML error pages
    """
    if not data:
        raise ContentValidationError(url, "empty payload")
    if classification.is_known:
        return
    if looks_like_html(data):
        raise ContentValidationError(url, "html page instead of document")


def artifact_filename(original_name: str, digest: str, extension: str) -> str:
    """
    Collision-resistant artifact name: safe stem plus a hash suffix.

    Args:
        original_name: Filename from Content-Disposition or URL
        digest: sha256 hex digest of the stored bytes
        extension: Extension matching the stored format

    Returns:
        e.g. "Edital_12_2025_3fa9c0d21b.pdf"
    """
    stem = original_name.rsplit(".", 1)[0] if "." in original_name else original_name
    return f"{slugify(stem, max_length=60, fallback='documento')}_{digest[:10]}{extension}"


class ArtifactStore:
    """
    Content-addressed artifact storage on the local filesystem.

    Files live under {root}/{site_id}/{record_slug}/. On open, existing
    files are hashed so reuse also works across runs. Converted documents
    are also indexed under the hash of the payload they were converted
    from (kept in ALIAS_FILE), since converter output is not byte-stable.
    """

    ALIAS_FILE = ".aliases.json"

    def __init__(self, root: str):
        """
        Initialize the store.

        Args:
            root: Artifact root directory (created if missing)
        """
        self.root = Path(root)
        self._index: dict[str, str] = {}
        self._aliases: dict[str, str] = {}
        self._indexed = False

    def _build_index(self) -> None:
        if self._indexed:
            return
        self.root.mkdir(parents=True, exist_ok=True)
        for path in sorted(self.root.rglob("*")):
            if path.is_file() and not path.name.startswith("."):
                digest = content_hash(path.read_bytes())
                self._index.setdefault(digest, path.relative_to(self.root).as_posix())

        alias_path = self.root / self.ALIAS_FILE
        if alias_path.exists():
            try:
                aliases = json.loads(alias_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("artifact_aliases_unreadable", path=str(alias_path), error=str(e))
                aliases = {}
            known_paths = set(self._index.values())
            self._aliases = {
                digest: relative
                for digest, relative in aliases.items()
                if relative in known_paths
            }

        self._indexed = True
        logger.info(
            "artifact_index_built",
            root=str(self.root),
            artifacts=len(self._index),
            aliases=len(self._aliases),
        )

    def find(self, digest: str) -> Optional[str]:
        """Return the relative path of an artifact with this hash, if any."""
        self._build_index()
        return self._index.get(digest) or self._aliases.get(digest)

    def add_alias(self, digest: str, relative_path: str) -> None:
        """Index an existing artifact under an additional hash."""
        self._build_index()
        if digest in self._index or self._aliases.get(digest) == relative_path:
            return
        self._aliases[digest] = relative_path
        self._write_atomic(self.root / self.ALIAS_FILE, json.dumps(self._aliases, indent=2).encode("utf-8"))

    def save(self, data: bytes, relative_path: str, aliases: Iterable[str] = ()) -> str:
        """
        Write an artifact atomically and index it.

        Args:
            data: Bytes to store
            relative_path: Path relative to the root
            aliases: Extra hashes that should resolve to this artifact

        Returns:
            Relative path of the stored artifact
        """
        self._build_index()
        target = self.root / relative_path
        self._write_atomic(target, data)

        relative = target.relative_to(self.root).as_posix()
        self._index[content_hash(data)] = relative
        for digest in aliases:
            self.add_alias(digest, relative)
        return relative

    @staticmethod
    def _write_atomic(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=".tmp-", suffix=target.suffix)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, target)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def absolute(self, relative_path: str) -> Path:
        return self.root / relative_path

    def __len__(self) -> int:
        self._build_index()
        return len(self._index)


@dataclass
class AcquisitionReport:
    """Outcome of acquiring every link of one record."""
    documents: list[DocumentReference] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)  # (url, reason)
    reused: int = 0


class DocumentAcquirer:
    """
    Downloads discovered links and turns them into DocumentReferences.

    Usage:
        acquirer = DocumentAcquirer(http_client, store, FormatNormalizer())
        report = await acquirer.acquire_all(links, owner_key, "fapes", "12_2025")
    """

    def __init__(
        self,
        http_client: HttpClient,
        store: ArtifactStore,
        normalizer: Optional[FormatNormalizer] = None,
        delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize acquirer.

        Args:
            http_client: Client carrying the adapter's session cookies
            store: Shared artifact store
            normalizer: Format normalizer (pass-through when None)
            delay: Pause between consecutive downloads, in seconds
            sleep: Awaitable sleep function (injectable for tests)
        """
        self.http_client = http_client
        self.store = store
        self.normalizer = normalizer or FormatNormalizer(enabled=False)
        self.delay = delay
        self.sleep = sleep

    async def acquire(
        self,
        url: str,
        owner_key: str,
        site_id: str,
        record_slug: str,
        depth: int = 0,
        referer: Optional[str] = None,
    ) -> DocumentReference:
        """
        Acquire one document.

        Args:
            url: Document URL
            owner_key: Identity key of the owning record
            site_id: Source site id (first path component)
            record_slug: Record directory name (number or title slug)
            depth: Discovery depth of the link
            referer: Page the link was found on

        Returns:
            DocumentReference

        Raises:
            TransientNetworkError: Network errors persisted through retries
            httpx.HTTPError: Server error status or unrecoverable transport error
            ContentValidationError: Payload is not a usable document
        """
        resource = await self.http_client.fetch(url, referer=referer)
        reference, _ = await self._store_resource(resource, owner_key, site_id, record_slug, depth)
        return reference

    async def _store_resource(
        self,
        resource: FetchedResource,
        owner_key: str,
        site_id: str,
        record_slug: str,
        depth: int,
    ) -> tuple[DocumentReference, bool]:
        """Classify, normalize and store a fetched resource; True when reused."""
        source_url = resource.final_url or resource.url
        raw = resource.content
        declared = declared_type(source_url, resource.content_type)
        classification = classify(raw, source_url, resource.content_type)
        validate_payload(resource.url, raw, classification)

        raw_digest = content_hash(raw)
        existing = self.store.find(raw_digest)
        if existing:
            # Same download as before: skip conversion, reuse the artifact
            logger.info("document_reused", url=resource.url, path=existing)
            stored = self.store.absolute(existing).read_bytes()
            stored_kind = classify(stored, existing)
            return self._reference(
                resource.url, existing, declared, stored_kind, stored,
                owner_key, depth, converted=stored_kind.kind != classification.kind,
            ), True

        normalized = await self.normalizer.normalize(raw, classification)
        data = normalized.content
        digest = content_hash(data)

        existing = self.store.find(digest)
        if existing:
            logger.info("document_reused", url=resource.url, path=existing)
            self.store.add_alias(raw_digest, existing)
            return self._reference(
                resource.url, existing, declared, normalized.classification, data,
                owner_key, depth, converted=normalized.converted,
            ), True

        original_name = resource.filename or filename_from_url(source_url)
        relative = "/".join([
            slugify(site_id, fallback="site"),
            slugify(record_slug, max_length=80, fallback="sem_numero"),
            artifact_filename(original_name, digest, normalized.classification.extension),
        ])
        aliases = [raw_digest] if raw_digest != digest else []
        path = self.store.save(data, relative, aliases=aliases)
        logger.info(
            "document_saved",
            url=resource.url,
            path=path,
            kind=normalized.classification.label,
            size=len(data),
        )
        return self._reference(
            resource.url, path, declared, normalized.classification, data,
            owner_key, depth, converted=normalized.converted,
        ), False

    @staticmethod
    def _reference(
        url: str,
        path: str,
        declared: Optional[str],
        classification: Classification,
        data: bytes,
        owner_key: str,
        depth: int,
        converted: bool,
    ) -> DocumentReference:
        return DocumentReference(
            url=url,
            path=path,
            declared_type=declared,
            detected_type=classification.label,
            size=len(data),
            owner_key=owner_key,
            content_hash=content_hash(data),
            converted=converted,
            page_count=pdf_page_count(data) if classification.kind == FileKind.PDF else None,
            discovery_depth=depth,
        )

    async def acquire_all(
        self,
        links: Iterable[DiscoveredLink],
        owner_key: str,
        site_id: str,
        record_slug: str,
    ) -> AcquisitionReport:
        """
        Acquire links sequentially, skipping failures.

        Per-document failures are logged and reported; they never abort the
        record.

        Args:
            links: Discovered links in priority order
            owner_key: Identity key of the owning record
            site_id: Source site id
            record_slug: Record directory name

        Returns:
            AcquisitionReport
        """
        report = AcquisitionReport()

        for index, link in enumerate(links):
            if index > 0 and self.delay > 0:
                await self.sleep(self.delay)

            try:
                resource = await self.http_client.fetch(link.url, referer=link.source_url or None)
                reference, reused = await self._store_resource(
                    resource,
                    owner_key=owner_key,
                    site_id=site_id,
                    record_slug=record_slug,
                    depth=link.depth,
                )
            except ContentValidationError as e:
                logger.warning("document_invalid", url=link.url, reason=e.reason)
                report.failed.append((link.url, e.reason))
                continue
            except TransientNetworkError as e:
                logger.warning("document_network_failed", url=link.url, reason=e.reason)
                report.failed.append((link.url, e.reason))
                continue
            except httpx.HTTPStatusError as e:
                reason = f"http status {e.response.status_code}"
                logger.warning("document_http_failed", url=link.url, reason=reason)
                report.failed.append((link.url, reason))
                continue
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                reason = str(e) or type(e).__name__
                logger.warning("document_http_failed", url=link.url, reason=reason)
                report.failed.append((link.url, reason))
                continue

            if reused:
                report.reused += 1
            report.documents.append(reference)

        logger.info(
            "acquisition_complete",
            owner=owner_key,
            acquired=len(report.documents),
            reused=report.reused,
            failed=len(report.failed),
        )
        return report
