"""Shared fixtures: playwright stand-ins, document payloads and engine settings."""

import io
import zipfile

import httpx
import pytest
from playwright.async_api import Error as PlaywrightError

from editais_scraper.config.loader import (
    ConversionSettings,
    EngineConfig,
    HttpSettings,
    NavigationSettings,
    SiteConfig,
)
from editais_scraper.core.acquisition import ArtifactStore
from editais_scraper.core.discovery import PageSnapshot


def make_pdf(pages: int = 1, marker: str = "") -> bytes:
    """Build a small, well-formed PDF. marker varies the bytes (and the hash)."""
    kids = " ".join(f"{3 + i} 0 R" for i in range(pages))
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {pages} >>".encode(),
    ]
    objects += [b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>"] * pages

    out = bytearray(b"%PDF-1.4\n")
    if marker:
        out += f"% {marker}\n".encode()
    offsets = []
    for number, body in enumerate(objects, 1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"

    xref = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref}\n%%EOF\n".encode()
    return bytes(out)


def make_zip(entries: dict) -> bytes:
    """Build a ZIP container from {name: text}."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def make_docx() -> bytes:
    return make_zip({"[Content_Types].xml": "<Types/>", "word/document.xml": "<w:document/>"})


class FakeResponse:
    def __init__(self, status: int = 200):
        self.status = status


class FakePage:
    """
    Minimal stand-in for a playwright Page.

    routes maps URL -> (title, html). Unknown URLs raise a playwright Error.
    outcomes, when given, are consumed by goto() one per call: an Exception
    is raised, a (final_url, title[, status]) tuple is loaded.
    """

    def __init__(self, routes=None, outcomes=None):
        self.routes = dict(routes or {})
        self.outcomes = list(outcomes or [])
        self.url = "about:blank"
        self.html = "<html></html>"
        self._title = ""
        self.goto_calls = []
        self.closed = False
        self.frames = [self]

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append(url)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            final_url, title, *rest = outcome
            self._load(final_url, title, self.routes.get(final_url, ("", "<html></html>"))[1])
            return FakeResponse(rest[0] if rest else 200)

        if url not in self.routes:
            raise PlaywrightError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        title, html = self.routes[url]
        self._load(url, title, html)
        return FakeResponse(200)

    def _load(self, url, title, html):
        self.url = url
        self._title = title
        self.html = html

    async def wait_for_load_state(self, state="load", timeout=None):
        return None

    async def title(self):
        return self._title

    async def content(self):
        return self.html

    async def close(self):
        self.closed = True


class FakeSession:
    """Stand-in for BrowserSession backed by FakePage routes."""

    def __init__(self, routes=None, cookies=None):
        self.routes = dict(routes or {})
        self._cookies = list(cookies or [])
        self.page = None
        self.secondary_pages = []
        self.closed = False

    async def start(self):
        self.page = FakePage(self.routes)
        return self.page

    async def new_page(self):
        page = FakePage(self.routes)
        self.secondary_pages.append(page)
        return page

    async def snapshot(self, page):
        return PageSnapshot(url=page.url, html=page.html)

    async def cookies(self):
        return self._cookies

    async def close(self):
        self.closed = True


def file_transport(files: dict, requests: list = None) -> httpx.MockTransport:
    """
    MockTransport serving {url: bytes | (bytes, content_type)}; 404 otherwise.

    Requested URLs are appended to `requests` when given.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if requests is not None:
            requests.append(url)
        if url not in files:
            return httpx.Response(404, text="not found")
        body = files[url]
        content_type = "application/pdf"
        if isinstance(body, tuple):
            body, content_type = body
        return httpx.Response(200, content=body, headers={"content-type": content_type})

    return httpx.MockTransport(handler)


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def pdf_bytes():
    return make_pdf(marker="edital")


@pytest.fixture
def docx_bytes():
    return make_docx()


@pytest.fixture
def engine(tmp_path):
    """Engine settings with no delays and conversion off."""
    return EngineConfig(
        output_dir=str(tmp_path / "output"),
        download_delay=0,
        navigation=NavigationSettings(max_attempts=2, base_delay=0, settle_delay=0),
        http=HttpSettings(requests_per_second=1000, max_retries=1),
        conversion=ConversionSettings(enabled=False),
    )


@pytest.fixture
def store(engine):
    return ArtifactStore(str(engine.artifacts_path))


@pytest.fixture
def fapes_site():
    return SiteConfig(
        site_id="fapes",
        name="FAPES",
        adapter="fapes",
        base_url="https://fapes.es.gov.br",
        listing_url="https://fapes.es.gov.br/Editais/Abertos",
        expected_host="fapes.es.gov.br",
    )


@pytest.fixture
def cnpq_site():
    return SiteConfig(
        site_id="cnpq",
        name="CNPq",
        adapter="cnpq",
        base_url="http://memoria2.cnpq.br",
        listing_url="http://memoria2.cnpq.br/web/guest/chamadas-publicas",
        expected_host="memoria2.cnpq.br",
        discovery={
            "intermediate_hosts": ["resultado.cnpq.br"],
            "url_denylist": ["/web/guest/chamadas", "dgp.cnpq.br"],
        },
    )
