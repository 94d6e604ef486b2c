"""Tests for the CNPq adapter."""

from datetime import date

import pytest
from bs4 import BeautifulSoup
from conftest import FakeSession, file_transport, make_pdf, no_sleep

from editais_scraper.adapters.cnpq import (
    CallCard,
    CnpqAdapter,
    dedupe_entries,
    extract_dates,
    extract_description,
    extract_number,
    find_call_link,
    is_call_heading,
    parse_cards,
)
from editais_scraper.core.discovery import DiscoveryConfig, LinkDiscoverer

LISTING = "http://memoria2.cnpq.br/web/guest/chamadas-publicas"

LISTING_HTML = """
<html><body>
<div class="content"><h2>Chamadas Públicas</h2><p>Confira as chamadas abertas.</p></div>
<div class="content">
  <h4>Chamada CNPq Nº 12/2025 - Programa de Apoio à Pesquisa Universal</h4>
  <p>Apoiar projetos de pesquisa científica, tecnológica e de inovação em todas as áreas do conhecimento.</p>
  <p>Inscrições: 10/03/2025 a 30/04/2025</p>
  <a href="http://resultado.cnpq.br/4455">Chamada</a>
  <a href="/documents/10157/edital-12-2025.pdf">Edital</a>
</div>
<div class="content">
  <h4>Chamada CNPq Nº 12/2025 - Programa de Apoio à Pesquisa Universal</h4>
  <p>Repetição do mesmo card em outra aba.</p>
</div>
<div class="content">
  <h4>Chamada Pública MCTI/CNPq Nº 7/2025 - Bolsas no Exterior</h4>
  <p>Inscrições: até 15/06/2025</p>
  <a href="/web/guest/chamadas-publicas?p_p_id=7">Chamada</a>
</div>
</body></html>
"""

RESULT_HTML = """
<html><body>
<h1>Resultado</h1>
<ul>
  <li><a href="/arquivos/resultado-preliminar-12-2025.pdf">Resultado preliminar</a></li>
  <li><a href="http://dgp.cnpq.br/grupos">Diretório de grupos</a></li>
</ul>
</body></html>
"""


class TestHeadings:
    """Tests for heading recognition and number extraction."""

    def test_call_headings(self):
        assert is_call_heading("Chamada CNPq Nº 12/2025")
        assert is_call_heading("Chamada Universal")
        assert is_call_heading("Nº 3/2024 - Programa")
        assert not is_call_heading("Chamadas Públicas")
        assert not is_call_heading("Notícias")

    def test_extract_number(self):
        assert extract_number("Chamada CNPq Nº 12/2025 - Universal") == "12/2025"
        assert extract_number("Chamada MCTI 04/2024") == "04/2024"
        assert extract_number("Chamada Universal") is None


class TestCardParsing:
    """Tests for card field extraction."""

    def test_extract_dates_from_registration_block(self):
        text = "Chamada X\nPublicada em 01/02/2025\nInscrições: 10/03/2025 a 30/04/2025\nChamada"
        assert extract_dates(text) == (date(2025, 3, 10), date(2025, 4, 30))

    def test_single_date(self):
        assert extract_dates("Inscrições: até 15/06/2025") == (date(2025, 6, 15), date(2025, 6, 15))

    def test_no_dates(self):
        assert extract_dates("Sem datas") == (None, None)

    def test_extract_description(self):
        heading = "Chamada CNPq Nº 1/2025"
        text = f"{heading}\nApoiar projetos de pesquisa científica e tecnológica em todas as áreas\nChamada"
        assert extract_description(text, heading).startswith("Apoiar projetos")
        assert extract_description(f"{heading}\nCurto", heading) is None

    def test_find_call_link_prefers_control(self):
        card = BeautifulSoup(
            '<div><a href="/outro">Outro link</a><a href="/c/1">Chamada</a></div>', "lxml"
        ).div
        assert find_call_link(card, LISTING) == "http://memoria2.cnpq.br/c/1"

    def test_find_call_link_falls_back_to_first(self):
        card = BeautifulSoup('<div><a href="/outro">Outro link</a></div>', "lxml").div
        assert find_call_link(card, LISTING) == "http://memoria2.cnpq.br/outro"

    def test_parse_cards(self):
        discoverer = LinkDiscoverer(DiscoveryConfig(intermediate_hosts=["resultado.cnpq.br"]))
        cards = parse_cards(LISTING_HTML, LISTING, discoverer.is_intermediate)

        assert [c.number for c in cards] == ["12/2025", "7/2025"]
        first = cards[0]
        assert first.publication_date == date(2025, 3, 10)
        assert first.closing_date == date(2025, 4, 30)
        assert first.link == "http://resultado.cnpq.br/4455"
        assert first.document_links == 2
        assert "inovação" in first.summary

    def test_result_pages_count_only_when_configured(self):
        """Test result landing pages count as documents only for configured hosts."""
        assert parse_cards(LISTING_HTML, LISTING)[0].document_links == 1

        discoverer = LinkDiscoverer(DiscoveryConfig(intermediate_hosts=["resultados.example.org"]))
        assert parse_cards(LISTING_HTML, LISTING, discoverer.is_intermediate)[0].document_links == 1

    def test_dedupe_prefers_more_documents(self):
        poor = CallCard(title="Chamada A", html="", number="1/2025", document_links=0)
        rich = CallCard(title="Chamada A (cópia)", html="", number="1/2025", document_links=3)
        other = CallCard(title="Chamada B", html="", document_links=1)

        assert dedupe_entries([poor, other, rich]) == [rich, other]


class TestCnpqAdapter:
    """Tests for CnpqAdapter against a fake browser and transport."""

    @pytest.mark.asyncio
    async def test_collect(self, cnpq_site, engine, store):
        session = FakeSession({
            LISTING: ("Chamadas Públicas - CNPq", LISTING_HTML),
            "http://resultado.cnpq.br/4455": ("Resultado da Chamada", RESULT_HTML),
        })
        files = {
            "http://memoria2.cnpq.br/documents/10157/edital-12-2025.pdf": make_pdf(marker="edital"),
            "http://resultado.cnpq.br/arquivos/resultado-preliminar-12-2025.pdf": make_pdf(marker="resultado"),
        }
        requested = []
        adapter = CnpqAdapter(
            cnpq_site, engine, store,
            session_factory=lambda: session,
            http_transport=file_transport(files, requested),
            sleep=no_sleep,
        )

        try:
            records = await adapter.run()
        finally:
            await adapter.cleanup()

        assert [r.external_number for r in records] == ["12/2025", "7/2025"]
        universal, exterior = records
        assert universal.issuing_body == "CNPq"
        assert universal.document_urls == [
            "http://memoria2.cnpq.br/documents/10157/edital-12-2025.pdf",
            "http://resultado.cnpq.br/arquivos/resultado-preliminar-12-2025.pdf",
        ]
        assert [d.discovery_depth for d in universal.documents] == [0, 1]
        # Denied link on the results page is never requested
        assert not any("dgp.cnpq.br" in url for url in requested)

        # Links back into the listing are denied: nothing to fetch
        assert exterior.documents == []
        assert exterior.closing_date == date(2025, 6, 15)
        # Results page visited once
        assert [p.goto_calls for p in session.secondary_pages] == [["http://resultado.cnpq.br/4455"]]
