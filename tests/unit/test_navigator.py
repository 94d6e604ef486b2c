"""Tests for resilient navigation."""

import pytest
from conftest import FakePage
from playwright.async_api import Error as PlaywrightError

from editais_scraper.core.errors import NavigationExhausted, first_line
from editais_scraper.core.navigator import (
    PageState,
    ResilientNavigator,
    failure_reason,
    host_matches,
)

URL = "https://fapes.es.gov.br/Editais/Abertos"


def make_navigator(page, sleeps, **kwargs):
    async def sleep(seconds):
        sleeps.append(seconds)

    return ResilientNavigator(page, base_delay=5.0, sleep=sleep, **kwargs)


class TestFailureReason:
    """Tests for the default success check."""

    def test_good_page(self):
        state = PageState(requested_url=URL, url=URL, title="Editais Abertos - FAPES", status=200)
        assert failure_reason(state, "fapes.es.gov.br") is None

    def test_empty_title(self):
        state = PageState(requested_url=URL, url=URL, title="  ")
        assert failure_reason(state) == "empty title"

    def test_error_title(self):
        state = PageState(requested_url=URL, url=URL, title="404 - Página não encontrada")
        assert failure_reason(state).startswith("error page")

    def test_server_error_title(self):
        """Test a server error page served with status 200 is still rejected."""
        state = PageState(requested_url=URL, url=URL, title="HTTP 500", status=200)
        assert failure_reason(state) == "error page (HTTP 500)"

    def test_http_status(self):
        state = PageState(requested_url=URL, url=URL, title="FAPES", status=503)
        assert failure_reason(state) == "http status 503"

    def test_redirect_off_host(self):
        state = PageState(requested_url=URL, url="https://portal.es.gov.br/", title="Portal")
        assert failure_reason(state, "fapes.es.gov.br") == "redirected to portal.es.gov.br"

    def test_subdomain_allowed(self):
        assert host_matches("https://www.sigfapes.es.gov.br/", "sigfapes.es.gov.br")
        assert not host_matches("https://evilsigfapes.es.gov.br/", "sigfapes.es.gov.br")

    def test_first_line(self):
        assert first_line(PlaywrightError("Timeout 30000ms exceeded.\n=== logs ===")) == "Timeout 30000ms exceeded."
        assert first_line(PlaywrightError("")) == "Error"
        assert first_line(RuntimeError("  ")) == "RuntimeError"

class TestResilientNavigator:
    """Tests for ResilientNavigator.navigate."""

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self):
        """Test no backoff when the first load is good."""
        sleeps = []
        page = FakePage(outcomes=[(URL, "Editais Abertos")])
        navigator = make_navigator(page, sleeps)

        result = await navigator.navigate(URL)

        assert result.attempts == 1
        assert result.title == "Editais Abertos"
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_recovers_after_two_failures(self):
        """Test exponential backoff between failed attempts."""
        sleeps = []
        page = FakePage(outcomes=[
            PlaywrightError("Timeout 60000ms exceeded"),
            (URL, "Service Unavailable"),
            (URL, "Editais Abertos"),
        ])
        navigator = make_navigator(page, sleeps)

        result = await navigator.navigate(URL)

        assert result.attempts == 3
        assert sleeps == [5.0, 10.0]
        assert page.goto_calls == [URL, URL, URL]

    @pytest.mark.asyncio
    async def test_exhausted(self):
        """Test NavigationExhausted after the attempt budget."""
        sleeps = []
        page = FakePage(outcomes=[(URL, ""), (URL, ""), (URL, "")])
        navigator = make_navigator(page, sleeps)

        with pytest.raises(NavigationExhausted) as exc_info:
            await navigator.navigate(URL)

        assert exc_info.value.attempts == 3
        assert exc_info.value.reason == "empty title"
        # No wait after the last attempt
        assert sleeps == [5.0, 10.0]

    @pytest.mark.asyncio
    async def test_redirect_counts_as_failure(self):
        """Test silent redirects to another host are retried."""
        sleeps = []
        page = FakePage(outcomes=[
            ("https://www.es.gov.br/", "Governo ES"),
            (URL, "Editais Abertos"),
        ])
        navigator = make_navigator(page, sleeps)

        result = await navigator.navigate(URL, expected_host="fapes.es.gov.br")

        assert result.attempts == 2
        assert result.final_url == URL

    @pytest.mark.asyncio
    async def test_custom_predicate_and_budget(self):
        """Test caller-supplied predicate and attempt budget."""
        sleeps = []
        page = FakePage(outcomes=[(URL, "Editais"), (URL, "Editais")])
        navigator = make_navigator(page, sleeps)

        with pytest.raises(NavigationExhausted) as exc_info:
            await navigator.navigate(URL, max_attempts=2, success_predicate=lambda state: "Login" in state.title)

        assert exc_info.value.attempts == 2
        assert sleeps == [5.0]

    def test_backoff_delay(self):
        navigator = ResilientNavigator(FakePage(), base_delay=2.0)
        assert [navigator.backoff_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]
