"""Tests for the citation resolution pipeline."""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest
from respx import MockRouter

from citations import providers
from citations.csl import Candidate, CSLItem
from citations.identifiers import Detected
from heritage.config import settings
from heritage.pipelines.resolver import ResolverError, batch_resolve, resolve_citation, should_search_titles

pytestmark = pytest.mark.respx(assert_all_called=False)

DOI = "10.5555/jhc.2018.42"
CROSSREF_MESSAGE = {
    "type": "journal-article",
    "title": ["Conservation of the My Son Temple Complex"],
    "author": [{"given": "Lan", "family": "Do"}],
    "DOI": DOI,
    "issued": {"date-parts": [[2018]]},
}


@pytest.fixture
async def http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient() as client:
        yield client


def _mock_crossref_doi(respx_mock: MockRouter) -> None:
    respx_mock.get(url__startswith="https://api.crossref.org/works/10.").mock(
        return_value=httpx.Response(200, json={"message": CROSSREF_MESSAGE})
    )


def _everything_else_404(respx_mock: MockRouter) -> None:
    respx_mock.route().respond(404)


@pytest.mark.asyncio
async def test_empty_input_raises(http_client: httpx.AsyncClient) -> None:
    with pytest.raises(ResolverError, match="Missing 'input'"):
        await resolve_citation(http_client, "   ")


@pytest.mark.asyncio
async def test_doi_resolves_to_crossref_candidate(http_client: httpx.AsyncClient, respx_mock: MockRouter) -> None:
    _mock_crossref_doi(respx_mock)
    _everything_else_404(respx_mock)

    resolution = await resolve_citation(http_client, f"https://doi.org/{DOI}")
    payload = resolution.to_json()

    assert payload["ok"] is True
    assert payload["detected"] == {"url": True, "doi": True, "isbn13": False}
    assert payload["best"]["title"] == "Conservation of the My Son Temple Complex"
    assert payload["candidates"][0]["source"] == "crossref"


@pytest.mark.asyncio
async def test_duplicate_doi_from_title_search_is_dropped(
    http_client: httpx.AsyncClient, respx_mock: MockRouter
) -> None:
    _mock_crossref_doi(respx_mock)
    respx_mock.get(providers.OPENALEX_WORKS).mock(
        return_value=httpx.Response(
            200,
            json={
                "results": [
                    {"display_name": "Same work, other title", "doi": f"https://doi.org/{DOI}"},
                    {"display_name": "Another work", "doi": "https://doi.org/10.5555/other"},
                ]
            },
        )
    )
    _everything_else_404(respx_mock)

    resolution = await resolve_citation(http_client, DOI)

    dois = [c.csl.DOI for c in resolution.candidates]
    assert dois.count(DOI) == 1
    assert "10.5555/other" in dois
    assert resolution.best.title == "Conservation of the My Son Temple Complex"


@pytest.mark.asyncio
async def test_url_without_citoid_uses_page_metadata(http_client: httpx.AsyncClient, respx_mock: MockRouter) -> None:
    page = "https://heritage.example.org/articles/hue"
    respx_mock.get(page).mock(
        return_value=httpx.Response(
            200,
            html='<html><head><meta property="og:title" content="Hue Monuments"></head></html>',
        )
    )
    _everything_else_404(respx_mock)

    resolution = await resolve_citation(http_client, page)

    assert resolution.detected.url == page
    assert [c.source for c in resolution.candidates] == ["html-meta"]
    assert resolution.best.title == "Hue Monuments"


@pytest.mark.asyncio
async def test_nothing_found_returns_empty_resolution(http_client: httpx.AsyncClient, respx_mock: MockRouter) -> None:
    _everything_else_404(respx_mock)

    resolution = await resolve_citation(http_client, "a title nobody has written")

    assert resolution.candidates == []
    assert resolution.to_json()["best"] is None


@pytest.mark.asyncio
async def test_batch_resolve_keeps_order_and_isolates_failures(
    http_client: httpx.AsyncClient, respx_mock: MockRouter
) -> None:
    _mock_crossref_doi(respx_mock)
    _everything_else_404(respx_mock)

    results = await batch_resolve(http_client, [DOI, "", "plain title"], concurrency=2)

    assert [r["ok"] for r in results] == [True, False, True]
    assert results[0]["best"]["DOI"] == DOI
    assert results[1] == {"ok": False, "input": "", "error": "Missing 'input'."}
    assert results[2]["input"] == "plain title"


def test_should_search_titles() -> None:
    none = Detected(url=None, doi=None, isbn13=None)
    doi = Detected(url=None, doi="10.1234/a", isbn13=None)

    assert should_search_titles("free text", none, 5) is True
    assert should_search_titles("10.1234/a", doi, 0) is True
    assert should_search_titles("10.1234/a", doi, 1) is True
    assert should_search_titles("short", doi, 1) is False


@pytest.mark.asyncio
async def test_isbn_queries_open_library_and_google_books(http_client: httpx.AsyncClient, respx_mock: MockRouter) -> None:
    isbn = "9780306406157"
    respx_mock.get(providers.OPENLIBRARY_BOOKS).mock(
        return_value=httpx.Response(200, json={f"ISBN:{isbn}": {"title": "Temples of Champa"}})
    )
    books = respx_mock.get(providers.GOOGLE_BOOKS_VOLUMES, params={"q": f"isbn:{isbn}"}).mock(
        return_value=httpx.Response(
            200,
            json={
                "items": [
                    {
                        "volumeInfo": {
                            "title": "Temples of Champa, second edition",
                            "industryIdentifiers": [{"type": "ISBN_13", "identifier": "9780500300541"}],
                        }
                    }
                ]
            },
        )
    )
    _everything_else_404(respx_mock)

    resolution = await resolve_citation(http_client, "978-0-306-40615-7")

    assert resolution.detected.isbn13 == isbn
    assert books.call_count == 1
    by_source = {c.source: c for c in resolution.candidates}
    assert by_source["openlibrary"].csl.ISBN == [isbn]
    assert by_source["googlebooks"].score == 0.82


@pytest.mark.asyncio
async def test_doi_embedded_in_url_is_looked_up_with_a_floor(
    http_client: httpx.AsyncClient, respx_mock: MockRouter, monkeypatch: pytest.MonkeyPatch
) -> None:
    looked_up: list[str] = []

    async def _low_confidence_crossref(client: httpx.AsyncClient, doi: str) -> Candidate:
        looked_up.append(doi)
        csl = CSLItem(title="Conservation of the My Son Temple Complex", DOI=doi)
        return Candidate(csl=csl, score=0.5, source="crossref")

    monkeypatch.setattr(providers, "crossref_by_doi", _low_confidence_crossref)
    _everything_else_404(respx_mock)

    resolution = await resolve_citation(http_client, f"https://publisher.example.com/doi/{DOI}")

    assert looked_up == [DOI]
    crossref = [c for c in resolution.candidates if c.source == "crossref"]
    assert [c.score for c in crossref] == [0.88]


@pytest.mark.asyncio
async def test_doi_url_is_not_looked_up_twice(http_client: httpx.AsyncClient, respx_mock: MockRouter) -> None:
    route = respx_mock.get(url__startswith="https://api.crossref.org/works/10.").mock(
        return_value=httpx.Response(200, json={"message": CROSSREF_MESSAGE})
    )
    _everything_else_404(respx_mock)

    resolution = await resolve_citation(http_client, f"https://doi.org/{DOI}")

    assert route.call_count == 1
    assert resolution.candidates[0].score == 0.96


@pytest.mark.asyncio
async def test_citoid_echoing_the_url_triggers_page_scrape(
    http_client: httpx.AsyncClient, respx_mock: MockRouter
) -> None:
    page = "https://heritage.example.org/articles/thien-mu"
    respx_mock.get(providers.CITOID_ZOTERO).mock(
        return_value=httpx.Response(200, json=[{"itemType": "webpage", "title": page, "url": page}])
    )
    scraped = respx_mock.get(page).mock(
        return_value=httpx.Response(
            200, html='<html><head><meta property="og:title" content="Thien Mu Pagoda"></head></html>'
        )
    )
    _everything_else_404(respx_mock)

    resolution = await resolve_citation(http_client, page)

    assert scraped.call_count == 1
    assert {c.source for c in resolution.candidates} == {"citoid", "html-meta"}
    assert "Thien Mu Pagoda" in [c.csl.title for c in resolution.candidates]


@pytest.mark.asyncio
async def test_citoid_with_real_title_skips_page_scrape(http_client: httpx.AsyncClient, respx_mock: MockRouter) -> None:
    page = "https://heritage.example.org/articles/thien-mu"
    respx_mock.get(providers.CITOID_ZOTERO).mock(
        return_value=httpx.Response(200, json=[{"itemType": "webpage", "title": "Thien Mu Pagoda", "url": page}])
    )
    scraped = respx_mock.get(page).mock(return_value=httpx.Response(200, html="<html></html>"))
    _everything_else_404(respx_mock)

    resolution = await resolve_citation(http_client, page)

    assert scraped.call_count == 0
    assert [c.source for c in resolution.candidates] == ["citoid"]


@pytest.mark.asyncio
async def test_candidates_are_capped(http_client: httpx.AsyncClient, respx_mock: MockRouter) -> None:
    respx_mock.get(providers.OPENALEX_WORKS).mock(
        return_value=httpx.Response(
            200,
            json={
                "results": [
                    {"display_name": f"Imperial tombs of Hue, part {n}", "doi": f"https://doi.org/10.5555/tombs.{n}"}
                    for n in range(12)
                ]
            },
        )
    )
    _everything_else_404(respx_mock)

    resolution = await resolve_citation(http_client, "imperial tombs of hue")

    assert len(resolution.candidates) == settings.resolver.max_candidates == 8
