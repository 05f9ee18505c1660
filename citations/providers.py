"""External metadata providers for the citation resolver.

Every fetcher takes the shared ``httpx.AsyncClient`` and never raises: a
provider that times out, answers non-2xx or returns something unexpected is
logged and contributes nothing (``None`` or ``[]``).
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from heritage.config import settings

from .csl import (
    Candidate,
    CSLItem,
    crossref_type,
    first_of,
    issued_from_parts,
    literal_names,
    names_from_people,
    openalex_type,
    parse_year_loose,
    year_to_issued,
    zotero_type,
)
from .html_meta import candidate_from_html
from .identifiers import normalize_doi, normalize_isbn13
from .scoring import title_match_score

logger = logging.getLogger(__name__)

CROSSREF_WORKS = "https://api.crossref.org/works"
OPENLIBRARY_BOOKS = "https://openlibrary.org/api/books"
OPENLIBRARY_SEARCH = "https://openlibrary.org/search.json"
GOOGLE_BOOKS_VOLUMES = "https://www.googleapis.com/books/v1/volumes"
OPENALEX_WORKS = "https://api.openalex.org/works"
CITOID_ZOTERO = "https://en.wikipedia.org/api/rest_v1/data/citation/zotero"

# Raised while mapping a well-formed JSON document with unexpected field shapes.
MAPPING_ERRORS = (ValidationError, TypeError, AttributeError, KeyError, IndexError)


def _headers(accept: str = "application/json") -> dict[str, str]:
    return {"User-Agent": settings.resolver.user_agent, "Accept": accept}


async def _get_json(client: httpx.AsyncClient, url: str, params: dict[str, Any] | None = None) -> Any:
    """GET ``url`` and decode JSON, or return None on any failure."""
    try:
        response = await client.get(
            url,
            params=params,
            headers=_headers(),
            timeout=settings.resolver.timeout_seconds,
            follow_redirects=True,
        )
        response.raise_for_status()
        return response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Provider request failed for {url}: {e}")
        return None


def crossref_message_to_csl(msg: dict[str, Any]) -> CSLItem:
    issued = (
        issued_from_parts(msg.get("issued"))
        or issued_from_parts(msg.get("published-print"))
        or issued_from_parts(msg.get("published-online"))
        or issued_from_parts(msg.get("created"))
    )
    return CSLItem(
        type=crossref_type(msg.get("type")),
        title=first_of(msg.get("title")) or "",
        author=names_from_people(msg.get("author")) or None,
        editor=names_from_people(msg.get("editor")) or None,
        container_title=first_of(msg.get("container-title")),
        publisher=msg.get("publisher"),
        issued=issued,
        DOI=msg.get("DOI"),
        ISSN=first_of(msg.get("ISSN")),
        URL=msg.get("URL"),
    )


async def crossref_by_doi(client: httpx.AsyncClient, doi: str) -> Candidate | None:
    data = await _get_json(client, f"{CROSSREF_WORKS}/{quote(doi, safe='')}")
    msg = data.get("message") if isinstance(data, dict) else None
    if not isinstance(msg, dict):
        return None
    try:
        csl = crossref_message_to_csl(msg)
    except MAPPING_ERRORS as e:
        logger.warning(f"Unusable Crossref record for {doi}: {e}")
        return None
    return Candidate(csl=csl, score=0.96, source="crossref")


async def crossref_by_title(client: httpx.AsyncClient, query: str) -> list[Candidate]:
    data = await _get_json(
        client,
        CROSSREF_WORKS,
        params={"query.bibliographic": query, "rows": settings.resolver.rows_per_provider},
    )
    items = ((data or {}).get("message") or {}).get("items") if isinstance(data, dict) else None
    if not isinstance(items, list):
        return []
    out = []
    for msg in items:
        if not isinstance(msg, dict):
            continue
        try:
            csl = crossref_message_to_csl(msg)
        except MAPPING_ERRORS as e:
            logger.warning(f"Skipping unusable Crossref item: {e}")
            continue
        out.append(Candidate(csl=csl, score=max(title_match_score(query, csl.title), 0.55), source="crossref"))
    out.sort(key=lambda c: c.score, reverse=True)
    return out


async def openlibrary_by_isbn(client: httpx.AsyncClient, isbn13: str) -> Candidate | None:
    key = f"ISBN:{isbn13}"
    data = await _get_json(
        client,
        OPENLIBRARY_BOOKS,
        params={"bibkeys": key, "format": "json", "jscmd": "data"},
    )
    obj = data.get(key) if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        return None
    try:
        publishers = obj.get("publishers") or []
        publisher = publishers[0].get("name") if publishers and isinstance(publishers[0], dict) else None
        csl = CSLItem(
            type="book",
            title=obj.get("title") or "",
            author=literal_names([a.get("name") for a in obj.get("authors") or [] if isinstance(a, dict)]) or None,
            publisher=publisher,
            issued=year_to_issued(parse_year_loose(obj.get("publish_date"))),
            ISBN=[isbn13],
            URL=obj.get("url"),
        )
    except MAPPING_ERRORS as e:
        logger.warning(f"Unusable Open Library record for {isbn13}: {e}")
        return None
    return Candidate(csl=csl, score=0.9, source="openlibrary")


async def openlibrary_search(client: httpx.AsyncClient, query: str) -> list[Candidate]:
    """Search Open Library, then enrich every hit that carries an ISBN.

    Each search hit is returned as is; a successful by-ISBN lookup adds the
    enriched record right after it, scored a little above the hit.
    """
    data = await _get_json(
        client,
        OPENLIBRARY_SEARCH,
        params={"q": query, "limit": settings.resolver.rows_per_provider},
    )
    docs = data.get("docs") if isinstance(data, dict) else None
    if not isinstance(docs, list):
        return []

    hits: list[tuple[Candidate, str | None]] = []
    for doc in docs:
        if not isinstance(doc, dict):
            continue
        try:
            title = doc.get("title") or ""
            year = doc.get("first_publish_year") or parse_year_loose(first_of(doc.get("publish_date")))
            isbn13 = normalize_isbn13(str(first_of(doc.get("isbn")) or ""))
            key = doc.get("key")
            csl = CSLItem(
                type="book",
                title=title,
                author=literal_names(doc.get("author_name")) or None,
                publisher=first_of(doc.get("publisher")),
                issued=year_to_issued(year),
                ISBN=[isbn13] if isbn13 else None,
                URL=f"https://openlibrary.org{key}" if key else None,
            )
            score = max(0.62, title_match_score(query, csl.title))
        except MAPPING_ERRORS as e:
            logger.warning(f"Skipping unusable Open Library search hit: {e}")
            continue
        hits.append((Candidate(csl=csl, score=score, source="openlibrary-search"), isbn13))

    async def _with_enriched(candidate: Candidate, isbn13: str | None) -> list[Candidate]:
        if not isbn13:
            return [candidate]
        enriched = await openlibrary_by_isbn(client, isbn13)
        if enriched is None:
            return [candidate]
        score = min(1.0, max(enriched.score, candidate.score + 0.05))
        return [candidate, enriched.model_copy(update={"score": score})]

    groups = await asyncio.gather(*(_with_enriched(c, i) for c, i in hits))
    return [candidate for group in groups for candidate in group]


async def google_books_search(client: httpx.AsyncClient, query: str) -> list[Candidate]:
    params: dict[str, Any] = {"q": query, "maxResults": settings.resolver.rows_per_provider}
    if settings.resolver.google_books_api_key:
        params["key"] = settings.resolver.google_books_api_key
    data = await _get_json(client, GOOGLE_BOOKS_VOLUMES, params=params)
    items = data.get("items") if isinstance(data, dict) else None
    if not isinstance(items, list):
        return []

    out = []
    for item in items:
        info = item.get("volumeInfo") if isinstance(item, dict) else None
        if not isinstance(info, dict):
            continue
        try:
            ids = {
                i.get("type"): i.get("identifier")
                for i in info.get("industryIdentifiers") or []
                if isinstance(i, dict)
            }
            isbn = ids.get("ISBN_13") or (normalize_isbn13(ids["ISBN_10"]) if ids.get("ISBN_10") else None)
            csl = CSLItem(
                type="book",
                title=info.get("title") or "",
                author=literal_names(info.get("authors")) or None,
                publisher=info.get("publisher"),
                issued=year_to_issued(parse_year_loose(info.get("publishedDate"))),
                ISBN=[isbn] if isbn else None,
                URL=info.get("infoLink") or info.get("canonicalVolumeLink"),
            )
        except MAPPING_ERRORS as e:
            logger.warning(f"Skipping unusable Google Books volume: {e}")
            continue
        out.append(Candidate(csl=csl, score=max(0.7, title_match_score(query, csl.title)), source="googlebooks"))
    return out


async def openalex_search(client: httpx.AsyncClient, query: str) -> list[Candidate]:
    data = await _get_json(
        client,
        OPENALEX_WORKS,
        params={"search": query, "per_page": settings.resolver.rows_per_provider},
    )
    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list):
        return []

    out = []
    for work in results:
        if not isinstance(work, dict):
            continue
        try:
            primary = work.get("primary_location") or {}
            venue = work.get("host_venue") or primary.get("source") or {}
            year = work.get("publication_year") or parse_year_loose(work.get("publication_date"))
            doi = work.get("doi")
            if isinstance(doi, str):
                doi = normalize_doi(doi) or doi.replace("https://doi.org/", "")
            authors = [
                (a.get("author") or {}).get("display_name")
                for a in work.get("authorships") or []
                if isinstance(a, dict)
            ]
            csl = CSLItem(
                type=openalex_type(work.get("type")),
                title=work.get("display_name") or work.get("title") or "",
                author=literal_names([a for a in authors if a]) or None,
                container_title=venue.get("display_name"),
                publisher=venue.get("publisher"),
                issued=year_to_issued(year),
                DOI=doi or None,
                ISSN=venue.get("issn_l") or first_of(venue.get("issn")),
                URL=primary.get("landing_page_url") or (work.get("open_access") or {}).get("oa_url") or work.get("id"),
            )
        except MAPPING_ERRORS as e:
            logger.warning(f"Skipping unusable OpenAlex work: {e}")
            continue
        out.append(Candidate(csl=csl, score=max(0.78, title_match_score(query, csl.title)), source="openalex"))
    return out


def _zotero_people(item: dict[str, Any]) -> list[dict[str, Any]]:
    """Citoid answers with CSL-style ``author`` or Zotero-style ``creators``."""
    if isinstance(item.get("author"), list):
        return item["author"]
    return [
        {"family": c.get("lastName"), "given": c.get("firstName"), "name": c.get("name")}
        for c in item.get("creators") or []
        if isinstance(c, dict) and c.get("creatorType", "author") == "author"
    ]


async def citoid_by_url(client: httpx.AsyncClient, url: str) -> Candidate | None:
    """Zotero translation of a web page via the Wikimedia Citoid service."""
    data = await _get_json(client, CITOID_ZOTERO, params={"url": url})
    item = first_of(data) if isinstance(data, list) else None
    if not isinstance(item, dict):
        return None
    date = item.get("issued") or item.get("date")
    year = parse_year_loose(str(date)[:4]) if date else None
    try:
        csl = CSLItem(
            type=zotero_type(item.get("itemType")),
            title=item.get("title") or item.get("websiteTitle") or item.get("publicationTitle") or url,
            author=names_from_people(_zotero_people(item)) or None,
            container_title=item.get("publicationTitle") or item.get("websiteTitle") or item.get("journalAbbreviation"),
            publisher=item.get("publisher"),
            issued=year_to_issued(year),
            DOI=item.get("DOI"),
            ISBN=item.get("ISBN"),
            ISSN=item.get("ISSN"),
            URL=item.get("url") or url,
        )
    except MAPPING_ERRORS as e:
        logger.warning(f"Unusable Citoid record for {url}: {e}")
        return None
    return Candidate(csl=csl, score=0.8, source="citoid")


async def html_meta_fallback(client: httpx.AsyncClient, url: str) -> Candidate | None:
    """Fetch the page itself and scrape its metadata."""
    try:
        response = await client.get(
            url,
            headers=_headers("text/html,*/*"),
            timeout=settings.resolver.timeout_seconds,
            follow_redirects=True,
        )
        response.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"HTML fetch failed for {url}: {e}")
        return None
    try:
        return candidate_from_html(response.text, url)
    except MAPPING_ERRORS as e:
        logger.warning(f"Could not read page metadata for {url}: {e}")
        return None
