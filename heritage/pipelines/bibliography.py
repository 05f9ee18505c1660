"""Bibliography library curation and per-listing citation lists.

Sources are stored as CSL-JSON plus flat columns used for search. Listings
link to sources through an ordered join table.
"""
from __future__ import annotations

import logging
from typing import Any

import pydantic
from rapidfuzz import fuzz, process
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from citations.csl import CSLItem, fallback_csl
from citations.identifiers import normalize_doi, normalize_isbn13
from config.csl_types import EDITABLE_TYPES
from heritage import models
from heritage.config import settings

from .records import NotFoundError, ValidationError, commit, pick, utcnow

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 20
SEARCH_COLUMNS = ("title", "container_title", "publisher", "doi", "url", "isbn", "issn")
PEOPLE_ROLES = ("author", "editor", "translator")
SOURCE_FIELDS = ("title", "type", "container_title", "publisher", "year_int", "doi", "isbn", "issn", "url", "notes")
DEFAULT_CITATION_STYLE = "apa"


def source_to_dict(src: models.BibliographySource) -> dict[str, Any]:
    return {
        "id": src.id,
        "title": src.title,
        "type": src.type,
        "container_title": src.container_title,
        "publisher": src.publisher,
        "year_int": src.year_int,
        "doi": src.doi,
        "isbn": src.isbn,
        "issn": src.issn,
        "url": src.url,
        "notes": src.notes,
        "csl": src.csl,
    }


def _person_to_name(person: dict[str, Any]) -> dict[str, str]:
    if person.get("kind") == "organization" or person.get("literal"):
        name = {"literal": person.get("literal")}
    else:
        name = {"given": person.get("given"), "family": person.get("family")}
    return {k: v for k, v in name.items() if v}


def build_csl(payload: dict[str, Any]) -> dict[str, Any]:
    """CSL-JSON for a hand-entered source.

    ``people`` is a list of ``{role, kind, given, family, literal}``; blank
    optional fields are left out.
    """
    csl: dict[str, Any] = {"type": payload.get("type") or "book", "title": payload.get("title") or ""}
    if payload.get("id"):
        csl["id"] = payload["id"]
    people = payload.get("people") or []
    for role in PEOPLE_ROLES:
        names = [_person_to_name(p) for p in people if (p.get("role") or "author") == role]
        names = [n for n in names if n]
        if names:
            csl[role] = names
    for field, key in (
        ("container_title", "container-title"),
        ("publisher", "publisher"),
        ("url", "URL"),
        ("doi", "DOI"),
        ("isbn", "ISBN"),
        ("issn", "ISSN"),
    ):
        value = (payload.get(field) or "").strip() if isinstance(payload.get(field), str) else payload.get(field)
        if value:
            csl[key] = value
    if payload.get("year_int"):
        csl["issued"] = {"date-parts": [[int(payload["year_int"])]]}
    return csl


async def search_library(session: AsyncSession, query: str, *, limit: int = SEARCH_LIMIT) -> list[models.BibliographySource]:
    """Find library sources for the typeahead.

    Substring matches across the searchable columns come first, re-ranked by
    fuzzy title similarity. With no substring match, falls back to fuzzy
    matching over recently updated titles.
    """
    q = (query or "").strip()
    if not q:
        return []

    conditions = [getattr(models.BibliographySource, col).icontains(q, autoescape=True) for col in SEARCH_COLUMNS]
    result = await session.execute(
        select(models.BibliographySource)
        .where(or_(*conditions))
        .order_by(models.BibliographySource.updated_at.desc())
        .limit(limit * 3)
    )
    rows = list(result.scalars().all())

    if rows:
        scored = sorted(
            enumerate(rows),
            key=lambda pair: (-fuzz.WRatio(q, pair[1].title or ""), pair[0]),
        )
        return [row for _, row in scored][:limit]

    recent = await session.execute(
        select(models.BibliographySource).order_by(models.BibliographySource.updated_at.desc()).limit(500)
    )
    pool = list(recent.scalars().all())
    matches = process.extract(
        q,
        {i: row.title or "" for i, row in enumerate(pool)},
        scorer=fuzz.WRatio,
        score_cutoff=settings.resolver.library_fuzzy_threshold,
        limit=limit,
    )
    return [pool[key] for _, _, key in matches]


async def create_source(session: AsyncSession, payload: dict[str, Any]) -> models.BibliographySource:
    """Create a library source from the editor form."""
    title = (payload.get("title") or "").strip()
    if not title:
        raise ValidationError("Title is required.")
    source_type = payload.get("type") or "book"
    if source_type not in EDITABLE_TYPES:
        raise ValidationError(f"Unsupported source type: {source_type}")

    def _clean(key: str) -> str | None:
        value = payload.get(key)
        return value.strip() or None if isinstance(value, str) else value

    src = models.BibliographySource(
        title=title,
        type=source_type,
        container_title=_clean("container_title"),
        publisher=_clean("publisher"),
        year_int=payload.get("year_int") or None,
        doi=_clean("doi"),
        isbn=_clean("isbn"),
        issn=_clean("issn"),
        url=_clean("url"),
        notes=_clean("notes"),
        csl=build_csl({**payload, "title": title, "type": source_type}),
    )
    session.add(src)
    await commit(session, "create source")
    await session.refresh(src)
    logger.info(f"Created bibliography source {src.id}")
    return src


async def create_source_from_csl(session: AsyncSession, csl_data: dict[str, Any]) -> models.BibliographySource:
    """Save a resolver result, reusing a library row with the same DOI or ISBN."""
    try:
        csl = CSLItem.model_validate(csl_data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid CSL item: {e.errors()[0]['msg']}") from e
    if not csl.title:
        raise ValidationError("Title is required.")

    doi = normalize_doi(csl.DOI) if csl.DOI else None
    isbn = csl.first_isbn()
    isbn13 = normalize_isbn13(isbn) if isbn else None

    identity = []
    if doi:
        identity.append(func.lower(models.BibliographySource.doi) == doi)
    if isbn13:
        identity.append(models.BibliographySource.isbn == isbn13)
    if identity:
        result = await session.execute(select(models.BibliographySource).where(or_(*identity)).limit(1))
        existing = result.scalar_one_or_none()
        if existing is not None:
            logger.info(f"Reusing bibliography source {existing.id} for {doi or isbn13}")
            return existing

    issn = csl.ISSN[0] if isinstance(csl.ISSN, list) and csl.ISSN else csl.ISSN
    src = models.BibliographySource(
        title=csl.title,
        type=csl.type,
        container_title=csl.container_title,
        publisher=csl.publisher,
        year_int=csl.issued.year if csl.issued else None,
        doi=doi or csl.DOI,
        isbn=isbn13 or isbn,
        issn=issn or None,
        url=csl.URL,
        csl=csl.to_json(),
    )
    session.add(src)
    await commit(session, "create source from CSL")
    await session.refresh(src)
    logger.info(f"Saved resolved citation as bibliography source {src.id}")
    return src


async def load_for_listing(session: AsyncSession, listing_id: str) -> list[dict[str, Any]]:
    """Sources attached to a listing, in display order."""
    result = await session.execute(
        select(models.ListingBibliography, models.BibliographySource)
        .join(models.BibliographySource, models.BibliographySource.id == models.ListingBibliography.biblio_id)
        .where(models.ListingBibliography.listing_id == listing_id)
        .order_by(models.ListingBibliography.sort_order)
    )
    return [
        {**source_to_dict(src), "sort_order": link.sort_order, "note": link.note}
        for link, src in result.all()
    ]


async def attach(session: AsyncSession, listing_id: str, biblio_id: str) -> None:
    """Link a source at the end of the listing's list; an existing link moves to the end."""
    if await session.get(models.BibliographySource, biblio_id) is None:
        raise NotFoundError("Bibliography source not found")
    count = await session.execute(
        select(func.count())
        .select_from(models.ListingBibliography)
        .where(models.ListingBibliography.listing_id == listing_id)
    )
    start = int(count.scalar_one())
    link = await session.get(models.ListingBibliography, (listing_id, biblio_id))
    if link is None:
        session.add(models.ListingBibliography(listing_id=listing_id, biblio_id=biblio_id, sort_order=start))
    else:
        link.sort_order = start
    await commit(session, "attach source")


async def detach(session: AsyncSession, listing_id: str, biblio_id: str) -> None:
    await session.execute(
        delete(models.ListingBibliography).where(
            models.ListingBibliography.listing_id == listing_id,
            models.ListingBibliography.biblio_id == biblio_id,
        )
    )
    await commit(session, "detach source")


async def move(session: AsyncSession, listing_id: str, biblio_id: str, direction: int) -> bool:
    """Swap a source with its neighbour; returns False at either end of the list."""
    if direction not in (-1, 1):
        raise ValidationError("direction must be -1 or 1")
    result = await session.execute(
        select(models.ListingBibliography)
        .where(models.ListingBibliography.listing_id == listing_id)
        .order_by(models.ListingBibliography.sort_order)
    )
    links = list(result.scalars().all())
    idx = next((i for i, link in enumerate(links) if link.biblio_id == biblio_id), None)
    if idx is None:
        raise NotFoundError("Source is not attached to this listing")
    swap_idx = idx + direction
    if swap_idx < 0 or swap_idx >= len(links):
        return False
    a, b = links[idx], links[swap_idx]
    if a.sort_order == b.sort_order:
        a.sort_order, b.sort_order = swap_idx, idx
    else:
        a.sort_order, b.sort_order = b.sort_order, a.sort_order
    await commit(session, "move source")
    return True


def _public_csl(src: models.BibliographySource) -> dict[str, Any]:
    if isinstance(src.csl, dict):
        return src.csl
    return fallback_csl(
        {
            "id": src.id,
            "type": src.type,
            "title": src.title,
            "authors": src.authors,
            "publisher_or_site": src.publisher_or_site,
            "url": src.url,
            "year": src.year_int,
        }
    )


async def load_for_public(session: AsyncSession, site_id: str) -> list[dict[str, Any]]:
    """Bibliography shown on the public page: linked sources, else legacy site-scoped rows."""
    result = await session.execute(
        select(models.ListingBibliography, models.BibliographySource)
        .join(models.BibliographySource, models.BibliographySource.id == models.ListingBibliography.biblio_id)
        .where(models.ListingBibliography.listing_id == site_id)
        .order_by(models.ListingBibliography.sort_order)
    )
    links = result.all()
    if links:
        return [
            {
                "id": src.id,
                "csl": _public_csl(src),
                "note": link.note if link.note is not None else src.notes,
                "sort_order": link.sort_order or 0,
            }
            for link, src in links
        ]

    legacy = await session.execute(
        select(models.BibliographySource)
        .where(models.BibliographySource.site_id == site_id)
        .order_by(models.BibliographySource.sort_order)
    )
    return [
        {
            "id": src.id,
            "csl": _public_csl(src),
            "note": src.notes,
            "sort_order": src.sort_order if src.sort_order is not None else i,
        }
        for i, src in enumerate(legacy.scalars().all())
    ]


async def citation_style(session: AsyncSession) -> str:
    setting = await session.get(models.AppSetting, "citation")
    value = setting.value if setting else None
    if isinstance(value, dict) and value.get("style"):
        return str(value["style"])
    return DEFAULT_CITATION_STYLE


async def update_source(session: AsyncSession, biblio_id: str, patch: dict[str, Any]) -> models.BibliographySource:
    """Update editable fields of a library source and rebuild its CSL."""
    src = await session.get(models.BibliographySource, biblio_id)
    if src is None:
        raise NotFoundError("Bibliography source not found")
    changes = pick(patch, SOURCE_FIELDS)
    if "title" in changes and not (changes["title"] or "").strip():
        raise ValidationError("Title is required.")
    if "type" in changes and changes["type"] not in EDITABLE_TYPES:
        raise ValidationError(f"Unsupported source type: {changes['type']}")
    for key, value in changes.items():
        setattr(src, key, value)
    csl = build_csl({**source_to_dict(src), "id": src.id, "people": patch.get("people") or []})
    if "people" not in patch and isinstance(src.csl, dict):
        csl.update({role: src.csl[role] for role in PEOPLE_ROLES if src.csl.get(role)})
    src.csl = csl
    src.updated_at = utcnow()
    await commit(session, "update source")
    await session.refresh(src)
    return src
