"""Citation resolution pipeline.

Classifies a free-form input, queries the matching metadata providers,
normalizes everything to CSL-JSON, then deduplicates and ranks.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from citations import providers
from citations.csl import Candidate, CSLItem
from citations.identifiers import Detected, classify, doi_in_url
from citations.scoring import deduplicate, rank
from heritage.config import settings

logger = logging.getLogger(__name__)


class ResolverError(Exception):
    """Raised when an input cannot be resolved at all."""
    pass


@dataclass
class Resolution:
    """Result of resolving one input."""
    input: str
    detected: Detected
    candidates: list[Candidate] = field(default_factory=list)

    @property
    def best(self) -> CSLItem | None:
        return self.candidates[0].csl if self.candidates else None

    def to_json(self) -> dict[str, Any]:
        best = self.best
        return {
            "ok": True,
            "input": self.input,
            "detected": self.detected.flags(),
            "best": best.to_json() if best else None,
            "candidates": [c.to_json() for c in self.candidates],
        }


def should_search_titles(raw: str, detected: Detected, found: int) -> bool:
    """Title search runs for plain text, as a fallback, or to augment longer inputs."""
    is_identifier = bool(detected.url or detected.doi or detected.isbn13)
    return found == 0 or not is_identifier or len(raw) > 6


async def _by_identifiers(client: httpx.AsyncClient, detected: Detected) -> list[Candidate]:
    found: list[Candidate] = []

    if detected.doi:
        c = await providers.crossref_by_doi(client, detected.doi)
        if c:
            found.append(c)

    if detected.url:
        c = await providers.citoid_by_url(client, detected.url)
        if c:
            found.append(c)
        if c is None or not c.csl.title or c.csl.title == detected.url:
            h = await providers.html_meta_fallback(client, detected.url)
            if h:
                found.append(h)

        if not detected.doi:
            embedded = doi_in_url(detected.url)
            if embedded:
                c2 = await providers.crossref_by_doi(client, embedded)
                if c2:
                    found.append(c2.model_copy(update={"score": max(c2.score, 0.88)}))

    if detected.isbn13:
        c = await providers.openlibrary_by_isbn(client, detected.isbn13)
        if c:
            found.append(c)
        books = await providers.google_books_search(client, f"isbn:{detected.isbn13}")
        found.extend(b.model_copy(update={"score": max(0.82, b.score)}) for b in books)

    return found


async def resolve_citation(client: httpx.AsyncClient, raw: str) -> Resolution:
    """Resolve a URL, DOI, ISBN or title into ranked CSL candidates.

    Args:
        client: Shared HTTP client
        raw: User input, any of URL / DOI / ISBN / free text

    Returns:
        Resolution with at most ``max_candidates`` ranked candidates

    Raises:
        ResolverError: If the input is empty
    """
    raw = (raw or "").strip()
    if not raw:
        raise ResolverError("Missing 'input'.")

    detected = classify(raw)
    logger.info(f"Resolving citation input ({detected.flags()})")

    candidates = await _by_identifiers(client, detected)

    if should_search_titles(raw, detected, len(candidates)):
        results = await asyncio.gather(
            providers.crossref_by_title(client, raw),
            providers.openalex_search(client, raw),
            providers.google_books_search(client, raw),
            providers.openlibrary_search(client, raw),
        )
        for batch in results:
            candidates.extend(batch)

    ranked = rank(deduplicate(candidates))[: settings.resolver.max_candidates]
    logger.info(f"Resolved {len(candidates)} raw candidates into {len(ranked)}")
    return Resolution(input=raw, detected=detected, candidates=ranked)


async def batch_resolve(
    client: httpx.AsyncClient,
    inputs: list[str],
    *,
    concurrency: int | None = None,
) -> list[dict[str, Any]]:
    """Resolve many inputs with bounded concurrency.

    Output order matches ``inputs``. One failing input yields an
    ``{"ok": False, "error": ...}`` entry and does not fail the batch.
    """
    semaphore = asyncio.Semaphore(concurrency or settings.resolver.batch_concurrency)

    async def _one(raw: str) -> dict[str, Any]:
        async with semaphore:
            try:
                return (await resolve_citation(client, raw)).to_json()
            except ResolverError as e:
                return {"ok": False, "input": raw, "error": str(e)}
            except Exception as e:
                logger.error(f"Unexpected error resolving {raw!r}: {e}", exc_info=True)
                return {"ok": False, "input": raw, "error": "Resolver failed"}

    return list(await asyncio.gather(*(_one(raw) for raw in inputs)))
