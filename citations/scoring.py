"""Heuristic scoring, deduplication and ranking of citation candidates.

Everything here is a pure function of its inputs.
"""
from __future__ import annotations

from typing import Iterable

from .csl import Candidate
from .identifiers import normalize_isbn13


def title_match_score(query: str, title: str) -> float:
    """Score how well a provider title matches the user's query (0..1)."""
    q = query.lower()
    t = title.lower()
    if not q or not t:
        return 0.0
    if q == t:
        return 1.0
    if t.startswith(q):
        return 0.85
    if q in t:
        return 0.7
    q_words = set(q.split())
    t_words = set(t.split())
    overlap = len(q_words & t_words)
    return min(0.65, overlap / max(3, len(q_words)))


def dedup_key(candidate: Candidate) -> str:
    """Identity of a candidate: DOI, else ISBN, else title + year."""
    csl = candidate.csl
    if csl.DOI:
        return f"doi:{csl.DOI.strip().lower()}"
    isbn = csl.first_isbn()
    if isbn:
        return f"isbn:{normalize_isbn13(isbn) or isbn.strip().upper()}"
    year = csl.issued.year if csl.issued else ""
    return f"t:{(csl.title or '').lower()}|y:{year if year is not None else ''}"


def deduplicate(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Keep the first candidate for each :func:`dedup_key`."""
    seen: set[str] = set()
    unique: list[Candidate] = []
    for candidate in candidates:
        key = dedup_key(candidate)
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


def richness(candidate: Candidate) -> float:
    """Bonus for metadata completeness."""
    csl = candidate.csl
    bonus = 0.0
    if csl.author:
        bonus += 0.05
    if csl.container_title:
        bonus += 0.03
    if csl.publisher:
        bonus += 0.02
    if csl.DOI or csl.ISBN or csl.ISSN:
        bonus += 0.06
    if csl.issued and csl.issued.precision >= 2:
        bonus += 0.02
    return bonus


def rank(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Order by score + richness, highest first; ties keep input order."""
    return sorted(candidates, key=lambda c: c.score + richness(c), reverse=True)
