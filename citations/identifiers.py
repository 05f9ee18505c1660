"""Input classification for the citation resolver: URL, DOI, ISBN.

All functions are pure and return ``None`` when the input does not look
like the identifier in question.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

_DOI_PREFIX = re.compile(r"^https?://(dx\.)?doi\.org/", re.IGNORECASE)
_DOI_SCHEME = re.compile(r"^doi:", re.IGNORECASE)
_DOI_SHAPE = re.compile(r"^10\.\d{4,9}/\S+$", re.IGNORECASE)
_DOI_EMBEDDED = re.compile(r"10\.\d{4,9}/\S+")
_NOT_ISBN_CHAR = re.compile(r"[^0-9Xx]")


@dataclass(frozen=True)
class Detected:
    """What kinds of identifier the raw input carried."""
    url: str | None
    doi: str | None
    isbn13: str | None

    def flags(self) -> dict[str, bool]:
        return {"url": bool(self.url), "doi": bool(self.doi), "isbn13": bool(self.isbn13)}


def is_url(value: str) -> str | None:
    """Return the normalized http(s) URL, or None."""
    candidate = value.strip()
    if not candidate or any(ch.isspace() for ch in candidate):
        return None
    try:
        parts = urlsplit(candidate)
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        return None
    path = parts.path or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, parts.fragment))


def normalize_doi(value: str) -> str | None:
    """Strip resolver/scheme prefixes and validate the ``10.NNNN/suffix`` shape."""
    s = value.strip()
    s = _DOI_PREFIX.sub("", s)
    s = _DOI_SCHEME.sub("", s)
    s = s.strip()
    if not s or not _DOI_SHAPE.match(s):
        return None
    return s.lower()


def only_digits_x(value: str) -> str:
    return _NOT_ISBN_CHAR.sub("", value).upper()


def isbn10_to_13(isbn10: str) -> str:
    """Convert an ISBN-10 to ISBN-13 under the 978 prefix."""
    core13 = "978" + isbn10[:9]
    total = sum(int(d) * (1 if i % 2 == 0 else 3) for i, d in enumerate(core13))
    check = (10 - (total % 10)) % 10
    return core13 + str(check)


def normalize_isbn13(value: str) -> str | None:
    """Return a 13-digit ISBN, converting ISBN-10 when needed."""
    s = only_digits_x(value)
    if not s:
        return None
    if len(s) == 13 and s.isdigit():
        return s
    if len(s) == 10 and s[:9].isdigit() and (s[9].isdigit() or s[9] == "X"):
        return isbn10_to_13(s)
    return None


def doi_in_url(url: str) -> str | None:
    """Find a DOI embedded in a URL path (publisher landing pages often carry one)."""
    match = _DOI_EMBEDDED.search(url)
    if not match:
        return None
    return normalize_doi(match.group(0))


def classify(raw: str) -> Detected:
    return Detected(url=is_url(raw), doi=normalize_doi(raw), isbn13=normalize_isbn13(raw))
