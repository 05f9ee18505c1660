"""CSL-JSON target schema and normalization helpers.

Every provider maps its response onto :class:`CSLItem`; the resolver then
works only with :class:`Candidate` objects.
"""
from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from config import csl_types

Source = Literal[
    "crossref",
    "openlibrary",
    "openlibrary-search",
    "googlebooks",
    "citoid",
    "openalex",
    "html-meta",
]

_YEAR_LOOSE = re.compile(r"(1[5-9]\d{2}|20\d{2}|2100)")
_YMD = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
_YM = re.compile(r"(\d{4})[/.-](\d{1,2})")


class CSLName(BaseModel):
    """A person or organisation name."""
    model_config = ConfigDict(extra="ignore")

    given: str | None = None
    family: str | None = None
    literal: str | None = None


class CSLDate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    date_parts: list[list[int]] = Field(alias="date-parts")

    @property
    def year(self) -> int | None:
        if self.date_parts and self.date_parts[0]:
            return self.date_parts[0][0]
        return None

    @property
    def precision(self) -> int:
        return len(self.date_parts[0]) if self.date_parts else 0


class CSLItem(BaseModel):
    """Minimal CSL-JSON item."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    type: str = "article-journal"
    title: str = ""
    author: list[CSLName] | None = None
    editor: list[CSLName] | None = None
    translator: list[CSLName] | None = None
    container_title: str | None = Field(default=None, alias="container-title")
    publisher: str | None = None
    issued: CSLDate | None = None
    DOI: str | None = None
    ISBN: str | list[str] | None = None
    ISSN: str | list[str] | None = None
    URL: str | None = None

    def first_isbn(self) -> str | None:
        if isinstance(self.ISBN, list):
            return self.ISBN[0] if self.ISBN else None
        return self.ISBN or None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Candidate(BaseModel):
    """A provider result with its heuristic confidence (0..1)."""

    csl: CSLItem
    score: float
    source: Source

    def to_json(self) -> dict[str, Any]:
        return {"csl": self.csl.to_json(), "score": self.score, "source": self.source}


def names_from_people(people: Any) -> list[CSLName]:
    """Map ``[{family, given} | {name}]`` records to CSL names, dropping blanks."""
    if not isinstance(people, list):
        return []
    out: list[CSLName] = []
    for person in people:
        if not isinstance(person, dict):
            continue
        if person.get("family") or person.get("given"):
            out.append(CSLName(family=person.get("family"), given=person.get("given")))
        elif person.get("name"):
            out.append(CSLName(literal=str(person["name"])))
    return out


def literal_names(values: Any) -> list[CSLName]:
    if not isinstance(values, list):
        return []
    return [CSLName(literal=str(v).strip()) for v in values if v is not None and str(v).strip()]


def parse_year_loose(value: Any) -> int | None:
    if not value:
        return None
    match = _YEAR_LOOSE.search(str(value))
    return int(match.group(1)) if match else None


def year_to_issued(year: Any) -> CSLDate | None:
    try:
        y = int(year)
    except (TypeError, ValueError):
        return None
    if y < 1 or y > 3000:
        return None
    return CSLDate(date_parts=[[y]])


def date_string_to_issued(value: Any) -> CSLDate | None:
    """Parse ISO-ish dates into the fullest date-parts available."""
    if not value:
        return None
    s = str(value).strip()
    match = _YMD.search(s)
    if match:
        return CSLDate(date_parts=[[int(match.group(1)), int(match.group(2)), int(match.group(3))]])
    match = _YM.search(s)
    if match:
        return CSLDate(date_parts=[[int(match.group(1)), int(match.group(2))]])
    year = parse_year_loose(s)
    return CSLDate(date_parts=[[year]]) if year else None


def issued_from_parts(value: Any) -> CSLDate | None:
    """Accept a ``{"date-parts": [[...]]}`` object from a provider, if well formed."""
    if not isinstance(value, dict):
        return None
    parts = value.get("date-parts")
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], list):
        return None
    first = [int(p) for p in parts[0] if isinstance(p, (int, float)) or (isinstance(p, str) and p.isdigit())]
    if not first:
        return None
    return CSLDate(date_parts=[first])


def _lookup(table: dict[str, str], default: str, value: Any) -> str:
    return table.get(str(value or "").lower(), default)


def crossref_type(value: Any) -> str:
    return _lookup(csl_types.CROSSREF_TYPES, csl_types.CROSSREF_DEFAULT, value)


def openalex_type(value: Any) -> str:
    return _lookup(csl_types.OPENALEX_TYPES, csl_types.OPENALEX_DEFAULT, value)


def zotero_type(value: Any) -> str:
    return _lookup(csl_types.ZOTERO_TYPES, csl_types.ZOTERO_DEFAULT, value)


def schema_org_type(value: Any) -> str:
    return _lookup(csl_types.SCHEMA_ORG_TYPES, csl_types.SCHEMA_ORG_DEFAULT, value)


def first_of(value: Any) -> Any:
    """Providers return some scalar fields as one-element lists."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def fallback_csl(src: dict[str, Any]) -> dict[str, Any]:
    """Build CSL-JSON from a legacy bibliography row without stored CSL.

    ``authors`` is a ``;``-separated list of ``Family, Given`` entries.
    """
    out: dict[str, Any] = {
        "id": src.get("id"),
        "type": src.get("type") or "book",
        "title": src.get("title") or "",
    }
    if src.get("authors"):
        names = []
        for full in (s.strip() for s in str(src["authors"]).split(";")):
            if not full:
                continue
            family, _, given = (x.strip() for x in full.partition(","))
            if family or given:
                name = {"family": family or None, "given": given or None}
                names.append({k: v for k, v in name.items() if v})
            else:
                names.append({"literal": full})
        out["author"] = names
    if src.get("publisher_or_site"):
        out["publisher"] = src["publisher_or_site"]
    if src.get("url"):
        out["URL"] = src["url"]
    year = src.get("year") or src.get("year_int")
    if year:
        try:
            out["issued"] = {"date-parts": [[int(year)]]}
        except (TypeError, ValueError):
            pass
    return out
