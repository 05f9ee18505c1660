"""Generic HTML metadata scraping for pages no citation service understands.

Reads, in order of preference: an Article-like JSON-LD node, Highwire
``citation_*`` tags, OpenGraph / Twitter tags, ``<title>`` and the
canonical link.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from bs4 import BeautifulSoup

from config.csl_types import ARTICLE_LIKE_SCHEMA_TYPES

from .csl import Candidate, CSLItem, CSLName, date_string_to_issued, first_of, schema_org_type
from .identifiers import normalize_doi

logger = logging.getLogger(__name__)


def extract_meta_maps(soup: BeautifulSoup) -> tuple[dict[str, list[str]], dict[str, list[str]]]:
    """Collect ``<meta name=…>`` and ``<meta property=…>`` contents, keyed lowercase."""
    name_map: dict[str, list[str]] = {}
    prop_map: dict[str, list[str]] = {}
    for tag in soup.find_all("meta"):
        content = tag.get("content")
        if not content:
            continue
        name = tag.get("name")
        prop = tag.get("property")
        if name:
            name_map.setdefault(name.lower(), []).append(content)
        if prop:
            prop_map.setdefault(prop.lower(), []).append(content)
    return name_map, prop_map


def parse_json_ld(soup: BeautifulSoup) -> list[dict[str, Any]]:
    nodes: list[dict[str, Any]] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        text = (script.string or script.get_text() or "").strip()
        if not text:
            continue
        try:
            parsed = json.loads(text)
        except ValueError:
            logger.debug("Skipping malformed JSON-LD block")
            continue
        items = parsed if isinstance(parsed, list) else [parsed]
        for item in items:
            if isinstance(item, dict) and isinstance(item.get("@graph"), list):
                nodes.extend(n for n in item["@graph"] if isinstance(n, dict))
            elif isinstance(item, dict):
                nodes.append(item)
    return nodes


def _node_types(node: dict[str, Any]) -> list[str]:
    t = node.get("@type")
    if isinstance(t, list):
        return [str(x) for x in t]
    return [str(t)] if t else []


def find_article_node(nodes: list[dict[str, Any]]) -> dict[str, Any] | None:
    for node in nodes:
        if any(t in ARTICLE_LIKE_SCHEMA_TYPES for t in _node_types(node)):
            return node
    return None


def _text(value: Any) -> str | None:
    """JSON-LD leaves may be strings, numbers, lists of either, or nested nodes."""
    value = first_of(value)
    if isinstance(value, dict):
        value = first_of(value.get("name"))
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value).strip() or None
    return None


def _name_of(node: Any) -> str | None:
    return _text(node.get("name")) if isinstance(node, dict) else _text(node)


def authors_from_json_ld(value: Any) -> list[CSLName]:
    if not value:
        return []
    items = value if isinstance(value, list) else [value]
    names: list[CSLName] = []
    for item in items:
        if not isinstance(item, (str, dict)):
            continue
        name = _name_of(item)
        if not name and isinstance(item, dict) and item.get("author"):
            name = _name_of(item["author"])
        if name:
            names.append(CSLName(literal=name))
    return names


def _pick(*values: Any) -> str | None:
    for value in values:
        text = _text(value)
        if text:
            return text
    return None


def _first(mapping: dict[str, list[str]], key: str) -> str | None:
    values = mapping.get(key)
    return values[0] if values else None


def candidate_from_html(html: str, url: str) -> Candidate:
    """Build an ``html-meta`` candidate from a fetched page."""
    soup = BeautifulSoup(html, "html.parser")
    name_map, prop_map = extract_meta_maps(soup)
    article = find_article_node(parse_json_ld(soup)) or {}

    title_tag = soup.title.get_text(strip=True) if soup.title else ""
    title = _pick(
        article.get("headline") or article.get("name"),
        _first(prop_map, "og:title"),
        _first(name_map, "twitter:title"),
        title_tag,
    ) or url

    authors = (
        authors_from_json_ld(article.get("author"))
        or [CSLName(literal=n) for n in name_map.get("citation_author", [])]
        or [CSLName(literal=n) for n in name_map.get("author", [])]
        or [CSLName(literal=n) for n in prop_map.get("article:author", [])]
    )

    issued = (
        date_string_to_issued(
            article.get("datePublished") or article.get("dateCreated") or article.get("dateModified")
        )
        or date_string_to_issued(
            _first(name_map, "citation_publication_date")
            or _first(name_map, "citation_date")
            or _first(name_map, "citation_online_date")
        )
        or date_string_to_issued(_first(prop_map, "article:published_time"))
    )

    publisher_node = article.get("publisher")
    publisher = _pick(
        _name_of(publisher_node),
        _first(name_map, "publisher"),
        _first(prop_map, "og:site_name"),
    )

    part_of = article.get("isPartOf")
    container_title = _pick(
        _first(name_map, "citation_journal_title"),
        _name_of(part_of),
        _first(prop_map, "og:site_name"),
    )

    identifier = _text(article.get("identifier"))
    doi = _pick(
        _first(name_map, "citation_doi"),
        normalize_doi(identifier) if identifier else None,
    )

    canonical = None
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        if "canonical" in [r.lower() for r in rel]:
            canonical = link["href"]
            break

    types = _node_types(article)
    csl = CSLItem(
        type=schema_org_type(types[0] if types else None),
        title=title,
        author=authors or None,
        container_title=container_title,
        publisher=publisher,
        issued=issued,
        DOI=doi,
        ISSN=_first(name_map, "citation_issn"),
        URL=canonical or url,
    )

    score = 0.72
    if authors:
        score += 0.05
    if issued:
        score += 0.05
    if container_title or publisher:
        score += 0.03
    return Candidate(csl=csl, score=min(score, 0.88), source="html-meta")
