"""Unit tests for candidate scoring, deduplication and ranking."""

from __future__ import annotations

from citations.csl import Candidate, CSLDate, CSLItem, CSLName
from citations.scoring import dedup_key, deduplicate, rank, richness, title_match_score


def _candidate(score: float = 0.7, source: str = "crossref", **csl) -> Candidate:
    csl.setdefault("title", "Untitled")
    return Candidate(csl=CSLItem(**csl), score=score, source=source)


def test_title_match_score_tiers() -> None:
    assert title_match_score("My Son Sanctuary", "my son sanctuary") == 1.0
    assert title_match_score("My Son", "My Son Sanctuary") == 0.85
    assert title_match_score("Son Sanctuary", "My Son Sanctuary Guide") == 0.7
    assert title_match_score("", "anything") == 0.0


def test_title_match_score_word_overlap_is_capped() -> None:
    score = title_match_score("citadel hue history", "history of the hue imperial citadel")
    assert score == min(0.65, 3 / 3)
    assert title_match_score("alpha beta gamma delta", "delta") == 0.25


def test_dedup_key_prefers_doi_then_isbn_then_title_year() -> None:
    assert dedup_key(_candidate(DOI="10.1/ABC")) == "doi:10.1/abc"
    assert dedup_key(_candidate(ISBN=["0-306-40615-2"])) == "isbn:9780306406157"
    keyed = _candidate(title="Hoi An", issued=CSLDate(date_parts=[[2005]]))
    assert dedup_key(keyed) == "t:hoi an|y:2005"
    assert dedup_key(_candidate(title="Hoi An")) == "t:hoi an|y:"


def test_deduplicate_keeps_first_occurrence() -> None:
    first = _candidate(score=0.9, source="crossref", DOI="10.1/x")
    second = _candidate(score=0.99, source="openalex", DOI="10.1/X")
    isbn_a = _candidate(source="openlibrary", ISBN=["9780306406157"])
    isbn_b = _candidate(source="googlebooks", ISBN=["0306406152"])

    unique = deduplicate([first, second, isbn_a, isbn_b])

    assert unique == [first, isbn_a]


def test_richness_rewards_complete_metadata() -> None:
    bare = _candidate()
    rich = _candidate(
        author=[CSLName(family="Le")],
        container_title="Journal",
        publisher="Pub",
        DOI="10.1/x",
        issued=CSLDate(date_parts=[[2010, 1]]),
    )

    assert richness(bare) == 0.0
    assert round(richness(rich), 2) == 0.18


def test_rank_orders_by_score_plus_richness_and_is_stable() -> None:
    low = _candidate(score=0.6, title="low")
    tie_a = _candidate(score=0.8, title="tie a")
    tie_b = _candidate(score=0.8, title="tie b")
    boosted = _candidate(score=0.75, title="boosted", DOI="10.1/b")

    ranked = rank([low, tie_a, tie_b, boosted])

    assert [c.csl.title for c in ranked] == ["boosted", "tie a", "tie b", "low"]
