from __future__ import annotations

import pytest

from crmdesk.crm.duplicates import (
    best_match,
    distance_score,
    email_similarity,
    field_scores,
    find_duplicate_pairs,
    levenshtein_distance,
    phone_similarity,
    string_similarity,
)


@pytest.mark.parametrize(
    ("first", "second", "expected"),
    [
        ("kitten", "sitting", 3),
        ("", "abc", 3),
        ("abc", "", 3),
        ("same", "same", 0),
        ("flaw", "lawn", 2),
    ],
)
def test_levenshtein_distance(first: str, second: str, expected: int) -> None:
    assert levenshtein_distance(first, second) == expected


def test_string_similarity_ignores_case_and_padding() -> None:
    assert string_similarity("  Acme ", "acme") == 1.0
    assert string_similarity("abcd", "abce") == pytest.approx(0.75)
    assert string_similarity(None, "x") == 0.0
    assert string_similarity(None, None) == 1.0


def test_email_similarity_weights_domain_over_mailbox() -> None:
    assert email_similarity("Jane@Example.com", "jane@example.com") == 1.0
    same_domain = email_similarity("jane@example.com", "john@example.com")
    same_mailbox = email_similarity("jane@example.com", "jane@elsewhere.org")
    assert same_domain > same_mailbox
    assert email_similarity("jane@example.com", None) == 0.0


def test_phone_similarity_tolerates_formatting_and_prefixes() -> None:
    assert phone_similarity("+1 (555) 010-0200", "15550100200") == 1.0
    assert phone_similarity("5550100200", "15550100200") == pytest.approx(10 / 11)
    assert phone_similarity("", "") == 1.0


def test_distance_score_only_counts_fields_present_on_both_sides() -> None:
    first = {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com"}
    second = {"first_name": "Ada", "last_name": "Lovelace", "phone": "555"}

    assert set(field_scores(first, second, "contacts")) == {"first_name", "last_name"}
    assert distance_score(first, second, "contacts") == 1.0
    assert distance_score({"email": "x@example.com"}, {"phone": "1"}, "contacts") == 0.0


def test_unknown_entity_is_rejected() -> None:
    with pytest.raises(ValueError):
        field_scores({}, {}, "widgets")


def test_best_match_picks_highest_score_above_threshold() -> None:
    candidate = {"name": "Acme Corp", "website": "https://acme.example.com"}
    existing = [
        {"id": 1, "name": "Acme Corporation", "website": "https://acme.example.com"},
        {"id": 2, "name": "Acme Corp", "website": "https://acme.example.com"},
        {"id": 3, "name": "Zeta", "website": "https://zeta.example.org"},
    ]

    match = best_match(candidate, existing, "companies", 0.8)

    assert match is not None
    assert match[0]["id"] == 2
    assert match[1] == 1.0
    assert best_match({"name": "Nothing alike"}, existing, "companies", 0.8) is None


def test_find_duplicate_pairs_sorted_by_score() -> None:
    records = [
        {"id": 1, "name": "Acme", "company_id": 5, "contact_id": 9},
        {"id": 2, "name": "Acme", "company_id": 5, "contact_id": 9},
        {"id": 3, "name": "Acme renewal", "company_id": 5, "contact_id": 9},
        {"id": 4, "name": "Other", "company_id": 6},
    ]

    pairs = find_duplicate_pairs(records, "deals", 0.7)

    assert [(pair["first_id"], pair["second_id"]) for pair in pairs][0] == (1, 2)
    assert pairs[0]["score"] == 1.0
    assert all(pair["score"] >= 0.7 for pair in pairs)
    assert all(4 not in (pair["first_id"], pair["second_id"]) for pair in pairs)
    assert [pair["score"] for pair in pairs] == sorted((pair["score"] for pair in pairs), reverse=True)
