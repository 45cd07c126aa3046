"""Fuzzy duplicate scoring for imported and stored CRM records.

Scores are in ``[0, 1]``. A field only contributes when both records carry a
value for it, and the weighted sum is normalised by the weights that
actually took part.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any, Callable

from rapidfuzz.distance import Levenshtein

_NON_DIGITS = re.compile(r"\D")


def levenshtein_distance(first: str, second: str) -> int:
    return Levenshtein.distance(first, second)


def string_similarity(first: str | None, second: str | None) -> float:
    if not first and not second:
        return 1.0
    if not first or not second:
        return 0.0
    # 1 - distance / len(longer string)
    return Levenshtein.normalized_similarity(first.strip().lower(), second.strip().lower())


def email_similarity(first: str | None, second: str | None) -> float:
    if not first and not second:
        return 1.0
    if not first or not second:
        return 0.0
    left = first.strip().lower()
    right = second.strip().lower()
    if left == right:
        return 1.0

    left_user, _, left_domain = left.partition("@")
    right_user, _, right_domain = right.partition("@")
    if not (left_user and left_domain and right_user and right_domain):
        return string_similarity(left, right)
    # the domain says more about identity than the mailbox name
    return string_similarity(left_user, right_user) * 0.4 + string_similarity(left_domain, right_domain) * 0.6


def phone_similarity(first: str | None, second: str | None) -> float:
    if not first and not second:
        return 1.0
    if not first or not second:
        return 0.0
    left = _NON_DIGITS.sub("", first)
    right = _NON_DIGITS.sub("", second)
    if left == right:
        return 1.0
    if left in right or right in left:
        # same number with or without a prefix
        return min(len(left), len(right)) / max(len(left), len(right))
    return string_similarity(left, right)


def exact_similarity(first: Any, second: Any) -> float:
    return 1.0 if first == second else 0.0


Comparator = Callable[[Any, Any], float]

FIELD_WEIGHTS: dict[str, tuple[tuple[str, float, Comparator], ...]] = {
    "contacts": (
        ("email", 0.5, email_similarity),
        ("phone", 0.3, phone_similarity),
        ("first_name", 0.1, string_similarity),
        ("last_name", 0.1, string_similarity),
    ),
    "companies": (
        ("name", 0.4, string_similarity),
        ("website", 0.3, string_similarity),
        ("phone", 0.15, phone_similarity),
        ("email", 0.15, email_similarity),
    ),
    "deals": (
        ("name", 0.4, string_similarity),
        ("company_id", 0.4, exact_similarity),
        ("contact_id", 0.2, exact_similarity),
    ),
}
FIELD_WEIGHTS["leads"] = FIELD_WEIGHTS["contacts"]

SUPPORTED_ENTITIES = frozenset(FIELD_WEIGHTS)


def field_scores(first: Mapping[str, Any], second: Mapping[str, Any], entity: str) -> dict[str, float]:
    try:
        fields = FIELD_WEIGHTS[entity]
    except KeyError:
        raise ValueError(f"unsupported entity for duplicate detection: {entity}")
    scores: dict[str, float] = {}
    for name, _weight, compare in fields:
        left = first.get(name)
        right = second.get(name)
        if left and right:
            scores[name] = compare(left, right)
    return scores


def distance_score(first: Mapping[str, Any], second: Mapping[str, Any], entity: str) -> float:
    scores = field_scores(first, second, entity)
    weights = {name: weight for name, weight, _compare in FIELD_WEIGHTS[entity]}
    total_weight = sum(weights[name] for name in scores)
    if total_weight == 0:
        return 0.0
    return sum(score * weights[name] for name, score in scores.items()) / total_weight


def best_match(
    candidate: Mapping[str, Any],
    existing: Iterable[Mapping[str, Any]],
    entity: str,
    threshold: float,
) -> tuple[Mapping[str, Any], float] | None:
    best: tuple[Mapping[str, Any], float] | None = None
    for record in existing:
        score = distance_score(candidate, record, entity)
        if score >= threshold and (best is None or score > best[1]):
            best = (record, score)
    return best


def find_duplicate_pairs(
    records: list[Mapping[str, Any]],
    entity: str,
    threshold: float,
) -> list[dict[str, Any]]:
    pairs: list[dict[str, Any]] = []
    for index, first in enumerate(records):
        for second in records[index + 1 :]:
            score = distance_score(first, second, entity)
            if score >= threshold:
                pairs.append(
                    {
                        "first_id": first["id"],
                        "second_id": second["id"],
                        "score": round(score, 4),
                        "matched_fields": {
                            name: round(value, 4) for name, value in field_scores(first, second, entity).items()
                        },
                    }
                )
    pairs.sort(key=lambda pair: (-pair["score"], pair["first_id"], pair["second_id"]))
    return pairs
