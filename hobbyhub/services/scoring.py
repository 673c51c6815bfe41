"""Compatibility scoring between two user profiles.

Pure functions only: the scorer is fed plain ``ScoringProfile`` values built
from the ORM rows and never touches the store. Each factor contributes
``overlap * weight``; the total is normalised by the sum of the weights so
the result always lands in ``[0, 100]`` whatever split is configured.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from hobbyhub.core.weights import ScoreWeights


@dataclass(frozen=True, slots=True)
class ScoringProfile:
    user_id: int
    hobby_ids: frozenset[int] = field(default_factory=frozenset)
    location_ids: frozenset[int] = field(default_factory=frozenset)
    age: int | None = None
    ratings: tuple[int, ...] = ()


@dataclass(frozen=True, slots=True)
class RankedCandidate:
    profile: ScoringProfile
    score: float
    shared_hobby_ids: list[int]
    shared_location_ids: list[int]


def _clean_ids(values: Iterable | None) -> set[int]:
    out: set[int] = set()
    for value in values or ():
        try:
            out.add(int(value))
        except (TypeError, ValueError):
            continue
    return out


def set_overlap(a: Iterable | None, b: Iterable | None) -> float:
    left = _clean_ids(a)
    right = _clean_ids(b)
    denominator = max(len(left), len(right))
    if denominator == 0:
        return 0.0
    return len(left & right) / denominator


def age_proximity(age_a: int | None, age_b: int | None) -> float:
    try:
        if age_a is None or age_b is None:
            return 0.0
        diff = abs(int(age_a) - int(age_b))
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, (10 - diff) / 10)


def rating_factor(ratings: Iterable | None) -> float:
    valid: list[float] = []
    for value in ratings or ():
        try:
            rating = float(value)
        except (TypeError, ValueError):
            continue
        if 1 <= rating <= 5:
            valid.append(rating)
    if not valid:
        return 0.0
    return (sum(valid) / len(valid)) / 5


def compatibility_score(a: ScoringProfile, b: ScoringProfile, weights: ScoreWeights) -> float:
    total_weight = weights.total
    if total_weight <= 0:
        return 0.0

    raw = (
        set_overlap(a.hobby_ids, b.hobby_ids) * max(weights.hobbies, 0.0)
        + set_overlap(a.location_ids, b.location_ids) * max(weights.locations, 0.0)
        + age_proximity(a.age, b.age) * max(weights.age, 0.0)
        # Rating is the candidate's reputation, so only ``b`` counts.
        + rating_factor(b.ratings) * max(weights.rating, 0.0)
    )
    return min(100.0, max(0.0, raw / total_weight * 100))


def rank_candidates(
    target: ScoringProfile,
    candidates: Iterable[ScoringProfile],
    weights: ScoreWeights,
    *,
    min_score: float = 0.0,
    limit: int = 10,
) -> list[RankedCandidate]:
    ranked: list[RankedCandidate] = []
    for candidate in candidates:
        if candidate.user_id == target.user_id:
            continue
        score = compatibility_score(target, candidate, weights)
        if score <= min_score:
            continue
        ranked.append(
            RankedCandidate(
                profile=candidate,
                score=round(score, 2),
                shared_hobby_ids=sorted(_clean_ids(target.hobby_ids) & _clean_ids(candidate.hobby_ids)),
                shared_location_ids=sorted(_clean_ids(target.location_ids) & _clean_ids(candidate.location_ids)),
            )
        )
    ranked.sort(key=lambda x: (-x.score, x.profile.user_id))
    return ranked[: max(limit, 0)]
