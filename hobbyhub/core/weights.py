from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ScoreWeights:
    """Per-factor weights for the compatibility scorer; negative values count as zero."""

    hobbies: float = 40.0
    locations: float = 30.0
    age: float = 20.0
    rating: float = 10.0

    @property
    def total(self) -> float:
        return sum(max(float(w), 0.0) for w in (self.hobbies, self.locations, self.age, self.rating))
