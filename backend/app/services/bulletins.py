from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

BULLETIN_SCALE = 20.0
PROMOTION_THRESHOLD = 10.0
CONDITIONAL_THRESHOLD = 8.0


@dataclass(frozen=True)
class ScoredGrade:
    score: float
    max_score: float
    coefficient: float

    @property
    def on_scale(self) -> float:
        return self.score * BULLETIN_SCALE / self.max_score if self.max_score else 0.0


def weighted_average(grades: Iterable[ScoredGrade]) -> float | None:
    """Coefficient-weighted average on the 20-point scale; ``None`` without graded work."""
    total_points = 0.0
    total_coefficients = 0.0
    for grade in grades:
        total_points += grade.on_scale * grade.coefficient
        total_coefficients += grade.coefficient
    if total_coefficients <= 0:
        return None
    return round(total_points / total_coefficients, 2)


def promotion_decision(average: float | None) -> str:
    if average is None:
        return "pending"
    if average >= PROMOTION_THRESHOLD:
        return "promoted"
    if average >= CONDITIONAL_THRESHOLD:
        return "conditional"
    return "repeat"
