"""
Weighted rubric scoring for vendor RFI evaluations.

The weight table is a compatibility contract with historical evaluations:
six categories, eighteen sub-criteria, weights summing to 100.
"""
import math
from typing import Any, Dict, List, Mapping, Tuple

from app.core.errors import ValidationError

MIN_SCORE = 0
MAX_SCORE = 10

# category -> ((sub-criterion, weight percent), ...)
WEIGHT_TABLE: Dict[str, Tuple[Tuple[str, int], ...]] = {
    "experience": (
        ("experience", 10),
        ("case_studies", 10),
        ("domain_experience", 5),
    ),
    "understanding": (
        ("approach_alignment", 7),
        ("understanding_challenges", 7),
        ("solution_tailoring", 6),
    ),
    "methodology": (
        ("strategy_alignment", 7),
        ("methodology", 6),
        ("innovative_strategies", 5),
        ("stakeholder_engagement", 5),
        ("tools_framework", 3),
    ),
    "cost": (
        ("cost_structure", 6),
        ("cost_effectiveness", 5),
        ("roi", 3),
    ),
    "references": (
        ("references", 6),
        ("testimonials", 2),
        ("sustainability", 2),
    ),
    "deliverables": (
        ("deliverables", 5),
    ),
}

SUB_CRITERIA: List[str] = [name for group in WEIGHT_TABLE.values() for name, _ in group]
WEIGHTS: Dict[str, int] = {name: weight for group in WEIGHT_TABLE.values() for name, weight in group}

SCORE_FIELDS: List[str] = [f"{name}_score" for name in SUB_CRITERIA]
REMARK_FIELDS: List[str] = [f"{name}_remark" for name in SUB_CRITERIA]


def category_weight(category: str) -> int:
    return sum(weight for _, weight in WEIGHT_TABLE[category])


def calculate_weighted_score(scores: Mapping[str, float]) -> float:
    """
    Map the eighteen sub-criterion scores (0-10) to an overall percentage.

    `scores` is keyed by score field name (e.g. "experience_score").
    No rounding is applied; formatting is left to the presentation layer.
    """
    # same as sum(score / 10 * weight / 100) * 100
    weighted = sum(scores[f"{name}_score"] * weight for name, weight in WEIGHTS.items())
    return weighted / MAX_SCORE


def category_breakdown(scores: Mapping[str, float]) -> Dict[str, float]:
    """Percentage points contributed by each category."""
    return {
        category: sum(scores[f"{name}_score"] / MAX_SCORE * weight for name, weight in group)
        for category, group in WEIGHT_TABLE.items()
    }


def _is_valid_score(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if not math.isfinite(value):
        return False
    return MIN_SCORE <= value <= MAX_SCORE


def validate_submission(payload: Mapping[str, Any]) -> None:
    """
    Check that all scores are numeric within range and all remarks are non-empty.

    Raises ValidationError naming every offending field; nothing is written
    before this passes.
    """
    invalid_scores = [f for f in SCORE_FIELDS if not _is_valid_score(payload.get(f))]
    missing_remarks = [
        f for f in REMARK_FIELDS
        if not isinstance(payload.get(f), str) or not payload.get(f).strip()
    ]

    if invalid_scores or missing_remarks:
        raise ValidationError(
            "Evaluation is incomplete",
            {
                "fields": invalid_scores + missing_remarks,
                "invalid_scores": invalid_scores,
                "missing_remarks": missing_remarks,
            },
        )
