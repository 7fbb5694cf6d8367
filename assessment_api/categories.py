"""Score-range category invariants."""

from typing import Optional, Sequence

from assessment_api.errors import ValidationFailed


def ranges_overlap(a_min: float, a_max: float, b_min: float, b_max: float) -> bool:
    # Bounds are inclusive on both ends
    return a_min <= b_max and b_min <= a_max


def validate_category_range(
    name: str,
    min_score: float,
    max_score: float,
    others: Sequence,
    exclude_id: Optional[str] = None,
) -> None:
    """Reject a category that is malformed or overlaps an existing one.

    ``others`` are the stored categories; ``exclude_id`` is the category being
    edited, which may of course overlap its own previous range.
    """
    if not name or not name.strip():
        raise ValidationFailed("Category name is required")
    if min_score < 0 or max_score < 0:
        raise ValidationFailed("Category bounds must not be negative")
    if min_score >= max_score:
        raise ValidationFailed("Category minScore must be lower than maxScore")

    for other in others:
        if exclude_id is not None and other.id == exclude_id:
            continue
        if ranges_overlap(min_score, max_score, other.min_score, other.max_score):
            raise ValidationFailed(
                f"Score range [{min_score}, {max_score}] overlaps category "
                f"'{other.name}' [{other.min_score}, {other.max_score}]",
                conflictingCategory={"id": other.id, "name": other.name},
            )
