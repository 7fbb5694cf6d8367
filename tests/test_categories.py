"""
Tests for score-range category validation.
"""

from types import SimpleNamespace

import pytest

from assessment_api.categories import ranges_overlap, validate_category_range
from assessment_api.errors import ValidationFailed

EXISTING = [
    SimpleNamespace(id="c1", name="Low", min_score=0, max_score=10),
    SimpleNamespace(id="c2", name="High", min_score=20, max_score=30),
]


class TestRangesOverlap:
    """Tests for closed-range overlap."""

    def test_touching_bounds_overlap(self):
        assert ranges_overlap(0, 10, 10, 20)

    def test_disjoint_ranges(self):
        assert not ranges_overlap(0, 10, 11, 20)


class TestValidateCategoryRange:
    """Tests for the checks run before a category is saved."""

    def test_accepts_gap_between_ranges(self):
        validate_category_range("Middle", 11, 19, EXISTING)

    def test_rejects_overlap_and_names_the_conflict(self):
        with pytest.raises(ValidationFailed) as exc_info:
            validate_category_range("Middle", 5, 15, EXISTING)

        assert exc_info.value.extra["conflictingCategory"] == {"id": "c1", "name": "Low"}

    def test_editing_may_overlap_own_range(self):
        validate_category_range("Low", 0, 12, EXISTING, exclude_id="c1")

    @pytest.mark.parametrize("low, high", [(5, 5), (6, 5), (-1, 5)])
    def test_rejects_malformed_bounds(self, low, high):
        with pytest.raises(ValidationFailed):
            validate_category_range("Bad", low, high, [])

    def test_rejects_blank_name(self):
        with pytest.raises(ValidationFailed):
            validate_category_range("  ", 0, 5, [])
