"""Descriptive statistics and score-range bucketing for test results."""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence


@dataclass
class ScoreSummary:
    count: int = 0
    average: float = 0
    min: float = 0
    max: float = 0


@dataclass
class CategoryBucket:
    category_id: Optional[str]
    name: str
    min_score: Optional[float] = None
    max_score: Optional[float] = None
    result_ids: List[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.result_ids)


UNCATEGORIZED = "Uncategorized"


def summarize(scores: Iterable[float]) -> ScoreSummary:
    """Count, mean, min and max of ``scores``; all zero when there are none."""
    values = list(scores)
    if not values:
        return ScoreSummary()
    return ScoreSummary(
        count=len(values),
        average=sum(values) / len(values),
        min=min(values),
        max=max(values),
    )


def categorize(score: float, categories: Sequence):
    """Return the category whose closed range contains ``score``, or None."""
    for category in categories:
        if category.min_score <= score <= category.max_score:
            return category
    return None


def bucket_results(results: Sequence, categories: Sequence) -> List[CategoryBucket]:
    """Group results by category, ordered by range, with a trailing uncategorized bucket."""
    ordered = sorted(categories, key=lambda c: c.min_score)
    buckets: Dict[Optional[str], CategoryBucket] = {
        category.id: CategoryBucket(category.id, category.name, category.min_score, category.max_score)
        for category in ordered
    }
    buckets[None] = CategoryBucket(None, UNCATEGORIZED)

    for result in results:
        category = categorize(result.total_score, ordered)
        buckets[category.id if category is not None else None].result_ids.append(result.id)

    return list(buckets.values())
