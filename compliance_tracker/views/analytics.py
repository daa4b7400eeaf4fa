"""
Aggregate statistics for the dashboard charts.

``aggregate`` walks the collection once and returns status / maturity /
priority distributions, the business-value-vs-cost scatter, per-category
averages and overall totals.  Empty input yields empty distributions and
zeroed totals; no percentage is ever computed against a zero denominator.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from enum import Enum
from typing import TypeVar

from compliance_tracker.models.enums import (
    MaturityLevelName,
    Priority,
    RequirementCategory,
    RequirementStatus,
    enum_rank,
)
from compliance_tracker.models.schemas import (
    Aggregates,
    CategoryStats,
    Criteria,
    DerivedView,
    MaturityBucket,
    OverallStats,
    PriorityBucket,
    Requirement,
    ScatterPoint,
    StatusBucket,
)
from compliance_tracker.views.filtering import apply_criteria

E = TypeVar("E", bound=Enum)

# Low maturity + high value = worth investing in first
IMPROVEMENT_MAX_MATURITY = 2.0
IMPROVEMENT_MIN_VALUE = 4.0


def percentage(count: int, total: int) -> float:
    """Share of ``total`` in percent, one decimal; 0.0 when total is 0."""
    if total <= 0:
        return 0.0
    return round(count / total * 100, 1)


def _ordered(counts: Counter[E]) -> list[tuple[E, int]]:
    return sorted(counts.items(), key=lambda item: enum_rank(item[0]))


def aggregate(collection: Iterable[Requirement]) -> Aggregates:
    status_counts: Counter[RequirementStatus] = Counter()
    maturity_counts: Counter[MaturityLevelName] = Counter()
    priority_counts: Counter[Priority] = Counter()
    category_counts: Counter[RequirementCategory] = Counter()
    category_value: dict[RequirementCategory, float] = {}
    category_maturity: dict[RequirementCategory, list[float]] = {}
    points: list[ScatterPoint] = []
    total = 0
    total_value = 0.0
    total_cost = 0.0
    assessed_scores: list[float] = []
    opportunities = 0

    for req in collection:
        total += 1
        status_counts[req.status] += 1
        maturity_counts[req.maturity_level.level] += 1
        priority_counts[req.priority] += 1
        category_counts[req.category] += 1
        category_value[req.category] = category_value.get(req.category, 0.0) + req.business_value_score

        score = req.maturity_level.score
        if score > 0:
            assessed_scores.append(score)
            category_maturity.setdefault(req.category, []).append(score)

        total_value += req.business_value_score
        total_cost += req.cost_estimate
        if score <= IMPROVEMENT_MAX_MATURITY and req.business_value_score >= IMPROVEMENT_MIN_VALUE:
            opportunities += 1

        points.append(ScatterPoint(
            id=req.id,
            business_value_score=req.business_value_score,
            cost_thousands=req.cost_estimate / 1000,
            category=req.category,
        ))

    if total == 0:
        return Aggregates()

    categories = []
    for category, count in _ordered(category_counts):
        scores = category_maturity.get(category, [])
        categories.append(CategoryStats(
            category=category,
            count=count,
            avg_business_value=round(category_value[category] / count, 2),
            avg_maturity_score=round(sum(scores) / len(scores), 2) if scores else 0.0,
        ))

    return Aggregates(
        status_distribution=tuple(
            StatusBucket(status=s, count=c, percentage=percentage(c, total))
            for s, c in _ordered(status_counts)
        ),
        maturity_distribution=tuple(
            MaturityBucket(level=m, count=c, percentage=percentage(c, total))
            for m, c in _ordered(maturity_counts)
        ),
        business_value_points=tuple(points),
        priority_distribution=tuple(
            PriorityBucket(priority=p, count=c, percentage=percentage(c, total))
            for p, c in _ordered(priority_counts)
        ),
        category_analysis=tuple(categories),
        overall=OverallStats(
            total_requirements=total,
            avg_business_value=round(total_value / total, 2),
            avg_maturity_score=round(sum(assessed_scores) / len(assessed_scores), 2) if assessed_scores else 0.0,
            total_cost=total_cost,
        ),
        improvement_opportunities=opportunities,
    )


def build_view(collection: tuple[Requirement, ...], criteria: Criteria) -> DerivedView:
    """Filtered/searched/sorted items plus aggregates over those items."""
    items = apply_criteria(collection, criteria)
    return DerivedView(
        items=items,
        total_count=len(collection),
        filtered_count=len(items),
        aggregates=aggregate(items),
    )
