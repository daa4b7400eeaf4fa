"""
Filter, search and sort over a requirement collection.

All functions are pure: they never mutate their input and always return a
new tuple, so calling them twice with the same arguments gives equal
results.  The view pipeline order is filter → search → sort.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any, Optional

from compliance_tracker.errors import ErrorCode, ValidationError
from compliance_tracker.models.enums import SortDirection, enum_rank
from compliance_tracker.models.schemas import Criteria, Requirement

# ── Filters ──────────────────────────────────────────────

# Scalar filters compare for equality with the accessor's value.
SCALAR_FILTERS: dict[str, Callable[[Requirement], str]] = {
    "category": lambda r: r.category.value,
    "priority": lambda r: r.priority.value,
    "status": lambda r: r.status.value,
    "risk_level": lambda r: r.risk_level.value,
    "framework": lambda r: r.framework or "",
    "maturity": lambda r: r.maturity_level.level.value,
}

# Membership filters match when the value is one of the record's set members.
MEMBERSHIP_FILTERS: dict[str, Callable[[Requirement], tuple[str, ...]]] = {
    "capability": lambda r: r.capability_ids,
    "tag": lambda r: r.tags,
}

FILTER_FIELDS = frozenset(SCALAR_FILTERS) | frozenset(MEMBERSHIP_FILTERS)

# Enum-backed filters match case-insensitively, like enum cells on CSV import.
ENUM_FILTERS = frozenset({"category", "priority", "status", "risk_level", "maturity"})

NO_CONSTRAINT = "all"


def is_unconstrained(value: Optional[str]) -> bool:
    """``None``, blank and ``"all"`` all mean "no constraint"."""
    return value is None or not value.strip() or value.strip().lower() == NO_CONSTRAINT


def validate_filter_names(filters: Iterable[str]) -> None:
    unknown = sorted(set(filters) - FILTER_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unknown filter field(s): {', '.join(unknown)}",
            details={"unknown": unknown, "allowed": sorted(FILTER_FIELDS)},
            code=ErrorCode.UNKNOWN_FILTER_FIELD,
        )


def active_filters(filters: Mapping[str, Optional[str]]) -> dict[str, str]:
    """The subset of filters that actually constrain the collection."""
    return {name: value for name, value in filters.items() if not is_unconstrained(value)}


def _matches(requirement: Requirement, name: str, value: str) -> bool:
    if name in MEMBERSHIP_FILTERS:
        return value in MEMBERSHIP_FILTERS[name](requirement)
    actual = SCALAR_FILTERS[name](requirement)
    if name in ENUM_FILTERS:
        return actual.casefold() == value.strip().casefold()
    return actual == value


def filter_requirements(
    collection: Iterable[Requirement],
    filters: Mapping[str, Optional[str]],
) -> tuple[Requirement, ...]:
    """Keep records matching every constrained filter (logical AND)."""
    validate_filter_names(filters)
    constraints = active_filters(filters)
    if not constraints:
        return tuple(collection)
    return tuple(
        r for r in collection
        if all(_matches(r, name, value) for name, value in constraints.items())
    )


# ── Search ───────────────────────────────────────────────

SEARCH_FIELDS: tuple[tuple[str, Callable[[Requirement], str]], ...] = (
    ("title", lambda r: r.title),
    ("description", lambda r: r.description),
    ("category", lambda r: r.category.value),
    ("business_justification", lambda r: r.business_justification),
)


def search_requirements(collection: Iterable[Requirement], term: Optional[str]) -> tuple[Requirement, ...]:
    """Case-insensitive substring search; a blank term returns everything."""
    needle = (term or "").strip().casefold()
    if not needle:
        return tuple(collection)
    return tuple(
        r for r in collection
        if any(needle in read(r).casefold() for _, read in SEARCH_FIELDS)
    )


# ── Sort ─────────────────────────────────────────────────

SORT_KEYS: dict[str, Callable[[Requirement], Any]] = {
    "id": lambda r: r.id,
    "title": lambda r: r.title.casefold(),
    "category": lambda r: enum_rank(r.category),
    "priority": lambda r: enum_rank(r.priority),
    "status": lambda r: enum_rank(r.status),
    "risk_level": lambda r: enum_rank(r.risk_level),
    "framework": lambda r: (r.framework or "").casefold(),
    "maturity_score": lambda r: r.maturity_level.score,
    "business_value_score": lambda r: r.business_value_score,
    "cost_estimate": lambda r: r.cost_estimate,
    "created_at": lambda r: r.created_at,
    "updated_at": lambda r: r.updated_at,
}


def validate_sort_field(field: str) -> None:
    if field not in SORT_KEYS:
        raise ValidationError(
            f"Unknown sort field '{field}'",
            details={"field": field, "allowed": sorted(SORT_KEYS)},
            code=ErrorCode.UNKNOWN_SORT_FIELD,
        )


def sort_requirements(
    collection: Iterable[Requirement],
    field: str,
    direction: SortDirection | str = SortDirection.ASC,
) -> tuple[Requirement, ...]:
    """Total order on ``field``; ties keep ``id`` ascending in both directions."""
    validate_sort_field(field)
    direction = SortDirection(direction)
    # Python's sort is stable even with reverse=True, so pre-sorting by id
    # fixes the order inside every tie group.
    by_id = sorted(collection, key=lambda r: r.id)
    return tuple(sorted(by_id, key=SORT_KEYS[field], reverse=direction is SortDirection.DESC))


# ── Pipeline & queries ───────────────────────────────────


def apply_criteria(collection: Iterable[Requirement], criteria: Criteria) -> tuple[Requirement, ...]:
    """filter → search → sort."""
    filtered = filter_requirements(collection, criteria.filters)
    searched = search_requirements(filtered, criteria.search_term)
    return sort_requirements(searched, criteria.sort.field, criteria.sort.direction)


def requirements_for_capability(collection: Iterable[Requirement], capability_id: str) -> tuple[Requirement, ...]:
    return tuple(r for r in collection if capability_id in r.capability_ids)


def requirements_for_framework(collection: Iterable[Requirement], framework: str) -> tuple[Requirement, ...]:
    return tuple(r for r in collection if r.framework == framework)
