"""Derived views — filter, search, sort, aggregate."""

from compliance_tracker.views.filtering import (
    apply_criteria,
    filter_requirements,
    requirements_for_capability,
    requirements_for_framework,
    search_requirements,
    sort_requirements,
)
from compliance_tracker.views.analytics import aggregate, build_view

__all__ = [
    "aggregate",
    "apply_criteria",
    "build_view",
    "filter_requirements",
    "requirements_for_capability",
    "requirements_for_framework",
    "search_requirements",
    "sort_requirements",
]
