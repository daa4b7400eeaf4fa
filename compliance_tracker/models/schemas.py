"""
Record schemas for the dashboard store.

Records are frozen pydantic models: the store never edits a published
record in place, it validates a replacement.  Attributes are snake_case in
Python and camelCase when serialized (slice storage, CSV headers, API), which
keeps the on-disk format identical to what the browser dashboard writes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from compliance_tracker.errors import ImportRowError
from .enums import (
    MaturityLevelName,
    Priority,
    RequirementCategory,
    RequirementStatus,
    RiskLevel,
    SortDirection,
)


class DashboardModel(BaseModel):
    """Common config: immutable, camelCase aliases, accepts either spelling."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _unique_strings(values: Any) -> tuple[str, ...]:
    """Normalise a set-like field: strip, drop blanks, keep first occurrence."""
    if values is None:
        return ()
    if isinstance(values, str):
        values = [values]
    seen: dict[str, None] = {}
    for value in values:
        text = str(value).strip()
        if text:
            seen.setdefault(text, None)
    return tuple(seen)


def _non_blank_when_present(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError("must be non-empty when present")
    return value


# ── Requirement ──────────────────────────────────────────


class MaturityLevel(DashboardModel):
    level: MaturityLevelName = MaturityLevelName.INITIAL
    score: float = Field(1.0, ge=0, le=5)


class RequirementFields(DashboardModel):
    """Caller-owned requirement fields (everything but identity and timestamps)."""

    title: str
    description: str = ""
    category: RequirementCategory
    priority: Priority = Priority.MEDIUM
    status: RequirementStatus = RequirementStatus.DRAFT
    framework: Optional[str] = None
    framework_id: Optional[str] = None
    capability_ids: tuple[str, ...] = ()
    evidence_ids: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    business_justification: str = ""
    risk_level: RiskLevel = RiskLevel.MEDIUM
    source: str = ""
    maturity_level: MaturityLevel = Field(default_factory=MaturityLevel)
    business_value_score: float = Field(0.0, ge=0, le=5)
    cost_estimate: float = Field(0.0, ge=0)

    @field_validator("title")
    @classmethod
    def _title_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title is required")
        return value

    @field_validator("framework", "framework_id")
    @classmethod
    def _framework_keys(cls, value: Optional[str]) -> Optional[str]:
        return _non_blank_when_present(value)

    @field_validator("capability_ids", "evidence_ids", "tags", mode="before")
    @classmethod
    def _string_sets(cls, value: Any) -> tuple[str, ...]:
        return _unique_strings(value)


class RequirementDraft(RequirementFields):
    """Payload for creating a requirement.  Identity is never caller-supplied."""

    model_config = ConfigDict(extra="forbid")


class Requirement(RequirementFields):
    """A trackable compliance/control obligation."""

    id: str
    created_at: datetime
    updated_at: datetime

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Requirement):
            return self.id == other.id
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.id)

    def same_values(self, other: "Requirement") -> bool:
        """Field-by-field comparison, unlike ``==`` which compares identity."""
        return self.model_dump() == other.model_dump()


class RequirementPatch(DashboardModel):
    """Partial update; only the fields explicitly set are merged."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[RequirementCategory] = None
    priority: Optional[Priority] = None
    status: Optional[RequirementStatus] = None
    framework: Optional[str] = None
    framework_id: Optional[str] = None
    capability_ids: Optional[tuple[str, ...]] = None
    evidence_ids: Optional[tuple[str, ...]] = None
    tags: Optional[tuple[str, ...]] = None
    business_justification: Optional[str] = None
    risk_level: Optional[RiskLevel] = None
    source: Optional[str] = None
    maturity_level: Optional[MaturityLevel] = None
    business_value_score: Optional[float] = None
    cost_estimate: Optional[float] = None


# ── Capability ───────────────────────────────────────────


class CapabilityFields(DashboardModel):
    name: str
    description: str = ""
    status: str = "Not Started"
    owner: str = ""
    business_value: float = Field(0.0, ge=0, le=5)
    estimated_roi: float = Field(0.0, ge=0)

    @field_validator("name")
    @classmethod
    def _name_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name is required")
        return value


class CapabilityDraft(CapabilityFields):
    model_config = ConfigDict(extra="forbid")


class Capability(CapabilityFields):
    """An organizational capability that can satisfy requirements."""

    id: str
    created_at: datetime
    updated_at: datetime

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Capability):
            return self.id == other.id
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.id)


class CapabilityPatch(DashboardModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    owner: Optional[str] = None
    business_value: Optional[float] = None
    estimated_roi: Optional[float] = None


# ── Company profile & settings slices ────────────────────

PROFILE_TEXT_FIELDS = (
    "company_name", "industry", "annual_revenue", "employee_count",
    "company_type", "contact_email", "technology_setup",
)
PROFILE_LIST_FIELDS = ("sensitive_data_types", "operating_regions")


class CompanyProfile(DashboardModel):
    company_name: str = ""
    industry: str = ""
    annual_revenue: str = ""
    employee_count: str = ""
    company_type: str = ""
    contact_email: str = ""
    technology_setup: str = ""
    sensitive_data_types: tuple[str, ...] = ()
    operating_regions: tuple[str, ...] = ()
    profile_completed: bool = False
    last_updated: Optional[datetime] = None

    @field_validator("sensitive_data_types", "operating_regions", mode="before")
    @classmethod
    def _string_sets(cls, value: Any) -> tuple[str, ...]:
        return _unique_strings(value)

    def completion_percentage(self) -> int:
        """Share of required profile fields that are filled in, 0-100."""
        filled = sum(1 for name in PROFILE_TEXT_FIELDS if getattr(self, name).strip())
        filled += sum(1 for name in PROFILE_LIST_FIELDS if getattr(self, name))
        total = len(PROFILE_TEXT_FIELDS) + len(PROFILE_LIST_FIELDS)
        return round(filled / total * 100)


class DashboardSettings(DashboardModel):
    auto_save: bool = True
    notifications: bool = True
    compact_mode: bool = False


# ── Criteria (transient UI state) ────────────────────────


class SortSpec(DashboardModel):
    field: str = "id"
    direction: SortDirection = SortDirection.ASC


class Criteria(DashboardModel):
    filters: dict[str, str] = Field(default_factory=dict)
    search_term: str = ""
    search_history: tuple[str, ...] = ()
    sort: SortSpec = Field(default_factory=SortSpec)


# ── Derived view ─────────────────────────────────────────


class StatusBucket(DashboardModel):
    status: RequirementStatus
    count: int
    percentage: float


class PriorityBucket(DashboardModel):
    priority: Priority
    count: int
    percentage: float


class MaturityBucket(DashboardModel):
    level: MaturityLevelName
    count: int
    percentage: float


class ScatterPoint(DashboardModel):
    id: str
    business_value_score: float
    cost_thousands: float
    category: RequirementCategory


class CategoryStats(DashboardModel):
    category: RequirementCategory
    count: int
    avg_business_value: float
    avg_maturity_score: float


class OverallStats(DashboardModel):
    total_requirements: int = 0
    avg_business_value: float = 0.0
    avg_maturity_score: float = 0.0
    total_cost: float = 0.0


class Aggregates(DashboardModel):
    status_distribution: tuple[StatusBucket, ...] = ()
    maturity_distribution: tuple[MaturityBucket, ...] = ()
    business_value_points: tuple[ScatterPoint, ...] = ()
    priority_distribution: tuple[PriorityBucket, ...] = ()
    category_analysis: tuple[CategoryStats, ...] = ()
    overall: OverallStats = Field(default_factory=OverallStats)
    improvement_opportunities: int = 0


class DerivedView(DashboardModel):
    items: tuple[Requirement, ...] = ()
    total_count: int = 0
    filtered_count: int = 0
    aggregates: Aggregates = Field(default_factory=Aggregates)


# ── Import report ────────────────────────────────────────


class CsvRow(DashboardModel):
    """One raw CSV data row; ``row`` is 1-based, header excluded."""

    row: int
    values: dict[str, str]


class ImportReport(DashboardModel):
    """Outcome of a partial-success CSV import."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    admitted_ids: tuple[str, ...] = ()
    errors: tuple[ImportRowError, ...] = ()
    aborted: bool = False

    @field_serializer("errors")
    def _dump_errors(self, errors: tuple[ImportRowError, ...]) -> list[dict[str, Any]]:
        return [{"row": e.row, "reason": e.reason} for e in errors]

    @property
    def admitted_count(self) -> int:
        return len(self.admitted_ids)

    @property
    def rejected_rows(self) -> list[int]:
        return [e.row for e in self.errors]

    def merge(self, other: "ImportReport") -> "ImportReport":
        return ImportReport(
            admitted_ids=self.admitted_ids + other.admitted_ids,
            errors=tuple(sorted(self.errors + other.errors, key=lambda e: e.row)),
            aborted=self.aborted or other.aborted,
        )
