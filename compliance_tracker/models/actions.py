"""
Store actions as a closed, tagged union.

Each action is a frozen pydantic model with a literal ``type`` tag, so a
JSON body from the dashboard can be parsed straight into the right class
with ``parse_action``.  Record payloads are accepted either as models or as
plain dicts; the reducer validates dicts so that a malformed payload is
reported as a store ``ValidationError`` rather than failing at construction.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union, get_args

from pydantic import Field, TypeAdapter

from .enums import LinkMode, SortDirection, Theme
from .schemas import (
    CapabilityDraft,
    CapabilityPatch,
    CsvRow,
    DashboardModel,
    RequirementDraft,
    RequirementPatch,
)


# ── Collections ──────────────────────────────────────────


class LoadCollections(DashboardModel):
    """Replace slices with data read from storage; missing keys mean defaults."""
    type: Literal["load_collections"] = "load_collections"
    slices: dict[str, Any] = Field(default_factory=dict)
    # Keys whose stored data could not be read; they are left as defaults.
    unreadable: tuple[str, ...] = ()


class CreateRequirement(DashboardModel):
    type: Literal["create_requirement"] = "create_requirement"
    data: Union[RequirementDraft, dict[str, Any]] = Field(union_mode="left_to_right")


class UpdateRequirement(DashboardModel):
    type: Literal["update_requirement"] = "update_requirement"
    id: str
    patch: Union[RequirementPatch, dict[str, Any]] = Field(union_mode="left_to_right")


class DeleteRequirement(DashboardModel):
    type: Literal["delete_requirement"] = "delete_requirement"
    id: str


class LinkCapabilities(DashboardModel):
    type: Literal["link_capabilities"] = "link_capabilities"
    requirement_id: str
    capability_ids: tuple[str, ...]
    mode: LinkMode = LinkMode.UNION


class AttachEvidence(DashboardModel):
    type: Literal["attach_evidence"] = "attach_evidence"
    requirement_id: str
    evidence_ids: tuple[str, ...]


class CreateCapability(DashboardModel):
    type: Literal["create_capability"] = "create_capability"
    data: Union[CapabilityDraft, dict[str, Any]] = Field(union_mode="left_to_right")


class UpdateCapability(DashboardModel):
    type: Literal["update_capability"] = "update_capability"
    id: str
    patch: Union[CapabilityPatch, dict[str, Any]] = Field(union_mode="left_to_right")


class DeleteCapability(DashboardModel):
    type: Literal["delete_capability"] = "delete_capability"
    id: str


class ImportCsv(DashboardModel):
    type: Literal["import_csv"] = "import_csv"
    text: str


class ImportRows(DashboardModel):
    """Pre-split CSV rows; lets the store import a large file in chunks."""
    type: Literal["import_rows"] = "import_rows"
    rows: tuple[CsvRow, ...]


class PurgeAll(DashboardModel):
    type: Literal["purge_all"] = "purge_all"
    confirmation: Optional[str] = None


# ── Criteria ─────────────────────────────────────────────


class SetFilters(DashboardModel):
    type: Literal["set_filters"] = "set_filters"
    filters: dict[str, Optional[str]]


class ClearFilters(DashboardModel):
    type: Literal["clear_filters"] = "clear_filters"


class SetSearchTerm(DashboardModel):
    type: Literal["set_search_term"] = "set_search_term"
    term: str = ""


class ClearSearch(DashboardModel):
    type: Literal["clear_search"] = "clear_search"


class SetSort(DashboardModel):
    type: Literal["set_sort"] = "set_sort"
    field: str
    direction: SortDirection = SortDirection.ASC


# ── Profile, settings & layout slices ────────────────────


class UpdateCompanyProfile(DashboardModel):
    type: Literal["update_company_profile"] = "update_company_profile"
    patch: dict[str, Any]


class UpdateSettings(DashboardModel):
    type: Literal["update_settings"] = "update_settings"
    patch: dict[str, Any]


class SetTheme(DashboardModel):
    type: Literal["set_theme"] = "set_theme"
    theme: Theme


class SetSidebarOpen(DashboardModel):
    type: Literal["set_sidebar_open"] = "set_sidebar_open"
    open: bool


class ToggleSidebar(DashboardModel):
    type: Literal["toggle_sidebar"] = "toggle_sidebar"


Action = Annotated[
    Union[
        LoadCollections,
        CreateRequirement,
        UpdateRequirement,
        DeleteRequirement,
        LinkCapabilities,
        AttachEvidence,
        CreateCapability,
        UpdateCapability,
        DeleteCapability,
        ImportCsv,
        ImportRows,
        PurgeAll,
        SetFilters,
        ClearFilters,
        SetSearchTerm,
        ClearSearch,
        SetSort,
        UpdateCompanyProfile,
        UpdateSettings,
        SetTheme,
        SetSidebarOpen,
        ToggleSidebar,
    ],
    Field(discriminator="type"),
]

ACTION_TYPES: tuple[type[DashboardModel], ...] = get_args(get_args(Action)[0])

_action_adapter: TypeAdapter[Action] = TypeAdapter(Action)


def parse_action(payload: dict[str, Any]) -> DashboardModel:
    """Build the matching action model from a tagged dict (e.g. a JSON body)."""
    return _action_adapter.validate_python(payload)
