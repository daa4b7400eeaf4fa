"""
Dashboard root state — the single snapshot the store publishes.

Design rules:
  1. Snapshots are immutable; the reducer builds a new one per action.
  2. Unchanged slices are shared between consecutive snapshots, so identity
     checks (``is``) tell the view cache and the persistence mirror what moved.
  3. ``version`` increases by one on every committed action.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from .enums import SliceKey, Theme
from .schemas import (
    Capability,
    CompanyProfile,
    Criteria,
    DashboardModel,
    DashboardSettings,
    Requirement,
)


class DashboardState(DashboardModel):
    """Root state of one store instance."""

    # ── Persisted slices ─────────────────────────────────
    company_profile: CompanyProfile = Field(default_factory=CompanyProfile)
    requirements: tuple[Requirement, ...] = ()
    capabilities: tuple[Capability, ...] = ()
    settings: DashboardSettings = Field(default_factory=DashboardSettings)
    theme: Theme = Theme.LIGHT
    sidebar_open: bool = True

    # ── Transient UI criteria (never persisted) ──────────
    criteria: Criteria = Field(default_factory=Criteria)

    # ── Bookkeeping ──────────────────────────────────────
    version: int = 0

    # ── Lookups ──────────────────────────────────────────

    def find_requirement(self, requirement_id: str) -> Requirement | None:
        return next((r for r in self.requirements if r.id == requirement_id), None)

    def find_capability(self, capability_id: str) -> Capability | None:
        return next((c for c in self.capabilities if c.id == capability_id), None)

    def requirement_ids(self) -> set[str]:
        return {r.id for r in self.requirements}

    def capability_ids(self) -> set[str]:
        return {c.id for c in self.capabilities}

    # ── Slice (de)serialization ──────────────────────────

    def slice_data(self, key: SliceKey) -> Any:
        """JSON-compatible payload for one persisted slice."""
        key = SliceKey(key)
        if key is SliceKey.COMPANY_PROFILE:
            return self.company_profile.model_dump(mode="json", by_alias=True)
        if key is SliceKey.REQUIREMENTS:
            return [r.model_dump(mode="json", by_alias=True) for r in self.requirements]
        if key is SliceKey.CAPABILITIES:
            return [c.model_dump(mode="json", by_alias=True) for c in self.capabilities]
        if key is SliceKey.SETTINGS:
            return self.settings.model_dump(mode="json", by_alias=True)
        if key is SliceKey.THEME:
            return self.theme.value
        if key is SliceKey.SIDEBAR_OPEN:
            return self.sidebar_open
        raise KeyError(key)

    def persisted_slices(self) -> dict[str, Any]:
        return {key.value: self.slice_data(key) for key in SliceKey}
