"""
Dashboard reducer — ``(state, action) → Transition``.

Every action class in ``ACTION_TYPES`` has exactly one handler, registered
with ``@handles``.  Handlers never mutate the incoming snapshot: they either
return a new state (version + 1, untouched slices shared by identity) or
raise a ``DashboardError`` and leave the caller's state as it was.

A ``Transition`` also names the slices that changed (for the persistence
mirror), the CSV import report and any load-time warnings.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from compliance_tracker.config import Settings, get_settings
from compliance_tracker.errors import (
    ErrorCode,
    ImportRowError,
    LinkIntegrityError,
    NotFoundError,
    PersistenceWarning,
    ValidationError,
)
from compliance_tracker.models.actions import (
    ACTION_TYPES,
    AttachEvidence,
    ClearFilters,
    ClearSearch,
    CreateCapability,
    CreateRequirement,
    DeleteCapability,
    DeleteRequirement,
    ImportCsv,
    ImportRows,
    LinkCapabilities,
    LoadCollections,
    PurgeAll,
    SetFilters,
    SetSearchTerm,
    SetSidebarOpen,
    SetSort,
    SetTheme,
    ToggleSidebar,
    UpdateCapability,
    UpdateCompanyProfile,
    UpdateRequirement,
    UpdateSettings,
)
from compliance_tracker.models.enums import LinkMode, SliceKey, Theme
from compliance_tracker.models.identity import (
    CAPABILITY_PREFIX,
    REQUIREMENT_PREFIX,
    IdFactory,
    utc_now,
)
from compliance_tracker.models.schemas import (
    Capability,
    CapabilityDraft,
    CapabilityPatch,
    CompanyProfile,
    Criteria,
    CsvRow,
    DashboardModel,
    DashboardSettings,
    ImportReport,
    Requirement,
    RequirementDraft,
    RequirementPatch,
    SortSpec,
)
from compliance_tracker.models.state import DashboardState
from compliance_tracker.services.csv_service import parse_row, read_rows
from compliance_tracker.views.filtering import (
    is_unconstrained,
    validate_filter_names,
    validate_sort_field,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class ReduceContext:
    """Injected sources of time, identity and configuration."""

    clock: Callable[[], datetime] = utc_now
    id_factory: IdFactory = field(default_factory=IdFactory)
    settings: Settings = field(default_factory=get_settings)


@dataclass(frozen=True)
class Transition:
    state: DashboardState
    dirty: frozenset[SliceKey] = frozenset()
    import_report: Optional[ImportReport] = None
    warnings: tuple[PersistenceWarning, ...] = ()
    # Written even when auto-save is off.
    durable: frozenset[SliceKey] = frozenset()


Handler = Callable[[DashboardState, Any, ReduceContext], Transition]

_HANDLERS: dict[type[DashboardModel], Handler] = {}


def handles(action_cls: type[DashboardModel]) -> Callable[[Handler], Handler]:
    def register(fn: Handler) -> Handler:
        _HANDLERS[action_cls] = fn
        return fn
    return register


def reduce(state: DashboardState, action: DashboardModel, ctx: ReduceContext | None = None) -> Transition:
    """Apply one action.  Raises a ``DashboardError`` on rejection."""
    handler = _HANDLERS.get(type(action))
    if handler is None:
        raise ValidationError(f"Unsupported action type '{type(action).__name__}'")
    return handler(state, action, ctx or ReduceContext())


# ── Helpers ──────────────────────────────────────────────


def _commit(state: DashboardState, dirty: Iterable[SliceKey] = (), **changes: Any) -> Transition:
    new_state = state.model_copy(update={**changes, "version": state.version + 1})
    return Transition(state=new_state, dirty=frozenset(dirty))


def _validate(model_cls: type[M], data: Any, subject: str) -> M:
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc, subject) from None


def _coerce(value: Any, model_cls: type[M], subject: str) -> M:
    if isinstance(value, model_cls):
        return value
    return _validate(model_cls, value, subject)


def _apply_patch(record: M, patch: Mapping[str, Any], subject: str, **extra: Any) -> M:
    """Merge a snake_case or camelCase patch dict into a record and re-validate."""
    fields = type(record).model_fields
    aliases = {to_camel(name): name for name in fields}
    data = record.model_dump()
    unknown = []
    for key, value in patch.items():
        name = key if key in fields else aliases.get(key)
        if name is None:
            unknown.append(key)
            continue
        data[name] = value
    if unknown:
        raise ValidationError(
            f"Unknown {subject} field(s): {', '.join(sorted(unknown))}",
            details={"unknown": sorted(unknown)},
        )
    data.update(extra)
    return _validate(type(record), data, subject)


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(v for v in values if v))


def _require_requirement(state: DashboardState, requirement_id: str) -> Requirement:
    found = state.find_requirement(requirement_id)
    if found is None:
        raise NotFoundError("Requirement", requirement_id)
    return found


def _require_capability(state: DashboardState, capability_id: str) -> Capability:
    found = state.find_capability(capability_id)
    if found is None:
        raise NotFoundError("Capability", capability_id, code=ErrorCode.CAPABILITY_NOT_FOUND)
    return found


def _check_links(state: DashboardState, capability_ids: Iterable[str]) -> None:
    known = state.capability_ids()
    for cid in capability_ids:
        if cid not in known:
            raise LinkIntegrityError(cid, message=f"Cannot link unknown capability '{cid}'")


def _replace(records: tuple[Any, ...], updated: Any) -> tuple[Any, ...]:
    return tuple(updated if r.id == updated.id else r for r in records)


def _new_requirement(draft: RequirementDraft, requirement_id: str, now: datetime) -> Requirement:
    return Requirement.model_validate({
        **draft.model_dump(),
        "id": requirement_id,
        "created_at": now,
        "updated_at": now,
    })


# ── Load ─────────────────────────────────────────────────


def _load_records(
    key: SliceKey,
    raw: Any,
    model_cls: type[Any],
    warnings: list[PersistenceWarning],
) -> tuple[Any, ...]:
    """Validate a stored record list; drop invalid entries and duplicate ids."""
    if raw is None:
        return ()
    if not isinstance(raw, list):
        warnings.append(PersistenceWarning(key.value, "expected a list of records",
                                           code=ErrorCode.PERSISTENCE_READ_FAILED))
        return ()
    records: dict[str, Any] = {}
    for index, item in enumerate(raw):
        try:
            record = model_cls.model_validate(item)
        except PydanticValidationError as exc:
            warnings.append(PersistenceWarning(
                key.value, f"dropped invalid record at index {index}: {exc.error_count()} error(s)",
                code=ErrorCode.PERSISTENCE_READ_FAILED,
            ))
            continue
        if record.id in records:
            warnings.append(PersistenceWarning(
                key.value, f"dropped duplicate id '{record.id}' at index {index}",
                code=ErrorCode.PERSISTENCE_READ_FAILED,
            ))
            continue
        records[record.id] = record
    return tuple(records.values())


def _load_single(key: SliceKey, raw: Any, default: Any, parse: Callable[[Any], Any],
                 warnings: list[PersistenceWarning]) -> Any:
    if raw is None:
        return default
    try:
        return parse(raw)
    except (PydanticValidationError, ValueError, TypeError) as exc:
        warnings.append(PersistenceWarning(key.value, f"invalid slice data, using default: {exc}",
                                           code=ErrorCode.PERSISTENCE_READ_FAILED))
        return default


def _parse_bool(raw: Any) -> bool:
    if not isinstance(raw, bool):
        raise TypeError(f"expected a boolean, got {type(raw).__name__}")
    return raw


@handles(LoadCollections)
def _load_collections(state: DashboardState, action: LoadCollections, ctx: ReduceContext) -> Transition:
    slices = action.slices
    warnings: list[PersistenceWarning] = []

    capabilities = _load_records(SliceKey.CAPABILITIES, slices.get(SliceKey.CAPABILITIES.value),
                                 Capability, warnings)
    requirements = _load_records(SliceKey.REQUIREMENTS, slices.get(SliceKey.REQUIREMENTS.value),
                                 Requirement, warnings)

    known = {c.id for c in capabilities}
    # Links cannot be checked against a capability slice that failed to read.
    check_links = SliceKey.CAPABILITIES.value not in action.unreadable
    repaired = []
    for req in requirements:
        dangling = [cid for cid in req.capability_ids if cid not in known] if check_links else []
        if dangling:
            warnings.append(PersistenceWarning(
                SliceKey.REQUIREMENTS.value,
                f"cleared dangling capability link(s) {', '.join(dangling)} on '{req.id}'",
                code=ErrorCode.PERSISTENCE_READ_FAILED,
            ))
            req = req.model_copy(update={
                "capability_ids": tuple(cid for cid in req.capability_ids if cid in known),
            })
        repaired.append(req)

    new_state = DashboardState(
        company_profile=_load_single(SliceKey.COMPANY_PROFILE, slices.get(SliceKey.COMPANY_PROFILE.value),
                                     CompanyProfile(), CompanyProfile.model_validate, warnings),
        requirements=tuple(repaired),
        capabilities=capabilities,
        settings=_load_single(SliceKey.SETTINGS, slices.get(SliceKey.SETTINGS.value),
                              DashboardSettings(), DashboardSettings.model_validate, warnings),
        theme=_load_single(SliceKey.THEME, slices.get(SliceKey.THEME.value), Theme.LIGHT, Theme, warnings),
        sidebar_open=_load_single(SliceKey.SIDEBAR_OPEN, slices.get(SliceKey.SIDEBAR_OPEN.value),
                                  True, _parse_bool, warnings),
        criteria=state.criteria,
        version=state.version + 1,
    )
    logger.debug(
        f"Loaded {len(new_state.requirements)} requirements, "
        f"{len(new_state.capabilities)} capabilities ({len(warnings)} warnings)"
    )
    return Transition(state=new_state, warnings=tuple(warnings))


# ── Requirements ─────────────────────────────────────────


@handles(CreateRequirement)
def _create_requirement(state: DashboardState, action: CreateRequirement, ctx: ReduceContext) -> Transition:
    draft = _coerce(action.data, RequirementDraft, "requirement")
    _check_links(state, draft.capability_ids)
    requirement_id = ctx.id_factory.mint(REQUIREMENT_PREFIX, state.requirement_ids())
    created = _new_requirement(draft, requirement_id, ctx.clock())
    return _commit(state, [SliceKey.REQUIREMENTS], requirements=state.requirements + (created,))


@handles(UpdateRequirement)
def _update_requirement(state: DashboardState, action: UpdateRequirement, ctx: ReduceContext) -> Transition:
    current = _require_requirement(state, action.id)
    patch = _coerce(action.patch, RequirementPatch, "requirement patch")
    updated = _apply_patch(current, patch.model_dump(exclude_unset=True), "requirement",
                           updated_at=ctx.clock())
    _check_links(state, [cid for cid in updated.capability_ids if cid not in current.capability_ids])
    return _commit(state, [SliceKey.REQUIREMENTS], requirements=_replace(state.requirements, updated))


@handles(DeleteRequirement)
def _delete_requirement(state: DashboardState, action: DeleteRequirement, ctx: ReduceContext) -> Transition:
    _require_requirement(state, action.id)
    remaining = tuple(r for r in state.requirements if r.id != action.id)
    return _commit(state, [SliceKey.REQUIREMENTS], requirements=remaining)


@handles(LinkCapabilities)
def _link_capabilities(state: DashboardState, action: LinkCapabilities, ctx: ReduceContext) -> Transition:
    current = _require_requirement(state, action.requirement_id)
    _check_links(state, action.capability_ids)
    if action.mode is LinkMode.REPLACE:
        linked = _unique(action.capability_ids)
    else:
        linked = _unique(current.capability_ids + action.capability_ids)
    updated = current.model_copy(update={"capability_ids": linked, "updated_at": ctx.clock()})
    return _commit(state, [SliceKey.REQUIREMENTS], requirements=_replace(state.requirements, updated))


@handles(AttachEvidence)
def _attach_evidence(state: DashboardState, action: AttachEvidence, ctx: ReduceContext) -> Transition:
    current = _require_requirement(state, action.requirement_id)
    evidence = _unique(current.evidence_ids + tuple(e.strip() for e in action.evidence_ids))
    updated = current.model_copy(update={"evidence_ids": evidence, "updated_at": ctx.clock()})
    return _commit(state, [SliceKey.REQUIREMENTS], requirements=_replace(state.requirements, updated))


# ── Capabilities ─────────────────────────────────────────


@handles(CreateCapability)
def _create_capability(state: DashboardState, action: CreateCapability, ctx: ReduceContext) -> Transition:
    draft = _coerce(action.data, CapabilityDraft, "capability")
    now = ctx.clock()
    created = Capability.model_validate({
        **draft.model_dump(),
        "id": ctx.id_factory.mint(CAPABILITY_PREFIX, state.capability_ids()),
        "created_at": now,
        "updated_at": now,
    })
    return _commit(state, [SliceKey.CAPABILITIES], capabilities=state.capabilities + (created,))


@handles(UpdateCapability)
def _update_capability(state: DashboardState, action: UpdateCapability, ctx: ReduceContext) -> Transition:
    current = _require_capability(state, action.id)
    patch = _coerce(action.patch, CapabilityPatch, "capability patch")
    updated = _apply_patch(current, patch.model_dump(exclude_unset=True), "capability",
                           updated_at=ctx.clock())
    return _commit(state, [SliceKey.CAPABILITIES], capabilities=_replace(state.capabilities, updated))


@handles(DeleteCapability)
def _delete_capability(state: DashboardState, action: DeleteCapability, ctx: ReduceContext) -> Transition:
    _require_capability(state, action.id)
    referenced_by = [r.id for r in state.requirements if action.id in r.capability_ids]
    if referenced_by:
        raise LinkIntegrityError(
            action.id,
            message=f"Capability '{action.id}' is still linked to {len(referenced_by)} requirement(s)",
            referenced_by=referenced_by,
        )
    remaining = tuple(c for c in state.capabilities if c.id != action.id)
    return _commit(state, [SliceKey.CAPABILITIES], capabilities=remaining)


# ── Import & purge ───────────────────────────────────────


def _import(state: DashboardState, rows: Iterable[CsvRow], ctx: ReduceContext) -> Transition:
    known = state.capability_ids()
    taken = state.requirement_ids()
    now = ctx.clock()
    admitted: list[Requirement] = []
    errors: list[ImportRowError] = []

    for row in rows:
        try:
            draft = parse_row(row, known, ctx.settings.csv_list_delimiter)
        except ImportRowError as err:
            errors.append(err)
            continue
        requirement_id = ctx.id_factory.mint(REQUIREMENT_PREFIX, taken)
        taken.add(requirement_id)
        admitted.append(_new_requirement(draft, requirement_id, now))

    report = ImportReport(admitted_ids=tuple(r.id for r in admitted), errors=tuple(errors))
    dirty = [SliceKey.REQUIREMENTS] if admitted else []
    transition = _commit(state, dirty, requirements=state.requirements + tuple(admitted))
    return Transition(state=transition.state, dirty=transition.dirty, import_report=report)


@handles(ImportCsv)
def _import_csv(state: DashboardState, action: ImportCsv, ctx: ReduceContext) -> Transition:
    return _import(state, read_rows(action.text), ctx)


@handles(ImportRows)
def _import_rows(state: DashboardState, action: ImportRows, ctx: ReduceContext) -> Transition:
    return _import(state, action.rows, ctx)


@handles(PurgeAll)
def _purge_all(state: DashboardState, action: PurgeAll, ctx: ReduceContext) -> Transition:
    if action.confirmation != ctx.settings.purge_confirmation_token:
        raise ValidationError(
            f"Purge requires the confirmation token '{ctx.settings.purge_confirmation_token}'",
            code=ErrorCode.PURGE_CONFIRMATION_MISMATCH,
        )
    purged = frozenset({SliceKey.REQUIREMENTS, SliceKey.CAPABILITIES})
    transition = _commit(state, purged, requirements=(), capabilities=())
    return replace(transition, durable=purged)


# ── Criteria ─────────────────────────────────────────────


def _with_criteria(state: DashboardState, **changes: Any) -> Transition:
    return _commit(state, criteria=state.criteria.model_copy(update=changes))


@handles(SetFilters)
def _set_filters(state: DashboardState, action: SetFilters, ctx: ReduceContext) -> Transition:
    validate_filter_names(action.filters)
    merged = {**state.criteria.filters, **action.filters}
    return _with_criteria(state, filters={
        name: value.strip() for name, value in merged.items() if not is_unconstrained(value)
    })


@handles(ClearFilters)
def _clear_filters(state: DashboardState, action: ClearFilters, ctx: ReduceContext) -> Transition:
    return _with_criteria(state, filters={})


@handles(SetSearchTerm)
def _set_search_term(state: DashboardState, action: SetSearchTerm, ctx: ReduceContext) -> Transition:
    term = action.term.strip()
    history = state.criteria.search_history
    if term:
        limit = ctx.settings.search_history_limit
        history = ((term,) + tuple(h for h in history if h != term))[:limit]
    return _with_criteria(state, search_term=action.term, search_history=history)


@handles(ClearSearch)
def _clear_search(state: DashboardState, action: ClearSearch, ctx: ReduceContext) -> Transition:
    return _commit(state, criteria=Criteria(filters=state.criteria.filters, sort=state.criteria.sort))


@handles(SetSort)
def _set_sort(state: DashboardState, action: SetSort, ctx: ReduceContext) -> Transition:
    validate_sort_field(action.field)
    return _with_criteria(state, sort=SortSpec(field=action.field, direction=action.direction))


# ── Profile, settings & layout ───────────────────────────


@handles(UpdateCompanyProfile)
def _update_company_profile(state: DashboardState, action: UpdateCompanyProfile, ctx: ReduceContext) -> Transition:
    profile = _apply_patch(state.company_profile, action.patch, "company profile", last_updated=ctx.clock())
    if "profile_completed" not in action.patch and "profileCompleted" not in action.patch:
        profile = profile.model_copy(update={"profile_completed": profile.completion_percentage() == 100})
    return _commit(state, [SliceKey.COMPANY_PROFILE], company_profile=profile)


@handles(UpdateSettings)
def _update_settings(state: DashboardState, action: UpdateSettings, ctx: ReduceContext) -> Transition:
    settings = _apply_patch(state.settings, action.patch, "settings")
    return _commit(state, [SliceKey.SETTINGS], settings=settings)


@handles(SetTheme)
def _set_theme(state: DashboardState, action: SetTheme, ctx: ReduceContext) -> Transition:
    return _commit(state, [SliceKey.THEME], theme=action.theme)


@handles(SetSidebarOpen)
def _set_sidebar_open(state: DashboardState, action: SetSidebarOpen, ctx: ReduceContext) -> Transition:
    return _commit(state, [SliceKey.SIDEBAR_OPEN], sidebar_open=action.open)


@handles(ToggleSidebar)
def _toggle_sidebar(state: DashboardState, action: ToggleSidebar, ctx: ReduceContext) -> Transition:
    return _commit(state, [SliceKey.SIDEBAR_OPEN], sidebar_open=not state.sidebar_open)


_missing = [cls.__name__ for cls in ACTION_TYPES if cls not in _HANDLERS]
if _missing:
    raise RuntimeError(f"No reducer handler for action(s): {', '.join(_missing)}")
