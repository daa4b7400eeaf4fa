"""
Tests: reducer semantics through the DashboardStore.

Run with:
    pytest compliance_tracker/tests/test_store.py -v
"""

import time

import pytest

from compliance_tracker.errors import (
    ActionFailedError,
    CsvFormatError,
    ErrorCode,
    LinkIntegrityError,
    NotFoundError,
    PersistenceWarning,
    StoreClosedError,
    ValidationError,
)
from compliance_tracker.models.actions import (
    AttachEvidence,
    ClearFilters,
    ClearSearch,
    CreateCapability,
    CreateRequirement,
    DeleteCapability,
    DeleteRequirement,
    ImportCsv,
    LinkCapabilities,
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
from compliance_tracker.models.enums import LinkMode, Priority, Theme
from compliance_tracker.models.identity import SequentialIdFactory
from compliance_tracker.persistence.slice_repository import InMemorySliceRepository
from compliance_tracker.services.csv_service import CSV_HEADER, read_rows
from compliance_tracker.store.store import DashboardStore
from conftest import T0, FakeClock

CSV_WITH_BAD_ROW = (
    "title,category,status\r\n"
    "Row one,technical,active\r\n"
    "Row two,operational,draft\r\n"
    "Row three,governance,Bogus\r\n"
    "Row four,compliance,implemented\r\n"
    "Row five,technical,deprecated\r\n"
)


def create(store, **fields):
    data = {"title": "Enforce MFA", "category": "technical", **fields}
    return store.dispatch(CreateRequirement(data=data)).state.requirements[-1]


def create_capability(store, name="Identity Platform"):
    return store.dispatch(CreateCapability(data={"name": name})).state.capabilities[-1]


class TestCreateRequirement:
    def test_mints_identity_and_timestamps(self, store):
        req = create(store)
        assert req.id == "REQ-0001"
        assert req.created_at == req.updated_at == T0
        assert store.state.version == 1

    def test_invalid_draft_leaves_state_untouched(self, store):
        before = store.state
        with pytest.raises(ValidationError):
            store.dispatch(CreateRequirement(data={"title": "", "category": "technical"}))
        assert store.state is before

    def test_caller_cannot_supply_id(self, store):
        with pytest.raises(ValidationError):
            store.dispatch(CreateRequirement(data={"id": "REQ-X", "title": "A", "category": "technical"}))

    def test_unknown_capability_rejected(self, store):
        with pytest.raises(LinkIntegrityError):
            create(store, capability_ids=["CAP-404"])
        assert store.state.requirements == ()


class TestUpdateRequirement:
    def test_merges_patch_and_bumps_updated_at(self, store):
        req = create(store)
        store.dispatch(UpdateRequirement(id=req.id, patch={"priority": "critical"}))
        updated = store.state.find_requirement(req.id)
        assert updated.priority == Priority.CRITICAL
        assert updated.title == "Enforce MFA"
        assert updated.created_at == req.created_at
        assert updated.updated_at > req.updated_at

    def test_accepts_camel_case_patch(self, store):
        req = create(store)
        store.dispatch({"type": "update_requirement", "id": req.id, "patch": {"costEstimate": 5000}})
        assert store.state.find_requirement(req.id).cost_estimate == 5000

    def test_invalid_patch_rejected(self, store):
        req = create(store)
        before = store.state
        with pytest.raises(ValidationError):
            store.dispatch(UpdateRequirement(id=req.id, patch={"business_value_score": 9}))
        assert store.state is before

    def test_unknown_id(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            store.dispatch(UpdateRequirement(id="REQ-404", patch={"title": "x"}))
        assert exc_info.value.code == ErrorCode.REQUIREMENT_NOT_FOUND


class TestDeleteRequirement:
    def test_delete(self, store):
        req = create(store)
        store.dispatch(DeleteRequirement(id=req.id))
        assert store.state.requirements == ()

    def test_unknown_id_leaves_collection(self, store):
        create(store)
        with pytest.raises(NotFoundError):
            store.dispatch(DeleteRequirement(id="REQ-404"))
        assert len(store.state.requirements) == 1


class TestLinkCapabilities:
    def test_missing_capability_rejected_and_links_unchanged(self, store):
        cap = create_capability(store)
        req = create(store, capability_ids=[cap.id])
        with pytest.raises(LinkIntegrityError) as exc_info:
            store.dispatch(LinkCapabilities(requirement_id=req.id, capability_ids=["C-missing"]))
        assert isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.entity_id == "C-missing"
        assert store.state.find_requirement(req.id).capability_ids == (cap.id,)

    def test_unknown_requirement_is_plain_not_found(self, store):
        cap = create_capability(store)
        with pytest.raises(NotFoundError) as exc_info:
            store.dispatch(LinkCapabilities(requirement_id="REQ-404", capability_ids=[cap.id]))
        assert not isinstance(exc_info.value, LinkIntegrityError)

    def test_union_and_replace(self, store):
        first = create_capability(store, "A")
        second = create_capability(store, "B")
        req = create(store, capability_ids=[first.id])
        store.dispatch(LinkCapabilities(requirement_id=req.id, capability_ids=[second.id, first.id]))
        assert store.state.find_requirement(req.id).capability_ids == (first.id, second.id)
        store.dispatch(LinkCapabilities(requirement_id=req.id, capability_ids=[second.id], mode=LinkMode.REPLACE))
        assert store.state.find_requirement(req.id).capability_ids == (second.id,)


class TestEvidenceAndCapabilities:
    def test_attach_evidence_unions(self, store):
        req = create(store, evidence_ids=["EV-1"])
        store.dispatch(AttachEvidence(requirement_id=req.id, evidence_ids=["EV-2", "EV-1"]))
        assert store.state.find_requirement(req.id).evidence_ids == ("EV-1", "EV-2")

    def test_capability_crud(self, store):
        cap = create_capability(store)
        assert cap.id == "CAP-0001"
        store.dispatch(UpdateCapability(id=cap.id, patch={"owner": "Security"}))
        assert store.state.find_capability(cap.id).owner == "Security"
        store.dispatch(DeleteCapability(id=cap.id))
        assert store.state.capabilities == ()

    def test_referenced_capability_cannot_be_deleted(self, store):
        cap = create_capability(store)
        req = create(store, capability_ids=[cap.id])
        with pytest.raises(LinkIntegrityError) as exc_info:
            store.dispatch(DeleteCapability(id=cap.id))
        assert exc_info.value.referenced_by == [req.id]
        assert store.state.find_capability(cap.id) is not None

    def test_unknown_capability_update(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            store.dispatch(UpdateCapability(id="CAP-404", patch={"owner": "x"}))
        assert exc_info.value.code == ErrorCode.CAPABILITY_NOT_FOUND


class TestCsvImport:
    def test_bad_row_reported_others_admitted(self, store):
        result = store.dispatch(ImportCsv(text=CSV_WITH_BAD_ROW))
        report = result.import_report
        assert report.admitted_count == 4
        assert [(e.row, "status" in e.reason) for e in report.errors] == [(3, True)]
        titles = [r.title for r in store.state.requirements]
        assert titles == ["Row one", "Row two", "Row four", "Row five"]

    def test_bad_header_rejects_whole_action(self, store):
        before = store.state
        with pytest.raises(CsvFormatError):
            store.dispatch(ImportCsv(text="name,priority\nA,high\n"))
        assert store.state is before

    def test_row_with_unknown_capability_rejected(self, store):
        report = store.dispatch(ImportCsv(text="title,category,capabilityIds\nA,technical,CAP-404\n")).import_report
        assert report.admitted_count == 0
        assert report.rejected_rows == [1]

    def test_import_mints_fresh_ids(self, store):
        existing = create(store)
        csv_text = f"id,title,category\n{existing.id},Copy,technical\n"
        store.dispatch(ImportCsv(text=csv_text))
        assert [r.id for r in store.state.requirements] == ["REQ-0001", "REQ-0002"]

    def test_chunked_import(self, store):
        report = store.import_csv(CSV_WITH_BAD_ROW, chunk_size=2)
        assert report.admitted_count == 4
        assert report.rejected_rows == [3]
        assert store.state.version == 3

    def test_abort_keeps_committed_chunks(self, store):
        calls = []

        def should_abort():
            calls.append(1)
            return len(calls) > 1

        report = store.import_csv(CSV_WITH_BAD_ROW, chunk_size=2, should_abort=should_abort)
        assert report.aborted
        assert report.admitted_count == 2
        assert len(store.state.requirements) == 2

    def test_export_round_trip_through_store(self, store):
        create(store, tags=["iam", "mfa", "pci;dss"], cost_estimate=1200)
        exported = store.export_csv()
        other = DashboardStore(InMemorySliceRepository(), settings=store.settings,
                               id_factory=SequentialIdFactory(start=100))
        other.import_csv(exported)
        copy = other.state.requirements[0]
        assert copy.id == "REQ-0100"
        assert copy.tags == ("iam", "mfa", "pci;dss")
        assert copy.cost_estimate == 1200
        other.close()

    def test_import_then_export_reproduces_field_values(self, store):
        source = (
            ",".join(CSV_HEADER) + "\r\n"
            + "X-1,Title A,\"multi\nline\",technical,high,active,ISO 27001,A.9,,EV-1;EV-2,iam,Because,"
              "low,Audit,Defined,3,4.5,1200,,\r\n"
            + "X-2,Title B,,operational,medium,draft,,,,,,,medium,,Initial,1,0,0,,\r\n"
        )
        store.dispatch(ImportCsv(text=source))
        exported = store.export_csv()
        assert [r.values for r in read_rows(exported)] == [r.values for r in read_rows(source)]

    def test_export_filtered(self, store):
        create(store, status="active")
        create(store, status="draft", title="Other")
        store.dispatch(SetFilters(filters={"status": "draft"}))
        lines = store.export_csv(filtered=True).strip().split("\r\n")
        assert len(lines) == 2
        assert "Other" in lines[1]
        assert len(store.export_csv().strip().split("\r\n")) == 3


class TestPurge:
    def test_requires_confirmation(self, store):
        create(store)
        for token in (None, "delete", "yes"):
            with pytest.raises(ValidationError) as exc_info:
                store.dispatch(PurgeAll(confirmation=token))
            assert exc_info.value.code == ErrorCode.PURGE_CONFIRMATION_MISMATCH
        assert len(store.state.requirements) == 1

    def test_purged_records_do_not_resurrect(self, store, repository, settings):
        create_capability(store)
        create(store)
        store.dispatch(PurgeAll(confirmation="DELETE"))
        assert store.state.requirements == () and store.state.capabilities == ()
        store.flush()

        reloaded = DashboardStore(repository, settings=settings)
        reloaded.load()
        assert reloaded.state.requirements == ()
        assert reloaded.state.capabilities == ()
        reloaded.close()

    def test_reload_waits_for_queued_purge_write(self, settings):
        class SlowRepository(InMemorySliceRepository):
            def save(self, key, data):
                time.sleep(0.05)
                super().save(key, data)

        store = DashboardStore(SlowRepository(), settings=settings, id_factory=SequentialIdFactory())
        create(store)
        store.flush()
        store.dispatch(PurgeAll(confirmation="DELETE"))
        assert store.load().state.requirements == ()
        store.close()

    def test_purge_is_written_with_auto_save_off(self, store, repository):
        create_capability(store)
        create(store)
        store.flush()
        store.dispatch(UpdateSettings(patch={"auto_save": False}))
        store.dispatch(PurgeAll(confirmation="DELETE"))

        state = store.load().state
        assert state.requirements == ()
        assert state.capabilities == ()
        assert state.settings.auto_save is False
        assert repository.load("requirements") == []
        assert repository.load("capabilities") == []


class TestCriteria:
    def test_set_filters_is_idempotent(self, store):
        create(store, status="active", priority="high")
        create(store, status="draft", priority="high")
        action = SetFilters(filters={"status": "active", "priority": "high"})
        store.dispatch(action)
        first = store.state.criteria
        first_items = store.view().items
        store.dispatch(action)
        assert store.state.criteria == first
        assert store.view().items == first_items
        assert [r.id for r in first_items] == ["REQ-0001"]

    def test_filters_merge_and_clear(self, store):
        store.dispatch(SetFilters(filters={"status": "active"}))
        store.dispatch(SetFilters(filters={"priority": "high", "status": "all"}))
        assert store.state.criteria.filters == {"priority": "high"}
        store.dispatch(ClearFilters())
        assert store.state.criteria.filters == {}

    def test_unknown_filter(self, store):
        with pytest.raises(ValidationError):
            store.dispatch(SetFilters(filters={"colour": "red"}))

    def test_search_history(self, store, settings):
        for term in ["mfa", "encryption", "mfa", "  ", "backup"]:
            store.dispatch(SetSearchTerm(term=term))
        assert store.state.criteria.search_history == ("backup", "mfa", "encryption")
        store.dispatch(ClearSearch())
        assert store.state.criteria.search_term == ""
        assert store.state.criteria.search_history == ()

    def test_search_history_limit(self, store, settings):
        for i in range(settings.search_history_limit + 3):
            store.dispatch(SetSearchTerm(term=f"term {i}"))
        history = store.state.criteria.search_history
        assert len(history) == settings.search_history_limit
        assert history[0] == f"term {settings.search_history_limit + 2}"

    def test_sort(self, store):
        store.dispatch(SetSort(field="priority", direction="desc"))
        assert store.state.criteria.sort.field == "priority"
        with pytest.raises(ValidationError) as exc_info:
            store.dispatch(SetSort(field="colour"))
        assert exc_info.value.code == ErrorCode.UNKNOWN_SORT_FIELD

    def test_criteria_are_not_persisted(self, store, repository):
        store.dispatch(SetFilters(filters={"status": "active"}))
        store.flush()
        assert repository.keys() == []


class TestView:
    def test_memoized_until_inputs_change(self, store):
        create(store)
        view = store.view()
        assert store.view() is view
        store.dispatch(SetTheme(theme=Theme.DARK))
        assert store.view() is view
        store.dispatch(SetSearchTerm(term="mfa"))
        assert store.view() is not view

    def test_view_follows_criteria(self, store):
        create(store, priority="low")
        create(store, priority="high", title="Second")
        store.dispatch(SetSort(field="priority", direction="desc"))
        view = store.view()
        assert [r.title for r in view.items] == ["Second", "Enforce MFA"]
        assert view.aggregates.overall.total_requirements == 2


class TestProfileAndLayout:
    def test_company_profile(self, store, repository):
        store.dispatch(UpdateCompanyProfile(patch={"companyName": "Acme", "industry": "Finance"}))
        profile = store.state.company_profile
        assert profile.company_name == "Acme"
        assert profile.last_updated is not None
        assert profile.profile_completed is False
        store.flush()
        assert repository.load("company_profile")["companyName"] == "Acme"

    def test_unknown_profile_field(self, store):
        with pytest.raises(ValidationError):
            store.dispatch(UpdateCompanyProfile(patch={"favouriteColour": "blue"}))

    def test_theme_and_sidebar(self, store, repository):
        store.dispatch(SetTheme(theme="dark"))
        store.dispatch(ToggleSidebar())
        assert store.state.sidebar_open is False
        store.dispatch(SetSidebarOpen(open=True))
        store.flush()
        assert repository.load("theme") == "dark"
        assert repository.load("sidebar_open") is True

    def test_auto_save_off_stops_mirroring(self, store, repository):
        store.dispatch(UpdateSettings(patch={"auto_save": False}))
        create(store)
        store.flush()
        assert repository.load("requirements") is None
        assert repository.load("settings")["autoSave"] is False

    def test_resync_writes_every_slice(self, store, repository):
        store.dispatch(UpdateSettings(patch={"autoSave": False}))
        create(store)
        assert store.resync().result() == []
        assert len(repository.load("requirements")) == 1
        assert set(repository.keys()) == {
            "company_profile", "requirements", "capabilities", "settings", "theme", "sidebar_open",
        }


class TestLoad:
    def test_load_repairs_stored_data(self, settings):
        good = {"id": "REQ-1", "title": "A", "category": "technical", "capabilityIds": ["CAP-1", "CAP-9"],
                "createdAt": "2024-01-01T00:00:00Z", "updatedAt": "2024-01-01T00:00:00Z"}
        repo = InMemorySliceRepository({
            "requirements": [good, {**good, "title": "dup"}, {"id": "REQ-2", "title": ""}],
            "capabilities": [{"id": "CAP-1", "name": "IdP", "createdAt": "2024-01-01T00:00:00Z",
                              "updatedAt": "2024-01-01T00:00:00Z"}],
            "theme": "purple",
            "sidebar_open": False,
        })
        store = DashboardStore(repo, settings=settings)
        result = store.load()
        state = result.state
        assert [r.title for r in state.requirements] == ["A"]
        assert state.requirements[0].capability_ids == ("CAP-1",)
        assert state.theme == Theme.LIGHT
        assert state.sidebar_open is False
        # duplicate, invalid record, dangling link, bad theme
        assert len(result.warnings) == 4
        assert result.persisted.result() == []
        store.close()

    def test_unreadable_slice_becomes_warning(self, settings):
        class FlakyRepository(InMemorySliceRepository):
            def load(self, key):
                if key == "capabilities":
                    raise PersistenceWarning(key, "disk on fire", code=ErrorCode.PERSISTENCE_READ_FAILED)
                return super().load(key)

        store = DashboardStore(FlakyRepository({"theme": "dark"}), settings=settings)
        result = store.load()
        assert [w.key for w in result.warnings] == ["capabilities"]
        assert store.state.theme == Theme.DARK
        store.close()

    def test_unreadable_capabilities_do_not_strip_links(self, settings):
        class FlakyRepository(InMemorySliceRepository):
            def load(self, key):
                if key == "capabilities":
                    raise PersistenceWarning(key, "timed out", code=ErrorCode.PERSISTENCE_READ_FAILED)
                return super().load(key)

        stamp = {"createdAt": "2024-01-01T00:00:00Z", "updatedAt": "2024-01-01T00:00:00Z"}
        repo = FlakyRepository({
            "requirements": [{"id": "REQ-1", "title": "A", "category": "technical",
                              "capabilityIds": ["CAP-1"], **stamp}],
            "capabilities": [{"id": "CAP-1", "name": "IdP", **stamp}],
        })
        store = DashboardStore(repo, settings=settings)
        result = store.load()
        assert [w.key for w in result.warnings] == ["capabilities"]
        assert store.state.requirements[0].capability_ids == ("CAP-1",)

        store.dispatch(UpdateRequirement(id="REQ-1", patch={"title": "B"}))
        store.dispatch(CreateCapability(data={"name": "Vault"}))
        store.flush()
        stored = InMemorySliceRepository.load(repo, "requirements")
        assert stored[0]["title"] == "B"
        assert stored[0]["capabilityIds"] == ["CAP-1"]
        assert [c["id"] for c in InMemorySliceRepository.load(repo, "capabilities")] == ["CAP-1"]
        store.close()


class TestStoreShell:
    def test_every_commit_bumps_version(self, store):
        store.dispatch(SetTheme(theme="dark"))
        store.dispatch(ClearFilters())
        assert store.state.version == 2

    def test_dict_payloads(self, store):
        store.dispatch({"type": "create_requirement", "data": {"title": "A", "category": "technical"}})
        assert len(store.state.requirements) == 1
        with pytest.raises(ValidationError):
            store.dispatch({"type": "no_such_action"})

    def test_subscribe_and_unsubscribe(self, store):
        seen = []
        unsubscribe = store.subscribe(lambda state, action: seen.append((state.version, action.type)))
        store.dispatch(SetTheme(theme="dark"))
        unsubscribe()
        store.dispatch(SetTheme(theme="light"))
        assert seen == [(1, "set_theme")]

    def test_failing_listener_does_not_break_dispatch(self, store):
        def boom(state, action):
            raise RuntimeError("listener bug")

        store.subscribe(boom)
        assert store.dispatch(ToggleSidebar()).state.version == 1

    def test_unexpected_error_is_wrapped(self, store, monkeypatch):
        def broken_reduce(state, action, ctx):
            raise KeyError("oops")

        monkeypatch.setattr("compliance_tracker.store.store.reduce", broken_reduce)
        before = store.state
        with pytest.raises(ActionFailedError) as exc_info:
            store.dispatch(ToggleSidebar())
        assert exc_info.value.details["action"] == "toggle_sidebar"
        assert store.state is before

    def test_persistence_failure_keeps_state(self, settings):
        class ReadOnlyRepository(InMemorySliceRepository):
            def save(self, key, data):
                raise PersistenceWarning(key, "read-only filesystem")

        store = DashboardStore(ReadOnlyRepository(), settings=settings, clock=FakeClock())
        result = store.dispatch(CreateRequirement(data={"title": "A", "category": "technical"}))
        warnings = result.persisted.result(timeout=5)
        assert [w.key for w in warnings] == ["requirements"]
        assert len(store.state.requirements) == 1
        store.close()

    def test_mirror_writes_dirty_slices(self, store, repository):
        create(store)
        store.flush()
        assert len(repository.load("requirements")) == 1
        assert repository.load("capabilities") is None

    def test_dispatch_after_close_is_rejected(self, settings):
        store = DashboardStore(InMemorySliceRepository(), settings=settings)
        seen = []
        store.subscribe(lambda state, action: seen.append(action))
        store.close()
        with pytest.raises(StoreClosedError) as exc_info:
            store.dispatch(SetTheme(theme="dark"))
        assert exc_info.value.code == ErrorCode.STORE_CLOSED
        assert store.state.version == 0
        assert store.state.theme == Theme.LIGHT
        assert seen == []
