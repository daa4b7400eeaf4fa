"""
Dashboard Store — the single writer around the pure reducer.

Responsibilities:
  - serialize ``dispatch`` calls (one action at a time)
  - publish immutable snapshots and notify subscribers
  - memoize the derived view on (requirements, criteria) identity
  - mirror dirty slices to the slice repository on a background worker
  - chunked CSV import and CSV export
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from compliance_tracker.config import Settings, get_settings
from compliance_tracker.errors import (
    ActionFailedError,
    DashboardError,
    PersistenceWarning,
    StoreClosedError,
    ValidationError,
)
from compliance_tracker.models.actions import ImportRows, LoadCollections, parse_action
from compliance_tracker.models.enums import SliceKey
from compliance_tracker.models.identity import IdFactory, utc_now
from compliance_tracker.models.schemas import DashboardModel, DerivedView, ImportReport
from compliance_tracker.models.state import DashboardState
from compliance_tracker.persistence.slice_repository import SliceRepository, get_slice_repository
from compliance_tracker.services.csv_service import export_requirements_csv, read_rows
from compliance_tracker.store.reducer import ReduceContext, reduce
from compliance_tracker.views.analytics import build_view

logger = logging.getLogger(__name__)

Listener = Callable[[DashboardState, DashboardModel], None]


@dataclass(frozen=True)
class DispatchResult:
    """What a committed action produced."""

    state: DashboardState
    import_report: Optional[ImportReport]
    persisted: "Future[list[PersistenceWarning]]"
    warnings: tuple[PersistenceWarning, ...] = ()


def _done(value: list[PersistenceWarning]) -> "Future[list[PersistenceWarning]]":
    future: Future[list[PersistenceWarning]] = Future()
    future.set_result(value)
    return future


class DashboardStore:
    """
    Holds the current ``DashboardState`` and applies actions to it.

    Usage::

        store = DashboardStore(InMemorySliceRepository())
        store.load()
        store.dispatch(CreateRequirement(data={"title": "MFA", "category": "technical"}))
        view = store.view()
    """

    def __init__(
        self,
        repository: SliceRepository | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: IdFactory | None = None,
        initial_state: DashboardState | None = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository if repository is not None else get_slice_repository(self.settings)
        self._ctx = ReduceContext(clock=clock, id_factory=id_factory or IdFactory(), settings=self.settings)
        self._state = initial_state or DashboardState()
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="slice-mirror")
        self._view_inputs: tuple[Any, Any] | None = None
        self._view: DerivedView | None = None
        self._closed = False
        # Slices whose last read failed; not overwritten until a clean load.
        self._unreadable: set[SliceKey] = set()

    # ── Snapshot access ──────────────────────────────────

    @property
    def state(self) -> DashboardState:
        return self._state

    def view(self) -> DerivedView:
        """Filtered/searched/sorted requirements plus aggregates, memoized."""
        with self._lock:
            state = self._state
            cached = self._view_inputs
            if (
                self._view is not None
                and cached is not None
                and cached[0] is state.requirements
                and cached[1] is state.criteria
            ):
                return self._view
            self._view = build_view(state.requirements, state.criteria)
            self._view_inputs = (state.requirements, state.criteria)
            return self._view

    # ── Dispatch ─────────────────────────────────────────

    @staticmethod
    def parse(payload: dict[str, Any]) -> DashboardModel:
        """Build an action from a tagged dict, raising the store's ``ValidationError``."""
        try:
            return parse_action(payload)
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc, "action") from None

    def dispatch(self, action: DashboardModel | dict[str, Any]) -> DispatchResult:
        """
        Apply one action.  On failure the ``DashboardError`` propagates and the
        published state is unchanged.
        """
        if isinstance(action, dict):
            action = self.parse(action)
        action_type = getattr(action, "type", type(action).__name__)

        with self._lock:
            if self._closed:
                raise StoreClosedError(action_type)
            try:
                transition = reduce(self._state, action, self._ctx)
            except DashboardError as exc:
                logger.warning(f"Rejected {action_type}: [{exc.code.value}] {exc.message}")
                raise
            except Exception as exc:
                logger.exception(f"Action {action_type} failed unexpectedly")
                raise ActionFailedError(action_type, exc) from exc

            self._state = transition.state
            if isinstance(action, LoadCollections):
                self._unreadable = {key for key in SliceKey if key.value in action.unreadable}
            for warning in transition.warnings:
                logger.warning(f"Load: {warning.message}")

            persisted = self._mirror(transition.state, transition.dirty, transition.durable)
            logger.info(
                f"Committed {action_type} → v{transition.state.version}"
                + (f" (dirty: {', '.join(sorted(k.value for k in transition.dirty))})" if transition.dirty else "")
            )
            self._notify(transition.state, action)

        return DispatchResult(
            state=transition.state,
            import_report=transition.import_report,
            persisted=persisted,
            warnings=transition.warnings,
        )

    # ── Subscriptions ────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener(state, action)``; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, state: DashboardState, action: DashboardModel) -> None:
        for listener in list(self._listeners):
            try:
                listener(state, action)
            except Exception:
                logger.exception(f"Store listener {listener!r} failed")

    # ── Persistence mirror ───────────────────────────────

    def _mirror(
        self,
        state: DashboardState,
        dirty: Iterable[SliceKey],
        durable: Iterable[SliceKey] = (),
    ) -> "Future[list[PersistenceWarning]]":
        keys = set(dirty)
        forced = keys & set(durable)
        if not state.settings.auto_save:
            # Turning auto-save off must itself survive a reload.
            keys &= {SliceKey.SETTINGS} | forced
        held = (keys & self._unreadable) - forced
        if held:
            logger.warning(
                f"Not writing unreadable slice(s) {', '.join(sorted(k.value for k in held))} until a clean load"
            )
            keys -= held
        if not keys:
            return _done([])
        payload = {key.value: state.slice_data(key) for key in sorted(keys, key=lambda k: k.value)}
        return self._executor.submit(self._write_slices, payload)

    def _write_slices(self, payload: dict[str, Any]) -> list[PersistenceWarning]:
        warnings: list[PersistenceWarning] = []
        for key, data in payload.items():
            try:
                self.repository.save(key, data)
            except PersistenceWarning as warning:
                logger.warning(f"Persistence: {warning.message}")
                warnings.append(warning)
            except Exception as exc:
                logger.exception(f"Persistence: unexpected failure writing slice '{key}'")
                warnings.append(PersistenceWarning(key, f"{type(exc).__name__}: {exc}"))
        return warnings

    def load(self) -> DispatchResult:
        """Read every slice from the repository and replace the collections."""
        with self._lock:
            # Queued writes must land before the repository is read back.
            self.flush()
            slices: dict[str, Any] = {}
            read_warnings: list[PersistenceWarning] = []
            for key in SliceKey:
                try:
                    data = self.repository.load(key.value)
                except PersistenceWarning as warning:
                    logger.warning(f"Persistence: {warning.message}")
                    read_warnings.append(warning)
                    continue
                if data is not None:
                    slices[key.value] = data
            unreadable = tuple(w.key for w in read_warnings)
            result = self.dispatch(LoadCollections(slices=slices, unreadable=unreadable))
        return replace(result, warnings=tuple(read_warnings) + result.warnings)

    def resync(self) -> "Future[list[PersistenceWarning]]":
        """Re-write every persisted slice from the current snapshot."""
        state = self._state
        payload = {key.value: state.slice_data(key) for key in SliceKey}
        logger.info(f"Resyncing {len(payload)} slices at v{state.version}")
        self._unreadable.clear()
        return self._executor.submit(self._write_slices, payload)

    def flush(self) -> None:
        """Block until every queued slice write has finished."""
        if not self._closed:
            self._executor.submit(lambda: None).result()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush()
            self._executor.shutdown(wait=True)
            self._closed = True
        self.repository.close()

    def __enter__(self) -> "DashboardStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ── CSV ──────────────────────────────────────────────

    def import_csv(
        self,
        text: str,
        chunk_size: int | None = None,
        should_abort: Callable[[], bool] | None = None,
    ) -> ImportReport:
        """
        Import a CSV document in chunks of ``chunk_size`` rows.

        Each chunk is its own committed ``ImportRows`` action, so subscribers
        see progress and an abort keeps the chunks already admitted.
        """
        rows = read_rows(text)
        size = max(1, chunk_size or self.settings.csv_import_chunk_size)
        report = ImportReport()

        for start in range(0, len(rows), size):
            if should_abort is not None and should_abort():
                logger.info(f"CSV import aborted after {start} of {len(rows)} rows")
                report = report.merge(ImportReport(aborted=True))
                break
            result = self.dispatch(ImportRows(rows=tuple(rows[start:start + size])))
            if result.import_report is not None:
                report = report.merge(result.import_report)

        logger.info(
            f"CSV import: {report.admitted_count} admitted, {len(report.errors)} rejected"
            + (" (aborted)" if report.aborted else "")
        )
        return report

    def export_csv(self, filtered: bool = False) -> str:
        """All requirements, or only the current view's items when ``filtered``."""
        items = self.view().items if filtered else self._state.requirements
        return export_requirements_csv(items, self.settings.csv_list_delimiter)
