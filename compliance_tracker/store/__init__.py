"""Store — pure reducer and the dispatching DashboardStore."""

from compliance_tracker.store.reducer import ReduceContext, Transition, reduce
from compliance_tracker.store.store import DashboardStore, DispatchResult

__all__ = ["DashboardStore", "DispatchResult", "ReduceContext", "Transition", "reduce"]
