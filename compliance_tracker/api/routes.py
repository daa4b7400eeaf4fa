"""
API routes — thin HTTP layer that delegates to the DashboardStore.

Routes:
  GET  /health                                   → API health check
  GET  /api/dashboard/state                      → Raw state snapshot
  GET  /api/dashboard/view                       → Filtered/sorted items + aggregates
  POST /api/dashboard/actions                    → Dispatch one tagged action
  POST /api/dashboard/import                     → Upload a CSV file
  GET  /api/dashboard/export?filtered=           → Download requirements as CSV
  GET  /api/dashboard/capabilities/{id}/requirements
  GET  /api/dashboard/frameworks/{name}/requirements
  WS   /api/dashboard/ws                         → Real-time commit events

Store errors are turned into JSON responses by the handler registered in
``create_app``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.responses import Response
from pydantic import BaseModel

from compliance_tracker.api.websocket import StoreNotifier
from compliance_tracker.errors import CsvFormatError
from compliance_tracker.store.store import DashboardStore
from compliance_tracker.views.filtering import requirements_for_capability, requirements_for_framework

logger = logging.getLogger(__name__)

# ── Routers ──────────────────────────────────────────────
health_router = APIRouter()
dashboard_router = APIRouter()


# ── Dependencies ─────────────────────────────────────────

def get_store(request: Request) -> DashboardStore:
    return request.app.state.store


def get_notifier(request: Request) -> StoreNotifier:
    return request.app.state.notifier


# ── Response schemas ─────────────────────────────────────
class ActionResponse(BaseModel):
    action: str
    version: int
    import_report: Optional[dict[str, Any]] = None
    warnings: list[dict[str, Any]] = []


class ImportResponse(BaseModel):
    filename: str
    admitted_count: int
    rejected_count: int
    aborted: bool
    report: dict[str, Any]
    version: int


# ── Health ───────────────────────────────────────────────

@health_router.get("/health")
async def health_check():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ── Snapshots ────────────────────────────────────────────

@dashboard_router.get("/state")
def get_state(store: DashboardStore = Depends(get_store)):
    return store.state.model_dump(mode="json", by_alias=True)


@dashboard_router.get("/view")
def get_view(store: DashboardStore = Depends(get_store)):
    return store.view().model_dump(mode="json", by_alias=True)


# ── Actions ──────────────────────────────────────────────

@dashboard_router.post("/actions", response_model=ActionResponse)
def dispatch_action(payload: dict[str, Any], store: DashboardStore = Depends(get_store)):
    """
    Dispatch a tagged action, e.g.
        {"type": "create_requirement", "data": {"title": "MFA", "category": "technical"}}
    """
    result = store.dispatch(payload)
    report = result.import_report
    return ActionResponse(
        action=str(payload.get("type", "")),
        version=result.state.version,
        import_report=report.model_dump(mode="json", by_alias=True) if report is not None else None,
        warnings=[w.to_dict() for w in result.warnings],
    )


# ── CSV ──────────────────────────────────────────────────

@dashboard_router.post("/import", response_model=ImportResponse)
def import_csv(
    file: UploadFile = File(...),
    store: DashboardStore = Depends(get_store),
    notifier: StoreNotifier = Depends(get_notifier),
):
    """Import a CSV upload in chunks; bad rows are reported, good rows admitted."""
    filename = file.filename or "upload.csv"
    try:
        text = file.file.read().decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise CsvFormatError(f"{filename} is not UTF-8 text: {exc.reason}") from exc

    logger.info(f"Received CSV upload: {filename}")
    report = store.import_csv(text)
    version = store.state.version
    notifier.on_import_finished(report.admitted_count, len(report.errors), version)

    return ImportResponse(
        filename=filename,
        admitted_count=report.admitted_count,
        rejected_count=len(report.errors),
        aborted=report.aborted,
        report=report.model_dump(mode="json", by_alias=True),
        version=version,
    )


@dashboard_router.get("/export")
def export_csv(filtered: bool = False, store: DashboardStore = Depends(get_store)):
    body = store.export_csv(filtered=filtered)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="requirements-{stamp}.csv"'},
    )


# ── Relationship queries ─────────────────────────────────

@dashboard_router.get("/capabilities/{capability_id}/requirements")
def capability_requirements(capability_id: str, store: DashboardStore = Depends(get_store)):
    return [
        r.model_dump(mode="json", by_alias=True)
        for r in requirements_for_capability(store.state.requirements, capability_id)
    ]


@dashboard_router.get("/frameworks/{framework}/requirements")
def framework_requirements(framework: str, store: DashboardStore = Depends(get_store)):
    return [
        r.model_dump(mode="json", by_alias=True)
        for r in requirements_for_framework(store.state.requirements, framework)
    ]


# ── WebSocket endpoint for commit events ─────────────────

@dashboard_router.websocket("/ws")
async def ws_dashboard_events(websocket: WebSocket):
    """
    Clients connect here to follow the store.
    Receives JSON events: commit, import_finished.
    """
    notifier: StoreNotifier = websocket.app.state.notifier
    await notifier.connect(websocket)
    try:
        while True:
            # Keep the connection alive; client can send pings
            await websocket.receive_text()
    except WebSocketDisconnect:
        notifier.disconnect(websocket)
