"""
Reconciliation API routes: drift detection, resolution and audit reports.
"""

import logging

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from ...core.drift import DriftResult
from ...core.reconciliation import ReconciliationAction, ReconciliationReport
from .projects import SyncScoreResponse, get_controller, raise_http_error

router = APIRouter()
logger = logging.getLogger(__name__)


class DriftItemResponse(BaseModel):
    flow_key: str
    flow_name: str
    domain_id: str
    spec_path: str
    previous_hash: str
    current_hash: str
    implemented_at: str
    detected_at: str
    direction: str
    changed_path: str


class DriftResponse(BaseModel):
    items: list[DriftItemResponse]
    sync_score: SyncScoreResponse


class ResolveRequest(BaseModel):
    flow_key: str
    action: ReconciliationAction


class ResolveAllRequest(BaseModel):
    action: ReconciliationAction


class ReconciliationEntryResponse(BaseModel):
    flow_key: str
    action: str
    previous_hash: str
    new_hash: str
    resolved_at: str


class ReconciliationReportResponse(BaseModel):
    report_id: str
    timestamp: str
    entries: list[ReconciliationEntryResponse]
    sync_score_before: int
    sync_score_after: int


class ResolveResponse(BaseModel):
    action: str
    state: str
    report: ReconciliationReportResponse | None = None
    drift: DriftResponse


def _drift_response(result: DriftResult) -> DriftResponse:
    return DriftResponse(
        items=[DriftItemResponse(**item.to_dict()) for item in result.items],
        sync_score=SyncScoreResponse(**result.score.to_dict()),
    )


def _report_response(report: ReconciliationReport | None) -> ReconciliationReportResponse | None:
    if report is None:
        return None
    return ReconciliationReportResponse(**report.to_dict())


@router.post("/{project_id}/detect")
async def detect_drift(project_id: str) -> DriftResponse:
    """Re-hash specs and implementation files and publish the drift list."""
    controller = get_controller(project_id)
    try:
        result = controller.detect_drift()
    except Exception as e:
        raise_http_error(e)
    return _drift_response(result)


@router.get("/{project_id}/drift")
async def get_drift(project_id: str) -> DriftResponse:
    """Last published drift list and sync score, without re-hashing."""
    controller = get_controller(project_id)
    return _drift_response(controller.session.drift)


@router.post("/{project_id}/resolve")
async def resolve(project_id: str, request: ResolveRequest) -> ResolveResponse:
    """Accept, reimplement or ignore one drifted flow."""
    controller = get_controller(project_id)
    if controller.session.drift.find(request.flow_key) is None:
        raise HTTPException(status_code=404, detail=f"No drift listed for {request.flow_key}")
    try:
        report = controller.resolve(request.flow_key, request.action)
    except Exception as e:
        raise_http_error(e)
    session = controller.session
    return ResolveResponse(
        action=request.action,
        state=session.state,
        report=_report_response(report),
        drift=_drift_response(session.drift),
    )


@router.post("/{project_id}/resolve-all")
async def resolve_all(project_id: str, request: ResolveAllRequest) -> ResolveResponse:
    """Accept or ignore every listed drift entry as a single audited batch."""
    controller = get_controller(project_id)
    try:
        report = controller.resolve_all(request.action)
    except Exception as e:
        raise_http_error(e)
    session = controller.session
    return ResolveResponse(
        action=request.action,
        state=session.state,
        report=_report_response(report),
        drift=_drift_response(session.drift),
    )


@router.get("/{project_id}/reports")
async def list_reports(project_id: str, limit: int = Query(50, ge=1, le=500)) -> list[ReconciliationReportResponse]:
    """Reconciliation audit reports, newest first."""
    controller = get_controller(project_id)
    try:
        reports = controller.list_reports(limit=limit)
    except Exception as e:
        raise_http_error(e)
    return [ReconciliationReportResponse(**report.to_dict()) for report in reports]
