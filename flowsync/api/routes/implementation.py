"""
Implementation API routes: prompts, agent runs, live output, tests and mappings.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from ...agents.controller import BuiltPrompt, ReconciliationController
from ...core.mapping import FlowMapping, flow_key
from ...core.test_output import TestSummary
from .projects import _run_tasks, get_controller, raise_http_error

router = APIRouter()
logger = logging.getLogger(__name__)


class PromptRequest(BaseModel):
    title: str
    content: str
    domain_id: str
    flow_id: str


class PromptResponse(BaseModel):
    title: str
    content: str
    domain_id: str
    flow_id: str
    state: str


class RunStartResponse(BaseModel):
    session_id: str
    status: str
    message: str


class CancelResponse(BaseModel):
    success: bool
    message: str


class TestCaseResponse(BaseModel):
    name: str
    status: str
    duration: float
    error: str | None = None


class TestSummaryResponse(BaseModel):
    total: int
    passed: int
    failed: int
    duration: float
    all_passed: bool
    cases: list[TestCaseResponse]


class StatusResponse(BaseModel):
    session_id: str
    state: str
    running: bool
    output: str
    offset: int
    exit_code: int | None = None
    error: str | None = None
    test_results: TestSummaryResponse | None = None


class MappingPayload(BaseModel):
    spec: str
    spec_hash: str
    files: list[str] = []
    file_hashes: dict[str, str] = {}
    implemented_at: str | None = None
    mode: str = "new"
    test_results: dict[str, Any] | None = None


def _summary_response(summary: TestSummary | None) -> TestSummaryResponse | None:
    if summary is None:
        return None
    return TestSummaryResponse(
        total=summary.total,
        passed=summary.passed,
        failed=summary.failed,
        duration=summary.duration,
        all_passed=summary.all_passed,
        cases=[
            TestCaseResponse(name=case.name, status=case.status, duration=case.duration, error=case.error)
            for case in summary.cases
        ],
    )


def _mapping_payload(mapping: FlowMapping) -> MappingPayload:
    return MappingPayload(**mapping.to_dict())


async def _run_in_background(project_id: str, controller: ReconciliationController) -> None:
    try:
        await controller.run_implementation()
    except asyncio.CancelledError:
        logger.info("Implementation run for %s was cancelled", project_id)
        raise
    except Exception:
        logger.exception("Implementation run failed for %s", project_id)
    finally:
        _run_tasks.pop(project_id, None)


@router.post("/{project_id}/prompt")
async def set_prompt(project_id: str, request: PromptRequest) -> PromptResponse:
    """Load a built prompt into the session; the panel becomes prompt_ready."""
    controller = get_controller(project_id)
    prompt = BuiltPrompt(
        title=request.title,
        content=request.content,
        flow_id=request.flow_id,
        domain_id=request.domain_id,
    )
    try:
        session = controller.set_prompt(prompt)
    except Exception as e:
        raise_http_error(e)
    return PromptResponse(
        title=prompt.title,
        content=prompt.content,
        domain_id=prompt.domain_id,
        flow_id=prompt.flow_id,
        state=session.state,
    )


@router.post("/{project_id}/run")
async def start_run(project_id: str) -> RunStartResponse:
    """Start the coding agent in the background and return immediately."""
    controller = get_controller(project_id)
    try:
        session = controller.check_can_run()
    except Exception as e:
        raise_http_error(e)
    existing = _run_tasks.get(project_id)
    if existing is not None and not existing.done():
        raise HTTPException(status_code=409, detail="A run is already in progress")

    _run_tasks[project_id] = asyncio.create_task(_run_in_background(project_id, controller))
    return RunStartResponse(session_id=session.session_id, status="started", message="Implementation started")


@router.post("/{project_id}/cancel")
async def cancel_run(project_id: str) -> CancelResponse:
    """Terminate the active process; no-op when nothing is running."""
    controller = get_controller(project_id)
    if controller.cancel_implementation():
        return CancelResponse(success=True, message="Cancellation requested")
    return CancelResponse(success=False, message="Nothing is running")


@router.get("/{project_id}/status")
async def get_status(project_id: str, since: int = Query(0, ge=0)) -> StatusResponse:
    """Session state plus output produced after character offset ``since``."""
    controller = get_controller(project_id)
    session = controller.session
    output = session.output
    start = min(since, len(output))
    return StatusResponse(
        session_id=session.session_id,
        state=session.state,
        running=session.running,
        output=output[start:],
        offset=len(output),
        exit_code=session.exit_code,
        error=session.error,
        test_results=_summary_response(session.test_results),
    )


@router.post("/{project_id}/tests")
async def run_tests(project_id: str) -> TestSummaryResponse:
    """Run the configured test command and return the parsed summary."""
    controller = get_controller(project_id)
    try:
        summary = await controller.run_tests()
    except Exception as e:
        raise_http_error(e)
    return _summary_response(summary)


@router.get("/{project_id}/mapping/{domain_id}/{flow_id}")
async def get_mapping(project_id: str, domain_id: str, flow_id: str) -> MappingPayload:
    controller = get_controller(project_id)
    mapping = controller.get_mapping(flow_key(domain_id, flow_id))
    if mapping is None:
        raise HTTPException(status_code=404, detail="No mapping recorded for this flow")
    return _mapping_payload(mapping)


@router.put("/{project_id}/mapping/{domain_id}/{flow_id}")
async def put_mapping(project_id: str, domain_id: str, flow_id: str, payload: MappingPayload) -> MappingPayload:
    """Replace the correspondence record for one flow."""
    controller = get_controller(project_id)
    data = payload.model_dump()
    if not data.get("implemented_at"):
        data["implemented_at"] = datetime.now().isoformat()
    mapping = FlowMapping.from_dict(data)
    try:
        controller.put_mapping(flow_key(domain_id, flow_id), mapping)
    except Exception as e:
        raise_http_error(e)
    return _mapping_payload(mapping)
