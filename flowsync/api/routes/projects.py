"""
Project API routes: open and close a project's reconciliation controller.
"""

import asyncio
import logging
import threading
from pathlib import Path
from typing import NoReturn

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ...agents.controller import InvalidTransitionError, ReconciliationController
from ...core.runtime import project_id_for_path
from ...core.settings import SettingsStore
from ...core.units import SpecTreeEnumerator

router = APIRouter()
logger = logging.getLogger(__name__)

# Open controllers keyed by project id; one controller (and session) per project.
_controllers: dict[str, ReconciliationController] = {}
_controllers_lock = threading.Lock()
# Background implementation runs keyed by project id.
_run_tasks: dict[str, asyncio.Task] = {}


class OpenProjectRequest(BaseModel):
    path: str
    agent_command: str | None = None
    agent_args: list[str] | None = None
    test_command: str | None = None
    test_args: list[str] | None = None
    watch: bool = False


class SyncScoreResponse(BaseModel):
    total: int
    implemented: int
    stale: int
    pending: int
    score: int


class ProjectResponse(BaseModel):
    project_id: str
    path: str
    session_id: str
    state: str
    drift_count: int
    sync_score: SyncScoreResponse
    watching: bool = False


class CloseResponse(BaseModel):
    success: bool
    message: str


def get_controller(project_id: str) -> ReconciliationController:
    """Return the open controller for ``project_id`` or raise 404."""
    with _controllers_lock:
        controller = _controllers.get(project_id)
    if controller is None or not controller.is_open:
        raise HTTPException(status_code=404, detail="Project not open")
    return controller


def raise_http_error(exc: Exception) -> NoReturn:
    """Translate controller errors into HTTP errors."""
    if isinstance(exc, InvalidTransitionError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, (ValueError, KeyError)):
        raise HTTPException(status_code=400, detail=str(exc).strip("'\"")) from exc
    logger.exception("Controller request failed")
    raise HTTPException(status_code=500, detail=str(exc)) from exc


def close_all() -> None:
    """Cancel running work and close every open controller."""
    with _controllers_lock:
        controllers = list(_controllers.values())
        _controllers.clear()
    for controller in controllers:
        controller.close()
    for task in list(_run_tasks.values()):
        task.cancel()
    _run_tasks.clear()


def _project_response(project_id: str, controller: ReconciliationController, watching: bool) -> ProjectResponse:
    session = controller.session
    return ProjectResponse(
        project_id=project_id,
        path=str(controller.project_path),
        session_id=session.session_id,
        state=session.state,
        drift_count=len(session.drift.items),
        sync_score=SyncScoreResponse(**session.drift.score.to_dict()),
        watching=watching,
    )


@router.post("/open")
async def open_project(request: OpenProjectRequest) -> ProjectResponse:
    """Open a project: load its mappings and run an initial drift check."""
    project_path = Path(request.path).expanduser()
    if not project_path.is_absolute():
        raise HTTPException(status_code=400, detail="Project path must be absolute")
    project_path = project_path.resolve()
    if not project_path.is_dir():
        raise HTTPException(status_code=404, detail="Project path not found")

    project_id = project_id_for_path(project_path)
    with _controllers_lock:
        controller = _controllers.get(project_id)
    if controller is not None and controller.is_open:
        return _project_response(project_id, controller, watching=controller.is_watching)

    settings = SettingsStore().load()
    if request.agent_command:
        settings.agent_command = request.agent_command
    if request.agent_args is not None:
        settings.agent_args = list(request.agent_args)
    if request.test_command:
        settings.test_command = request.test_command
    if request.test_args is not None:
        settings.test_args = list(request.test_args)

    controller = ReconciliationController(
        project_path,
        units=SpecTreeEnumerator(project_path),
        settings=settings,
    )
    try:
        controller.open()
    except Exception as e:
        raise_http_error(e)

    watching = controller.watch_specs() if request.watch else False
    with _controllers_lock:
        _controllers[project_id] = controller
    logger.info("Opened project %s (%s)", project_path, project_id)
    return _project_response(project_id, controller, watching=watching)


@router.delete("/{project_id}")
async def close_project(project_id: str) -> CloseResponse:
    """Cancel any active run and discard the project's session."""
    with _controllers_lock:
        controller = _controllers.pop(project_id, None)
    if controller is None:
        raise HTTPException(status_code=404, detail="Project not open")

    task = _run_tasks.pop(project_id, None)
    controller.close()
    if task is not None and not task.done():
        task.cancel()
    return CloseResponse(success=True, message="Project closed")
