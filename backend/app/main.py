import logging
import os

from fastapi import Body, FastAPI, Header, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from db import SessionLocal, check_db_connection
from projects.errors import ProjectError
from projects.progress import progress_percentage
from projects.records import (
    AggregateProgress,
    HistoryRecord,
    ProjectDetail,
    ProjectNode,
    ProjectRecord,
)
from projects.schemas import (
    CompleteRequest,
    ProgressUpdate,
    ProjectCreate,
    ProjectUpdate,
    ReorderRequest,
)
from projects.service import Actor, ProjectService
from projects.settings import load_settings

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

STATUS_BY_CATEGORY = {
    "validation": 400,
    "structural": 400,
    "authorization": 403,
    "not_found": 404,
    "infrastructure": 503,
}

app = FastAPI(
    title="campaign-projects API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


def _service() -> ProjectService:
    return ProjectService(SessionLocal, load_settings())


def _actor(user_id: int, is_admin: bool) -> Actor:
    return Actor(user_id=user_id, is_admin=is_admin)


@app.exception_handler(ProjectError)
async def handle_project_error(request: Request, exc: ProjectError) -> JSONResponse:
    status_code = STATUS_BY_CATEGORY.get(exc.category, 400)
    content = exc.to_dict()
    if load_settings().dev_mode and exc.details:
        content["details"] = exc.details
    headers = {"Retry-After": "1"} if exc.retryable else None
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.code)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_error",
            "category": "validation",
            "message": "Request is malformed.",
            "details": [
                {"loc": list(error.get("loc", ())), "msg": error.get("msg")}
                for error in exc.errors()
            ],
        },
    )


@app.get("/health")
def health() -> dict:
    try:
        check_db_connection()
    except Exception as exc:
        raise HTTPException(status_code=503, detail="Database unavailable") from exc
    return {"status": "ok"}


@app.get("/campaigns/{campaign_id}/projects")
def list_projects(
    campaign_id: int,
    include_deleted: bool = False,
    include_completed: bool = True,
    flat: bool = False,
    x_user_id: int = Header(...),
    x_user_admin: bool = Header(False),
) -> dict:
    projects = _service().list_projects(
        _actor(x_user_id, x_user_admin),
        campaign_id,
        include_deleted=include_deleted,
        include_completed=include_completed,
        flat=flat,
    )
    if flat:
        payload = [_project_payload(project) for project in projects]
    else:
        payload = [_node_payload(node) for node in projects]
    return {"count": len(payload), "projects": payload}


@app.get("/campaigns/{campaign_id}/projects/{project_id}")
def get_project(
    campaign_id: int,
    project_id: int,
    include_history: bool = False,
    include_children: bool = False,
    x_user_id: int = Header(...),
    x_user_admin: bool = Header(False),
) -> dict:
    detail = _service().get_project(
        _actor(x_user_id, x_user_admin),
        project_id,
        campaign_id=campaign_id,
        include_history=include_history,
        include_children=include_children,
    )
    return _detail_payload(detail)


@app.post("/campaigns/{campaign_id}/projects", status_code=201)
def create_project(
    campaign_id: int,
    payload: ProjectCreate,
    x_user_id: int = Header(...),
    x_user_admin: bool = Header(False),
) -> dict:
    project = _service().create_project(_actor(x_user_id, x_user_admin), campaign_id, payload)
    return _project_payload(project)


@app.put("/campaigns/{campaign_id}/projects/{project_id}")
def update_project(
    campaign_id: int,
    project_id: int,
    payload: ProjectUpdate,
    x_user_id: int = Header(...),
    x_user_admin: bool = Header(False),
) -> dict:
    project = _service().update_project(
        _actor(x_user_id, x_user_admin),
        project_id,
        payload,
        campaign_id=campaign_id,
    )
    return _project_payload(project)


@app.patch("/campaigns/{campaign_id}/projects/{project_id}/progress")
def update_progress(
    campaign_id: int,
    project_id: int,
    payload: ProgressUpdate,
    x_user_id: int = Header(...),
    x_user_admin: bool = Header(False),
) -> dict:
    result = _service().update_progress(
        _actor(x_user_id, x_user_admin),
        project_id,
        payload,
        campaign_id=campaign_id,
    )
    response = _project_payload(result.project)
    response["aggregate_progress"] = _aggregate_payload(result.aggregate)
    response["auto_completed"] = result.auto_completed
    return response


@app.post("/campaigns/{campaign_id}/projects/{project_id}/complete")
def complete_project(
    campaign_id: int,
    project_id: int,
    payload: CompleteRequest | None = Body(default=None),
    x_user_id: int = Header(...),
    x_user_admin: bool = Header(False),
) -> dict:
    data = payload or CompleteRequest()
    project = _service().complete_project(
        _actor(x_user_id, x_user_admin),
        project_id,
        data.notes,
        campaign_id=campaign_id,
    )
    return _project_payload(project)


@app.delete("/campaigns/{campaign_id}/projects/{project_id}", status_code=204)
def delete_project(
    campaign_id: int,
    project_id: int,
    x_user_id: int = Header(...),
    x_user_admin: bool = Header(False),
) -> Response:
    _service().delete_project(
        _actor(x_user_id, x_user_admin),
        project_id,
        campaign_id=campaign_id,
    )
    return Response(status_code=204)


@app.post("/campaigns/{campaign_id}/projects/{project_id}/reorder")
def reorder_project(
    campaign_id: int,
    project_id: int,
    payload: ReorderRequest,
    x_user_id: int = Header(...),
    x_user_admin: bool = Header(False),
) -> dict:
    siblings = _service().reorder_project(
        _actor(x_user_id, x_user_admin),
        project_id,
        payload,
        campaign_id=campaign_id,
    )
    return {"projects": [_project_payload(project) for project in siblings]}


@app.get("/characters/{character_id}/projects")
def list_character_projects(
    character_id: int,
    x_user_id: int = Header(...),
    x_user_admin: bool = Header(False),
) -> dict:
    projects = _service().list_character_projects(_actor(x_user_id, x_user_admin), character_id)
    payload = [_project_payload(project) for project in projects]
    return {"count": len(payload), "projects": payload}


@app.get("/characters/{character_id}/project-usage")
def character_project_usage(
    character_id: int,
    x_user_id: int = Header(...),
    x_user_admin: bool = Header(False),
) -> dict:
    in_use = _service().character_in_use(_actor(x_user_id, x_user_admin), character_id)
    return {"character_id": character_id, "in_use": in_use}


def _isoformat(value) -> str | None:
    return value.isoformat() if value else None


def _project_payload(project: ProjectRecord) -> dict:
    return {
        "id": project.id,
        "campaign_id": project.campaign_id,
        "parent_id": project.parent_id,
        "character_id": project.character_id,
        "name": project.name,
        "description": project.description,
        "goal_points": project.goal_points,
        "current_points": project.current_points,
        "progress_percentage": progress_percentage(project.current_points, project.goal_points),
        "display_order": project.display_order,
        "is_completed": project.is_completed,
        "completed_at": _isoformat(project.completed_at),
        "is_deleted": project.is_deleted,
        "created_by_user_id": project.created_by_user_id,
        "created_at": _isoformat(project.created_at),
        "updated_at": _isoformat(project.updated_at),
    }


def _node_payload(node: ProjectNode) -> dict:
    payload = _project_payload(node.project)
    payload["children"] = [_node_payload(child) for child in node.children]
    return payload


def _aggregate_payload(aggregate: AggregateProgress) -> dict:
    return {
        "total_current_points": aggregate.total_current,
        "total_goal_points": aggregate.total_goal,
        "total_percentage": aggregate.percentage,
    }


def _history_payload(entry: HistoryRecord) -> dict:
    return {
        "id": entry.id,
        "project_id": entry.project_id,
        "user_id": entry.user_id,
        "action": entry.action,
        "previous_points": entry.previous_points,
        "new_points": entry.new_points,
        "notes": entry.notes,
        "created_at": _isoformat(entry.created_at),
    }


def _detail_payload(detail: ProjectDetail) -> dict:
    payload = _project_payload(detail.project)
    payload["aggregate_progress"] = _aggregate_payload(detail.aggregate)
    if detail.history is not None:
        payload["history"] = [_history_payload(entry) for entry in detail.history]
    if detail.children is not None:
        payload["children"] = [_project_payload(child) for child in detail.children]
    return payload
