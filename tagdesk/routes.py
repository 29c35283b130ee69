"""
HTTP routes for projects and their data.

Every route is scoped to the calling user: a project owned by someone else
answers exactly like a missing one.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from tagdesk.auth import get_current_user
from tagdesk.db import DbClient, ProjectRecord, UserRecord
from tagdesk.dependencies import get_db_client, get_file_manager
from tagdesk.errors import StorageOperationError
from tagdesk.file_manager import ProjectFileManager
from tagdesk.schemas import (
    DataBatchResponse,
    DataTagRequest,
    ExportResponse,
    PreTagResponse,
    ProjectCreateRequest,
    ProjectResponse,
    ProjectUpdateRequest,
)
from tagdesk.types import DataFormat, ProjectType

logger = logging.getLogger(__name__)

router = APIRouter()

REQUIRED_CREATE_FIELDS = ("name", "description", "type", "projectDataFormat", "tags")
MISSING_FIELDS_MESSAGE = (
    "Missing fields in request body. "
    "Required Fields: [name, description, type, projectDataFormat, tags]"
)


def _get_owned_project(db: DbClient, user: UserRecord, project_uuid: str) -> ProjectRecord:
    project = db.get_project(user.id, project_uuid)
    if not project:
        raise HTTPException(
            status_code=404, detail=f"Project with 'uuid={project_uuid}' Not Found."
        )
    return project


def _project_response(project: ProjectRecord) -> ProjectResponse:
    return ProjectResponse(**project.as_dict())


def _parse_enum(enum_cls, value: str, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise HTTPException(
            status_code=400,
            detail=f"Invalid {field_name} '{value}'. Expected one of: [{allowed}]",
        )


def _discard_created_project(
    db: DbClient,
    file_manager: ProjectFileManager,
    project: ProjectRecord,
    persisted: bool,
) -> None:
    logger.warning("Rolling back partially created project %s", project.uuid)
    try:
        file_manager.delete_project_files(project)
    except StorageOperationError:
        logger.exception("Could not remove files of project %s", project.uuid)
    if persisted:
        db.delete_project(project)
    else:
        db.delete_tags([tag.uuid for tag in project.tags])


@router.get("/project", response_model=list[ProjectResponse])
def list_projects(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    logger.info("%s: Get All Projects", user.name)
    return [_project_response(project) for project in db.list_projects(user.id)]


@router.get("/project/{project_uuid}", response_model=ProjectResponse)
def get_project(
    project_uuid: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    logger.info("%s: Get Project 'uuid=%s'", user.name, project_uuid)
    return _project_response(_get_owned_project(db, user, project_uuid))


@router.post("/project", response_model=ProjectResponse)
def create_project(
    payload: ProjectCreateRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    file_manager: ProjectFileManager = Depends(get_file_manager),
):
    """
    Create a project with its tags and data files.

    If attaching files fails, everything created so far is removed again
    before the error propagates.
    """
    logger.info("%s: Create New Project", user.name)
    if any(getattr(payload, name) is None for name in REQUIRED_CREATE_FIELDS):
        raise HTTPException(status_code=400, detail=MISSING_FIELDS_MESSAGE)
    if any(not label.strip() for label in payload.tags):
        raise HTTPException(status_code=400, detail="Tag labels must not be empty.")

    project_type = _parse_enum(ProjectType, payload.type, "type")
    data_format = _parse_enum(DataFormat, payload.projectDataFormat, "projectDataFormat")
    files = [item.model_dump() for item in payload.files or []]

    db.upsert_user(user)
    tags = db.create_tags(payload.tags)
    project = file_manager.initialize_project(
        payload.name, user, payload.description, project_type, data_format, tags
    )

    persisted = False
    try:
        saved = db.save_project(project)
        persisted = True
        with_files = file_manager.set_project_files(saved, files)
        result = db.save_project(with_files)
    except Exception:
        _discard_created_project(db, file_manager, project, persisted)
        raise

    logger.info("%s: Create project %s", user.name, result.uuid)
    return _project_response(result)


@router.post("/project/{project_uuid}", response_model=ProjectResponse)
def update_project(
    project_uuid: str,
    payload: ProjectUpdateRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    project = _get_owned_project(db, user, project_uuid)
    if payload.name is not None:
        project.name = payload.name
    if payload.description is not None:
        project.description = payload.description

    result = db.save_project(project)
    logger.info("%s: Update project %s", user.name, project_uuid)
    return _project_response(result)


@router.delete("/project/{project_uuid}")
def delete_project(
    project_uuid: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    file_manager: ProjectFileManager = Depends(get_file_manager),
):
    """
    Delete a project, its files and its tags.

    Files go first: if storage fails nothing is removed from the database
    and the call can simply be repeated. Tags and the project row are then
    removed in one transaction.
    """
    logger.info("%s: Delete Project %s", user.name, project_uuid)
    project = _get_owned_project(db, user, project_uuid)

    file_manager.delete_project_files(project)
    removed_tags = db.delete_project(project)

    logger.info(
        "%s: Deleted project %s with %d tags", user.name, project_uuid, removed_tags
    )
    return Response(status_code=200)


@router.get("/project/{project_uuid}/dataBatch", response_model=DataBatchResponse)
def get_data_batch(
    project_uuid: str,
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    file_manager: ProjectFileManager = Depends(get_file_manager),
):
    logger.info(
        "%s: Get Project Data Batch - Project 'uuid=%s' offset=%d limit=%d",
        user.name,
        project_uuid,
        offset,
        limit,
    )
    project = _get_owned_project(db, user, project_uuid)
    return DataBatchResponse(**file_manager.get_data_batch(project, offset, limit))


@router.post(
    "/project/{project_uuid}/dataTag", response_model=ProjectResponse, status_code=201
)
def update_data_tag(
    project_uuid: str,
    payload: DataTagRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    file_manager: ProjectFileManager = Depends(get_file_manager),
):
    logger.info(
        "%s: Update DataTag - Project 'uuid=%s' row=%d", user.name, project_uuid, payload.rowId
    )
    project = _get_owned_project(db, user, project_uuid)

    updated = file_manager.update_tag(project, payload.rowId, payload.tag)
    db.save_project(updated)

    return _project_response(_get_owned_project(db, user, project_uuid))


@router.post("/project/{project_uuid}/generate", response_model=PreTagResponse)
def generate_pre_tags(
    project_uuid: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    file_manager: ProjectFileManager = Depends(get_file_manager),
):
    logger.info("%s: Generate project pre tags %s", user.name, project_uuid)
    project = _get_owned_project(db, user, project_uuid)
    return PreTagResponse(**file_manager.generate_project_pre_tags(project))


@router.get("/project/{project_uuid}/export", response_model=ExportResponse)
def export_project(
    project_uuid: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    file_manager: ProjectFileManager = Depends(get_file_manager),
):
    logger.info("%s: Export project %s", user.name, project_uuid)
    project = _get_owned_project(db, user, project_uuid)
    return ExportResponse(tagsContent=file_manager.export_project(project))


@router.get("/project/{project_uuid}/download")
def download_project(
    project_uuid: str,
    user: UserRecord = Depends(get_current_user),
):
    # TODO: stream a zip of projects/<uuid>/ once the frontend consumes it.
    logger.info("%s: Download project %s", user.email, project_uuid)
    return Response(status_code=200)
