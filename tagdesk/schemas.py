"""
Pydantic schemas for the tagdesk API.

Field names follow the JSON the frontend already speaks (camelCase).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class UserResponse(BaseModel):
    id: str
    name: str
    email: str


class TagResponse(BaseModel):
    uuid: str
    tag: str


class ProjectFileResponse(BaseModel):
    name: str
    path: str
    rowCount: int


class ProjectResponse(BaseModel):
    uuid: str
    name: str
    description: str
    type: str
    dataFormat: str
    owner: UserResponse
    tags: list[TagResponse]
    files: list[ProjectFileResponse]
    dataTags: dict[str, str]
    lastUpdate: Optional[datetime] = None


class ProjectFilePayload(BaseModel):
    name: str = Field(..., max_length=255)
    content: str = ""


class ProjectCreateRequest(BaseModel):
    # Required fields are checked in the route so the 400 lists all of them.
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    projectDataFormat: Optional[str] = None
    tags: Optional[list[str]] = None
    files: Optional[list[ProjectFilePayload]] = None


class ProjectUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class DataTagRequest(BaseModel):
    rowId: int
    tag: Optional[str] = None


class DataRowResponse(BaseModel):
    rowId: int
    file: str
    text: str
    tag: Optional[str] = None


class DataBatchResponse(BaseModel):
    offset: int
    limit: int
    total: int
    rows: list[DataRowResponse]


class PreTag(BaseModel):
    rowId: int
    tag: str


class PreTagResponse(BaseModel):
    total: int
    generated: int
    preTags: list[PreTag]


class ExportResponse(BaseModel):
    tagsContent: str
