"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    String,
    Table,
    Text,
    create_engine,
    delete,
    select,
)
from sqlalchemy.orm import Session, declarative_base, relationship, selectinload, sessionmaker
from sqlalchemy.pool import StaticPool

from tagdesk.types import DataFormat, ProjectType

logger = logging.getLogger(__name__)


class DbClient(Protocol):
    """Interface for database access."""

    def upsert_user(self, user: "UserRecord") -> None:
        ...

    def create_tags(self, labels: list[str]) -> list["TagRecord"]:
        ...

    def delete_tags(self, tag_uuids: list[str]) -> int:
        ...

    def save_project(self, project: "ProjectRecord") -> "ProjectRecord":
        ...

    def list_projects(self, owner_id: str) -> list["ProjectRecord"]:
        ...

    def get_project(self, owner_id: str, project_uuid: str) -> Optional["ProjectRecord"]:
        ...

    def delete_project(self, project: "ProjectRecord") -> int:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> str:
    return str(uuid.uuid4())


@dataclass
class UserRecord:
    id: str
    name: str = ""
    email: str = ""

    def as_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email}


@dataclass
class TagRecord:
    uuid: str
    tag: str

    def as_dict(self) -> dict:
        return {"uuid": self.uuid, "tag": self.tag}


@dataclass
class ProjectFile:
    name: str
    path: str
    row_count: int = 0

    def as_dict(self) -> dict:
        return {"name": self.name, "path": self.path, "rowCount": self.row_count}

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectFile":
        return cls(name=data["name"], path=data["path"], row_count=data.get("rowCount", 0))


@dataclass
class ProjectRecord:
    uuid: str
    name: str
    description: str
    type: ProjectType
    data_format: DataFormat
    owner: UserRecord
    tags: list[TagRecord] = field(default_factory=list)
    files: list[ProjectFile] = field(default_factory=list)
    # Row id (as string, JSON keys) -> tag label
    data_tags: dict[str, str] = field(default_factory=dict)
    last_update: Optional[datetime] = None

    @property
    def tag_labels(self) -> list[str]:
        return [tag.tag for tag in self.tags]

    @property
    def total_rows(self) -> int:
        return sum(f.row_count for f in self.files)

    def as_dict(self) -> dict:
        return {
            "uuid": self.uuid,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "dataFormat": self.data_format.value,
            "owner": self.owner.as_dict(),
            "tags": [tag.as_dict() for tag in self.tags],
            "files": [f.as_dict() for f in self.files],
            "dataTags": dict(self.data_tags),
            "lastUpdate": self.last_update,
        }


class InMemoryDbClient:
    """
    Simple in-memory database for development and tests.

    FastAPI runs sync handlers in a threadpool, so every access goes through
    one re-entrant lock.
    """

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.tags: Dict[str, TagRecord] = {}
        self.projects: Dict[str, ProjectRecord] = {}
        self._lock = threading.RLock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.users.clear()
            self.tags.clear()
            self.projects.clear()

    def upsert_user(self, user: UserRecord) -> None:
        with self._lock:
            self.users[user.id] = copy.copy(user)

    def create_tags(self, labels: list[str]) -> list[TagRecord]:
        records = [TagRecord(uuid=new_uuid(), tag=label) for label in labels]
        with self._lock:
            for record in records:
                self.tags[record.uuid] = copy.copy(record)
        return records

    def delete_tags(self, tag_uuids: list[str]) -> int:
        doomed = set(tag_uuids)
        removed = 0
        with self._lock:
            for tag_uuid in doomed:
                if self.tags.pop(tag_uuid, None) is not None:
                    removed += 1
            for project in self.projects.values():
                project.tags = [tag for tag in project.tags if tag.uuid not in doomed]
        return removed

    def save_project(self, project: ProjectRecord) -> ProjectRecord:
        with self._lock:
            unknown = [tag.uuid for tag in project.tags if tag.uuid not in self.tags]
            if unknown:
                raise ValueError(f"Unknown tags for project {project.uuid}: {unknown}")
            stored = copy.deepcopy(project)
            stored.owner = copy.copy(self.users.get(project.owner.id, project.owner))
            stored.last_update = _utcnow()
            self.projects[project.uuid] = stored
            return copy.deepcopy(stored)

    def list_projects(self, owner_id: str) -> list[ProjectRecord]:
        with self._lock:
            owned = [copy.deepcopy(p) for p in self.projects.values() if p.owner.id == owner_id]
        owned.sort(key=lambda p: p.last_update, reverse=True)
        return owned

    def get_project(self, owner_id: str, project_uuid: str) -> Optional[ProjectRecord]:
        with self._lock:
            project = self.projects.get(project_uuid)
            if not project or project.owner.id != owner_id:
                return None
            return copy.deepcopy(project)

    def delete_project(self, project: ProjectRecord) -> int:
        with self._lock:
            stored = self.projects.get(project.uuid)
            if not stored or stored.owner.id != project.owner.id:
                return 0
            del self.projects[project.uuid]
            return self.delete_tags([tag.uuid for tag in stored.tags])


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        engine_kwargs: dict = {"future": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url:
                # One shared connection, otherwise every checkout sees an empty DB.
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = True
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_project_record(self, row: "ProjectRow") -> ProjectRecord:
        if row.owner is not None:
            owner = UserRecord(id=row.owner.id, name=row.owner.name, email=row.owner.email)
        else:
            owner = UserRecord(id=row.owner_id)
        return ProjectRecord(
            uuid=row.uuid,
            name=row.name,
            description=row.description,
            type=ProjectType(row.type),
            data_format=DataFormat(row.data_format),
            owner=owner,
            tags=[TagRecord(uuid=tag.uuid, tag=tag.tag) for tag in row.tags],
            files=[ProjectFile.from_dict(item) for item in row.files or []],
            data_tags=dict(row.data_tags or {}),
            last_update=row.last_update,
        )

    def _project_query(self, owner_id: str):
        return (
            select(ProjectRow)
            .options(selectinload(ProjectRow.owner), selectinload(ProjectRow.tags))
            .where(ProjectRow.owner_id == owner_id)
        )

    def upsert_user(self, user: UserRecord) -> None:
        with self.Session() as session:
            session.merge(UserRow(id=user.id, name=user.name, email=user.email))
            session.commit()

    def create_tags(self, labels: list[str]) -> list[TagRecord]:
        rows = [TagRow(uuid=new_uuid(), tag=label) for label in labels]
        with self.Session() as session:
            session.add_all(rows)
            session.commit()
        return [TagRecord(uuid=row.uuid, tag=row.tag) for row in rows]

    def delete_tags(self, tag_uuids: list[str]) -> int:
        if not tag_uuids:
            return 0
        with self.Session.begin() as session:
            session.execute(delete(project_tags).where(project_tags.c.tag_uuid.in_(tag_uuids)))
            result = session.execute(delete(TagRow).where(TagRow.uuid.in_(tag_uuids)))
            return result.rowcount or 0

    def save_project(self, project: ProjectRecord) -> ProjectRecord:
        with self.Session() as session:
            tags = [session.get(TagRow, tag.uuid) for tag in project.tags]
            if any(tag is None for tag in tags):
                raise ValueError(f"Unknown tags for project {project.uuid}")
            row = session.get(ProjectRow, project.uuid)
            if row is None:
                row = ProjectRow(uuid=project.uuid)
                session.add(row)
            row.name = project.name
            row.description = project.description
            row.type = project.type.value
            row.data_format = project.data_format.value
            row.owner_id = project.owner.id
            row.tags = tags
            row.files = [f.as_dict() for f in project.files]
            row.data_tags = dict(project.data_tags)
            row.last_update = _utcnow()
            session.commit()
        saved = self.get_project(project.owner.id, project.uuid)
        if saved is None:
            raise RuntimeError(f"Project {project.uuid} vanished after save")
        return saved

    def list_projects(self, owner_id: str) -> list[ProjectRecord]:
        with self.Session() as session:
            stmt = self._project_query(owner_id).order_by(ProjectRow.last_update.desc())
            rows = session.execute(stmt).scalars().all()
            return [self._to_project_record(row) for row in rows]

    def get_project(self, owner_id: str, project_uuid: str) -> Optional[ProjectRecord]:
        with self.Session() as session:
            stmt = self._project_query(owner_id).where(ProjectRow.uuid == project_uuid)
            row = session.execute(stmt).scalar_one_or_none()
            if not row:
                return None
            return self._to_project_record(row)

    def delete_project(self, project: ProjectRecord) -> int:
        tag_uuids = [tag.uuid for tag in project.tags]
        with self.Session.begin() as session:
            session.execute(
                delete(project_tags).where(project_tags.c.project_uuid == project.uuid)
            )
            removed = 0
            if tag_uuids:
                result = session.execute(delete(TagRow).where(TagRow.uuid.in_(tag_uuids)))
                removed = result.rowcount or 0
            session.execute(
                delete(ProjectRow).where(
                    ProjectRow.uuid == project.uuid,
                    ProjectRow.owner_id == project.owner.id,
                )
            )
        if removed != len(tag_uuids):
            logger.warning(
                "Deleted %d of %d tags for project %s", removed, len(tag_uuids), project.uuid
            )
        return removed


Base = declarative_base()


project_tags = Table(
    "project_tags",
    Base.metadata,
    Column("project_uuid", String, ForeignKey("projects.uuid", ondelete="CASCADE"), primary_key=True),
    Column("tag_uuid", String, ForeignKey("tags.uuid", ondelete="CASCADE"), primary_key=True),
)


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, default="")


class TagRow(Base):
    __tablename__ = "tags"

    uuid = Column(String, primary_key=True)
    tag = Column(String, nullable=False)


class ProjectRow(Base):
    __tablename__ = "projects"

    uuid = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    type = Column(String, nullable=False)
    data_format = Column(String, nullable=False)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    files = Column(JSON, nullable=False, default=list)
    data_tags = Column(JSON, nullable=False, default=dict)
    last_update = Column(DateTime(timezone=True), nullable=False, index=True)

    owner = relationship("UserRow")
    tags = relationship("TagRow", secondary=project_tags, order_by="TagRow.tag")
