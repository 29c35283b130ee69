"""
Project file management.

Data files live in object storage under ``projects/<uuid>/``; row tags live
on the project record. Rows are numbered across the project's files in the
order the files were attached.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass
from typing import Iterator, Optional

from tagdesk.db import ProjectFile, ProjectRecord, TagRecord, UserRecord, new_uuid
from tagdesk.errors import InvalidRequestError
from tagdesk.storage import StorageClient, split_lines
from tagdesk.types import DataFormat, ProjectType

logger = logging.getLogger(__name__)

EXPORT_HEADER = ["row_id", "file", "text", "tag"]


def project_prefix(project_uuid: str) -> str:
    return f"projects/{project_uuid}/"


def file_path(project_uuid: str, name: str) -> str:
    return f"projects/{project_uuid}/files/{name}"


def export_path(project_uuid: str) -> str:
    return f"projects/{project_uuid}/export/tags.csv"


def parse_rows(lines: list[str], data_format: DataFormat) -> list[str]:
    """Return the data rows of a file, skipping blank lines and any CSV header."""
    rows = [line for line in lines if line.strip()]
    if data_format == DataFormat.CSV:
        return rows[1:]
    return rows


@dataclass
class DataRow:
    row_id: int
    file: str
    text: str
    tag: Optional[str] = None

    def as_dict(self) -> dict:
        return {"rowId": self.row_id, "file": self.file, "text": self.text, "tag": self.tag}


def _label_pattern(label: str) -> re.Pattern:
    return re.compile(rf"(?<!\w){re.escape(label)}(?!\w)", re.IGNORECASE)


def _best_match(text: str, patterns: list[tuple[str, re.Pattern]]) -> Optional[str]:
    best_label, best_count = None, 0
    for label, pattern in patterns:
        count = len(pattern.findall(text))
        if count > best_count:
            best_label, best_count = label, count
    return best_label


class ProjectFileManager:
    def __init__(self, storage: StorageClient):
        self.storage = storage

    def initialize_project(
        self,
        name: str,
        owner: UserRecord,
        description: str,
        project_type: ProjectType,
        data_format: DataFormat,
        tags: list[TagRecord],
    ) -> ProjectRecord:
        return ProjectRecord(
            uuid=new_uuid(),
            name=name,
            description=description,
            type=project_type,
            data_format=data_format,
            owner=owner,
            tags=list(tags),
        )

    def set_project_files(self, project: ProjectRecord, files: list[dict]) -> ProjectRecord:
        """
        Upload ``files`` (``{"name", "content"}`` dicts) and attach them to the project.

        All names are checked before anything is uploaded.
        """
        self._validate_file_names(project, [item.get("name") for item in files])

        for item in files:
            name = item["name"]
            content = item.get("content") or ""
            path = file_path(project.uuid, name)
            self.storage.upload(path, content.encode("utf-8")).unwrap()
            row_count = len(parse_rows(split_lines(content), project.data_format))
            project.files.append(ProjectFile(name=name, path=path, row_count=row_count))
            logger.info("Attached file '%s' (%d rows) to project %s", name, row_count, project.uuid)
        return project

    def get_data_batch(self, project: ProjectRecord, offset: int, limit: int) -> dict:
        if offset < 0 or limit < 1:
            raise InvalidRequestError("offset must be >= 0 and limit must be >= 1")
        rows = self._iter_rows(project, start=offset, stop=offset + limit)
        return {
            "offset": offset,
            "limit": limit,
            "total": project.total_rows,
            "rows": [row.as_dict() for row in rows],
        }

    def update_tag(self, project: ProjectRecord, row_id: int, tag: Optional[str]) -> ProjectRecord:
        total = project.total_rows
        if row_id < 0 or row_id >= total:
            raise InvalidRequestError(
                f"Row {row_id} is out of range for project {project.uuid} ({total} rows)"
            )

        key = str(row_id)
        if not tag:
            project.data_tags.pop(key, None)
        elif tag not in project.tag_labels:
            raise InvalidRequestError(
                f"Unknown tag {tag!r}. Expected one of: {sorted(project.tag_labels)}"
            )
        else:
            project.data_tags[key] = tag
        return project

    def generate_project_pre_tags(self, project: ProjectRecord) -> dict:
        """
        Suggest a tag for every untagged row.

        A row gets the tag whose label appears most often in its text as a
        whole word, case-insensitively. Ties go to the alphabetically first
        label. Suggestions are not persisted.
        """
        labels = sorted(set(project.tag_labels), key=str.casefold)
        patterns = [(label, _label_pattern(label)) for label in labels]

        pre_tags = []
        for row in self._iter_rows(project):
            if row.tag:
                continue
            label = _best_match(row.text, patterns)
            if label:
                pre_tags.append({"rowId": row.row_id, "tag": label})

        logger.info(
            "Generated %d pre-tags for project %s (%d rows)",
            len(pre_tags),
            project.uuid,
            project.total_rows,
        )
        return {"total": project.total_rows, "generated": len(pre_tags), "preTags": pre_tags}

    def export_project(self, project: ProjectRecord) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(EXPORT_HEADER)
        for row in self._iter_rows(project):
            writer.writerow([row.row_id, row.file, row.text, row.tag or ""])
        content = buffer.getvalue()

        path = export_path(project.uuid)
        self.storage.upload(path, content.encode("utf-8")).unwrap()
        logger.info("Exported project %s to '%s'", project.uuid, path)
        return content

    def delete_project_files(self, project: ProjectRecord) -> list[str]:
        deleted = self.storage.delete_directory(project_prefix(project.uuid)).unwrap()
        logger.info("Deleted %d objects for project %s", len(deleted), project.uuid)
        return deleted

    def _validate_file_names(self, project: ProjectRecord, names: list) -> None:
        seen = {f.name for f in project.files}
        for name in names:
            if not name or "/" in name or "\\" in name or ".." in name:
                raise InvalidRequestError(f"Invalid file name: {name!r}")
            if name in seen:
                raise InvalidRequestError(f"Duplicate file name: {name!r}")
            seen.add(name)

    def _iter_rows(
        self, project: ProjectRecord, start: int = 0, stop: Optional[int] = None
    ) -> Iterator[DataRow]:
        """Yield rows with ``start <= row_id < stop``, downloading only the files involved."""
        total = project.total_rows
        stop = total if stop is None else min(stop, total)
        file_start = 0
        for project_file in project.files:
            file_stop = file_start + project_file.row_count
            if file_stop > start and file_start < stop:
                lines = self.storage.download_as_list(project_file.path).unwrap()
                rows = parse_rows(lines, project.data_format)
                for row_id in range(max(start, file_start), min(stop, file_stop)):
                    index = row_id - file_start
                    if index >= len(rows):
                        logger.warning(
                            "File '%s' has %d rows, expected %d",
                            project_file.path,
                            len(rows),
                            project_file.row_count,
                        )
                        break
                    yield DataRow(
                        row_id=row_id,
                        file=project_file.name,
                        text=rows[index],
                        tag=project.data_tags.get(str(row_id)),
                    )
            file_start = file_stop
