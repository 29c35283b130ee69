"""
Storage abstraction for S3 and in-memory testing.

Every operation runs to completion before it returns and reports a
``StorageResult``. Failures carry a ``StorageError`` whose code separates a
missing object from a permission problem or an unreachable endpoint.
"""

from __future__ import annotations

import io
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from tagdesk.errors import StorageOperationError

logger = logging.getLogger(__name__)

# DeleteObjects accepts at most 1000 keys per request.
DELETE_BATCH_SIZE = 1000

_LINE_BREAK = re.compile(r"\r\n|\r|\n")

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NotFound", "404"}
_ACCESS_DENIED_CODES = {
    "AccessDenied",
    "AllAccessDisabled",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "403",
}


class StorageErrorCode(str, Enum):
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    UNAVAILABLE = "unavailable"
    INVALID_PATH = "invalid_path"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class StorageError:
    code: StorageErrorCode
    message: str
    path: str


@dataclass(frozen=True)
class StorageResult:
    """Outcome of a storage call: a value on success, an error otherwise."""

    ok: bool
    value: Any = None
    error: Optional[StorageError] = None

    @classmethod
    def success(cls, value: Any) -> "StorageResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: StorageError, value: Any = None) -> "StorageResult":
        return cls(ok=False, value=value, error=error)

    def unwrap(self) -> Any:
        if not self.ok:
            raise StorageOperationError(self.error)
        return self.value


def split_lines(text: str) -> list[str]:
    """Split on any newline convention (\\r\\n, \\r, \\n)."""
    return _LINE_BREAK.split(text)


def _code_for(aws_code: Optional[str]) -> StorageErrorCode:
    if aws_code in _NOT_FOUND_CODES:
        return StorageErrorCode.NOT_FOUND
    if aws_code in _ACCESS_DENIED_CODES:
        return StorageErrorCode.ACCESS_DENIED
    return StorageErrorCode.UNKNOWN


def _error_from_exception(exc: Exception, path: str) -> StorageError:
    if isinstance(exc, ClientError):
        details = exc.response.get("Error", {})
        return StorageError(
            code=_code_for(details.get("Code")),
            message=details.get("Message") or str(exc),
            path=path,
        )
    return StorageError(code=StorageErrorCode.UNAVAILABLE, message=str(exc), path=path)


def _empty_prefix_error(prefix: str) -> StorageError:
    return StorageError(
        code=StorageErrorCode.INVALID_PATH,
        message="Refusing to delete an empty prefix",
        path=prefix,
    )


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def download_stream(self, path: str) -> StorageResult:
        ...

    def upload(self, dest_path: str, data: bytes) -> StorageResult:
        ...

    def delete_directory(self, prefix: str) -> StorageResult:
        ...

    def download_as_string(self, path: str) -> StorageResult:
        ...

    def download_as_list(self, path: str) -> StorageResult:
        ...


class _TextDownloads(ABC):
    """Text helpers built on top of ``download_stream``."""

    @abstractmethod
    def download_stream(self, path: str) -> StorageResult:
        raise NotImplementedError

    def download_as_string(self, path: str) -> StorageResult:
        result = self.download_stream(path)
        if not result.ok:
            logger.error("Error while trying to download stream from 'path=%s'", path)
            return StorageResult.failure(result.error)

        stream = result.value
        try:
            content = stream.read().decode("utf-8")
        except UnicodeDecodeError as exc:
            error = StorageError(StorageErrorCode.UNKNOWN, f"Object is not UTF-8 text: {exc}", path)
            logger.error("Error decoding object from 'path=%s': %s", path, error.message)
            return StorageResult.failure(error)
        except (BotoCoreError, OSError) as exc:
            error = _error_from_exception(exc, path)
            logger.error("Error reading object from 'path=%s': %s", path, error.message)
            return StorageResult.failure(error)
        finally:
            stream.close()

        logger.info("Downloaded file as string from 'path=%s'", path)
        return StorageResult.success(content)

    def download_as_list(self, path: str) -> StorageResult:
        result = self.download_as_string(path)
        if not result.ok:
            return StorageResult.failure(result.error, value=[])
        logger.info("Downloaded file as list from 'path=%s'", path)
        return StorageResult.success(split_lines(result.value))


class S3StorageClient(_TextDownloads):
    """
    S3 storage client for a single bucket.

    The boto3 client is built once by ``tagdesk.dependencies`` and passed in,
    so tests can hand over a stubbed client instead.
    """

    def __init__(self, client: Any, bucket: str):
        if not bucket:
            raise ValueError("AWS_S3_BUCKET is required for S3StorageClient")
        self._client = client
        self.bucket = bucket

    def download_stream(self, path: str) -> StorageResult:
        logger.debug("Downloading object stream from 'path=%s'", path)
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=path)
        except (ClientError, BotoCoreError) as exc:
            error = _error_from_exception(exc, path)
            logger.error(
                "Error retrieving object from 'path=%s' [%s]: %s",
                path,
                error.code.value,
                error.message,
            )
            return StorageResult.failure(error)
        return StorageResult.success(response["Body"])

    def upload(self, dest_path: str, data: bytes) -> StorageResult:
        try:
            self._client.put_object(Bucket=self.bucket, Key=dest_path, Body=data)
        except (ClientError, BotoCoreError) as exc:
            error = _error_from_exception(exc, dest_path)
            logger.error(
                "Error uploading buffer to '%s' [%s]: %s",
                dest_path,
                error.code.value,
                error.message,
            )
            return StorageResult.failure(error, value=False)
        logger.info("Uploaded %d bytes to 's3://%s/%s'", len(data), self.bucket, dest_path)
        return StorageResult.success(True)

    def delete_directory(self, prefix: str) -> StorageResult:
        if not prefix:
            return StorageResult.failure(_empty_prefix_error(prefix), value=[])

        try:
            keys = self._list_keys(prefix)
        except (ClientError, BotoCoreError) as exc:
            error = _error_from_exception(exc, prefix)
            logger.error("Error listing objects under 'prefix=%s': %s", prefix, error.message)
            return StorageResult.failure(error, value=[])

        deleted: list[str] = []
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            try:
                response = self._client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": False},
                )
            except (ClientError, BotoCoreError) as exc:
                error = _error_from_exception(exc, prefix)
                logger.error("Error deleting objects under 'prefix=%s': %s", prefix, error.message)
                return StorageResult.failure(error, value=deleted)

            for obj in response.get("Deleted", []):
                logger.info("Deleted object '%s'", obj["Key"])
                deleted.append(obj["Key"])

            failed = response.get("Errors") or []
            if failed:
                summary = ", ".join(f"{item.get('Key')} ({item.get('Code')})" for item in failed)
                error = StorageError(
                    code=_code_for(failed[0].get("Code")),
                    message=f"Failed to delete {len(failed)} object(s): {summary}",
                    path=prefix,
                )
                logger.error("Error deleting objects under 'prefix=%s': %s", prefix, summary)
                return StorageResult.failure(error, value=deleted)

        logger.info("Deleted directory 'prefix=%s' (%d objects)", prefix, len(deleted))
        return StorageResult.success(deleted)

    def _list_keys(self, prefix: str) -> list[str]:
        paginator = self._client.get_paginator("list_objects_v2")
        keys: list[str] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                keys.append(obj["Key"])
        return keys


@dataclass
class InMemoryStorageClient(_TextDownloads):
    """Test double for storage interactions."""

    stored_objects: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def download_stream(self, path: str) -> StorageResult:
        stored = self.stored_objects.get(path)
        if stored is None:
            error = StorageError(
                StorageErrorCode.NOT_FOUND, "The specified key does not exist.", path
            )
            return StorageResult.failure(error)
        return StorageResult.success(io.BytesIO(stored))

    def upload(self, dest_path: str, data: bytes) -> StorageResult:
        self.stored_objects[dest_path] = bytes(data)
        return StorageResult.success(True)

    def delete_directory(self, prefix: str) -> StorageResult:
        if not prefix:
            return StorageResult.failure(_empty_prefix_error(prefix), value=[])
        keys = sorted(key for key in self.stored_objects if key.startswith(prefix))
        for key in keys:
            del self.stored_objects[key]
        return StorageResult.success(keys)
