"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

import boto3
from botocore.config import Config
from fastapi import Depends

from tagdesk.config import Settings, get_settings
from tagdesk.db import DbClient, InMemoryDbClient, PostgresDbClient
from tagdesk.file_manager import ProjectFileManager
from tagdesk.storage import InMemoryStorageClient, S3StorageClient, StorageClient

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so the engine and its pool are shared across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    logger.info("Database client initialized: %s", type(_db_client).__name__)
    return _db_client


def build_s3_client(settings: Settings):
    """Create the boto3 S3 client from settings. Called once per process."""
    config = Config(signature_version="s3v4")
    return boto3.client(
        "s3",
        region_name=settings.aws_region,
        endpoint_url=settings.aws_s3_endpoint_url,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
        config=config,
    )


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.aws_s3_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            client=build_s3_client(settings),
            bucket=settings.aws_s3_bucket,
        )
    logger.info("Storage client initialized: %s", type(_storage_client).__name__)
    return _storage_client


def get_file_manager(
    storage: StorageClient = Depends(get_storage_client),
) -> ProjectFileManager:
    return ProjectFileManager(storage)
