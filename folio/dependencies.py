"""
Dependency wiring for the FastAPI app.

The database and media clients are process-wide handles. ``init_backends``
builds them once during startup; routes receive them through ``Depends``.
"""

from __future__ import annotations

import logging

from folio.config import Settings, get_settings
from folio.db import DbClient, InMemoryDbClient, SqlDbClient
from folio.media import InMemoryMediaClient, MediaClient, S3MediaClient

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_media_client: MediaClient | None = None


def build_db_client(settings: Settings) -> DbClient:
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("Using in-memory database")
        return InMemoryDbClient()
    logger.info("Using SQL database")
    return SqlDbClient(settings.database_url)


def build_media_client(settings: Settings) -> MediaClient:
    if settings.use_in_memory_backends or not settings.media_bucket:
        logger.info("Using in-memory media storage")
        return InMemoryMediaClient(folder=settings.media_folder)
    logger.info("Using media bucket %s", settings.media_bucket)
    return S3MediaClient(
        bucket=settings.media_bucket,
        region=settings.media_region or "",
        endpoint=settings.media_endpoint or "",
        access_key_id=settings.aws_access_key_id or "",
        secret_access_key=settings.aws_secret_access_key or "",
        folder=settings.media_folder,
        public_base_url=settings.media_public_base_url,
    )


def init_backends(settings: Settings | None = None) -> None:
    """Create the process-wide clients if they do not exist yet."""
    global _db_client, _media_client
    settings = settings or get_settings()
    if _db_client is None:
        _db_client = build_db_client(settings)
    if _media_client is None:
        _media_client = build_media_client(settings)


def get_db_client() -> DbClient:
    if _db_client is None:
        init_backends()
    return _db_client


def get_media_client() -> MediaClient:
    if _media_client is None:
        init_backends()
    return _media_client
