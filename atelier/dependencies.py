"""
Dependency wiring for the FastAPI app.

Clients are built once by ``create_app`` and kept on ``app.state``; route
handlers receive them through ``Depends`` so tests can pass fakes in.
"""

from __future__ import annotations

import logging

from fastapi import Request

from atelier.config import Settings, get_settings
from atelier.db import DbClient, InMemoryDbClient, SqlDbClient
from atelier.identity import IdentityClient, InMemoryIdentityClient, SupabaseIdentityClient
from atelier.storage import InMemoryStorageClient, S3StorageClient, StorageClient

logger = logging.getLogger(__name__)


def build_identity_client(settings: Settings) -> IdentityClient:
    if (
        settings.use_in_memory_backends
        or not settings.supabase_url
        or not settings.supabase_service_role_key
    ):
        logger.warning("Identity provider not configured; using in-memory identity")
        return InMemoryIdentityClient()
    return SupabaseIdentityClient(
        url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
    )


def build_db_client(settings: Settings) -> DbClient:
    if settings.use_in_memory_backends or not settings.database_url:
        logger.warning("DATABASE_URL not configured; using in-memory database")
        return InMemoryDbClient()
    return SqlDbClient(settings.database_url)


def build_storage_client(settings: Settings) -> StorageClient:
    if (
        settings.use_in_memory_backends
        or not settings.storage_endpoint
        or not settings.storage_public_url
    ):
        logger.warning("Object storage not configured; using in-memory storage")
        return InMemoryStorageClient()
    return S3StorageClient(
        endpoint=settings.storage_endpoint,
        region=settings.storage_region or "",
        access_key_id=settings.storage_access_key_id or "",
        secret_access_key=settings.storage_secret_access_key or "",
        public_base_url=settings.storage_public_url,
    )


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_identity_client(request: Request) -> IdentityClient:
    return request.app.state.identity


def get_db_client(request: Request) -> DbClient:
    return request.app.state.db


def get_storage_client(request: Request) -> StorageClient:
    return request.app.state.storage
