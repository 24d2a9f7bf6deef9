"""
FastAPI application entry point for the Atelier backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from atelier.config import Settings, get_settings
from atelier.db import DbClient
from atelier.dependencies import (
    build_db_client,
    build_identity_client,
    build_storage_client,
)
from atelier.errors import install_error_handlers
from atelier.identity import IdentityClient
from atelier.routes import router
from atelier.storage import StorageClient


def create_app(
    settings: Settings | None = None,
    *,
    identity: IdentityClient | None = None,
    db: DbClient | None = None,
    storage: StorageClient | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(title="Atelier Backend", version="0.1.0")
    app.state.settings = settings
    app.state.identity = identity or build_identity_client(settings)
    app.state.db = db or build_db_client(settings)
    app.state.storage = storage or build_storage_client(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)
    app.include_router(router)
    return app
