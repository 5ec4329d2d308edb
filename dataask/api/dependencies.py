"""
Shared dependencies for the API routers.

Application-owned state (settings, the import job registry, the connection
registry and the upload scratch store) lives on ``app.state`` and is handed to
endpoints through these ``Depends`` providers, so every app instance created
by ``create_app`` is isolated from the others.
"""
from fastapi import Request

from dataask.core.config import Settings
from dataask.db.connections import ConnectionManager
from dataask.domain.imports.bulk_importer import BulkImporter
from dataask.domain.imports.jobs import ImportProgressRegistry
from dataask.domain.uploads.scratch import ScratchFileStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_progress_registry(request: Request) -> ImportProgressRegistry:
    return request.app.state.progress_registry


def get_connection_manager(request: Request) -> ConnectionManager:
    return request.app.state.connections


def get_scratch_store(request: Request) -> ScratchFileStore:
    return request.app.state.scratch_store


def get_bulk_importer(request: Request) -> BulkImporter:
    return request.app.state.bulk_importer
