"""FastAPI application exposing the tracker engine"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from auth import JWTError, JWTManager
from config import Settings, settings as default_settings
from core.enums import ImportMode, SortOrder, UpdateSource, UpdateViewMode
from core.exceptions import (
    AuthorizationError,
    DatabaseError,
    DuplicateKeyError,
    MalformedInputError,
    NotFoundError,
    SizeLimitError,
    TrackerEngineError,
    ValidationError,
    VersionConflictError,
)
from core.interfaces import TrackerStore
from core.models import ColumnDefinition, EditedProposal, Proposal
from db import PostgresStore, create_store
from trackers import AliasService, PageReader, ProposalEngine, RowService, TrackerManager


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

ERROR_STATUS = {
    ValidationError: 422,
    DuplicateKeyError: 409,
    VersionConflictError: 409,
    NotFoundError: 404,
    AuthorizationError: 403,
    SizeLimitError: 413,
    MalformedInputError: 400,
    DatabaseError: 503,
}


class Services:
    """Engine services bound to one store"""

    def __init__(self, store: TrackerStore, config: Settings):
        self.store = store
        self.settings = config
        self.trackers = TrackerManager(store, config)
        self.rows = RowService(store, config)
        self.pages = PageReader(store, config)
        self.aliases = AliasService(store, config)
        self.proposals = ProposalEngine(store, config)
        self.jwt = JWTManager.from_settings(config) if config.JWT_SECRET_KEY else None


# Request models

class CreateTrackerRequest(BaseModel):
    name: str
    description: Optional[str] = None
    columns: list[ColumnDefinition] = []
    primary_key_column: Optional[str] = None
    template_key: Optional[str] = None


class UpdateTrackerRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    columns: Optional[list[ColumnDefinition]] = None
    primary_key_column: Optional[str] = None
    is_active: Optional[bool] = None


class ColumnAIRequest(BaseModel):
    enabled: bool


class RowRequest(BaseModel):
    data: dict[str, Any]


class BulkImportRequest(BaseModel):
    rows: list[dict[str, Any]]
    mode: ImportMode = ImportMode.APPEND


class AliasRequest(BaseModel):
    row_id: str
    alias: str


class BulkAliasRequest(BaseModel):
    aliases: list[AliasRequest]


class CreateUpdateRequest(BaseModel):
    title: str
    summary: Optional[str] = None
    source: UpdateSource = UpdateSource.MANUAL
    source_id: Optional[str] = None
    proposals: list[Proposal] = []


class ApproveRequest(BaseModel):
    edited_proposals: Optional[list[EditedProposal]] = None


# Dependencies

def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Caller subject from the bearer token"""
    services = get_services(request)
    if services.jwt is None:
        raise HTTPException(status_code=500, detail="JWT authentication not configured. Set JWT_SECRET_KEY")
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required")

    try:
        return services.jwt.verify_token(credentials.credentials)
    except JWTError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e


async def engine_error_handler(request: Request, exc: TrackerEngineError) -> JSONResponse:
    status_code = 500
    for error_type in type(exc).__mro__:
        if error_type in ERROR_STATUS:
            status_code = ERROR_STATUS[error_type]
            break

    body: dict[str, Any] = {"detail": str(exc), "type": type(exc).__name__}
    if isinstance(exc, ValidationError):
        body["errors"] = [
            e.model_dump() if isinstance(e, BaseModel) else e
            for e in exc.errors
        ]

    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=body)


router = APIRouter(prefix="/api")


# Trackers

@router.get("/templates")
async def list_templates(services: Services = Depends(get_services)):
    return [t.model_dump(mode="json") for t in services.trackers.get_templates()]


@router.post("/trackers", status_code=201)
async def create_tracker(
    body: CreateTrackerRequest,
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    tracker = await services.trackers.create_tracker(
        user,
        body.name,
        columns=body.columns,
        primary_key_column=body.primary_key_column,
        description=body.description,
        template_key=body.template_key,
    )
    return tracker.model_dump(mode="json")


@router.get("/trackers")
async def list_trackers(
    active_only: bool = False,
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    trackers = await services.trackers.list_trackers(user, active_only)
    return {"trackers": [t.model_dump(mode="json") for t in trackers]}


@router.get("/trackers/by-slug/{slug}")
async def get_tracker_by_slug(slug: str, user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    tracker = await services.trackers.get_tracker(slug=slug, user_id=user)
    return tracker.model_dump(mode="json")


@router.get("/trackers/{tracker_id}")
async def get_tracker(tracker_id: str, user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    tracker = await services.trackers.get_tracker(tracker_id=tracker_id, user_id=user)
    return tracker.model_dump(mode="json")


@router.patch("/trackers/{tracker_id}")
async def update_tracker(
    tracker_id: str,
    body: UpdateTrackerRequest,
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    tracker = await services.trackers.update_tracker(
        user,
        tracker_id,
        name=body.name,
        description=body.description,
        columns=body.columns,
        primary_key_column=body.primary_key_column,
        is_active=body.is_active,
    )
    return tracker.model_dump(mode="json")


@router.put("/trackers/{tracker_id}/columns/{column_id}/ai")
async def set_column_ai(
    tracker_id: str,
    column_id: str,
    body: ColumnAIRequest,
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    tracker = await services.trackers.set_column_ai_enabled(user, tracker_id, column_id, body.enabled)
    return tracker.model_dump(mode="json")


@router.delete("/trackers/{tracker_id}", status_code=204)
async def delete_tracker(tracker_id: str, user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    await services.trackers.delete_tracker(user, tracker_id)
    return Response(status_code=204)


# Rows

@router.get("/trackers/{tracker_id}/rows")
async def get_rows(
    tracker_id: str,
    cursor: Optional[str] = None,
    page_size: Optional[int] = None,
    sort_by: Optional[str] = None,
    sort_order: SortOrder = SortOrder.ASC,
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    page = await services.pages.get_page(
        tracker_id,
        cursor=cursor,
        page_size=page_size,
        sort_by=sort_by,
        sort_order=sort_order,
        user_id=user,
    )
    return page.model_dump(mode="json")


@router.post("/trackers/{tracker_id}/rows")
async def add_row(
    tracker_id: str,
    body: RowRequest,
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    result = await services.rows.add_row(user, tracker_id, body.data)
    return JSONResponse(status_code=201 if result.success else 422, content=result.model_dump(mode="json"))


@router.get("/trackers/{tracker_id}/rows/{row_id}")
async def get_row(tracker_id: str, row_id: str, user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    row = await services.rows.get_row(user, tracker_id, row_id)
    return row.model_dump(mode="json")


@router.patch("/trackers/{tracker_id}/rows/{row_id}")
async def update_row(
    tracker_id: str,
    row_id: str,
    body: RowRequest,
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    result = await services.rows.update_row(user, tracker_id, row_id, body.data)
    return JSONResponse(status_code=200 if result.success else 422, content=result.model_dump(mode="json"))


@router.delete("/trackers/{tracker_id}/rows/{row_id}", status_code=204)
async def delete_row(tracker_id: str, row_id: str, user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    await services.rows.delete_row(user, tracker_id, row_id)
    return Response(status_code=204)


@router.post("/trackers/{tracker_id}/import")
async def bulk_import(
    tracker_id: str,
    body: BulkImportRequest,
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    result = await services.rows.bulk_import(user, tracker_id, body.rows, body.mode)
    return result.model_dump(mode="json")


@router.post("/trackers/{tracker_id}/import/csv")
async def import_csv(
    tracker_id: str,
    file: UploadFile = File(...),
    mode: ImportMode = Form(ImportMode.APPEND),
    delimiter: Optional[str] = Form(","),
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    content = await file.read()
    if len(content) > services.settings.MAX_CSV_SIZE_BYTES:
        raise SizeLimitError(
            f"CSV file too large. Maximum size is {services.settings.MAX_CSV_SIZE_BYTES} bytes",
            limit=services.settings.MAX_CSV_SIZE_BYTES,
        )
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise MalformedInputError("CSV must be UTF-8 encoded") from e

    result = await services.rows.import_csv(user, tracker_id, text, mode, delimiter or None)
    return result.model_dump(mode="json")


# Aliases

@router.get("/trackers/{tracker_id}/aliases")
async def list_tracker_aliases(tracker_id: str, user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    grouped = await services.aliases.list_tracker_aliases(user, tracker_id)
    return {row_id: [a.model_dump(mode="json") for a in aliases] for row_id, aliases in grouped.items()}


@router.get("/trackers/{tracker_id}/aliases/resolve")
async def resolve_alias(
    tracker_id: str,
    term: str = Query(...),
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await services.trackers.get_tracker(tracker_id=tracker_id, user_id=user)
    row_id = await services.aliases.resolve_alias(tracker_id, term)
    if row_id is None:
        raise NotFoundError(f'Alias "{term}" not found', resource="alias")
    return {"row_id": row_id}


@router.get("/trackers/{tracker_id}/rows/{row_id}/aliases")
async def list_row_aliases(tracker_id: str, row_id: str, user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    aliases = await services.aliases.list_row_aliases(user, tracker_id, row_id)
    return [a.model_dump(mode="json") for a in aliases]


@router.post("/trackers/{tracker_id}/aliases", status_code=201)
async def add_alias(
    tracker_id: str,
    body: AliasRequest,
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    alias = await services.aliases.add_alias(user, tracker_id, body.row_id, body.alias)
    return alias.model_dump(mode="json")


@router.post("/trackers/{tracker_id}/aliases/bulk")
async def bulk_add_aliases(
    tracker_id: str,
    body: BulkAliasRequest,
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    items = [(item.row_id, item.alias) for item in body.aliases]
    result = await services.aliases.bulk_add_aliases(user, tracker_id, items)
    return result.model_dump(mode="json")


@router.delete("/aliases/{alias_id}", status_code=204)
async def remove_alias(alias_id: str, user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    await services.aliases.remove_alias(user, alias_id)
    return Response(status_code=204)


# Updates

@router.post("/updates", status_code=201)
async def create_update(
    body: CreateUpdateRequest,
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    update = await services.proposals.create_update(
        user,
        body.title,
        proposals=body.proposals,
        source=body.source,
        source_id=body.source_id,
        summary=body.summary,
    )
    return update.model_dump(mode="json")


@router.get("/updates")
async def list_updates(
    view_mode: UpdateViewMode = UpdateViewMode.ACTIVE,
    cursor: Optional[str] = None,
    page_size: Optional[int] = None,
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    page = await services.proposals.list_updates(user, view_mode, cursor, page_size)
    return page.model_dump(mode="json")


@router.get("/updates/stats")
async def get_update_stats(user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    stats = await services.proposals.get_stats(user)
    return stats.model_dump()


@router.post("/updates/viewed")
async def mark_all_viewed(user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    count = await services.proposals.mark_all_viewed(user)
    return {"marked": count}


@router.get("/updates/{update_id}")
async def get_update(update_id: str, user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    update = await services.proposals.get_update(user, update_id)
    return update.model_dump(mode="json")


@router.post("/updates/{update_id}/approve")
async def approve_update(
    update_id: str,
    body: Optional[ApproveRequest] = None,
    user: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    edited = body.edited_proposals if body else None
    result = await services.proposals.apply_proposals(user, update_id, edited)
    return result.model_dump(mode="json")


@router.post("/updates/{update_id}/reject")
async def reject_update(update_id: str, user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    update = await services.proposals.reject_proposals(user, update_id)
    return update.model_dump(mode="json")


@router.post("/updates/{update_id}/archive")
async def archive_update(update_id: str, user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    update = await services.proposals.archive_update(user, update_id)
    return update.model_dump(mode="json")


@router.post("/updates/{update_id}/viewed")
async def mark_viewed(update_id: str, user: str = Depends(get_current_user), services: Services = Depends(get_services)):
    update = await services.proposals.mark_viewed(user, update_id)
    return update.model_dump(mode="json")


def create_app(store: Optional[TrackerStore] = None, config: Optional[Settings] = None) -> FastAPI:
    """
    Build the API application

    Args:
        store: Store to serve; defaults to the configured backend
        config: Settings; defaults to the environment

    Returns:
        FastAPI application
    """
    config = config or default_settings
    store = store or create_store(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if isinstance(store, PostgresStore):
            await store.db.create_pool()
        try:
            yield
        finally:
            if isinstance(store, PostgresStore):
                await store.db.close()

    app = FastAPI(
        title="Tracker Data Engine API",
        description="Typed trackers, bulk import and proposal reconciliation",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = Services(store, config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TrackerEngineError, engine_error_handler)
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "store": type(store).__name__}

    return app
