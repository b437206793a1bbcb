"""
Directory Data Routes

Thin HTTP adapter over DirectoryService. Every endpoint returns the service
envelope; the HTTP status is derived from the envelope's error code.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, Query, Request
from fastapi.responses import JSONResponse

from ..errors import status_for_code
from ..services.facade import DirectoryService
from ..services.filters import RecordFilter
from ..services.models import APIResponse


router = APIRouter(prefix="/api/data", tags=["Directory Data"])


def get_service(request: Request) -> DirectoryService:
    return request.app.state.directory


def respond(response: APIResponse, success_status: int = 200) -> JSONResponse:
    status = success_status if response.success else status_for_code(response.error)
    return JSONResponse(status_code=status, content=response.model_dump(mode="json", exclude_none=True))


# ============================================================================
# Sync and diagnostics
# ============================================================================

@router.post("/sync")
async def trigger_sync(service: DirectoryService = Depends(get_service)):
    """Run a directory sync now."""
    return respond(await service.trigger_manual_sync())


@router.get("/sync/status")
def sync_status(service: DirectoryService = Depends(get_service)):
    return respond(service.get_sync_status())


@router.get("/sync/history")
def sync_history(
    limit: int = Query(20, ge=1, le=500),
    service: DirectoryService = Depends(get_service),
):
    return respond(service.get_sync_history(limit))


@router.get("/diagnostics")
def diagnostics(service: DirectoryService = Depends(get_service)):
    """Database file, tables, row counts and columns."""
    return respond(service.get_diagnostics())


@router.post("/clear")
def clear_all(service: DirectoryService = Depends(get_service)):
    """Drop synced tables and remove override records. The status log is kept."""
    return respond(service.clear_all())


@router.get("/sources")
def available_sources(service: DirectoryService = Depends(get_service)):
    return respond(service.list_available_sources())


@router.get("/stats")
def stats(
    kind: Optional[str] = Query(None, description="users or devices; both when omitted"),
    service: DirectoryService = Depends(get_service),
):
    return respond(service.get_stats(kind))


# ============================================================================
# Records
# ============================================================================

@router.get("/{kind}")
def list_records(
    kind: str,
    source: str = Query("all", description="all, synced or override"),
    department: Optional[str] = None,
    operatingSystem: Optional[str] = None,
    accountEnabled: Optional[bool] = None,
    search: Optional[str] = None,
    service: DirectoryService = Depends(get_service),
):
    """Combined records of one kind, filtered and sorted by display name."""
    flt = RecordFilter(
        department=department,
        operatingSystem=operatingSystem,
        accountEnabled=accountEnabled,
        search=search,
    )
    return respond(service.find(kind, flt, source))


@router.get("/{kind}/{record_id}")
def get_record(kind: str, record_id: str, service: DirectoryService = Depends(get_service)):
    return respond(service.get_by_id(kind, record_id))


@router.post("/{kind}/overrides")
def create_override(
    kind: str,
    payload: Dict[str, Any] = Body(...),
    x_user_id: Optional[str] = Header(None),
    service: DirectoryService = Depends(get_service),
):
    return respond(service.create_override(kind, payload, x_user_id), success_status=201)


@router.patch("/{kind}/overrides/{record_id}")
def update_override(
    kind: str,
    record_id: str,
    payload: Dict[str, Any] = Body(...),
    x_user_id: Optional[str] = Header(None),
    service: DirectoryService = Depends(get_service),
):
    return respond(service.update_override(kind, record_id, payload, x_user_id))


@router.delete("/{kind}/overrides/{record_id}")
def delete_override(kind: str, record_id: str, service: DirectoryService = Depends(get_service)):
    return respond(service.delete_override(kind, record_id))
