"""
Directory service facade.

Exposes the engine's operations behind a uniform ``APIResponse`` envelope.
Taxonomy errors become ``success=False`` envelopes carrying the error code;
nothing raised by the engine escapes except through the envelope.
"""
import logging
from typing import Any, Callable, Optional

from ..errors import DirectorySyncError, NotFoundError
from ..workers.sync_worker import SyncWorker
from .combined import SOURCE_ALL, CombinedView
from .database import DirectoryStore
from .filters import RecordFilter
from .models import APIResponse
from .overrides import OverrideStore, RequestLike


log = logging.getLogger(__name__)

INTERNAL_ERROR = "InternalServerError"


def failure(error: Exception) -> APIResponse:
    if isinstance(error, DirectorySyncError):
        return APIResponse(success=False, error=error.code, message=str(error))
    log.exception("Unexpected error in directory service")
    return APIResponse(success=False, error=INTERNAL_ERROR, message=str(error))


class DirectoryService:
    """Envelope-returning operations over store, overrides, view and worker."""

    def __init__(
        self,
        store: DirectoryStore,
        overrides: OverrideStore,
        view: CombinedView,
        worker: SyncWorker,
    ):
        self.store = store
        self.overrides = overrides
        self.view = view
        self.worker = worker

    def _call(self, fn: Callable[[], Any], message: Optional[str] = None) -> APIResponse:
        try:
            return APIResponse(success=True, data=fn(), message=message)
        except Exception as e:
            return failure(e)

    # Reads

    def get_combined(self, kind: str, source: str = SOURCE_ALL) -> APIResponse:
        return self._call(lambda: self.view.get_combined(kind, source))

    def find(self, kind: str, flt: Optional[RecordFilter] = None, source: str = SOURCE_ALL) -> APIResponse:
        return self._call(lambda: self.view.find(kind, flt, source))

    def get_by_id(self, kind: str, record_id: str) -> APIResponse:
        def lookup():
            record = self.view.get_by_id(kind, record_id)
            if record is None:
                raise NotFoundError(f"{kind[:-1].capitalize()} {record_id} not found")
            return record
        return self._call(lookup)

    def get_stats(self, kind: Optional[str] = None) -> APIResponse:
        return self._call(lambda: self.view.get_stats(kind))

    def list_available_sources(self) -> APIResponse:
        return self._call(self.view.list_available_sources)

    # Override writes

    def create_override(self, kind: str, request: RequestLike, creator_id: Optional[str] = None) -> APIResponse:
        return self._call(
            lambda: self.overrides.create(kind, request, creator_id),
            message=f"Override {kind[:-1]} created",
        )

    def update_override(self, kind: str, record_id: str, request: RequestLike,
                        updater_id: Optional[str] = None) -> APIResponse:
        return self._call(
            lambda: self.overrides.update(kind, record_id, request, updater_id),
            message=f"Override {kind[:-1]} updated",
        )

    def delete_override(self, kind: str, record_id: str) -> APIResponse:
        def remove():
            if not self.overrides.delete(kind, record_id):
                raise NotFoundError(f"Override {kind[:-1]} {record_id} not found")
            return {"id": record_id}
        return self._call(remove, message=f"Override {kind[:-1]} deleted")

    # Sync

    async def trigger_manual_sync(self) -> APIResponse:
        try:
            outcome = await self.worker.trigger_manual_sync()
        except Exception as e:
            return failure(e)
        return APIResponse(
            success=outcome["success"],
            data=outcome.get("data"),
            message=outcome["message"],
            error=outcome.get("error"),
        )

    def get_sync_status(self) -> APIResponse:
        return self._call(self.worker.get_status)

    def get_sync_history(self, limit: int = 20) -> APIResponse:
        return self._call(lambda: [s.model_dump() for s in self.store.get_sync_history(limit)])

    def get_diagnostics(self) -> APIResponse:
        return self._call(self.store.get_diagnostics)

    # Maintenance

    def clear_all(self) -> APIResponse:
        """Drop synced tables and caches and remove every override record."""
        def clear():
            self.store.clear_all()
            self.overrides.clear()
            return {"cleared": True}
        return self._call(clear, message="All synced and override data cleared")
