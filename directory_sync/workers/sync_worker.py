"""
Directory Sync Worker

Background task that pulls users and devices from the remote directory and
writes them into the adaptive-schema store.

At most one sync runs at a time; overlapping triggers are dropped. Every
run, successful or not, appends a row to the sync status log.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Set
from urllib.parse import quote, urlencode

from ..adapters.graph import DirectoryClient
from ..errors import (
    ConfigurationError,
    ConflictError,
    ConnectivityError,
    DirectorySyncError,
    ValidationError,
)
from ..services.config import SyncSettings
from ..services.database import DirectoryStore
from ..services.filters import DEVICES, USERS
from ..services.models import SyncStatus


log = logging.getLogger(__name__)

PAGE_SIZE = 999
SYNC_FAILED = "SyncFailed"

# Field projection and query per resource kind
RESOURCES: Dict[str, Dict[str, Any]] = {
    USERS: {
        "path": "/v1.0/users",
        "fields": [
            "id",
            "displayName",
            "userPrincipalName",
            "mail",
            "department",
            "jobTitle",
            "accountEnabled",
            "createdDateTime",
        ],
        "filter": "userType eq 'Member'",
    },
    DEVICES: {
        "path": "/v1.0/devices",
        "fields": [
            "id",
            "displayName",
            "deviceId",
            "operatingSystem",
            "operatingSystemVersion",
            "trustType",
            "accountEnabled",
            "registrationDateTime",
        ],
        "filter": None,
    },
}


def _resource(kind: str) -> Dict[str, Any]:
    try:
        return RESOURCES[kind]
    except KeyError:
        raise ValidationError(f"Unknown resource kind: {kind!r}")


def build_resource_path(kind: str) -> str:
    """Initial page path with field selection, page size and filter."""
    resource = _resource(kind)
    params = {"$select": ",".join(resource["fields"]), "$top": str(PAGE_SIZE)}
    if resource["filter"]:
        params["$filter"] = resource["filter"]
    return f"{resource['path']}?{urlencode(params, quote_via=quote, safe='$,')}"


def transform_record(kind: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    """Project a raw record onto the kind's fields, omitting absent values."""
    return {
        name: raw[name]
        for name in _resource(kind)["fields"]
        if raw.get(name) is not None
    }


class SyncWorker:
    """
    Coordinates fetch, transform and persist for each resource kind.

    Args:
        settings: Sync settings (enablement, credentials, interval)
        client: Directory API client
        store: Adaptive-schema store receiving the synced records
    """

    def __init__(self, settings: SyncSettings, client: DirectoryClient, store: DirectoryStore):
        self.settings = settings
        self.client = client
        self.store = store
        self._in_progress = False
        self._timer: Optional[asyncio.Task] = None
        self._runs: Set[asyncio.Task] = set()

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def scheduled(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def sync_resource(self, kind: str) -> List[Dict[str, Any]]:
        """
        Fetch every page of ``kind`` and replace the stored collection.

        Raises:
            ConnectivityError: If pagination stopped before the last page
        """
        result = await self.client.fetch_all_pages(build_resource_path(kind))
        if not result.complete:
            raise ConnectivityError(
                f"Incomplete {kind} fetch after {result.pages} page(s): {result.error}"
            )

        records = [transform_record(kind, raw) for raw in result.records if raw.get("id")]
        if not records:
            log.warning("Directory returned no %s; stored %s left unchanged", kind, kind)
            return records

        if kind == USERS:
            self.store.set_users(records)
        else:
            self.store.set_devices(records)

        log.info("Synced %d %s (%d page(s))", len(records), kind, result.pages)
        return records

    async def sync_all(self) -> Optional[SyncStatus]:
        """
        Run one full sync of users and devices.

        Returns the appended status, or None when a sync was already running.
        Failures are recorded in the status log and never raised.
        """
        if self._in_progress:
            log.info("Directory sync already in progress, skipping")
            return None

        self._in_progress = True
        started = time.monotonic()
        counts = {USERS: 0, DEVICES: 0}
        error: Optional[str] = None
        log.info("Directory sync started")

        try:
            if not await self.client.test_connection():
                raise ConnectivityError("Cannot connect to directory API")

            results = await asyncio.gather(
                self.sync_resource(USERS),
                self.sync_resource(DEVICES),
                return_exceptions=True,
            )
            for kind, outcome in zip((USERS, DEVICES), results):
                if isinstance(outcome, BaseException):
                    error = error or f"{kind}: {outcome}"
                    log.error("Directory sync of %s failed: %s", kind, outcome)
                else:
                    counts[kind] = len(outcome)
        except DirectorySyncError as e:
            error = str(e)
            log.error("Directory sync failed: %s", e)
        except Exception as e:
            error = f"Unexpected error: {e}"
            log.exception("Directory sync failed unexpectedly")

        duration_ms = int((time.monotonic() - started) * 1000)
        try:
            status = self.store.append_sync_status(SyncStatus(
                usersCount=counts[USERS],
                devicesCount=counts[DEVICES],
                success=error is None,
                error=error,
                durationMs=duration_ms,
            ))
        finally:
            self._in_progress = False

        if status.success:
            log.info(
                "Directory sync completed in %dms: %d users, %d devices",
                duration_ms, counts[USERS], counts[DEVICES],
            )
        return status

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _spawn_run(self) -> asyncio.Task:
        task = asyncio.create_task(self.sync_all())
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def _run_loop(self, interval_seconds: float) -> None:
        while True:
            self._spawn_run()
            await asyncio.sleep(interval_seconds)

    def start(self, interval_ms: Optional[int] = None) -> bool:
        """
        Run one sync now and then every ``interval_ms``.

        Must be called from a running event loop. Returns False without
        scheduling anything when sync is disabled or credentials are missing.
        """
        if not self.settings.enabled:
            log.info("Directory sync is disabled (DIRECTORY_SYNC_ENABLED not set)")
            return False
        if not self.settings.has_credentials:
            log.info("Directory sync not started: credentials are not configured")
            return False

        interval = interval_ms or self.settings.interval_ms
        self.stop()
        self._timer = asyncio.create_task(self._run_loop(interval / 1000))
        log.info("Directory sync scheduled every %ds", interval // 1000)
        return True

    def stop(self) -> None:
        """Cancel the periodic timer. A run already in flight keeps going."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            log.info("Directory sync schedule stopped")

    async def wait_idle(self) -> None:
        """Wait for runs launched by the scheduler to finish."""
        if self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)

    # ------------------------------------------------------------------
    # Status and manual trigger
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.settings.enabled,
            "hasCredentials": self.settings.has_credentials,
            "inProgress": self._in_progress,
            "scheduled": self.scheduled,
            "intervalMs": self.settings.interval_ms,
            "lastSync": self.store.get_sync_status().model_dump(),
        }

    async def trigger_manual_sync(self) -> Dict[str, Any]:
        """Run a sync on demand and report the outcome."""
        if not self.settings.has_credentials:
            return {
                "success": False,
                "error": ConfigurationError.code,
                "message": "Directory credentials are not configured",
            }
        busy = {"success": False, "error": ConflictError.code, "message": "A sync is already in progress"}
        if self._in_progress:
            return busy

        status = await self.sync_all()
        if status is None:
            return busy
        if status.success:
            message = f"Synced {status.usersCount} users and {status.devicesCount} devices"
        else:
            message = f"Sync failed: {status.error}"
        outcome = {"success": status.success, "message": message, "data": status.model_dump()}
        if not status.success:
            outcome["error"] = SYNC_FAILED
        return outcome
