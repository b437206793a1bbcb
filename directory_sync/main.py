import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .adapters.graph import DirectoryClient
from .routes.directory import router as directory_router
from .services.combined import CombinedView
from .services.config import SyncSettings, get_settings
from .services.database import DirectoryStore
from .services.facade import DirectoryService
from .services.overrides import OverrideStore
from .workers.sync_worker import SyncWorker


log = logging.getLogger("directory_sync")


def configure_logging() -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_service(settings: SyncSettings, client: DirectoryClient = None) -> DirectoryService:
    """Wire store, overrides, merge view, client and worker together."""
    store = DirectoryStore(settings)
    overrides = OverrideStore()
    view = CombinedView(store, overrides)
    overrides.identity_index = view
    client = client or DirectoryClient(settings)
    worker = SyncWorker(settings, client, store)
    return DirectoryService(store, overrides, view, worker)


def create_app(settings: SyncSettings = None, client: DirectoryClient = None) -> FastAPI:
    """Build the FastAPI app; settings default to the environment."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize the store, seed overrides and start the sync schedule."""
        service = build_service(settings or get_settings(), client)
        try:
            service.store.init()
            if service.store.settings.seed_overrides:
                service.overrides.seed_if_empty()
            service.worker.start()
        except Exception as e:
            log.error("Startup failed: %s", e)
            raise
        app.state.directory = service
        yield
        service.worker.stop()
        await service.worker.wait_idle()
        await service.worker.client.aclose()
        service.store.shutdown()

    app = FastAPI(title="Directory Sync", version="0.1.0", lifespan=lifespan)
    app.include_router(directory_router)

    @app.get("/api/health")
    def health():
        """Minimal liveness endpoint."""
        return {"status": "ok"}

    return app


configure_logging()
app = create_app()
