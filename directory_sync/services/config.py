"""Environment-backed configuration for the directory sync engine."""
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel


DEFAULT_BASE_URL = "https://graph.microsoft.com"
DEFAULT_SCOPE = "https://graph.microsoft.com/.default"
DATABASE_FILENAME = "directory.db"


def _truthy(val: Optional[str]) -> bool:
    if val is None:
        return False
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


class SyncSettings(BaseModel):
    """Settings shared by the directory client, store and sync worker."""
    enabled: bool = False
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    interval_ms: int = 3_600_000
    base_url: str = DEFAULT_BASE_URL
    scope: str = DEFAULT_SCOPE
    timeout_seconds: float = 30.0
    page_delay_ms: int = 100
    data_dir: str = "./data"
    seed_overrides: bool = True

    @property
    def has_credentials(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    @property
    def database_path(self) -> Path:
        return Path(self.data_dir) / DATABASE_FILENAME

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """
        Build settings from environment variables.

        Environment variables:
            - DIRECTORY_SYNC_ENABLED: truthy to enable periodic sync (default false)
            - AZURE_TENANT_ID / AZURE_CLIENT_ID / AZURE_CLIENT_SECRET: app-only credential
            - DIRECTORY_SYNC_INTERVAL_MS: sync period (default 1 hour)
            - DIRECTORY_API_BASE_URL: base URL of the directory API
            - DIRECTORY_API_SCOPE: token scope requested for the app credential
            - DIRECTORY_API_TIMEOUT_SECONDS: per-request timeout
            - DIRECTORY_PAGE_DELAY_MS: fixed delay between page fetches
            - DIRECTORY_DATA_DIR: directory holding the SQLite file
            - DIRECTORY_SEED_OVERRIDES: seed one override user on first start (default true)
        """
        env = os.environ
        return cls(
            enabled=_truthy(env.get("DIRECTORY_SYNC_ENABLED")),
            tenant_id=env.get("AZURE_TENANT_ID") or None,
            client_id=env.get("AZURE_CLIENT_ID") or None,
            client_secret=env.get("AZURE_CLIENT_SECRET") or None,
            interval_ms=int(env.get("DIRECTORY_SYNC_INTERVAL_MS", "3600000")),
            base_url=env.get("DIRECTORY_API_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            scope=env.get("DIRECTORY_API_SCOPE", DEFAULT_SCOPE),
            timeout_seconds=float(env.get("DIRECTORY_API_TIMEOUT_SECONDS", "30")),
            page_delay_ms=int(env.get("DIRECTORY_PAGE_DELAY_MS", "100")),
            data_dir=env.get("DIRECTORY_DATA_DIR", "./data"),
            seed_overrides=_truthy(env.get("DIRECTORY_SEED_OVERRIDES", "true")),
        )


def get_settings() -> SyncSettings:
    """Get settings from environment."""
    return SyncSettings.from_env()
