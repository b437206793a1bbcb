"""
Directory API adapter package.

Provides normalized interfaces for the remote paged directory:
- client: DirectoryClient (fetch_page, fetch_all_pages, test_connection)
- _auth: App-only token source for the directory API
"""

from ._auth import AppTokenProvider, build_app_credential
from .client import DirectoryClient, FetchResult

__all__ = [
    "AppTokenProvider",
    "build_app_credential",
    "DirectoryClient",
    "FetchResult",
]
