"""
Adapters layer for external system integrations.

This package contains adapters that wrap external services with clean,
normalized interfaces. Adapters handle authentication, pagination, rate
limiting and error normalization.

Organization:
- graph/: Paged directory API (users, devices) with app-only auth
"""
