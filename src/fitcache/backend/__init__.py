"""
Backend package: access to the hosted database.

- base.py: Query builder and the Backend protocol
- postgrest.py: httpx-based PostgREST client
"""

from fitcache.backend.base import Backend, Query, RowMode, select
from fitcache.backend.postgrest import PostgrestBackend, create_backend

__all__ = [
    "Backend",
    "PostgrestBackend",
    "Query",
    "RowMode",
    "create_backend",
    "select",
]
