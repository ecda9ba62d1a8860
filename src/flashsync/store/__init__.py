"""
Durable store for flash records (DuckDB or Postgres through ibis).
"""

from flashsync.store.connections import BaseConnection, DuckDBConnection, PostgresConnection, connect_store
from flashsync.store.flashes import FlashStore

__all__ = [
    "BaseConnection",
    "DuckDBConnection",
    "PostgresConnection",
    "connect_store",
    "FlashStore",
]
