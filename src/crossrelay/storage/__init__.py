"""Durable storage backends."""

from crossrelay.storage.sqlite_store import SQLiteCorrelationStore

__all__ = ["SQLiteCorrelationStore"]
