"""Persistence collaborators."""

from .base import OpportunityStore
from .sqlite_store import SQLiteStore

__all__ = ["OpportunityStore", "SQLiteStore"]
