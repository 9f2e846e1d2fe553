"""Search index collaborators."""

from .base import BulkIndexResult, SearchIndex
from .http_index import HttpSearchIndex
from .memory_index import InMemorySearchIndex

__all__ = ["BulkIndexResult", "HttpSearchIndex", "InMemorySearchIndex", "SearchIndex"]
