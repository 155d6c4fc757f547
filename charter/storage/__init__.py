"""Document store implementations."""

from .document_store import (
    RELATIONSHIPS,
    DocumentNotFound,
    DocumentStore,
    WriteConflictError,
)
from .memory_store import InMemoryDocumentStore

__all__ = [
    "RELATIONSHIPS",
    "DocumentNotFound",
    "DocumentStore",
    "WriteConflictError",
    "InMemoryDocumentStore",
]
