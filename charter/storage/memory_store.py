"""In-process document store used for development and tests."""

import copy
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from charter.logging import get_logger
from charter.storage.document_store import (
    Document,
    DocumentNotFound,
    DocumentStore,
    WriteConflictError,
)
from charter.storage.filters import matches

logger = get_logger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryDocumentStore(DocumentStore):
    """Document store keeping every collection in a dict."""

    def __init__(self, seed: Optional[dict[str, list[Document]]] = None):
        """
        Initialize the store.

        Args:
            seed: Optional initial documents per collection (ids preserved)
        """
        self._collections: dict[str, dict[str, Document]] = {}
        self._versions: dict[tuple[str, str], int] = {}
        for collection, documents in (seed or {}).items():
            for document in documents:
                self._insert(collection, copy.deepcopy(document))

    def _insert(self, collection: str, document: Document) -> Document:
        document_id = str(document.get("id") or uuid4().hex)
        document["id"] = document_id
        document.setdefault("createdAt", _now_iso())
        document.setdefault("updatedAt", document["createdAt"])
        self._collections.setdefault(collection, {})[document_id] = document
        self._versions[(collection, document_id)] = 1
        return document

    def version_of(self, collection: str, id: str) -> int:
        """Current write version of a document (0 when absent)."""
        return self._versions.get((collection, id), 0)

    async def find(
        self,
        collection: str,
        where: Optional[dict[str, Any]] = None,
        depth: int = 0,
        limit: Optional[int] = None,
    ) -> list[Document]:
        """Return deep copies of matching documents."""
        results = []
        for document in self._collections.get(collection, {}).values():
            if not matches(document, where):
                continue
            results.append(await self.populate(collection, copy.deepcopy(document), depth))
            if limit is not None and len(results) >= limit:
                break
        return results

    async def find_by_id(self, collection: str, id: str, depth: int = 0) -> Optional[Document]:
        """Retrieve a deep copy of a document by id."""
        document = self._collections.get(collection, {}).get(str(id))
        if document is None:
            return None
        return await self.populate(collection, copy.deepcopy(document), depth)

    async def find_versioned(self, collection: str, id: str) -> Optional[tuple[Document, int]]:
        """Retrieve a deep copy of a document and its version."""
        document = self._collections.get(collection, {}).get(str(id))
        if document is None:
            return None
        return copy.deepcopy(document), self.version_of(collection, str(id))

    async def create(self, collection: str, data: Document) -> Document:
        """Insert a document."""
        document = self._insert(collection, copy.deepcopy(data))
        logger.debug("document_created", collection=collection, id=document["id"])
        return copy.deepcopy(document)

    async def update(
        self,
        collection: str,
        id: str,
        data: Document,
        override_access: bool = False,
        disable_transaction: bool = False,
        expected_version: Optional[int] = None,
    ) -> Document:
        """Shallow-merge ``data`` into the stored document."""
        stored = self._collections.get(collection, {}).get(str(id))
        if stored is None:
            raise DocumentNotFound(collection, str(id))
        if expected_version is not None and expected_version != self.version_of(collection, str(id)):
            logger.warning("document_write_conflict", collection=collection, id=str(id))
            raise WriteConflictError(collection, str(id))

        stored.update(copy.deepcopy({k: v for k, v in data.items() if k != "id"}))
        stored["updatedAt"] = _now_iso()
        self._versions[(collection, str(id))] += 1
        return copy.deepcopy(stored)
