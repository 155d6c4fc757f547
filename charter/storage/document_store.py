"""Document store interface.

The reservation engine talks to its persistence layer through a small,
collection-oriented contract: find / find_by_id / create / update over
JSON-like documents, with relationship expansion controlled by ``depth``.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

# collection -> {field: related collection}
RELATIONSHIPS: dict[str, dict[str, str]] = {
    "reservations": {"boat": "boats", "coupon": "coupons"},
    "boats": {"location": "locations"},
    "coupons": {},
    "locations": {},
}

Document = dict[str, Any]


class DocumentNotFound(LookupError):
    """Raised when updating a document that does not exist."""

    def __init__(self, collection: str, id: str):
        self.collection = collection
        self.id = id
        super().__init__(f"{collection} document not found: {id}")


class WriteConflictError(RuntimeError):
    """Raised when a document changed underneath a concurrent update."""

    code = 112
    code_name = "WriteConflict"

    def __init__(self, collection: str, id: str):
        self.collection = collection
        self.id = id
        super().__init__(f"Write conflict updating {collection} document {id}")


class DocumentStore(ABC):
    """Base document store interface."""

    relationships: dict[str, dict[str, str]] = RELATIONSHIPS

    @abstractmethod
    async def find(
        self,
        collection: str,
        where: Optional[dict[str, Any]] = None,
        depth: int = 0,
        limit: Optional[int] = None,
    ) -> list[Document]:
        """Return documents matching the filter."""
        pass

    @abstractmethod
    async def find_by_id(self, collection: str, id: str, depth: int = 0) -> Optional[Document]:
        """Retrieve a document by id, or None."""
        pass

    @abstractmethod
    async def find_versioned(self, collection: str, id: str) -> Optional[tuple[Document, int]]:
        """Retrieve an unexpanded document with its write version, or None.

        Pass the version back as ``expected_version`` to make the next
        ``update`` conditional on nobody having written in between.
        """
        pass

    @abstractmethod
    async def create(self, collection: str, data: Document) -> Document:
        """Insert a document and return it with its assigned id."""
        pass

    @abstractmethod
    async def update(
        self,
        collection: str,
        id: str,
        data: Document,
        override_access: bool = False,
        disable_transaction: bool = False,
        expected_version: Optional[int] = None,
    ) -> Document:
        """Shallow-merge ``data`` into a document and return the result.

        Raises:
            DocumentNotFound: No document with this id
            WriteConflictError: ``expected_version`` is given and the stored
                document has been written since that version was read
        """
        pass

    async def populate(self, collection: str, document: Document, depth: int) -> Document:
        """Expand relationship fields in place down to ``depth`` levels."""
        if depth <= 0:
            return document
        for field, related in self.relationships.get(collection, {}).items():
            value = document.get(field)
            if value in (None, "") or isinstance(value, dict):
                continue
            expanded = await self.find_by_id(related, str(value), depth=depth - 1)
            if expanded is not None:
                document[field] = expanded
        return document
