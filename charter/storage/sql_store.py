"""SQLAlchemy-backed document store."""

import copy
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import select, update

from charter.logging import get_logger
from charter.storage.database import Database
from charter.storage.db_models import DocumentTable
from charter.storage.document_store import (
    Document,
    DocumentNotFound,
    DocumentStore,
    WriteConflictError,
)
from charter.storage.filters import matches

logger = get_logger(__name__)


class SqlDocumentStore(DocumentStore):
    """Document store over the ``documents`` table.

    Updates are compare-and-swap on the row version: a concurrent writer
    that bumped the version first makes this update raise
    ``WriteConflictError`` instead of silently overwriting its changes.
    """

    def __init__(self, db: Database):
        """Initialize store with a connected database."""
        self.db = db

    async def find(
        self,
        collection: str,
        where: Optional[dict[str, Any]] = None,
        depth: int = 0,
        limit: Optional[int] = None,
    ) -> list[Document]:
        """Return documents matching the filter."""
        async with self.db.session() as session:
            stmt = (
                select(DocumentTable.data)
                .where(DocumentTable.collection == collection)
                .order_by(DocumentTable.created_at)
            )
            rows = (await session.execute(stmt)).scalars().all()

        results = []
        for data in rows:
            if not matches(data, where):
                continue
            results.append(await self.populate(collection, copy.deepcopy(data), depth))
            if limit is not None and len(results) >= limit:
                break
        return results

    async def find_by_id(self, collection: str, id: str, depth: int = 0) -> Optional[Document]:
        """Retrieve document by id."""
        async with self.db.session() as session:
            stmt = select(DocumentTable.data).where(
                DocumentTable.collection == collection, DocumentTable.id == str(id)
            )
            data = (await session.execute(stmt)).scalar_one_or_none()

        if data is None:
            return None
        return await self.populate(collection, copy.deepcopy(data), depth)

    async def find_versioned(self, collection: str, id: str) -> Optional[tuple[Document, int]]:
        """Retrieve an unexpanded document and its row version."""
        async with self.db.session() as session:
            stmt = select(DocumentTable.data, DocumentTable.version).where(
                DocumentTable.collection == collection, DocumentTable.id == str(id)
            )
            row = (await session.execute(stmt)).one_or_none()

        if row is None:
            return None
        return copy.deepcopy(row.data), row.version

    async def create(self, collection: str, data: Document) -> Document:
        """Insert a document."""
        now = datetime.now(timezone.utc)
        document = copy.deepcopy(data)
        document["id"] = str(document.get("id") or uuid4().hex)
        document.setdefault("createdAt", now.isoformat())
        document.setdefault("updatedAt", document["createdAt"])

        async with self.db.session() as session:
            session.add(
                DocumentTable(
                    collection=collection,
                    id=document["id"],
                    data=document,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
            )

        logger.debug("document_created", collection=collection, id=document["id"])
        return document

    async def update(
        self,
        collection: str,
        id: str,
        data: Document,
        override_access: bool = False,
        disable_transaction: bool = False,
        expected_version: Optional[int] = None,
    ) -> Document:
        """Merge ``data`` into the document with a version check.

        The swap is conditional on ``expected_version`` when given, so a
        caller that read an older version gets ``WriteConflictError``.
        Without it the version read here is used. With
        ``disable_transaction`` the read and the conditional write run in
        separate sessions; otherwise the row is read ``FOR UPDATE`` in the
        same transaction as the write.
        """
        if disable_transaction:
            async with self.db.session() as session:
                current, version = await self._load(session, collection, id, lock=False)
            version = self._check_version(collection, id, version, expected_version)
            merged = self._merge(current, data)
            async with self.db.session() as session:
                await self._compare_and_swap(session, collection, id, version, merged)
            return merged

        async with self.db.session() as session:
            current, version = await self._load(session, collection, id, lock=True)
            version = self._check_version(collection, id, version, expected_version)
            merged = self._merge(current, data)
            await self._compare_and_swap(session, collection, id, version, merged)
        return merged

    @staticmethod
    def _check_version(
        collection: str, id: str, version: int, expected_version: Optional[int]
    ) -> int:
        if expected_version is None or expected_version == version:
            return version
        logger.warning("document_write_conflict", collection=collection, id=str(id))
        raise WriteConflictError(collection, str(id))

    async def _load(self, session, collection: str, id: str, lock: bool) -> tuple[Document, int]:
        stmt = select(DocumentTable.data, DocumentTable.version).where(
            DocumentTable.collection == collection, DocumentTable.id == str(id)
        )
        if lock:
            stmt = stmt.with_for_update()
        row = (await session.execute(stmt)).one_or_none()
        if row is None:
            raise DocumentNotFound(collection, str(id))
        return copy.deepcopy(row.data), row.version

    @staticmethod
    def _merge(current: Document, data: Document) -> Document:
        merged = dict(current)
        merged.update(copy.deepcopy({k: v for k, v in data.items() if k != "id"}))
        merged["updatedAt"] = datetime.now(timezone.utc).isoformat()
        return merged

    async def _compare_and_swap(
        self, session, collection: str, id: str, version: int, merged: Document
    ) -> None:
        stmt = (
            update(DocumentTable)
            .where(
                DocumentTable.collection == collection,
                DocumentTable.id == str(id),
                DocumentTable.version == version,
            )
            .values(data=merged, version=version + 1, updated_at=datetime.now(timezone.utc))
        )
        result = await session.execute(stmt)
        if result.rowcount == 0:
            logger.warning("document_write_conflict", collection=collection, id=str(id))
            raise WriteConflictError(collection, str(id))
