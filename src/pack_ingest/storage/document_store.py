"""Hierarchical document store with all-or-nothing batched writes.

Collections are slash-separated paths. A pack lives at ``packs/<id>`` and
its children at ``packs/<id>/<subcollection>/<childId>``; the store only
needs the collection path and document id to address a record.
"""

import json
import logging
import re
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .database import DatabaseConnection
from .errors import CommitError, DocumentStoreError

logger = logging.getLogger(__name__)

_FIELD_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    doc_id TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (collection, doc_id)
)
"""


@dataclass
class Document:
    """A stored document and its address."""

    collection: str
    id: str
    data: Dict[str, Any]

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.id}"


@dataclass
class _Write:
    op: str  # 'set', 'merge', 'update' or 'delete'
    collection: str
    doc_id: str
    data: Dict[str, Any] = field(default_factory=dict)


class WriteBatch:
    """Accumulates writes and applies them in one commit.

    Nothing is visible until commit() succeeds; a failed commit applies
    nothing.
    """

    def __init__(self, store: 'DocumentStore'):
        self._store = store
        self._writes: List[_Write] = []
        self._committed = False

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> 'WriteBatch':
        self._writes.append(_Write('merge' if merge else 'set', collection, doc_id, dict(data)))
        return self

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> 'WriteBatch':
        """Update fields of an existing document; the commit fails if it is missing."""
        self._writes.append(_Write('update', collection, doc_id, dict(fields)))
        return self

    def delete(self, collection: str, doc_id: str) -> 'WriteBatch':
        self._writes.append(_Write('delete', collection, doc_id))
        return self

    @property
    def writes(self) -> List[_Write]:
        return list(self._writes)

    def __len__(self) -> int:
        return len(self._writes)

    def commit(self) -> int:
        """Apply every write atomically.

        Returns:
            Number of writes applied

        Raises:
            CommitError: If any write fails; no write is applied
        """
        if self._committed:
            raise CommitError("Batch already committed")
        count = self._store._apply(self._writes)
        self._committed = True
        return count


class DocumentStore(ABC):
    """Document database interface used by the metadata synchronizer."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Fetch one document by id."""

    @abstractmethod
    def query(self, collection: str, field_name: Optional[str] = None, value: Any = None,
              limit: Optional[int] = None) -> List[Document]:
        """List documents whose ``field_name`` equals ``value``.

        Without a field every document in the collection is returned.
        """

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    @abstractmethod
    def _apply(self, writes: List[_Write]) -> int:
        """Apply writes in a single transaction."""

    def close(self) -> None:
        pass


class SQLiteDocumentStore(DocumentStore):
    """Document store keeping JSON documents in one SQLite table."""

    def __init__(self, db_path: Path):
        self._db = DatabaseConnection(Path(db_path))
        self._lock = threading.Lock()
        with self._lock:
            self._db.execute(SCHEMA)

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        try:
            with self._lock:
                row = self._db.execute(
                    "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
                    (collection, doc_id),
                ).fetchone()
        except sqlite3.Error as e:
            raise DocumentStoreError(f"Cannot read {collection}/{doc_id}: {e}",
                                     collection=collection, doc_id=doc_id) from e
        if row is None:
            return None
        return Document(collection, doc_id, json.loads(row["data"]))

    def query(self, collection: str, field_name: Optional[str] = None, value: Any = None,
              limit: Optional[int] = None) -> List[Document]:
        sql = "SELECT doc_id, data FROM documents WHERE collection = ?"
        params: List[Any] = [collection]

        if field_name is not None:
            if not _FIELD_NAME.match(field_name):
                raise DocumentStoreError(f"Invalid field name: {field_name!r}", field=field_name)
            sql += f" AND json_extract(data, '$.{field_name}') = ?"
            params.append(value)

        sql += " ORDER BY doc_id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        try:
            with self._lock:
                rows = self._db.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise DocumentStoreError(f"Cannot query {collection}: {e}", collection=collection) from e

        return [Document(collection, row["doc_id"], json.loads(row["data"])) for row in rows]

    def _apply(self, writes: List[_Write]) -> int:
        try:
            with self._lock, self._db.transaction() as cursor:
                for write in writes:
                    self._apply_one(cursor, write)
        except CommitError:
            raise
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise CommitError(f"Batch commit failed: {e}", writes=len(writes)) from e

        logger.debug(f"Committed batch: {{'writes': {len(writes)}}}")
        return len(writes)

    @staticmethod
    def _load(cursor, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        row = cursor.execute(
            "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        ).fetchone()
        return json.loads(row["data"]) if row else None

    def _apply_one(self, cursor, write: _Write) -> None:
        if write.op == 'delete':
            cursor.execute(
                "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                (write.collection, write.doc_id),
            )
            return

        data = write.data
        if write.op in ('merge', 'update'):
            existing = self._load(cursor, write.collection, write.doc_id)
            if existing is None and write.op == 'update':
                raise CommitError(
                    f"Cannot update missing document {write.collection}/{write.doc_id}",
                    collection=write.collection, doc_id=write.doc_id,
                )
            data = {**(existing or {}), **write.data}

        cursor.execute(
            "INSERT INTO documents (collection, doc_id, data) VALUES (?, ?, ?) "
            "ON CONFLICT(collection, doc_id) DO UPDATE SET data = excluded.data",
            (write.collection, write.doc_id, json.dumps(data, sort_keys=True)),
        )

    def count(self, collection: str) -> int:
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) AS n FROM documents WHERE collection = ?", (collection,)
            ).fetchone()
        return int(row["n"])

    def close(self) -> None:
        with self._lock:
            self._db.close()
