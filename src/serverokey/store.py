"""
Embedded transactional document store backed by SQLite.

Collections hold JSON documents keyed by ``_id`` and kept in insertion order.
Collection connectors and the auth engine share one DocumentStore per app.

Features:
    - One table, ``documents(collection, id, body, position)``
    - Buffered transactions applied atomically under BEGIN IMMEDIATE ... COMMIT
    - Thread-safe: a single connection guarded by a lock, so blocking calls
      can be offloaded with ``asyncio.to_thread``
    - ``":memory:"`` databases for tests

Example:
    >>> store = DocumentStore(":memory:")
    >>> store.collection("receipt").insert({"name": "Tea", "price": 2.5})
    {'name': 'Tea', 'price': 2.5, '_id': '...'}
    >>> txn = store.begin_transaction()
    >>> txn.collection("receipt").clear()
    >>> txn.collection("receipt").insert({"_id": "_meta", "total": 0})
    >>> txn.commit()
    >>> store.close()
"""

import copy
import json
import logging
import os
import sqlite3
import threading
import uuid
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import ConnectorError


logger = logging.getLogger(__name__)


def _with_id(document: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(document, dict):
        raise ConnectorError(
            f"Documents must be objects, got {type(document).__name__}"
        )
    document = copy.deepcopy(document)
    if not document.get("_id"):
        document["_id"] = uuid.uuid4().hex
    return document


class DocumentStore:
    """
    SQLite document store.

    Args:
        db_path: Path to the SQLite database file, or ":memory:".
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path if db_path == ":memory:" else os.path.abspath(db_path)
        self._lock = threading.Lock()
        self._closed = False
        if self.db_path != ":memory:":
            os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        self._conn = self._create_connection()
        self._init_schema()

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            isolation_level=None,  # Transactions are explicit
        )
        if self.db_path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def _init_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                body TEXT NOT NULL,
                position INTEGER NOT NULL,
                PRIMARY KEY (collection, id)
            )
        """)

    def _get_connection(self) -> sqlite3.Connection:
        if self._closed:
            raise ConnectorError("Document store is closed")
        return self._conn

    def collection(self, name: str) -> "Collection":
        """Get a handle on a collection (created lazily on first insert)."""
        return Collection(self, name)

    def begin_transaction(self) -> "Transaction":
        return Transaction(self)

    # ------------------------------------------------------------------
    # Low-level operations. Callers hold self._lock.
    # ------------------------------------------------------------------

    def _select(self, conn: sqlite3.Connection, collection: str) -> List[Dict[str, Any]]:
        rows = conn.execute(
            "SELECT body FROM documents WHERE collection = ? ORDER BY position",
            (collection,),
        ).fetchall()
        return [json.loads(row[0]) for row in rows]

    def _insert(self, conn: sqlite3.Connection, collection: str, document: Dict[str, Any]) -> None:
        (position,) = conn.execute(
            "SELECT COALESCE(MAX(position), -1) + 1 FROM documents WHERE collection = ?",
            (collection,),
        ).fetchone()
        conn.execute(
            "INSERT INTO documents (collection, id, body, position) VALUES (?, ?, ?, ?)",
            (collection, str(document["_id"]), json.dumps(document, ensure_ascii=False), position),
        )

    def _remove(self, conn: sqlite3.Connection, collection: str, doc_id: str) -> bool:
        cursor = conn.execute(
            "DELETE FROM documents WHERE collection = ? AND id = ?",
            (collection, str(doc_id)),
        )
        return cursor.rowcount > 0

    def _clear(self, conn: sqlite3.Connection, collection: str) -> None:
        conn.execute("DELETE FROM documents WHERE collection = ?", (collection,))

    def _apply(self, operations: List[Tuple[str, str, Any]]) -> None:
        """Apply buffered operations in one transaction; roll back on any failure."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("BEGIN IMMEDIATE")
            try:
                for op, collection, payload in operations:
                    if op == "clear":
                        self._clear(conn, collection)
                    elif op == "insert":
                        self._insert(conn, collection, payload)
                    elif op == "remove":
                        self._remove(conn, collection, payload)
                    else:
                        raise ConnectorError(f"Unknown transaction operation '{op}'")
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise

    def close(self) -> None:
        """Close the store and release the connection."""
        self._closed = True
        if getattr(self, "_conn", None) is not None:
            self._conn.close()
            self._conn = None


class Collection:
    """Direct (auto-committed) access to one collection."""

    def __init__(self, store: DocumentStore, name: str):
        self._store = store
        self.name = name

    def get_all(self) -> List[Dict[str, Any]]:
        with self._store._lock:
            return self._store._select(self._store._get_connection(), self.name)

    def get_by_id(self, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._store._lock:
            row = self._store._get_connection().execute(
                "SELECT body FROM documents WHERE collection = ? AND id = ?",
                (self.name, str(doc_id)),
            ).fetchone()
        return json.loads(row[0]) if row else None

    def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """First document whose fields equal every ``query`` field."""
        for document in self.get_all():
            if all(document.get(key) == value for key, value in query.items()):
                return document
        return None

    def insert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        document = _with_id(document)
        try:
            self._store._apply([("insert", self.name, document)])
        except sqlite3.IntegrityError as e:
            raise ConnectorError(
                f"Document '{document['_id']}' already exists in '{self.name}'"
            ) from e
        return document

    def insert_many(self, documents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        documents = [_with_id(document) for document in documents]
        try:
            self._store._apply([("insert", self.name, d) for d in documents])
        except sqlite3.IntegrityError as e:
            raise ConnectorError(f"Duplicate document id in '{self.name}'") from e
        return documents

    def remove(self, doc_id: str) -> bool:
        with self._store._lock:
            return self._store._remove(self._store._get_connection(), self.name, doc_id)

    def clear(self) -> None:
        self._store._apply([("clear", self.name, None)])


class Transaction:
    """
    Buffered multi-collection transaction.

    Operations are recorded by ``collection(name)`` handles and applied
    atomically by ``commit()``; ``rollback()`` discards them. Nothing is
    visible to readers before commit.
    """

    def __init__(self, store: DocumentStore):
        self._store = store
        self._operations: List[Tuple[str, str, Any]] = []
        self._finished = False

    def collection(self, name: str) -> "TransactionCollection":
        return TransactionCollection(self, name)

    def _record(self, op: str, collection: str, payload: Any = None) -> None:
        if self._finished:
            raise ConnectorError("Transaction already committed or rolled back")
        self._operations.append((op, collection, payload))

    def commit(self) -> None:
        if self._finished:
            raise ConnectorError("Transaction already committed or rolled back")
        self._finished = True
        try:
            self._store._apply(self._operations)
        except ConnectorError:
            raise
        except Exception as e:
            raise ConnectorError(f"Transaction commit failed: {e}") from e
        logger.debug(f"Committed transaction with {len(self._operations)} operation(s)")

    def rollback(self) -> None:
        self._finished = True
        self._operations = []


class TransactionCollection:
    def __init__(self, transaction: Transaction, name: str):
        self._transaction = transaction
        self.name = name

    def clear(self) -> None:
        self._transaction._record("clear", self.name)

    def insert(self, document: Dict[str, Any]) -> None:
        self._transaction._record("insert", self.name, _with_id(document))

    def insert_many(self, documents: List[Dict[str, Any]]) -> None:
        for document in documents:
            self.insert(document)

    def remove(self, doc_id: str) -> None:
        self._transaction._record("remove", self.name, doc_id)
