"""
PostgreSQL document store with connection pooling.

Stores every collection in a single JSONB `documents` table keyed by
(collection, id) with an integer version column. Conditional writes are a
single `UPDATE ... WHERE version = %s`, so optimistic concurrency is enforced
by the database rather than by the caller.

Every connection carries connect_timeout and statement_timeout; a slow or
unreachable database surfaces as StoreUnavailableError instead of hanging.
"""

import json
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict
from uuid import uuid4

import psycopg2
import psycopg2.errors
import psycopg2.extras
import psycopg2.pool

from clients.document_store import (
    QUERY_OPERATORS,
    DocumentConflictError,
    DocumentNotFoundError,
    DocumentStore,
    StoredDocument,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    collection  TEXT        NOT NULL,
    id          TEXT        NOT NULL,
    version     INTEGER     NOT NULL,
    data        JSONB       NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (collection, id)
);
CREATE INDEX IF NOT EXISTS ix_documents_status
    ON documents (collection, (data ->> 'status'));
"""


class PostgresDocumentStore(DocumentStore):
    """
    DocumentStore backed by PostgreSQL JSONB.

    Usage:
        store = PostgresDocumentStore(database_url, statement_timeout_ms=5000)
        store.ensure_schema()
        doc_id = store.create("invoices", invoice.model_dump(mode="json"))
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(
        self,
        database_url: str,
        connect_timeout_seconds: int = 10,
        statement_timeout_ms: int = 5000,
        min_connections: int = 1,
        max_connections: int = 10,
    ):
        self._database_url = database_url
        self._connect_timeout_seconds = connect_timeout_seconds
        self._statement_timeout_ms = statement_timeout_ms
        self._min_connections = min_connections
        self._max_connections = max_connections
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                return
            try:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self._min_connections,
                    maxconn=self._max_connections,
                    dsn=self._database_url,
                    connect_timeout=self._connect_timeout_seconds,
                    options=f"-c statement_timeout={self._statement_timeout_ms}",
                )
            except psycopg2.OperationalError as e:
                logger.error("Could not create connection pool: %s", e)
                raise StoreUnavailableError(f"Database unreachable: {e}") from e
            self._connection_pools[self._database_url] = pool
            logger.info("Connection pool created")

    @contextmanager
    def get_connection(self):
        """
        Borrow a pooled connection.

        Rolls back on any error and translates connectivity failures and
        statement timeouts into StoreUnavailableError.
        """
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            try:
                conn = pool.getconn()
            except psycopg2.pool.PoolError as e:
                raise StoreUnavailableError(f"Connection pool exhausted: {e}") from e
            yield conn
        except psycopg2.OperationalError as e:
            if conn is not None and not conn.closed:
                conn.rollback()
            logger.error("Document store operation failed: %s", e)
            raise StoreUnavailableError(str(e)) from e
        except Exception:
            if conn is not None and not conn.closed:
                conn.rollback()
            raise
        finally:
            if conn is not None:
                pool.putconn(conn)

    def ensure_schema(self) -> None:
        """Create the documents table and indexes if missing."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()

    def create(self, collection: str, data: dict[str, Any], doc_id: str | None = None) -> str:
        key = doc_id or uuid4().hex
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        """
                        INSERT INTO documents (collection, id, version, data)
                        VALUES (%s, %s, 1, %s)
                        """,
                        (collection, key, psycopg2.extras.Json(data)),
                    )
                except psycopg2.errors.UniqueViolation as e:
                    conn.rollback()
                    raise DocumentConflictError(collection, key) from e
            conn.commit()
        return key

    def get(self, collection: str, doc_id: str) -> StoredDocument:
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(
                    "SELECT id, version, data FROM documents WHERE collection = %s AND id = %s",
                    (collection, doc_id),
                )
                row = cur.fetchone()
            conn.commit()
        if row is None:
            raise DocumentNotFoundError(collection, doc_id)
        return StoredDocument(id=row["id"], version=row["version"], data=row["data"])

    def _current_version(self, cur, collection: str, doc_id: str) -> int | None:
        cur.execute(
            "SELECT version FROM documents WHERE collection = %s AND id = %s",
            (collection, doc_id),
        )
        row = cur.fetchone()
        return None if row is None else row[0]

    def update(
        self,
        collection: str,
        doc_id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> int:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE documents
                    SET data = data || %s, version = version + 1, updated_at = now()
                    WHERE collection = %s AND id = %s
                      AND (%s::integer IS NULL OR version = %s::integer)
                    RETURNING version
                    """,
                    (psycopg2.extras.Json(patch), collection, doc_id, expected_version, expected_version),
                )
                row = cur.fetchone()
                if row is None:
                    current = self._current_version(cur, collection, doc_id)
                    conn.rollback()
                    if current is None:
                        raise DocumentNotFoundError(collection, doc_id)
                    raise DocumentConflictError(collection, doc_id, expected_version)
            conn.commit()
        return row[0]

    def delete(self, collection: str, doc_id: str, expected_version: int | None = None) -> None:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    DELETE FROM documents
                    WHERE collection = %s AND id = %s
                      AND (%s::integer IS NULL OR version = %s::integer)
                    """,
                    (collection, doc_id, expected_version, expected_version),
                )
                if cur.rowcount == 0:
                    current = self._current_version(cur, collection, doc_id)
                    conn.rollback()
                    if current is None:
                        raise DocumentNotFoundError(collection, doc_id)
                    raise DocumentConflictError(collection, doc_id, expected_version)
            conn.commit()

    def query(self, collection: str, field_name: str, op: str, value: Any) -> list[StoredDocument]:
        if op not in QUERY_OPERATORS:
            raise ValueError(f"Unsupported query operator '{op}'")

        if op == "in":
            predicate = "data -> %s = ANY(%s::jsonb[])"
            params = (collection, field_name, [json.dumps(v) for v in value])
        elif op in ("==", "!="):
            sql_op = "=" if op == "==" else "<>"
            predicate = f"data -> %s {sql_op} %s::jsonb"
            params = (collection, field_name, json.dumps(value))
        else:
            # Only compare values of the same JSON type
            predicate = (
                f"jsonb_typeof(data -> %s) = jsonb_typeof(%s::jsonb) "
                f"AND data -> %s {op} %s::jsonb"
            )
            encoded = json.dumps(value)
            params = (collection, field_name, encoded, field_name, encoded)

        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(
                    f"SELECT id, version, data FROM documents WHERE collection = %s AND {predicate}",
                    params,
                )
                rows = cur.fetchall()
            conn.commit()
        return [StoredDocument(id=r["id"], version=r["version"], data=r["data"]) for r in rows]

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()
