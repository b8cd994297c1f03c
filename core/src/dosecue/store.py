"""Document store collaborators.

The core only needs durable key-value storage of plain records addressed by a
slash-separated path. A record's collection is its parent path, so
``users/u1/medications/m1`` lives in ``users/u1/medications``.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json

from .errors import DosecueError
from .logging import log_extra

logger = logging.getLogger(__name__)


class DocumentNotFound(DosecueError):
    code = "document_not_found"

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"No document at {path!r}")


@dataclass(frozen=True)
class Document:
    path: str
    data: dict[str, Any]

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]


def collection_of(path: str) -> str:
    parent, sep, _ = path.strip("/").rpartition("/")
    if not sep:
        raise ValueError(f"path {path!r} has no collection")
    return parent


def _sort_key(order_by: str | None):
    def key(document: Document) -> tuple[bool, str, str]:
        value = document.data.get(order_by) if order_by else None
        return (value is not None, "" if value is None else str(value), document.path)

    return key


class DocumentStore(Protocol):
    async def get(self, path: str) -> dict[str, Any] | None: ...

    async def set(self, path: str, record: dict[str, Any]) -> None: ...

    async def update(self, path: str, partial: dict[str, Any]) -> None: ...

    async def delete(self, path: str) -> None: ...

    async def query(self, collection_path: str, order_by: str | None = None) -> list[Document]: ...


class InMemoryDocumentStore:
    """Dict-backed store for tests and offline use. Records are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}

    async def get(self, path: str) -> dict[str, Any] | None:
        record = self._documents.get(path.strip("/"))
        return copy.deepcopy(record) if record is not None else None

    async def set(self, path: str, record: dict[str, Any]) -> None:
        self._documents[path.strip("/")] = copy.deepcopy(record)

    async def update(self, path: str, partial: dict[str, Any]) -> None:
        key = path.strip("/")
        if key not in self._documents:
            raise DocumentNotFound(key)
        self._documents[key].update(copy.deepcopy(partial))

    async def delete(self, path: str) -> None:
        self._documents.pop(path.strip("/"), None)

    async def query(self, collection_path: str, order_by: str | None = None) -> list[Document]:
        prefix = collection_path.strip("/")
        documents = [
            Document(path, copy.deepcopy(record))
            for path, record in self._documents.items()
            if collection_of(path) == prefix
        ]
        documents.sort(key=_sort_key(order_by))
        return documents


async def ensure_schema(conn: psycopg.AsyncConnection[Any], table: str = "documents") -> None:
    """Create the documents table and its collection index if missing."""
    await conn.execute(
        sql.SQL(
            """
            CREATE TABLE IF NOT EXISTS {table} (
                path TEXT PRIMARY KEY,
                collection TEXT NOT NULL,
                data JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        ).format(table=sql.Identifier(table))
    )
    await conn.execute(
        sql.SQL("CREATE INDEX IF NOT EXISTS {index} ON {table} (collection)").format(
            index=sql.Identifier(f"{table}_collection_idx"),
            table=sql.Identifier(table),
        )
    )


class PostgresDocumentStore:
    """JSONB-backed store. Opens a short-lived autocommit connection per call."""

    def __init__(self, database_url: str, table: str = "documents") -> None:
        self.database_url = database_url
        self.table = table

    async def _connect(self) -> psycopg.AsyncConnection[Any]:
        return await psycopg.AsyncConnection.connect(self.database_url, autocommit=True)

    async def ensure_schema(self) -> None:
        async with await self._connect() as conn:
            await ensure_schema(conn, self.table)

    async def get(self, path: str) -> dict[str, Any] | None:
        async with await self._connect() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    sql.SQL("SELECT data FROM {table} WHERE path = %s").format(
                        table=sql.Identifier(self.table)
                    ),
                    (path.strip("/"),),
                )
                row = await cur.fetchone()
        return None if row is None else row["data"]

    async def set(self, path: str, record: dict[str, Any]) -> None:
        key = path.strip("/")
        async with await self._connect() as conn:
            await conn.execute(
                sql.SQL(
                    """
                    INSERT INTO {table} (path, collection, data, updated_at)
                    VALUES (%s, %s, %s, NOW())
                    ON CONFLICT (path) DO UPDATE
                    SET data = EXCLUDED.data,
                        updated_at = NOW()
                    """
                ).format(table=sql.Identifier(self.table)),
                (key, collection_of(key), Json(record)),
            )
        logger.debug("Stored document %s", key, extra=log_extra(path=key))

    async def update(self, path: str, partial: dict[str, Any]) -> None:
        key = path.strip("/")
        async with await self._connect() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    sql.SQL(
                        """
                        UPDATE {table}
                        SET data = data || %s,
                            updated_at = NOW()
                        WHERE path = %s
                        """
                    ).format(table=sql.Identifier(self.table)),
                    (Json(partial), key),
                )
                if cur.rowcount == 0:
                    raise DocumentNotFound(key)

    async def delete(self, path: str) -> None:
        async with await self._connect() as conn:
            await conn.execute(
                sql.SQL("DELETE FROM {table} WHERE path = %s").format(
                    table=sql.Identifier(self.table)
                ),
                (path.strip("/"),),
            )

    async def query(self, collection_path: str, order_by: str | None = None) -> list[Document]:
        if order_by:
            order = sql.SQL("data->>{field} NULLS FIRST, path").format(field=sql.Literal(order_by))
        else:
            order = sql.SQL("path")
        async with await self._connect() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    sql.SQL(
                        "SELECT path, data FROM {table} WHERE collection = %s ORDER BY {order}"
                    ).format(table=sql.Identifier(self.table), order=order),
                    (collection_path.strip("/"),),
                )
                rows = await cur.fetchall()
        return [Document(row["path"], row["data"]) for row in rows]
