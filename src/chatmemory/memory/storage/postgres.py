"""PostgreSQL document store.

Persists every collection in a single JSONB table using asyncpg. Filters and
ordering are translated to JSONB operators so queries stay server-side.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from dataclasses import dataclass

from src.chatmemory.memory.storage.base import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class PostgresConfig:
    """Configuration for PostgreSQL connection."""
    host: str = "localhost"
    port: int = 5432
    database: str = "chatmemory"
    user: str = ""       # Empty = use current system user
    password: str = ""
    min_connections: int = 2
    max_connections: int = 10
    table: str = "memory_documents"


CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    collection VARCHAR(64) NOT NULL,
    id VARCHAR(128) NOT NULL,
    user_id VARCHAR(64) NOT NULL DEFAULT '',
    data JSONB NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT NOW(),
    PRIMARY KEY (collection, id)
);

CREATE INDEX IF NOT EXISTS idx_{table}_user ON {table}(collection, user_id);
CREATE INDEX IF NOT EXISTS idx_{table}_data ON {table} USING gin(data);
"""

_RANGE_OPS = {"$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<="}


class PostgresDocumentStore(DocumentStore):
    """asyncpg-backed document store."""

    def __init__(self, config: PostgresConfig | None = None):
        self.config = config or PostgresConfig()
        self._pool = None
        self._connected = False

    async def connect(self) -> None:
        """Establish connection pool and ensure tables exist."""
        import asyncpg

        # Build connection kwargs (empty user = use system user)
        conn_kwargs = {
            "host": self.config.host,
            "port": self.config.port,
            "database": self.config.database,
            "min_size": self.config.min_connections,
            "max_size": self.config.max_connections,
        }
        if self.config.user:
            conn_kwargs["user"] = self.config.user
        if self.config.password:
            conn_kwargs["password"] = self.config.password

        self._pool = await asyncpg.create_pool(**conn_kwargs)

        async with self._pool.acquire() as conn:
            await conn.execute(CREATE_TABLES_SQL.format(table=self.config.table))

        self._connected = True
        logger.info("Connected to PostgreSQL at %s:%s/%s", self.config.host, self.config.port, self.config.database)

    async def disconnect(self) -> None:
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
        self._connected = False

    def is_available(self) -> bool:
        return self._connected and self._pool is not None

    # ==================== CRUD Operations ====================

    async def put(self, collection: str, document: dict[str, Any]) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {self.config.table} (collection, id, user_id, data)
                VALUES ($1, $2, $3, $4::jsonb)
                ON CONFLICT (collection, id)
                DO UPDATE SET
                    user_id = EXCLUDED.user_id,
                    data = EXCLUDED.data,
                    updated_at = NOW()
                """,
                collection,
                document["id"],
                document.get("user_id", ""),
                json.dumps(document),
            )

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT data FROM {self.config.table} WHERE collection = $1 AND id = $2",
                collection, doc_id
            )
            if not row:
                return None
            return json.loads(row["data"])

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                f"DELETE FROM {self.config.table} WHERE collection = $1 AND id = $2",
                collection, doc_id
            )
            return result == "DELETE 1"

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        where, args = self._build_where(collection, filters)
        sql = f"SELECT data FROM {self.config.table} WHERE {where}"

        if order_by:
            args.append(order_by)
            sql += f" ORDER BY data->${len(args)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            args.append(limit)
            sql += f" LIMIT ${len(args)}"

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql, *args)
            return [json.loads(row["data"]) for row in rows]

    async def count(self, collection: str, filters: dict[str, Any] | None = None) -> int:
        where, args = self._build_where(collection, filters)
        async with self._pool.acquire() as conn:
            return await conn.fetchval(f"SELECT COUNT(*) FROM {self.config.table} WHERE {where}", *args)

    async def delete_where(self, collection: str, filters: dict[str, Any]) -> int:
        where, args = self._build_where(collection, filters)
        async with self._pool.acquire() as conn:
            result = await conn.execute(f"DELETE FROM {self.config.table} WHERE {where}", *args)
            # asyncpg returns a status string such as "DELETE 3"
            return int(result.split()[-1])

    async def drop(self) -> None:
        """Drop the document table."""
        async with self._pool.acquire() as conn:
            await conn.execute(f"DROP TABLE IF EXISTS {self.config.table}")

    # ==================== Filter Translation ====================

    def _build_where(self, collection: str, filters: dict[str, Any] | None) -> tuple[str, list[Any]]:
        """Translate a filter dict to a WHERE clause over the JSONB column."""
        conditions = ["collection = $1"]
        args: list[Any] = [collection]

        for field, condition in (filters or {}).items():
            ops = condition if isinstance(condition, dict) else {"$eq": condition}
            for op, value in ops.items():
                args.append(field)
                key = f"${len(args)}"
                if op == "$in":
                    args.append([self._to_text(v) for v in value])
                    conditions.append(f"data->>{key} = ANY(${len(args)}::text[])")
                elif op in ("$eq", "$ne"):
                    args.append(json.dumps(value))
                    cmp = "=" if op == "$eq" else "<>"
                    conditions.append(f"data->{key} {cmp} ${len(args)}::jsonb")
                elif op in _RANGE_OPS:
                    args.append(float(value))
                    conditions.append(f"(data->>{key})::float {_RANGE_OPS[op]} ${len(args)}")
                else:
                    raise ValueError(f"Unsupported filter operator: {op}")

        return " AND ".join(conditions), args

    @staticmethod
    def _to_text(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    def get_stats(self) -> dict[str, Any]:
        return {
            "backend": "postgres",
            "connected": self.is_available(),
            "host": self.config.host,
            "database": self.config.database,
            "table": self.config.table,
        }
