"""Key-value storage backends for persisted application state."""

from __future__ import annotations

import copy
import json
from typing import Any, Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

DEFAULT_SCHEMA = "lesson_planner"
DEFAULT_TABLE = "app_state"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class InMemoryKeyValueStore:
    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return copy.deepcopy(self._values.get(key))

    def set(self, key: str, value: Any) -> None:
        self._values[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._values)


class PostgresKeyValueStore:
    """JSONB key-value table inside a dedicated schema."""

    def __init__(self, database_url: str, *, schema: str = DEFAULT_SCHEMA, table: str = DEFAULT_TABLE) -> None:
        self.database_url = database_url
        self.schema = schema
        self.table = table

    def _table(self) -> sql.Identifier:
        return sql.Identifier(self.schema, self.table)

    def ensure_schema(self) -> None:
        with psycopg.connect(self.database_url, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(self.schema)))
                cur.execute(
                    sql.SQL(
                        """
                        CREATE TABLE IF NOT EXISTS {} (
                            key TEXT PRIMARY KEY,
                            value JSONB NOT NULL,
                            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                        )
                        """
                    ).format(self._table())
                )

    def get(self, key: str) -> Any:
        query = sql.SQL("SELECT value FROM {} WHERE key = %s").format(self._table())
        with psycopg.connect(self.database_url) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, (key,))
                row = cur.fetchone()
        if row is None:
            return None
        return row["value"]

    def set(self, key: str, value: Any) -> None:
        query = sql.SQL(
            """
            INSERT INTO {} (key, value, updated_at)
            VALUES (%s, %s::jsonb, NOW())
            ON CONFLICT (key)
            DO UPDATE SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at
            """
        ).format(self._table())
        payload = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        with psycopg.connect(self.database_url) as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute(query, (key, payload))

    def delete(self, key: str) -> None:
        query = sql.SQL("DELETE FROM {} WHERE key = %s").format(self._table())
        with psycopg.connect(self.database_url) as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute(query, (key,))

    def keys(self) -> list[str]:
        query = sql.SQL("SELECT key FROM {} ORDER BY key ASC").format(self._table())
        with psycopg.connect(self.database_url) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query)
                return [row["key"] for row in cur.fetchall()]
