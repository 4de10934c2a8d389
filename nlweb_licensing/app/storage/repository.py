"""PostgreSQL persistence for licensing options."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Tuple

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS licensing_options (
        option_name TEXT PRIMARY KEY,
        option_value JSONB NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
"""


@contextmanager
def managed_connection(
    connection_factory: Callable[[], PgConnection],
    conn: Optional[PgConnection] = None,
) -> Iterator[Tuple[PgConnection, bool]]:
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = connection_factory()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


class PostgresOptionStore:
    """Concrete option store persisting JSON values in PostgreSQL."""

    def __init__(
        self,
        *,
        connection_factory: Optional[Callable[[], PgConnection]] = None,
        dsn: Optional[str] = None,
        conn: Optional[PgConnection] = None,
    ) -> None:
        if connection_factory is None and conn is None:
            if not dsn:
                raise ValueError("dsn, connection_factory or conn must be provided")
            connection_factory = lambda: psycopg2.connect(dsn)  # noqa: E731
        self._connection_factory = connection_factory
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        with managed_connection(self._connection_factory, self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
            finally:
                cursor.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute(CREATE_TABLE_SQL)

    def get(self, name: str, default: Optional[Any] = None) -> Any:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT option_value FROM licensing_options WHERE option_name = %s",
                (name,),
            )
            row = cursor.fetchone()
        if not row:
            return default
        return row["option_value"]

    def set(self, name: str, value: Any) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO licensing_options (option_name, option_value, updated_at)
                VALUES (%s, %s, NOW())
                ON CONFLICT (option_name) DO UPDATE
                SET option_value = EXCLUDED.option_value,
                    updated_at = NOW()
                """,
                (name, psycopg2.extras.Json(value)),
            )

    def delete(self, name: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM licensing_options WHERE option_name = %s", (name,))
            return cursor.rowcount > 0

    def delete_prefix(self, prefix: str) -> int:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self._cursor() as cursor:
            cursor.execute(
                "DELETE FROM licensing_options WHERE option_name LIKE %s",
                (escaped + "%",),
            )
            return cursor.rowcount


__all__ = ["PostgresOptionStore", "managed_connection"]
