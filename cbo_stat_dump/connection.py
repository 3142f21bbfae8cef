"""PostgreSQL connection used for catalog extraction."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

try:
    import psycopg2
    from psycopg2.extras import RealDictCursor
except ImportError as e:
    raise ImportError(
        "psycopg2 is not installed. Install with: pip install psycopg2-binary"
    ) from e

logger = logging.getLogger(__name__)


class PostgresConnection:
    """A single PostgreSQL (or YugabyteDB YSQL) session.

    Every statement runs in its own short transaction; session-level SET
    statements persist for the lifetime of the connection.

    Usage:
        with PostgresConnection(host="localhost", database="prod", user="postgres") as conn:
            version = conn.server_version_num()
            rows = conn.fetch_json_rows("SELECT row_to_json(t)::text FROM (...) t")

    Args:
        host: Server hostname.
        port: Server port.
        database: Database name.
        user: Username for authentication.
        password: Password for authentication (optional).
        autocommit: Run in autocommit mode (needed for CREATE/DROP DATABASE).
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "postgres",
        user: str = "postgres",
        password: Optional[str] = None,
        autocommit: bool = False,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.autocommit = autocommit
        self._conn: Optional[psycopg2.extensions.connection] = None

    def connect(self) -> None:
        """Open the connection."""
        if self._conn is not None and not self._conn.closed:
            return

        logger.debug("Connecting to %s:%s/%s as %s", self.host, self.port, self.database, self.user)
        self._conn = psycopg2.connect(
            host=self.host,
            port=self.port,
            dbname=self.database,
            user=self.user,
            password=self.password or None,
        )
        self._conn.autocommit = self.autocommit

    def close(self) -> None:
        """Close the connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "PostgresConnection":
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _ensure_connected(self) -> psycopg2.extensions.connection:
        if self._conn is None or self._conn.closed:
            self.connect()
        assert self._conn is not None
        return self._conn

    def execute(self, sql: str, params: Any = None) -> list[dict[str, Any]]:
        """Execute SQL and return results as list of dicts.

        Args:
            sql: SQL statement.
            params: Query parameters (tuple or mapping, optional).

        Returns:
            List of dictionaries, one per row (empty for statements without results).
        """
        conn = self._ensure_connected()
        logger.debug("SQL: %s", sql.strip())

        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = [dict(row) for row in cur.fetchall()] if cur.description else []
            if not conn.autocommit:
                conn.commit()
            return rows
        except Exception:
            if not conn.autocommit:
                conn.rollback()
            raise

    def execute_script(self, sql_script: str) -> None:
        """Execute a multi-statement SQL script in one round trip."""
        conn = self._ensure_connected()

        try:
            with conn.cursor() as cur:
                cur.execute(sql_script)
            if not conn.autocommit:
                conn.commit()
        except Exception:
            if not conn.autocommit:
                conn.rollback()
            raise

    def fetch_column(self, sql: str, params: Any = None) -> List[Any]:
        """Return the first column of every result row."""
        return [next(iter(row.values())) for row in self.execute(sql, params)]

    def fetch_json_rows(self, sql: str, params: Any = None) -> List[str]:
        """Return the first column of every row as raw JSON text.

        The query should select ``row_to_json(...)::text`` so psycopg2 hands
        back the server's own text instead of a decoded object.
        """
        rows = self.fetch_column(sql, params)
        for raw in rows:
            if not isinstance(raw, str):
                raise TypeError(f"expected JSON text, got {type(raw).__name__}; select row_to_json(...)::text")
        return rows

    def server_version_num(self) -> int:
        """Numeric server version, e.g. 150004."""
        return int(self.fetch_column("SHOW server_version_num")[0])

    def set_parameter(self, name: str, value: str) -> None:
        """Session-level SET (persists across the following statements)."""
        self.execute(f"SET {name}={value}")
