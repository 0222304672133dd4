"""Database layer for the document store and the persistent cache.

Supports two backends:
- PostgreSQL (production, set REPO_ANALYZER_DATABASE_URL)
- SQLite (local development, default)

Uses raw SQL via psycopg2 (Postgres) or sqlite3 (SQLite). No ORM.

A Database object is created per process (or per test) and handed to the
stores explicitly. Thread-safety: Postgres uses a ThreadedConnectionPool;
SQLite uses per-call connections with check_same_thread=False. Stores call
into this module from worker threads via asyncio.to_thread.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_SQLITE_PATH = Path(__file__).parent / "repo_analyzer.db"


def _json_dumps(data: Any) -> str:
    """Serialize data to JSON string for storage."""
    return json.dumps(data, ensure_ascii=False, default=str)


def _json_loads(text: Any) -> Any:
    """Deserialize JSON string from storage."""
    if text is None or text == "":
        return None
    if isinstance(text, (dict, list)):
        return text  # Already parsed (Postgres JSONB)
    return json.loads(text)


class Database:
    """Connection handling plus a small execute() helper.

    Args:
        url: postgres://... for Postgres. Empty means SQLite.
        sqlite_path: SQLite file used when url is empty.
    """

    def __init__(self, url: str = "", sqlite_path: Optional[Union[str, Path]] = None):
        self.url = url or ""
        self.sqlite_path = Path(sqlite_path) if sqlite_path else DEFAULT_SQLITE_PATH
        self._pg_pool = None
        self._initialized = False
        self._init_lock = threading.Lock()

    @property
    def is_postgres(self) -> bool:
        return self.url.startswith("postgres")

    def _get_pg_pool(self):
        """Get or create the Postgres connection pool (lazy)."""
        if self._pg_pool is None:
            import psycopg2.pool
            self._pg_pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=5,
                dsn=self.url,
            )
            logger.info("PostgreSQL connection pool initialized (1-5 connections)")
        return self._pg_pool

    @contextmanager
    def get_connection(self):
        """Get a database connection (Postgres or SQLite).

        Usage:
            with db.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(...)
                conn.commit()
        """
        if self.is_postgres:
            pool = self._get_pg_pool()
            conn = pool.getconn()
            try:
                yield conn
            finally:
                pool.putconn(conn)
        else:
            conn = sqlite3.connect(str(self.sqlite_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            try:
                yield conn
            finally:
                conn.close()

    def _adapt(self, sql: str) -> str:
        # Statements are written with %s; SQLite wants ?
        return sql if self.is_postgres else sql.replace("%s", "?")

    def _rows(self, cursor, rows: list) -> list[dict]:
        if self.is_postgres:
            columns = [desc[0] for desc in cursor.description]
            return [dict(zip(columns, row)) for row in rows]
        return [dict(row) for row in rows]

    def execute(self, sql: str, params: tuple = (), fetch: str = "none") -> Any:
        """Execute a SQL statement.

        Args:
            sql: SQL statement with %s placeholders
            params: Parameters tuple
            fetch: "none", "one", "all"

        Returns:
            Row count for "none", dict for "one", list[dict] for "all"
        """
        self.init_db()
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(self._adapt(sql), params)

            if fetch == "one":
                row = cursor.fetchone()
                return None if row is None else self._rows(cursor, [row])[0]
            if fetch == "all":
                return self._rows(cursor, cursor.fetchall())

            conn.commit()
            return cursor.rowcount

    def execute_transaction(self, statements: list[tuple[str, tuple]]) -> None:
        """Run several statements in one transaction; roll back on any error."""
        self.init_db()
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                for sql, params in statements:
                    cursor.execute(self._adapt(sql), params)
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def init_db(self) -> None:
        """Create tables if they don't exist."""
        if self._initialized:
            return
        with self._init_lock:
            if self._initialized:
                return
            self._create_tables()
            self._initialized = True
        backend = "PostgreSQL" if self.is_postgres else f"SQLite ({self.sqlite_path})"
        logger.info(f"Analyzer database initialized: {backend}")

    def _create_tables(self) -> None:
        text_type = "TEXT"
        time_type = "TIMESTAMP" if self.is_postgres else "TEXT"
        ddl = [
            f"""CREATE TABLE IF NOT EXISTS analysis_documents (
                project_key {text_type} NOT NULL,
                doc_name {text_type} NOT NULL,
                language {text_type} NOT NULL,
                status {text_type} NOT NULL DEFAULT 'draft',
                content {text_type} NOT NULL,
                updated_at {time_type},
                PRIMARY KEY (project_key, doc_name, language, status)
            )""",
            """CREATE INDEX IF NOT EXISTS idx_analysis_documents_project
                ON analysis_documents(project_key, language, status)""",
            f"""CREATE TABLE IF NOT EXISTS analysis_cache (
                cache_key {text_type} PRIMARY KEY,
                value {text_type} NOT NULL,
                expires_at DOUBLE PRECISION NOT NULL
            )""",
        ]
        with self.get_connection() as conn:
            cursor = conn.cursor()
            for statement in ddl:
                cursor.execute(statement)
            conn.commit()
