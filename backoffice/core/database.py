from __future__ import annotations

import asyncio
import re
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Sequence

import aiomysql
import aiosqlite
from loguru import logger

from .config import get_settings

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Transaction:
    """Statements issued on one connection that commit or roll back together.

    Obtained from :meth:`Database.transaction`. Inside the block use only this
    object; on SQLite the shared connection stays locked until the block ends.
    """

    def __init__(self, database: Database, conn: Any) -> None:
        self._database = database
        self._conn = conn

    async def execute(self, sql: str, params: tuple | dict | None = None) -> int:
        """Run one statement and return the affected row count."""

        sql, params = self._database._adapt_statement(sql, params)
        if self._database.is_sqlite():
            cursor = await self._conn.execute(sql, params)
            return cursor.rowcount
        async with self._conn.cursor() as cursor:
            await cursor.execute(sql, params)
            return cursor.rowcount

    async def execute_many(self, sql: str, rows: Iterable[tuple]) -> None:
        batch = list(rows)
        if not batch:
            return
        if self._database.is_sqlite():
            await self._conn.executemany(
                sql.replace("%s", "?"),
                [_adapt_params_for_sqlite(row) for row in batch],
            )
            return
        async with self._conn.cursor() as cursor:
            await cursor.executemany(sql, batch)

    async def execute_returning_lastrowid(
        self, sql: str, params: tuple | dict | None = None
    ) -> int:
        sql, params = self._database._adapt_statement(sql, params)
        if self._database.is_sqlite():
            cursor = await self._conn.execute(sql, params)
            return cursor.lastrowid or 0
        async with self._conn.cursor() as cursor:
            await cursor.execute(sql, params)
            last_row_id = cursor.lastrowid
        return int(last_row_id) if last_row_id is not None else 0


class Database:
    """Narrow async query interface over MySQL, falling back to SQLite.

    Repositories write MySQL-flavoured SQL with ``%s`` placeholders. When no
    MySQL host is configured the same statements run against a local SQLite
    file; placeholders and parameter types are adapted on the way through.
    """

    def __init__(self) -> None:
        self._pool: aiomysql.Pool | None = None
        self._sqlite_conn: aiosqlite.Connection | None = None
        self._sqlite_lock: asyncio.Lock | None = None
        self._settings = get_settings()
        self._use_sqlite = self._should_use_sqlite()

    def _should_use_sqlite(self) -> bool:
        return not all([
            self._settings.database_host,
            self._settings.database_user,
            self._settings.database_name,
        ])

    def _get_sqlite_path(self) -> Path:
        configured = self._settings.sqlite_path
        if configured:
            return configured.expanduser()
        return _PROJECT_ROOT / "backoffice.db"

    def is_sqlite(self) -> bool:
        return self._use_sqlite

    def is_connected(self) -> bool:
        return self._pool is not None or self._sqlite_conn is not None

    def upsert_clause(self, conflict_columns: Sequence[str], update_columns: Sequence[str]) -> str:
        """Render the dialect-specific tail of an ``INSERT`` that upserts on a unique key."""

        if self._use_sqlite:
            assignments = ", ".join(f"{column} = excluded.{column}" for column in update_columns)
            return f"ON CONFLICT ({', '.join(conflict_columns)}) DO UPDATE SET {assignments}"
        assignments = ", ".join(f"{column} = VALUES({column})" for column in update_columns)
        return f"ON DUPLICATE KEY UPDATE {assignments}"

    def _adapt_statement(
        self, sql: str, params: tuple | dict | None
    ) -> tuple[str, tuple | dict]:
        if not self._use_sqlite:
            return sql, params
        return sql.replace("%s", "?"), _adapt_params_for_sqlite(params)

    async def connect(self) -> None:
        if self._pool or self._sqlite_conn:
            return

        if self._use_sqlite:
            db_path = self._get_sqlite_path()
            logger.info("Connecting to SQLite database at {path}", path=str(db_path))
            self._sqlite_conn = await aiosqlite.connect(str(db_path))
            self._sqlite_conn.row_factory = aiosqlite.Row
            await self._sqlite_conn.execute("PRAGMA foreign_keys = ON")
            await self._sqlite_conn.commit()
        else:
            logger.info("Connecting to MySQL at {host}", host=self._settings.database_host)
            self._pool = await aiomysql.create_pool(
                host=self._settings.database_host,
                user=self._settings.database_user,
                password=self._settings.database_password or "",
                db=self._settings.database_name,
                autocommit=True,
                minsize=1,
                maxsize=10,
                pool_recycle=600,
                init_command="SET time_zone = '+00:00'",
            )

    async def disconnect(self) -> None:
        if self._sqlite_conn:
            logger.info("Disconnecting from SQLite database")
            await self._sqlite_conn.close()
            self._sqlite_conn = None
            self._sqlite_lock = None
        elif self._pool:
            logger.info("Disconnecting from MySQL database")
            self._pool.close()
            await self._pool.wait_closed()
            self._pool = None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Any]:
        if self._use_sqlite:
            if not self._sqlite_conn:
                raise RuntimeError("SQLite database not initialised")
            yield self._sqlite_conn
        else:
            if not self._pool:
                raise RuntimeError("Database pool not initialised")
            conn = await self._pool.acquire()
            try:
                yield conn
            finally:
                self._pool.release(conn)

    def _require_sqlite(self) -> tuple[aiosqlite.Connection, asyncio.Lock]:
        if not self._sqlite_conn:
            raise RuntimeError("SQLite database not initialised")
        if self._sqlite_lock is None:
            self._sqlite_lock = asyncio.Lock()
        return self._sqlite_conn, self._sqlite_lock

    async def _sqlite_write(self, sql: str, params: Any, *, many: bool = False) -> int:
        conn, lock = self._require_sqlite()
        # One shared connection: a failed statement's rollback must not reach
        # another coroutine's uncommitted write.
        async with lock:
            try:
                if many:
                    cursor = await conn.executemany(sql, params)
                else:
                    cursor = await conn.execute(sql, params)
            except Exception:
                await conn.rollback()
                raise
            await conn.commit()
            return cursor.lastrowid or 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Run several statements atomically, committing only if the block succeeds."""

        if self._use_sqlite:
            conn, lock = self._require_sqlite()
            async with lock:
                try:
                    yield Transaction(self, conn)
                    await conn.commit()
                except Exception:
                    await conn.rollback()
                    raise
            return

        async with self.acquire() as conn:
            await conn.begin()
            try:
                yield Transaction(self, conn)
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

    async def execute(self, sql: str, params: tuple | dict | None = None) -> None:
        sql, params = self._adapt_statement(sql, params)
        if self._use_sqlite:
            await self._sqlite_write(sql, params)
            return
        async with self.acquire() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(sql, params)

    async def execute_many(self, sql: str, rows: Iterable[tuple]) -> None:
        batch = list(rows)
        if not batch:
            return
        if self._use_sqlite:
            await self._sqlite_write(
                sql.replace("%s", "?"),
                [_adapt_params_for_sqlite(row) for row in batch],
                many=True,
            )
            return
        async with self.acquire() as conn:
            async with conn.cursor() as cursor:
                await cursor.executemany(sql, batch)

    async def execute_returning_lastrowid(
        self, sql: str, params: tuple | dict | None = None
    ) -> int:
        sql, params = self._adapt_statement(sql, params)
        if self._use_sqlite:
            return await self._sqlite_write(sql, params)
        async with self.acquire() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(sql, params)
                last_row_id = cursor.lastrowid
        return int(last_row_id) if last_row_id is not None else 0

    async def fetch_one(self, sql: str, params: tuple | dict | None = None):
        sql, params = self._adapt_statement(sql, params)
        if self._use_sqlite:
            conn, lock = self._require_sqlite()
            async with lock:
                cursor = await conn.execute(sql, params)
                row = await cursor.fetchone()
            return dict(row) if row else None
        async with self.acquire() as conn:
            async with conn.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(sql, params)
                return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: tuple | dict | None = None):
        sql, params = self._adapt_statement(sql, params)
        if self._use_sqlite:
            conn, lock = self._require_sqlite()
            async with lock:
                cursor = await conn.execute(sql, params)
                rows = await cursor.fetchall()
            return [dict(row) for row in rows]
        async with self.acquire() as conn:
            async with conn.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(sql, params)
                return await cursor.fetchall()

    def _get_migrations_dir(self) -> Path:
        return _PROJECT_ROOT / "migrations"

    async def _ensure_migrations_table(self, conn: Any) -> None:
        statement = "CREATE TABLE IF NOT EXISTS migrations (name VARCHAR(255) PRIMARY KEY)"
        if self._use_sqlite:
            await conn.execute(statement)
            await conn.commit()
        else:
            async with conn.cursor() as cursor:
                await cursor.execute("SET sql_notes = 0")
                try:
                    await cursor.execute(statement)
                finally:
                    await cursor.execute("SET sql_notes = 1")

    async def _applied_migrations(self, conn: Any) -> set[str]:
        if self._use_sqlite:
            cursor = await conn.execute("SELECT name FROM migrations")
            rows = await cursor.fetchall()
            return {dict(row)["name"] for row in rows}
        async with conn.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute("SELECT name FROM migrations")
            rows = await cursor.fetchall()
        return {row["name"] for row in rows}

    async def _apply_migration_file(self, conn: Any, path: Path) -> None:
        sql = path.read_text(encoding="utf-8")
        if self._use_sqlite:
            sql = adapt_sql_for_sqlite(sql)
        statements = split_sql_statements(sql)

        if self._use_sqlite:
            try:
                for statement in statements:
                    await conn.execute(statement)
                await conn.execute("INSERT INTO migrations (name) VALUES (?)", (path.name,))
            except Exception:
                await conn.rollback()
                raise
            await conn.commit()
        else:
            async with conn.cursor() as cursor:
                for statement in statements:
                    await cursor.execute(statement)
                await cursor.execute(
                    "INSERT INTO migrations (name) VALUES (%s)",
                    (path.name,),
                )

    async def run_migrations(self) -> None:
        await self.connect()
        migrations_dir = self._get_migrations_dir()
        if not migrations_dir.exists():
            logger.warning("No migrations directory found at {path}", path=str(migrations_dir))
            return

        lock_name = f"{self._settings.database_name or 'backoffice'}_migration_lock"
        lock_timeout = self._settings.migration_lock_timeout
        lock_acquired = False

        async with self.acquire() as conn:
            try:
                if not self._use_sqlite:
                    async with conn.cursor() as cursor:
                        await cursor.execute("SELECT GET_LOCK(%s, %s)", (lock_name, lock_timeout))
                        result = await cursor.fetchone()
                    lock_acquired = bool(result and result[0] == 1)
                    if not lock_acquired:
                        logger.error(
                            "Unable to obtain database migration lock {lock} within {timeout}s",
                            lock=lock_name,
                            timeout=lock_timeout,
                        )
                        raise RuntimeError("Could not obtain database migration lock")

                await self._ensure_migrations_table(conn)
                applied = await self._applied_migrations(conn)

                for path in sorted(migrations_dir.glob("*.sql")):
                    if path.name in applied:
                        continue
                    await self._apply_migration_file(conn, path)
                    logger.info("Applied migration {name}", name=path.name)
            finally:
                if lock_acquired:
                    async with conn.cursor() as cursor:
                        await cursor.execute("SELECT RELEASE_LOCK(%s)", (lock_name,))


def _adapt_value_for_sqlite(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _adapt_params_for_sqlite(params: tuple | dict | None) -> tuple | dict:
    if params is None:
        return ()
    if isinstance(params, dict):
        return {key: _adapt_value_for_sqlite(value) for key, value in params.items()}
    return tuple(_adapt_value_for_sqlite(value) for value in params)


def adapt_sql_for_sqlite(sql: str) -> str:
    """Rewrite the MySQL DDL used by the migrations into SQLite-compatible DDL."""

    sql = re.sub(r"\s*ENGINE\s*=\s*\w+", "", sql, flags=re.IGNORECASE)
    sql = re.sub(r"\s*DEFAULT\s+CHARSET\s*=\s*\w+", "", sql, flags=re.IGNORECASE)
    sql = re.sub(r"\s*COLLATE\s*=?\s*\w+", "", sql, flags=re.IGNORECASE)
    sql = re.sub(
        r"\b(?:BIG)?INT(?:EGER)?\s+(?:UNSIGNED\s+)?(?:NOT\s+NULL\s+)?AUTO_INCREMENT\s+PRIMARY\s+KEY",
        "INTEGER PRIMARY KEY AUTOINCREMENT",
        sql,
        flags=re.IGNORECASE,
    )
    sql = re.sub(r"\s*COMMENT\s+'[^']*'", "", sql, flags=re.IGNORECASE)
    sql = re.sub(r"\bDATETIME(\(\d+\))?", "TEXT", sql, flags=re.IGNORECASE)
    sql = re.sub(r"\bJSON\b", "TEXT", sql, flags=re.IGNORECASE)
    sql = re.sub(r"\bBIGINT\s+UNSIGNED\b", "INTEGER", sql, flags=re.IGNORECASE)
    return sql


def split_sql_statements(sql: str) -> list[str]:
    """Split a migration script on semicolons outside quotes and comments."""

    statements: list[str] = []
    statement_chars: list[str] = []
    in_single_quote = False
    in_double_quote = False
    i = 0
    length = len(sql)

    while i < length:
        char = sql[i]
        next_char = sql[i + 1] if i + 1 < length else ""

        if not in_single_quote and not in_double_quote:
            if char == "-" and next_char == "-":
                i += 2
                while i < length and sql[i] != "\n":
                    i += 1
                continue
            if char == "/" and next_char == "*":
                i += 2
                while i + 1 < length and not (sql[i] == "*" and sql[i + 1] == "/"):
                    i += 1
                i += 2
                continue

        if char == "'" and not in_double_quote:
            statement_chars.append(char)
            in_single_quote = not in_single_quote
            i += 1
            continue

        if char == '"' and not in_single_quote:
            statement_chars.append(char)
            in_double_quote = not in_double_quote
            i += 1
            continue

        if char == ";" and not in_single_quote and not in_double_quote:
            statement = "".join(statement_chars).strip()
            if statement:
                statements.append(statement)
            statement_chars = []
            i += 1
            continue

        statement_chars.append(char)
        i += 1

    remaining = "".join(statement_chars).strip()
    if remaining:
        statements.append(remaining)
    return statements


db = Database()
