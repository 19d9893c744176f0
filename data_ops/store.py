"""SQLite storage: connections, transactions, metadata schema, table helpers.

One database file holds the ``datasets`` registry, the ``chat_history``
turn log and one isolated ``data_<dataset_id>`` table per dataset.
Connections are opened per operation and closed afterwards; SQLite runs in
WAL mode so chat-time readers never block on the (one-shot) ingestion writer.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from errors import EngineError, NotFound

logger = logging.getLogger("datachat")

TABLE_PREFIX = "data_"

_DATASET_ID_RE = re.compile(r"^[A-Za-z0-9_]+$")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def quote_identifier(name: str) -> str:
    """Double-quote an identifier for SQLite, escaping embedded quotes."""
    return '"' + name.replace('"', '""') + '"'


def table_name_for(dataset_id: str) -> str:
    """Return the isolated table name for *dataset_id*.

    Raises NotFound for ids that could never have been issued (anything
    outside ``[A-Za-z0-9_]``), so they never reach SQL text.
    """
    if not dataset_id or not _DATASET_ID_RE.match(dataset_id):
        raise NotFound(f"malformed dataset id: {dataset_id!r}")
    return f"{TABLE_PREFIX}{dataset_id}"


class Database:
    """Handle on the SQLite file plus per-dataset locks.

    Args:
        path: Database file path. Every operation opens its own
            connection, so ``":memory:"`` cannot be used.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # -- Connections ------------------------------------------------------------

    def _open(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connect(self, *, read_only: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield a connection and close it afterwards.

        Statements run in the driver's implicit transaction; the caller
        commits. With ``read_only=True`` the connection refuses writes
        (``PRAGMA query_only``), which is what the query tools use.
        """
        conn = self._open()
        try:
            if read_only:
                conn.execute("PRAGMA query_only = ON")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside one explicit transaction.

        DDL and DML both participate, so a rollback also undoes a
        ``CREATE TABLE`` issued inside the block. Commits on normal exit,
        rolls back on any exception.
        """
        conn = self._open()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    # -- Schema -----------------------------------------------------------------

    def init_schema(self) -> None:
        """Create the metadata tables if missing and switch to WAL."""
        try:
            with self.connect() as conn:
                conn.execute("PRAGMA journal_mode = WAL")
                conn.execute(
                    """
                    create table if not exists datasets (
                        id text primary key,
                        name text not null,
                        display_name text,
                        size integer not null default 0,
                        row_count integer not null default 0,
                        column_count integer not null default 0,
                        columns_json text not null,
                        column_pairs_json text not null,
                        schema_json text not null,
                        created_at text not null
                    )
                    """
                )
                conn.execute(
                    """
                    create table if not exists chat_history (
                        id integer primary key autoincrement,
                        dataset_id text not null,
                        user_text text not null,
                        agent_text text not null,
                        created_at text not null
                    )
                    """
                )
                conn.execute(
                    "create index if not exists idx_chat_history_dataset on chat_history(dataset_id, id)"
                )
                conn.commit()
        except sqlite3.Error as e:
            raise EngineError(f"schema init failed: {e}") from e
        logger.debug(f"Database ready at {self.path}")

    # -- Isolated tables --------------------------------------------------------

    def table_exists(self, table: str) -> bool:
        with self.connect(read_only=True) as conn:
            row = conn.execute(
                "select 1 from sqlite_master where type = 'table' and name = ?",
                (table,),
            ).fetchone()
        return row is not None

    def table_info(self, table: str) -> list[sqlite3.Row]:
        """Return ``PRAGMA table_info`` rows in column order. NotFound if absent."""
        with self.connect(read_only=True) as conn:
            rows = conn.execute(f"PRAGMA table_info({quote_identifier(table)})").fetchall()
        if not rows:
            raise NotFound(f"table {table} does not exist")
        return rows

    def drop_table(self, table: str) -> None:
        try:
            with self.connect() as conn:
                conn.execute(f"drop table if exists {quote_identifier(table)}")
                conn.commit()
        except sqlite3.Error as e:
            raise EngineError(f"drop table {table} failed: {e}") from e

    # -- Locks ------------------------------------------------------------------

    def dataset_lock(self, dataset_id: str) -> threading.Lock:
        """Per-dataset lock serializing history appends against deletion."""
        with self._locks_guard:
            lock = self._locks.get(dataset_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[dataset_id] = lock
            return lock

    def forget_lock(self, dataset_id: str) -> None:
        """Drop the lock entry of a dataset that no longer exists."""
        with self._locks_guard:
            self._locks.pop(dataset_id, None)

