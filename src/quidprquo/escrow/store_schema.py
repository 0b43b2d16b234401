"""Schema helpers for partition storage."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime

_PLEDGE_COLUMNS = frozenset(
    {"offeror", "target_author", "item_number", "item_scope", "created_at"}
)
_CREDENTIAL_COLUMNS = frozenset({"user_id", "scope", "access", "refresh", "expires_at"})


def utc_now_epoch() -> int:
    """Return UTC epoch seconds."""
    return int(datetime.now(UTC).timestamp())


def init_schema(conn: sqlite3.Connection) -> None:
    """Create the pledge and credential tables if they are missing."""
    if not _table_exists(conn, "pledges"):
        conn.execute(
            """
            CREATE TABLE pledges (
                offeror TEXT NOT NULL,
                target_author TEXT NOT NULL,
                item_number INTEGER NOT NULL,
                item_scope TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                PRIMARY KEY (offeror, target_author)
            )
            """
        )
    elif _columns(conn, "pledges") != _PLEDGE_COLUMNS:
        raise sqlite3.DatabaseError("pledges table has an unexpected shape.")

    if not _table_exists(conn, "credentials"):
        conn.execute(
            """
            CREATE TABLE credentials (
                user_id TEXT NOT NULL,
                scope TEXT NOT NULL,
                access TEXT NOT NULL,
                refresh TEXT NOT NULL,
                expires_at INTEGER NOT NULL,
                PRIMARY KEY (user_id, scope)
            )
            """
        )
    elif _columns(conn, "credentials") != _CREDENTIAL_COLUMNS:
        raise sqlite3.DatabaseError("credentials table has an unexpected shape.")


def _table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
        (table_name,),
    ).fetchone()
    return row is not None


def _columns(conn: sqlite3.Connection, table_name: str) -> frozenset[str]:
    rows = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    return frozenset(str(row[1]) for row in rows)
