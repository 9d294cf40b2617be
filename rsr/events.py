from __future__ import annotations

import os
import sqlite3
from threading import Lock
from typing import Any

from .clock import utc_now
from .settings import settings

_initialized: set[str] = set()
_init_lock = Lock()


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (e.g. a bind mount Docker created
    for a missing file), the DB file is placed inside it.
    """
    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "rsr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    path = _resolve_db_path()
    existed = os.path.exists(path)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    with _init_lock:
        if path not in _initialized or not existed:
            _create_tables(conn)
            _initialized.add(path)
    return conn


def _create_tables(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS events (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          ts TEXT NOT NULL,
          level TEXT NOT NULL,
          source TEXT,
          namespace TEXT,
          message TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
        CREATE INDEX IF NOT EXISTS idx_events_source ON events(namespace, source);
        """
    )


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        _create_tables(conn)


def log_event(level: str, message: str, source: str | None = None, namespace: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, source, namespace, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now().strftime("%Y-%m-%dT%H:%M:%SZ"), level.upper(), source, namespace, message),
        )


def latest_events(limit: int = 100, source: str | None = None, namespace: str | None = None) -> list[dict[str, Any]]:
    query = "SELECT * FROM events"
    params: list[Any] = []
    clauses: list[str] = []
    if source:
        clauses.append("source=?")
        params.append(source)
    if namespace:
        clauses.append("namespace=?")
        params.append(namespace)
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY id DESC LIMIT ?"
    params.append(limit)
    with connect() as conn:
        rows = conn.execute(query, params).fetchall()
        return [dict(r) for r in rows]
