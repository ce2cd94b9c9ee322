"""SQLite persistence for users, schedules, messages and counseling feedback."""

import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  email TEXT NOT NULL UNIQUE,
  role TEXT NOT NULL,
  year TEXT,
  roll_number TEXT,
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS student_mentor_relationships (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  student_id INTEGER NOT NULL REFERENCES users(id),
  mentor_id INTEGER NOT NULL REFERENCES users(id),
  assigned_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  sender_id INTEGER NOT NULL REFERENCES users(id),
  receiver_id INTEGER NOT NULL REFERENCES users(id),
  content TEXT NOT NULL,
  read INTEGER DEFAULT 0,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS schedules (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  student_id INTEGER NOT NULL REFERENCES users(id),
  mentor_id INTEGER NOT NULL REFERENCES users(id),
  title TEXT NOT NULL,
  description TEXT,
  scheduled_date TEXT NOT NULL,
  scheduled_time TEXT NOT NULL,
  duration_minutes INTEGER DEFAULT 30,
  meeting_mode TEXT NOT NULL,
  status TEXT NOT NULL DEFAULT 'scheduled',
  meeting_link TEXT,
  location TEXT,
  notes TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS counseling_feedback (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  schedule_id INTEGER NOT NULL REFERENCES schedules(id),
  student_id INTEGER NOT NULL REFERENCES users(id),
  mentor_id INTEGER NOT NULL REFERENCES users(id),
  feedback_text TEXT NOT NULL,
  risk_factors TEXT,
  recommendations TEXT,
  follow_up_required INTEGER DEFAULT 0,
  created_at TEXT NOT NULL
);
"""

TABLES = ('users', 'student_mentor_relationships', 'messages', 'schedules', 'counseling_feedback')
BOOLEAN_COLUMNS = {'read', 'follow_up_required'}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.capitalize() for part in rest)


def row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    """Row -> camelCase dict as returned by the REST API."""
    out = {}
    for key in row.keys():
        value = row[key]
        if key in BOOLEAN_COLUMNS and value is not None:
            value = bool(value)
        out[_camel(key)] = value
    return out


class Database:
    """A single shared connection guarded by a lock.

    ':memory:' keeps everything process-local, which is what the tests use.
    """

    def __init__(self, path: str = ':memory:'):
        self.path = path
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys=ON;")
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def fetch_one(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.conn.execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return row_to_dict(row) if row else None

    def exists(self, table: str, record_id: int) -> bool:
        with self._lock:
            row = self.conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return row is not None

    def query(self, sql: str, params: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self.conn.execute(sql, tuple(params)).fetchall()
        return [row_to_dict(r) for r in rows]

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        cols = list(values.keys())
        sql = f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})"
        with self._lock:
            cur = self.conn.execute(sql, [values[c] for c in cols])
            self.conn.commit()
            new_id = cur.lastrowid
        return self.fetch_one(table, new_id)

    def update(self, table: str, record_id: int, values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if values:
            assignments = ', '.join(f"{c} = ?" for c in values)
            with self._lock:
                self.conn.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?",
                    [*values.values(), record_id],
                )
                self.conn.commit()
        return self.fetch_one(table, record_id)

    def delete(self, table: str, record_id: int) -> Optional[Dict[str, Any]]:
        existing = self.fetch_one(table, record_id)
        if existing is None:
            return None
        with self._lock:
            try:
                self.conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            except sqlite3.IntegrityError:
                self.conn.rollback()
                raise
            self.conn.commit()
        return existing
