from __future__ import annotations

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


class Data(ABC):
    """
    Abstract data store for provisioning records.

    The SQLite implementation keeps one row per provisioning run, one row per
    executed step and the assembled environment of each run.
    """

    def __init__(self, db_path: Path | str = Path(".provisor.db"), in_memory: bool = False) -> None:
        self._db_path = ":memory:" if in_memory else str(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self.connect()

    @property
    def conn(self) -> sqlite3.Connection:
        assert self._conn is not None, "Database connection is not initialized"
        return self._conn

    def connect(self) -> None:
        with self._lock:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        self._init_tables()

    @abstractmethod
    def _init_tables(self) -> None:
        """Create the predefined tables."""

    @abstractmethod
    def create_table(self, table_name: str, schema: Dict[str, str]) -> None:
        """Create a table with a schema mapping column -> SQL type/constraints."""

    @abstractmethod
    def insert(self, table_name: str, data: Dict[str, Any]) -> None:
        """Insert a dict as row; dict/list values are JSON-serialized automatically."""

    @abstractmethod
    def query(self, sql: str, params: Tuple[Any, ...] = ()) -> List[Dict[str, Any]]:
        """Execute a SELECT and return a list of dict rows with JSON automatically parsed."""

    @abstractmethod
    def update(self, table_name: str, data: Dict[str, Any], where: str, params: Tuple[Any, ...]) -> None:
        """Update rows matching the where clause with params."""

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


class SqliteData(Data):
    """SQLite-backed Data implementation.

    Thread-safe via a re-entrant lock around connection operations.
    """

    def _init_tables(self) -> None:
        """Create predefined tables: provisions, steps_output, environments."""
        with self._lock:
            self.conn.execute("PRAGMA foreign_keys = ON")
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS provisions (
                    provision_id TEXT PRIMARY KEY,
                    name TEXT,
                    base_image TEXT,
                    source TEXT,
                    start_timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                    end_timestamp DATETIME,
                    status TEXT,
                    failed_step TEXT,
                    dry_run INTEGER DEFAULT 0,
                    spec_json TEXT
                )
                """
            )
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS steps_output (
                    output_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    provision_id TEXT,
                    step_id TEXT,
                    kind TEXT,
                    position INTEGER,
                    output_json TEXT,
                    stdout TEXT,
                    stderr TEXT,
                    status TEXT,
                    duration REAL,
                    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (provision_id) REFERENCES provisions(provision_id) ON DELETE CASCADE
                )
                """
            )
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS environments (
                    provision_id TEXT PRIMARY KEY,
                    environment_json TEXT,
                    FOREIGN KEY (provision_id) REFERENCES provisions(provision_id) ON DELETE CASCADE
                )
                """
            )
            self.conn.commit()

    def _jsonify(self, value: Any) -> Any:
        if isinstance(value, (dict, list)):
            return json.dumps(value, separators=(",", ":"))
        return value

    def _dejsonify(self, value: Any) -> Any:
        if isinstance(value, str) and value[:1] in "[{":
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return value

    def create_table(self, table_name: str, schema: Dict[str, str]) -> None:
        columns = ", ".join(f"{k} {v}" for k, v in schema.items())
        with self._lock:
            self.conn.execute(f"CREATE TABLE IF NOT EXISTS {table_name} ({columns})")
            self.conn.commit()

    def insert(self, table_name: str, data: Dict[str, Any]) -> None:
        data2 = {k: self._jsonify(v) for k, v in data.items()}
        placeholders = ", ".join(["?"] * len(data2))
        columns = ", ".join(data2.keys())
        with self._lock:
            self.conn.execute(
                f"INSERT INTO {table_name} ({columns}) VALUES ({placeholders})",
                tuple(data2.values()),
            )
            self.conn.commit()

    def query(self, sql: str, params: Tuple[Any, ...] = ()) -> List[Dict[str, Any]]:
        with self._lock:
            cur = self.conn.execute(sql, params)
            rows = cur.fetchall()
        results: List[Dict[str, Any]] = []
        for row in rows:
            d = dict(row)
            results.append({k: self._dejsonify(v) for k, v in d.items()})
        return results

    def update(self, table_name: str, data: Dict[str, Any], where: str, params: Tuple[Any, ...]) -> None:
        data2 = {k: self._jsonify(v) for k, v in data.items()}
        set_clause = ", ".join(f"{k} = ?" for k in data2.keys())
        with self._lock:
            self.conn.execute(
                f"UPDATE {table_name} SET {set_clause} WHERE {where}",
                tuple(data2.values()) + params,
            )
            self.conn.commit()

    def recent_provisions(self, limit: int = 20) -> List[Dict[str, Any]]:
        return self.query(
            "SELECT provision_id, name, base_image, status, failed_step, dry_run, start_timestamp, end_timestamp "
            "FROM provisions ORDER BY start_timestamp DESC, rowid DESC LIMIT ?",
            (limit,),
        )

    def steps_for(self, provision_id: str) -> List[Dict[str, Any]]:
        return self.query(
            "SELECT step_id, kind, status, duration, output_json FROM steps_output WHERE provision_id = ? ORDER BY position",
            (provision_id,),
        )

    def environment_for(self, provision_id: str) -> Dict[str, str]:
        rows = self.query("SELECT environment_json FROM environments WHERE provision_id = ?", (provision_id,))
        if not rows:
            return {}
        env = rows[0]["environment_json"]
        return env if isinstance(env, dict) else {}
