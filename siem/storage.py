# siem/storage.py

import json
import logging
import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from .config import load_settings
from .models import AlertPayload

logger = logging.getLogger(__name__)

# fixed width so string order is time order
CREATED_AT_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

ALERT_COLUMNS = (
    "id, title, description, source, severity, status, "
    "raw_data, resolution_method, created_at"
)


class StoreError(Exception):
    """Any failure talking to the alerts store."""


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(CREATED_AT_FORMAT)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SQLiteStorage:
    def __init__(self, db_path: Optional[str] = None, timeout: Optional[float] = None) -> None:
        settings = load_settings()
        self.db_path = db_path or settings.db_path
        self.timeout = settings.store_timeout_seconds if timeout is None else timeout
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        if self.db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
        try:
            self.conn = sqlite3.connect(
                self.db_path, timeout=self.timeout, check_same_thread=False
            )
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open {self.db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def __enter__(self) -> "SQLiteStorage":
        self.connect()
        self.init_db()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _execute(self, sql: str, params: Iterable[Any] = (), commit: bool = False) -> sqlite3.Cursor:
        if self.conn is None:
            raise StoreError("Storage is not connected")
        with self._lock:
            try:
                cur = self.conn.cursor()
                cur.execute(sql, tuple(params))
                if commit:
                    self.conn.commit()
                return cur
            except sqlite3.Error as e:
                if commit:
                    self.conn.rollback()
                raise StoreError(str(e)) from e

    def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        if self.conn is None:
            raise StoreError("Storage is not connected")
        with self._lock:
            try:
                cur = self.conn.cursor()
                cur.execute(sql, tuple(params))
                return cur.fetchall()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def init_db(self) -> None:
        self._execute(
            """
            CREATE TABLE IF NOT EXISTS alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                description TEXT,
                source TEXT,
                severity TEXT,
                status TEXT,
                raw_data TEXT,
                resolution_method TEXT,
                created_at TEXT NOT NULL
            )
            """,
            commit=True,
        )
        self._execute(
            "CREATE INDEX IF NOT EXISTS idx_alerts_source_created "
            "ON alerts (source, created_at)",
            commit=True,
        )

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        alert = dict(row)
        raw = alert.get("raw_data")
        try:
            alert["raw_data"] = json.loads(raw) if raw else {}
        except ValueError:
            logger.warning("Alert %s has unreadable raw_data", alert.get("id"))
            alert["raw_data"] = {}
        return alert

    def insert_alert(self, alert: AlertPayload, created_at: Optional[datetime] = None) -> int:
        cur = self._execute(
            """
            INSERT INTO alerts (title, description, source, severity, status,
                                raw_data, resolution_method, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                alert.title,
                alert.description,
                alert.source,
                alert.severity,
                alert.status,
                json.dumps(alert.raw_data),
                alert.resolution_method,
                format_timestamp(created_at or utcnow()),
            ),
            commit=True,
        )
        return cur.lastrowid

    def fetch_alert(self, alert_id: int) -> Optional[Dict[str, Any]]:
        rows = self._fetchall(
            f"SELECT {ALERT_COLUMNS} FROM alerts WHERE id = ?", (alert_id,)
        )
        return self._row_to_dict(rows[0]) if rows else None

    def find_recent_alert(self, title: str, source: str, since: datetime) -> Optional[Dict[str, Any]]:
        """Return one alert with this exact title and source created at or after `since`."""
        rows = self._fetchall(
            f"""
            SELECT {ALERT_COLUMNS} FROM alerts
            WHERE title = ? AND source = ? AND created_at >= ?
            LIMIT 1
            """,
            (title, source, format_timestamp(since)),
        )
        return self._row_to_dict(rows[0]) if rows else None

    def fetch_alerts_by_ids(self, alert_ids: List[int]) -> List[Dict[str, Any]]:
        if not alert_ids:
            return []
        placeholders = ", ".join("?" for _ in alert_ids)
        rows = self._fetchall(
            f"SELECT {ALERT_COLUMNS} FROM alerts WHERE id IN ({placeholders}) ORDER BY id",
            alert_ids,
        )
        return [self._row_to_dict(r) for r in rows]

    def fetch_alerts_since(
        self,
        since: datetime,
        exclude_id: Optional[int] = None,
        source: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Alerts created at or after `since`, newest first.
        """
        sql = f"SELECT {ALERT_COLUMNS} FROM alerts WHERE created_at >= ?"
        params: List[Any] = [format_timestamp(since)]
        if exclude_id is not None:
            sql += " AND id != ?"
            params.append(exclude_id)
        if source is not None:
            sql += " AND source = ?"
            params.append(source)
        sql += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._row_to_dict(r) for r in self._fetchall(sql, params)]

    def delete_alerts_by_source(self, source: str) -> int:
        cur = self._execute("DELETE FROM alerts WHERE source = ?", (source,), commit=True)
        return cur.rowcount

    def count_by_source_and_severity(self, source_prefix: str) -> List[Dict[str, Any]]:
        """
        Alert counts grouped by (source, severity) for sources starting with the prefix.
        """
        rows = self._fetchall(
            """
            SELECT source, severity, COUNT(*) AS c
            FROM alerts
            WHERE substr(source, 1, ?) = ?
            GROUP BY source, severity
            ORDER BY source, severity
            """,
            (len(source_prefix), source_prefix),
        )
        return [
            {"source": r["source"], "severity": r["severity"], "count": r["c"]}
            for r in rows
        ]

    def merge_raw_data(self, alert_id: int, patch: Dict[str, Any]) -> bool:
        """
        Merge keys into an alert's raw_data, keeping the keys already there.

        Returns False when the alert does not exist.
        """
        if self.conn is None:
            raise StoreError("Storage is not connected")
        with self._lock:
            try:
                cur = self.conn.cursor()
                cur.execute("SELECT raw_data FROM alerts WHERE id = ?", (alert_id,))
                row = cur.fetchone()
                if row is None:
                    return False
                try:
                    current = json.loads(row["raw_data"]) if row["raw_data"] else {}
                except ValueError:
                    current = {}
                current.update(patch)
                cur.execute(
                    "UPDATE alerts SET raw_data = ? WHERE id = ?",
                    (json.dumps(current), alert_id),
                )
                self.conn.commit()
                return True
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StoreError(str(e)) from e

    def fetch_alerts(
        self,
        severity: Optional[str] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Return alerts as a list of dictionaries, optional severity filter.
        """
        if severity:
            rows = self._fetchall(
                f"""
                SELECT {ALERT_COLUMNS} FROM alerts
                WHERE LOWER(severity) = LOWER(?)
                ORDER BY id DESC
                LIMIT ?
                """,
                (severity, limit),
            )
        else:
            rows = self._fetchall(
                f"SELECT {ALERT_COLUMNS} FROM alerts ORDER BY id DESC LIMIT ?",
                (limit,),
            )
        return [self._row_to_dict(r) for r in rows]

    def ping(self) -> None:
        self._fetchall("SELECT id FROM alerts LIMIT 1")
