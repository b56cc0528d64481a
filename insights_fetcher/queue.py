"""SQLite-backed session store for PSI fetch work and ignored URLs."""

import json
import logging
import os
import sqlite3
import threading
from typing import Any, Iterable, Optional, Union

from .errors import Closed, InvalidArgument, NotFound, StorageFault
from .models import PageProbeResult, QueueItemCreate, QueueStats, QueueStatus, Strategy

logger = logging.getLogger(__name__)

QUEUE_TABLE = "PsiQueue"
IGNORE_TABLE = "IgnoreUrls"


class QueueItem:
    """Represents one (url, strategy) unit of fetch work."""

    def __init__(
        self,
        id: Optional[int] = None,
        url: str = "",
        strategy: Union[Strategy, str] = Strategy.DESKTOP,
        status: Union[QueueStatus, str] = QueueStatus.QUEUED,
        error_message: Optional[str] = None,
        report: Optional[dict[str, Any]] = None,
    ):
        self.id = id
        self.url = url
        self.strategy = Strategy(strategy)
        self.status = QueueStatus(status)
        self.error_message = error_message
        self.report = report

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "url": self.url,
            "strategy": self.strategy.value,
            "status": self.status.value,
            "errormessage": self.error_message,
            "report": self.report,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueueItem":
        """Create from dictionary."""
        return cls(
            id=data.get("id"),
            url=data["url"],
            strategy=data["strategy"],
            status=data.get("status", QueueStatus.QUEUED),
            error_message=data.get("errormessage"),
            report=data.get("report"),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, QueueItem):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return (
            f"QueueItem(id={self.id!r}, url={self.url!r}, "
            f"strategy={self.strategy.value}, status={self.status.value})"
        )


class IgnoreEntry:
    """A URL that is not eligible for analysis (non-200 or not HTML)."""

    def __init__(self, url: str, status: int, content_type: str, id: Optional[int] = None):
        self.id = id
        self.url = url
        self.status = status
        self.content_type = content_type

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "url": self.url,
            "status": self.status,
            "contenttype": self.content_type,
        }

    @classmethod
    def from_probe(cls, probe: PageProbeResult) -> "IgnoreEntry":
        return cls(url=probe.url, status=probe.status, content_type=probe.content_type)


class QueueStorage:
    """Durable queue of PSI work items plus an ignore list, in one SQLite file.

    A store is scoped to one crawl session and owned by one process. All
    writes are single statements or explicit transactions, so an interrupted
    run can be resumed from whatever was last committed.
    """

    def __init__(self, db_path: str = "queue.db", create: bool = True):
        self.db_path = str(db_path)
        if not create and not os.path.isfile(self.db_path):
            raise NotFound(f"Session database {self.db_path} does not exist")
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._init_db()
        except sqlite3.Error as e:
            logger.error(f"Could not create database at {self.db_path}")
            raise StorageFault(f"Could not open queue database {self.db_path}: {e}") from e

    def _init_db(self):
        """Initialize the database schema."""
        with self._conn:
            self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {QUEUE_TABLE} (
                    id INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
                    url TEXT NOT NULL,
                    strategy TEXT NOT NULL,
                    status TEXT NOT NULL,
                    errormessage TEXT,
                    report TEXT
                )
            """)

            self._conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{QUEUE_TABLE}_status
                ON {QUEUE_TABLE}(status, id)
            """)

            self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {IGNORE_TABLE} (
                    id INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
                    url TEXT NOT NULL,
                    status INTEGER NOT NULL,
                    contenttype TEXT NOT NULL
                )
            """)

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise Closed(f"Queue storage {self.db_path} is closed")
        return self._conn

    def __enter__(self) -> "QueueStorage":
        return self

    def __exit__(self, exc_type, exc, tb):
        if self._conn is not None:
            self.close()

    @property
    def closed(self) -> bool:
        return self._conn is None

    def enqueue(self, items: Iterable[Union[QueueItemCreate, dict[str, Any]]]):
        """Enqueue new work items with status QUEUED.

        The whole call is one transaction: either every item is stored or
        none is.

        Args:
            items: (url, strategy) pairs to add
        """
        rows = []
        for item in items:
            if not isinstance(item, QueueItemCreate):
                item = QueueItemCreate(**item)
            rows.append((item.url, item.strategy.value, QueueStatus.QUEUED.value))

        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    conn.executemany(
                        f"INSERT INTO {QUEUE_TABLE} (url, strategy, status) VALUES (?, ?, ?)",
                        rows,
                    )
            except sqlite3.Error as e:
                logger.error(f"Could not enqueue {len(rows)} items")
                raise StorageFault(f"Could not enqueue items: {e}") from e

    def next_batch(self, status: Union[QueueStatus, str], limit: int) -> list[QueueItem]:
        """Get the oldest items with a status.

        Args:
            status: Status to select
            limit: Maximum number of items to return

        Returns:
            Items in creation order, empty when none remain
        """
        status = self._status(status)
        return self._select_items(status=status, limit=limit, include_report=False)

    def update_status(
        self,
        item_id: int,
        status: Union[QueueStatus, str, None],
        error_message: Optional[str] = None,
        report: Optional[dict[str, Any]] = None,
    ):
        """Set an item's status, error message and report.

        A None error_message or report clears that column.

        Args:
            item_id: ID of the item
            status: New status
            error_message: Optional error message
            report: Optional PSI report, stored as JSON text
        """
        if not status:
            raise InvalidArgument("Status is required to update.")
        status = self._status(status)
        if item_id is None:
            raise InvalidArgument("Id is required to update.")

        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    cursor = conn.execute(
                        f"""
                        UPDATE {QUEUE_TABLE}
                        SET status = ?,
                            errormessage = ?,
                            report = ?
                        WHERE id = ?
                        """,
                        (
                            status.value,
                            error_message,
                            json.dumps(report) if report is not None else None,
                            item_id,
                        ),
                    )
            except sqlite3.Error as e:
                logger.error(f"Could not update item {item_id} with status {status.value}")
                raise StorageFault(f"Could not update item {item_id}: {e}") from e

        if cursor.rowcount == 0:
            raise NotFound(f"Queue item {item_id} does not exist")

    def all_items(
        self,
        status: Union[QueueStatus, str, None] = None,
        limit: Optional[int] = None,
        include_report: bool = False,
    ) -> list[QueueItem]:
        """Get a snapshot of queue items.

        Args:
            status: Filter by status, None for all
            limit: Maximum number of items to return, None for all
            include_report: Load the (large) report column as well

        Returns:
            Items in creation order
        """
        if status:
            status = self._status(status)
        return self._select_items(status=status or None, limit=limit, include_report=include_report)

    def get(self, item_id: int, include_report: bool = True) -> QueueItem:
        """Get one item by id.

        Args:
            item_id: ID of the item
            include_report: Load the report column as well
        """
        items = self._select_items(status=None, limit=1, include_report=include_report, item_id=item_id)
        if not items:
            raise NotFound(f"Queue item {item_id} does not exist")
        return items[0]

    def _select_items(
        self,
        status: Optional[QueueStatus],
        limit: Optional[int],
        include_report: bool,
        item_id: Optional[int] = None,
    ) -> list[QueueItem]:
        columns = "id, url, strategy, status, errormessage"
        if include_report:
            columns += ", report"
        sql = f"SELECT {columns} FROM {QUEUE_TABLE}"
        clauses = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if item_id is not None:
            clauses.append("id = ?")
            params.append(item_id)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id LIMIT ?"
        params.append(-1 if limit is None else limit)

        with self._lock:
            conn = self._connection()
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageFault(f"Could not read queue items: {e}") from e

        items = []
        for row in rows:
            report = None
            if include_report and row["report"] is not None:
                report = json.loads(row["report"])
            items.append(QueueItem(
                id=row["id"],
                url=row["url"],
                strategy=row["strategy"],
                status=row["status"],
                error_message=row["errormessage"],
                report=report,
            ))
        return items

    def requeue(
        self,
        from_status: Union[QueueStatus, str],
        to_status: Union[QueueStatus, str] = QueueStatus.QUEUED,
    ) -> int:
        """Move every item in one status to another.

        Args:
            from_status: Status to move out of
            to_status: Status to move into

        Returns:
            Number of items moved
        """
        from_status = self._status(from_status)
        to_status = self._status(to_status)
        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    cursor = conn.execute(
                        f"""
                        UPDATE {QUEUE_TABLE}
                        SET status = ?, errormessage = NULL, report = NULL
                        WHERE status = ?
                        """,
                        (to_status.value, from_status.value),
                    )
            except sqlite3.Error as e:
                raise StorageFault(f"Could not requeue {from_status.value} items: {e}") from e
        return cursor.rowcount

    def add_ignore_entries(self, entries: Iterable[Union[IgnoreEntry, PageProbeResult]]):
        """Add URLs to the ignore list in one transaction.

        Args:
            entries: Ignore entries or the probe results they come from
        """
        rows = []
        for entry in entries:
            if isinstance(entry, PageProbeResult):
                entry = IgnoreEntry.from_probe(entry)
            rows.append((entry.url, entry.status, entry.content_type))

        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    conn.executemany(
                        f"INSERT INTO {IGNORE_TABLE} (url, status, contenttype) VALUES (?, ?, ?)",
                        rows,
                    )
            except sqlite3.Error as e:
                logger.error("Could not add ignored URLs")
                raise StorageFault(f"Could not add ignored URLs: {e}") from e

    def ignore_entries(self, limit: Optional[int] = None) -> list[IgnoreEntry]:
        """Get the ignored URLs.

        Args:
            limit: Maximum number of entries to return, None for all
        """
        with self._lock:
            conn = self._connection()
            try:
                rows = conn.execute(
                    f"SELECT id, url, status, contenttype FROM {IGNORE_TABLE} ORDER BY id LIMIT ?",
                    (-1 if limit is None else limit,),
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageFault(f"Could not read ignored URLs: {e}") from e

        return [
            IgnoreEntry(id=row["id"], url=row["url"], status=row["status"], content_type=row["contenttype"])
            for row in rows
        ]

    def get_stats(self) -> QueueStats:
        """Get queue statistics.

        Returns:
            Counts per status, total and ignored
        """
        with self._lock:
            conn = self._connection()
            try:
                cursor = conn.execute(
                    f"""
                    SELECT
                        status,
                        COUNT(*) as count
                    FROM {QUEUE_TABLE}
                    GROUP BY status
                    """
                )
                counts = {row["status"]: row["count"] for row in cursor}
                ignored = conn.execute(
                    f"SELECT COUNT(*) as total FROM {IGNORE_TABLE}"
                ).fetchone()["total"]
            except sqlite3.Error as e:
                raise StorageFault(f"Could not read queue statistics: {e}") from e

        return QueueStats(
            total=sum(counts.values()),
            queued=counts.get(QueueStatus.QUEUED.value, 0),
            processing=counts.get(QueueStatus.PROCESSING.value, 0),
            fetched=counts.get(QueueStatus.FETCHED.value, 0),
            failed=counts.get(QueueStatus.FAILED.value, 0),
            ignored=ignored,
        )

    def close(self):
        """Close the database. Make sure this is called before the program exits."""
        with self._lock:
            conn = self._connection()
            conn.close()
            self._conn = None

    @staticmethod
    def _status(status: Union[QueueStatus, str]) -> QueueStatus:
        try:
            return QueueStatus(status)
        except ValueError as e:
            raise InvalidArgument(f"Unknown queue status {status!r}") from e
