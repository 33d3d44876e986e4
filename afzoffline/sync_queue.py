"""Persistent queue of form submissions awaiting background delivery."""

import json
import logging
import sqlite3
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from .models import PendingSubmission, Response, SyncReport
from .network import NetworkError

logger = logging.getLogger(__name__)

PostJson = Callable[[str, object], Response]


class SyncQueueError(Exception):
    """Raised when the pending submission store cannot be read or written."""

    pass


def init_queue_db(db_path: str) -> sqlite3.Connection:
    """Initialize the offline submission database.

    Args:
        db_path: Path to the SQLite database file, or ":memory:".

    Returns:
        Database connection.

    Raises:
        SyncQueueError: If database initialization fails.
    """
    try:
        if db_path != ":memory:":
            parent_dir = Path(db_path).parent
            if not parent_dir.exists():
                parent_dir.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row

        conn.execute("""
            CREATE TABLE IF NOT EXISTS pending_forms (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        conn.commit()
        return conn

    except sqlite3.Error as e:
        raise SyncQueueError(f"Failed to initialize offline database: {e}")
    except OSError as e:
        raise SyncQueueError(f"Failed to create offline database directory: {e}")


def _row_to_submission(row: sqlite3.Row) -> PendingSubmission:
    return PendingSubmission(
        id=row["id"],
        data=json.loads(row["data"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class BackgroundSyncQueue:
    """Pending -> Delivered state machine for queued contact-form payloads.

    A record is Pending while it sits in the store and Delivered once a sync
    pass got a 2xx from the endpoint and removed it. Failed deliveries stay
    Pending for the next sync event; there is no backoff and no retry cap.
    """

    def __init__(self, conn: sqlite3.Connection, endpoint_url: str, post: PostJson) -> None:
        self._conn = conn
        self._lock = threading.Lock()
        self.endpoint_url = endpoint_url
        self._post = post

    def enqueue(self, data: object) -> int:
        """Persist a payload as Pending and return its id."""
        try:
            payload = json.dumps(data)
        except (TypeError, ValueError) as e:
            raise SyncQueueError(f"Submission is not JSON serializable: {e}")

        try:
            with self._lock:
                cursor = self._conn.execute(
                    "INSERT INTO pending_forms (data, created_at) VALUES (?, ?)",
                    (payload, datetime.now(UTC).isoformat()),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise SyncQueueError(f"Failed to store pending submission: {e}")

        logger.info("Stored contact form %d for background sync", cursor.lastrowid)
        return cursor.lastrowid

    def pending(self) -> list[PendingSubmission]:
        """Return all Pending submissions, oldest first."""
        try:
            with self._lock:
                rows = self._conn.execute("SELECT * FROM pending_forms ORDER BY id").fetchall()
        except sqlite3.Error as e:
            raise SyncQueueError(f"Failed to read pending submissions: {e}")
        return [_row_to_submission(row) for row in rows]

    def get(self, submission_id: int) -> PendingSubmission | None:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT * FROM pending_forms WHERE id = ?",
                    (submission_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise SyncQueueError(f"Failed to read pending submission {submission_id}: {e}")
        return _row_to_submission(row) if row is not None else None

    def count(self) -> int:
        try:
            with self._lock:
                row = self._conn.execute("SELECT COUNT(*) FROM pending_forms").fetchone()
        except sqlite3.Error as e:
            raise SyncQueueError(f"Failed to count pending submissions: {e}")
        return row[0]

    def delete(self, submission_id: int) -> bool:
        """Remove a submission. Returns True if it existed."""
        try:
            with self._lock:
                cursor = self._conn.execute("DELETE FROM pending_forms WHERE id = ?", (submission_id,))
                self._conn.commit()
        except sqlite3.Error as e:
            raise SyncQueueError(f"Failed to delete pending submission {submission_id}: {e}")
        return cursor.rowcount > 0

    def clear(self) -> int:
        """Remove every Pending submission. Returns the number removed."""
        try:
            with self._lock:
                cursor = self._conn.execute("DELETE FROM pending_forms")
                self._conn.commit()
        except sqlite3.Error as e:
            raise SyncQueueError(f"Failed to clear pending submissions: {e}")
        return cursor.rowcount

    def sync(self) -> SyncReport:
        """Try to deliver every Pending submission once."""
        try:
            submissions = self.pending()
        except SyncQueueError as e:
            logger.warning("Background sync failed: %s", e)
            return SyncReport()

        delivered: list[int] = []
        failed: list[int] = []

        for submission in submissions:
            if self._deliver(submission):
                delivered.append(submission.id)
            else:
                failed.append(submission.id)

        if submissions:
            logger.info(
                "Background sync finished: %d delivered, %d still pending",
                len(delivered),
                len(failed),
            )
        return SyncReport(delivered=delivered, failed=failed)

    def _deliver(self, submission: PendingSubmission) -> bool:
        try:
            response = self._post(self.endpoint_url, submission.data)
        except NetworkError as e:
            logger.warning("Failed to sync form %d: %s", submission.id, e)
            return False

        if not response.ok:
            logger.warning("Failed to sync form %d: endpoint returned %d", submission.id, response.status)
            return False

        try:
            self.delete(submission.id)
        except SyncQueueError as e:
            logger.error("Form %d was delivered but could not be removed: %s", submission.id, e)
            return False

        logger.info("Synced contact form: %d", submission.id)
        return True

    def close(self) -> None:
        self._conn.close()
