"""
Durable local queue of responses that have not reached the server yet
"""
import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from typing import Any, List

logger = logging.getLogger(__name__)


def open_local_db(path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


@dataclass(frozen=True)
class QueuedResponse:
    participant_id: str
    slide_id: str
    answer: Any
    queued_at: float
    attempts: int = 0
    last_error: str = None
    # Row id; AUTOINCREMENT never reuses it, so a re-answer gets a new token
    token: int = None

    def to_request(self):
        return {
            "participantId": self.participant_id,
            "slideId": self.slide_id,
            "answerJson": self.answer,
            "synced": True,
        }


class OfflineQueue:
    """
    One row per (participant, slide); re-answering replaces the queued answer.

    Rows survive process restarts when ``path`` is a file.
    """

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._conn = open_local_db(path)
        self._lock = threading.Lock()
        with self._lock, self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_responses (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    participant_id TEXT NOT NULL,
                    slide_id TEXT NOT NULL,
                    answer_json TEXT NOT NULL,
                    queued_at REAL NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    UNIQUE (participant_id, slide_id)
                )
                """
            )

    def enqueue(self, participant_id, slide_id, answer) -> QueuedResponse:
        queued_at = time.time()
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT OR REPLACE INTO pending_responses "
                "(participant_id, slide_id, answer_json, queued_at, attempts, last_error) "
                "VALUES (?, ?, ?, ?, 0, NULL)",
                (str(participant_id), str(slide_id), json.dumps(answer), queued_at),
            )
        return QueuedResponse(str(participant_id), str(slide_id), answer, queued_at, token=cursor.lastrowid)

    def pending(self) -> List[QueuedResponse]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM pending_responses ORDER BY queued_at, id"
            ).fetchall()
        return [
            QueuedResponse(
                participant_id=row["participant_id"],
                slide_id=row["slide_id"],
                answer=json.loads(row["answer_json"]),
                queued_at=row["queued_at"],
                attempts=row["attempts"],
                last_error=row["last_error"],
                token=row["id"],
            )
            for row in rows
        ]

    def remove(self, item: QueuedResponse) -> bool:
        """Drop a delivered item unless it was re-answered while in flight"""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM pending_responses WHERE id = ?", (item.token,)
            )
        return cursor.rowcount > 0

    def record_failure(self, item: QueuedResponse, error: str):
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE pending_responses SET attempts = attempts + 1, last_error = ? "
                "WHERE id = ?",
                (error, item.token),
            )

    def __len__(self):
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM pending_responses").fetchone()[0]

    def close(self):
        self._conn.close()
