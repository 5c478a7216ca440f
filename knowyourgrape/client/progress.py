"""
Local copy of a participant's playback position for resume after reload
"""
import threading
import time
from dataclasses import dataclass
from typing import Optional

from .queue import open_local_db


@dataclass(frozen=True)
class ProgressSnapshot:
    session_id: str
    participant_id: str
    progress_ptr: int = 0
    current_slide_id: Optional[str] = None
    updated_at: float = 0.0


class ProgressStore:
    def __init__(self, path: str = ":memory:"):
        self._conn = open_local_db(path)
        self._lock = threading.Lock()
        with self._lock, self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS progress (
                    participant_id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    progress_ptr INTEGER NOT NULL,
                    current_slide_id TEXT,
                    updated_at REAL NOT NULL
                )
                """
            )

    def save(self, session_id, participant_id, progress_ptr: int, current_slide_id=None) -> ProgressSnapshot:
        snapshot = ProgressSnapshot(str(session_id), str(participant_id), int(progress_ptr),
                                    str(current_slide_id) if current_slide_id else None, time.time())
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO progress "
                "(participant_id, session_id, progress_ptr, current_slide_id, updated_at) VALUES (?, ?, ?, ?, ?)",
                (snapshot.participant_id, snapshot.session_id, snapshot.progress_ptr,
                 snapshot.current_slide_id, snapshot.updated_at),
            )
        return snapshot

    def save_state(self, session_id, participant_id, state: dict) -> ProgressSnapshot:
        """Store a playback state as returned by the playback endpoints"""
        slide = state.get("slide") or {}
        return self.save(session_id, participant_id, state["stepIndex"], slide.get("id"))

    def load(self, participant_id) -> Optional[ProgressSnapshot]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM progress WHERE participant_id = ?", (str(participant_id),)
            ).fetchone()
        return self._snapshot(row)

    def latest(self) -> Optional[ProgressSnapshot]:
        """Most recently saved participant, used when the app reloads without context"""
        with self._lock:
            row = self._conn.execute("SELECT * FROM progress ORDER BY updated_at DESC LIMIT 1").fetchone()
        return self._snapshot(row)

    def clear(self, participant_id):
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM progress WHERE participant_id = ?", (str(participant_id),))

    @staticmethod
    def _snapshot(row) -> Optional[ProgressSnapshot]:
        if row is None:
            return None
        return ProgressSnapshot(row["session_id"], row["participant_id"], row["progress_ptr"],
                                row["current_slide_id"], row["updated_at"])

    def close(self):
        self._conn.close()
