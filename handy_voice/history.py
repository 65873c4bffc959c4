"""SQLite backed history of transcriptions and their recordings."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import numpy as np

from handy_voice.config import APP_DIR
from handy_voice.providers import encode_wav_bytes

logger = logging.getLogger(__name__)

HISTORY_DIR = APP_DIR / "history"
SCHEMA_VERSION = 1


class HistoryError(RuntimeError):
    """Raised when something goes wrong while accessing the history store."""


@dataclass(frozen=True)
class HistoryEntry:
    id: int
    file_name: str
    timestamp: str
    transcription_text: str
    post_processed_text: str | None
    post_process_prompt: str | None


class HistoryManager:
    """Keeps each transcription alongside a WAV copy of its recording."""

    def __init__(self, history_dir: Path = HISTORY_DIR, limit: int = 50) -> None:
        self.history_dir = history_dir
        self.recordings_dir = history_dir / "recordings"
        self.db_path = history_dir / "history.db"
        self.limit = limit
        self._ensure_initialised()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_initialised(self) -> None:
        try:
            self.recordings_dir.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS transcription_history (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        file_name TEXT NOT NULL,
                        timestamp TEXT NOT NULL,
                        transcription_text TEXT NOT NULL,
                        post_processed_text TEXT,
                        post_process_prompt TEXT
                    )
                    """
                )
                conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        except (OSError, sqlite3.Error) as e:
            raise HistoryError(f"Could not initialise history store: {e}") from e

    def save_transcription(
        self,
        samples: np.ndarray,
        transcription_text: str,
        post_processed_text: str | None = None,
        post_process_prompt: str | None = None,
    ) -> HistoryEntry:
        """Write the recording and a history row, then prune old entries."""
        now = datetime.now()
        file_name = f"handy-{now.strftime('%Y%m%d-%H%M%S-%f')}.wav"
        try:
            (self.recordings_dir / file_name).write_bytes(encode_wav_bytes(samples))
            with self._connect() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO transcription_history(
                        file_name, timestamp, transcription_text, post_processed_text, post_process_prompt
                    ) VALUES(?, ?, ?, ?, ?)
                    """,
                    (
                        file_name,
                        now.isoformat(),
                        transcription_text,
                        post_processed_text,
                        post_process_prompt,
                    ),
                )
                entry_id = cur.lastrowid
        except (OSError, sqlite3.Error) as e:
            raise HistoryError(f"Failed to save transcription to history: {e}") from e

        logger.debug(f"Saved transcription {entry_id} to history ({file_name})")
        self._prune()
        return HistoryEntry(
            id=entry_id,
            file_name=file_name,
            timestamp=now.isoformat(),
            transcription_text=transcription_text,
            post_processed_text=post_processed_text,
            post_process_prompt=post_process_prompt,
        )

    def list_entries(self, limit: int | None = None) -> list[HistoryEntry]:
        """Return the newest entries first."""
        query = "SELECT * FROM transcription_history ORDER BY id DESC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        try:
            with self._connect() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise HistoryError(f"Failed to read history: {e}") from e
        return [HistoryEntry(**dict(row)) for row in rows]

    def _prune(self) -> None:
        if self.limit <= 0:
            return
        try:
            with self._connect() as conn:
                stale = conn.execute(
                    "SELECT id, file_name FROM transcription_history ORDER BY id DESC LIMIT -1 OFFSET ?",
                    (self.limit,),
                ).fetchall()
                for row in stale:
                    conn.execute("DELETE FROM transcription_history WHERE id = ?", (row["id"],))
                    (self.recordings_dir / row["file_name"]).unlink(missing_ok=True)
        except (OSError, sqlite3.Error) as e:
            logger.warning(f"Could not prune history: {e}")
