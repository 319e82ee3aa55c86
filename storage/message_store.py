"""Durable message store for QVoiceTxt conversation history, reminders and archives.

The store is the only reader/writer of utterance history. Every component gets
the same store object through its constructor.

Usage:
    from storage.message_store import SQLiteMessageStore

    store = SQLiteMessageStore(Path("~/.local/state/qvoicetxt/qvoicetxt.sqlite3"))

    # Free-text and token-compressed utterances
    store.append(user_id="anon-1234", text="call Sam later")
    store.append(user_id="anon-1234", token_index=0)

    # Live snapshot feed
    unsubscribe = store.subscribe(lambda snapshot: print(len(snapshot)))

    # Reminder records (owned by the reminder scheduler)
    reminder = store.add_reminder(due_at_ms=1_700_000_060_000, message="call Sam")
    due = store.due_reminders(now_ms=1_700_000_060_000, limit=10)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Sequence

from qvoice_gateway.errors import StoreError

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list["Utterance"]], None]


def _now_utc_iso() -> str:
    """Return current UTC time as ISO8601 string with milliseconds."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


@dataclass
class Utterance:
    """One message unit in the conversation history."""

    id: int
    user_id: str
    text: Optional[str]
    token_index: Optional[int]
    created_at: str  # ISO8601 UTC, assigned by the store

    @property
    def is_tokenized(self) -> bool:
        return self.token_index is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "text": self.text,
            "token_index": self.token_index,
            "is_tokenized": self.is_tokenized,
            "created_at": self.created_at,
        }


@dataclass
class ReminderRecord:
    """A persisted one-shot reminder."""

    id: int
    due_at_ms: int
    message: str


@dataclass
class ConversationArchive:
    """A saved snapshot of the conversation."""

    id: int
    owner_id: str
    created_at: str
    message_count: int
    payload: str  # JSON list of utterance dicts

    def utterances(self) -> list[dict]:
        return json.loads(self.payload)


class MessageStore(ABC):
    """Ordered, subscribable record collection.

    Supports ordered range queries, single inserts and deletes, and a live
    subscription feed delivering the full ordered snapshot on every change.
    """

    @abstractmethod
    def append(self, user_id: str, text: Optional[str] = None, token_index: Optional[int] = None) -> Utterance:
        ...

    @abstractmethod
    def query(self, limit: Optional[int] = None, after_id: Optional[int] = None) -> list[Utterance]:
        ...

    @abstractmethod
    def get(self, utterance_id: int) -> Optional[Utterance]:
        ...

    @abstractmethod
    def delete(self, utterance_id: int) -> bool:
        ...

    @abstractmethod
    def count(self) -> int:
        ...

    @abstractmethod
    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        ...

    @abstractmethod
    def add_reminder(self, due_at_ms: int, message: str) -> ReminderRecord:
        ...

    @abstractmethod
    def due_reminders(self, now_ms: int, limit: int = 10) -> list[ReminderRecord]:
        ...

    @abstractmethod
    def delete_reminder(self, reminder_id: int) -> bool:
        ...

    @abstractmethod
    def count_reminders(self) -> int:
        ...

    @abstractmethod
    def save_archive(self, owner_id: str, utterances: Sequence[Utterance]) -> ConversationArchive:
        ...

    @abstractmethod
    def list_archives(self, owner_id: Optional[str] = None) -> list[ConversationArchive]:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class SQLiteMessageStore(MessageStore):
    """SQLite-backed message store.

    Thread-safe: the reminder scheduler thread and the router write
    concurrently through the same connection, serialized by a lock.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self._subscribers: list[SnapshotCallback] = []
        try:
            if str(self.db_path) != ":memory:":
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._init_db()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open message store at {self.db_path}: {e}") from e

    def _init_db(self) -> None:
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS utterances (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    text TEXT,
                    token_index INTEGER,
                    created_at TEXT NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reminders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    due_at_ms INTEGER NOT NULL,
                    message TEXT NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_reminders_due
                ON reminders(due_at_ms)
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS archives (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    message_count INTEGER NOT NULL,
                    payload TEXT NOT NULL
                )
                """
            )

    # Utterances

    def append(self, user_id: str, text: Optional[str] = None, token_index: Optional[int] = None) -> Utterance:
        """Insert one utterance; exactly one of ``text``/``token_index`` must be set.

        Raises:
            ValueError: If both or neither payload field is given.
            StoreError: On database failure.
        """
        if (text is None) == (token_index is None):
            raise ValueError("Utterance needs exactly one of text or token_index")
        if not user_id:
            raise ValueError("user_id cannot be empty")

        created_at = _now_utc_iso()
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(
                    "INSERT INTO utterances (user_id, text, token_index, created_at) VALUES (?, ?, ?, ?)",
                    (user_id, text, token_index, created_at),
                )
                utterance_id = int(cursor.lastrowid)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to save message: {e}") from e

        logger.debug(f"Stored utterance {utterance_id} from {user_id}")
        self._notify()
        return Utterance(utterance_id, user_id, text, token_index, created_at)

    def query(self, limit: Optional[int] = None, after_id: Optional[int] = None) -> list[Utterance]:
        """Return utterances in creation order (oldest first).

        With ``limit``, the most recent ``limit`` utterances are returned.
        """
        clauses = []
        params: list = []
        if after_id is not None:
            clauses.append("id > ?")
            params.append(after_id)
        where_sql = ("WHERE " + " AND ".join(clauses)) if clauses else ""

        if limit is not None:
            sql = f"SELECT * FROM utterances {where_sql} ORDER BY id DESC LIMIT ?"
            params.append(limit)
        else:
            sql = f"SELECT * FROM utterances {where_sql} ORDER BY id ASC"

        try:
            with self._lock:
                rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to query messages: {e}") from e

        if limit is not None:
            rows = list(reversed(rows))
        return [self._row_to_utterance(row) for row in rows]

    def get(self, utterance_id: int) -> Optional[Utterance]:
        try:
            with self._lock:
                row = self._conn.execute("SELECT * FROM utterances WHERE id = ?", (utterance_id,)).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read message {utterance_id}: {e}") from e
        return self._row_to_utterance(row) if row else None

    def delete(self, utterance_id: int) -> bool:
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute("DELETE FROM utterances WHERE id = ?", (utterance_id,))
                deleted = cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete message {utterance_id}: {e}") from e
        if deleted:
            self._notify()
        return deleted

    def count(self) -> int:
        try:
            with self._lock:
                return int(self._conn.execute("SELECT COUNT(*) FROM utterances").fetchone()[0])
        except sqlite3.Error as e:
            raise StoreError(f"Failed to count messages: {e}") from e

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Register a snapshot listener and deliver the current snapshot immediately.

        Returns:
            A function that removes the listener.
        """
        with self._lock:
            self._subscribers.append(callback)
        self._deliver(callback, self.query())

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            return
        try:
            snapshot = self.query()
        except StoreError as e:
            logger.error(f"Failed to build snapshot for subscribers: {e}")
            return
        for callback in subscribers:
            self._deliver(callback, snapshot)

    @staticmethod
    def _deliver(callback: SnapshotCallback, snapshot: list[Utterance]) -> None:
        try:
            callback(list(snapshot))
        except Exception as e:
            logger.error(f"Message store subscriber failed: {e}", exc_info=True)

    # Reminders

    def add_reminder(self, due_at_ms: int, message: str) -> ReminderRecord:
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(
                    "INSERT INTO reminders (due_at_ms, message) VALUES (?, ?)",
                    (int(due_at_ms), message),
                )
                reminder_id = int(cursor.lastrowid)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to save reminder: {e}") from e
        return ReminderRecord(id=reminder_id, due_at_ms=int(due_at_ms), message=message)

    def due_reminders(self, now_ms: int, limit: int = 10) -> list[ReminderRecord]:
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT * FROM reminders WHERE due_at_ms <= ? ORDER BY due_at_ms ASC, id ASC LIMIT ?",
                    (int(now_ms), limit),
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to query due reminders: {e}") from e
        return [
            ReminderRecord(id=int(row["id"]), due_at_ms=int(row["due_at_ms"]), message=row["message"])
            for row in rows
        ]

    def delete_reminder(self, reminder_id: int) -> bool:
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute("DELETE FROM reminders WHERE id = ?", (reminder_id,))
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete reminder {reminder_id}: {e}") from e

    def count_reminders(self) -> int:
        try:
            with self._lock:
                return int(self._conn.execute("SELECT COUNT(*) FROM reminders").fetchone()[0])
        except sqlite3.Error as e:
            raise StoreError(f"Failed to count reminders: {e}") from e

    # Archives

    def save_archive(self, owner_id: str, utterances: Sequence[Utterance]) -> ConversationArchive:
        payload = json.dumps([u.to_dict() for u in utterances], ensure_ascii=False)
        created_at = _now_utc_iso()
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(
                    "INSERT INTO archives (owner_id, created_at, message_count, payload) VALUES (?, ?, ?, ?)",
                    (owner_id, created_at, len(utterances), payload),
                )
                archive_id = int(cursor.lastrowid)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to save archive: {e}") from e
        logger.info(f"Archived {len(utterances)} messages as archive {archive_id}")
        return ConversationArchive(archive_id, owner_id, created_at, len(utterances), payload)

    def list_archives(self, owner_id: Optional[str] = None) -> list[ConversationArchive]:
        sql = "SELECT * FROM archives"
        params: tuple = ()
        if owner_id is not None:
            sql += " WHERE owner_id = ?"
            params = (owner_id,)
        sql += " ORDER BY id DESC"
        try:
            with self._lock:
                rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list archives: {e}") from e
        return [
            ConversationArchive(
                id=int(row["id"]),
                owner_id=row["owner_id"],
                created_at=row["created_at"],
                message_count=int(row["message_count"]),
                payload=row["payload"],
            )
            for row in rows
        ]

    def close(self) -> None:
        with self._lock:
            self._subscribers.clear()
            self._conn.close()

    @staticmethod
    def _row_to_utterance(row: sqlite3.Row) -> Utterance:
        return Utterance(
            id=int(row["id"]),
            user_id=row["user_id"],
            text=row["text"],
            token_index=row["token_index"],
            created_at=row["created_at"],
        )
