"""Reminder scheduling and delivery for QVoiceTxt."""

from __future__ import annotations

import logging
import re
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from qvoice_gateway.errors import ValidationError
from storage.message_store import MessageStore, ReminderRecord

logger = logging.getLogger(__name__)

REMINDME_USAGE = '/remindme <N><m|h> "<message>"  (e.g. /remindme 10m "stretch")'
REMINDER_PREFIX = "⏰ Reminder: "
DEFAULT_INTERVAL_SECONDS = 12.0
DEFAULT_BATCH_SIZE = 10

_REMINDME_PATTERN = re.compile(r"^(\d+)\s*([mh])\s+(.+)$", re.IGNORECASE | re.DOTALL)
_UNIT_MS = {"m": 60_000, "h": 3_600_000}


def _now_ms() -> int:
    return int(time.time() * 1000)


def parse_remindme_args(args: str) -> tuple[int, str]:
    """Parse ``<N><m|h> "<message>"`` into ``(delay_ms, message)``.

    Quotes around the message are optional (single or double).

    Raises:
        ValidationError: If the arguments do not match the expected format.
    """
    normalized = (args or "").strip()
    match = _REMINDME_PATTERN.match(normalized)
    if not match:
        raise ValidationError("Could not understand that reminder.", usage=REMINDME_USAGE)

    amount = int(match.group(1))
    unit = match.group(2).lower()
    message = match.group(3).strip()
    if len(message) >= 2 and message[0] == message[-1] and message[0] in ('"', "'"):
        message = message[1:-1].strip()

    if amount <= 0:
        raise ValidationError("Reminder delay must be greater than zero.", usage=REMINDME_USAGE)
    if not message:
        raise ValidationError("Reminder message cannot be empty.", usage=REMINDME_USAGE)

    return amount * _UNIT_MS[unit], message


def format_due_local(due_at_ms: int) -> str:
    return datetime.fromtimestamp(due_at_ms / 1000).strftime("%Y-%m-%d %H:%M")


class ReminderScheduler(threading.Thread):
    """Background poller that delivers due reminders as bot utterances.

    Each record moves Scheduled -> Delivered -> Purged. An in-memory set of
    fired ids makes delivery at-most-once within this process; it is not
    persisted, so a restart between delivery and delete can redeliver, and two
    processes polling the same store can both deliver.
    """

    def __init__(
        self,
        store: MessageStore,
        sender_id: str,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        now_fn: Optional[Callable[[], int]] = None,
    ):
        super().__init__(daemon=True, name="reminder-scheduler")
        self.store = store
        self.sender_id = sender_id
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.now_fn = now_fn or _now_ms
        self.last_error: Optional[str] = None
        self.ticks = 0
        self._fired_ids: set[int] = set()
        self._in_flight: set[int] = set()
        self._fired_lock = threading.Lock()
        self._stop_event = threading.Event()

    def schedule(self, delay_ms: int, message: str) -> ReminderRecord:
        """Persist a reminder due ``delay_ms`` from now."""
        due_at_ms = self.now_fn() + int(delay_ms)
        record = self.store.add_reminder(due_at_ms, message)
        logger.info(f"Scheduled reminder {record.id} due at {format_due_local(due_at_ms)}")
        return record

    def run(self) -> None:
        logger.info(f"Reminder scheduler started (interval={self.interval_seconds}s, batch={self.batch_size})")
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(self.interval_seconds)
        logger.info("Reminder scheduler stopped")

    def tick(self) -> int:
        """Run one poll, logging failures instead of raising."""
        self.ticks += 1
        try:
            delivered = self.run_once()
            self.last_error = None
            return delivered
        except Exception as exc:
            self.last_error = str(exc)
            logger.error(f"Reminder poll failed, will retry next tick: {exc}", exc_info=True)
            return 0

    def run_once(self) -> int:
        """Deliver up to ``batch_size`` due reminders. Returns the number delivered."""
        now_ms = self.now_fn()
        due = self.store.due_reminders(now_ms, limit=self.batch_size)
        delivered = 0
        for record in due:
            if not self._claim(record.id):
                if self.has_fired(record.id):
                    # Already delivered by this process; only the delete is outstanding
                    self.store.delete_reminder(record.id)
                continue
            try:
                self.store.append(user_id=self.sender_id, text=f"{REMINDER_PREFIX}{record.message}")
            except Exception:
                self._release(record.id)
                raise
            self._mark_fired(record.id)
            self.store.delete_reminder(record.id)
            delivered += 1
            logger.info(f"Delivered reminder {record.id}")
        return delivered

    def _claim(self, reminder_id: int) -> bool:
        """Reserve a reminder for delivery unless it is fired or being delivered."""
        with self._fired_lock:
            if reminder_id in self._fired_ids or reminder_id in self._in_flight:
                return False
            self._in_flight.add(reminder_id)
            return True

    def _mark_fired(self, reminder_id: int) -> None:
        with self._fired_lock:
            self._in_flight.discard(reminder_id)
            self._fired_ids.add(reminder_id)

    def _release(self, reminder_id: int) -> None:
        with self._fired_lock:
            self._in_flight.discard(reminder_id)

    def has_fired(self, reminder_id: int) -> bool:
        with self._fired_lock:
            return reminder_id in self._fired_ids

    def stop(self) -> None:
        self._stop_event.set()

    def stats(self) -> dict:
        return {
            "running": self.is_alive(),
            "ticks": self.ticks,
            "fired": len(self._fired_ids),
            "last_error": self.last_error,
        }
