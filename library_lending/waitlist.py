"""
waitlist.py

FIFO queues of pending requests, one per item.

Entries are kept in arrival order in a single immutable tuple that is replaced
under a lock on every change, so snapshot() never sees a half-applied update.
A contact may be queued several times for the same item; each entry is served
on its own.
"""

from __future__ import annotations
import datetime
import logging
import threading
from typing import Iterable, Optional, Tuple

from .exceptions import ValidationError
from .models import WaitlistEntry

logger = logging.getLogger("LibraryLending.waitlist")


class Waitlist:
    def __init__(self, entries: Optional[Iterable[WaitlistEntry]] = None) -> None:
        self._entries: Tuple[WaitlistEntry, ...] = tuple(entries or ())
        self._lock = threading.Lock()

    def enqueue(self, item_id: str, contact: str, requested_at: datetime.date) -> WaitlistEntry:
        entry = WaitlistEntry(item_id=str(item_id), contact=contact, requested_at=requested_at)
        with self._lock:
            self._entries = self._entries + (entry,)
        logger.info("Queued %s for item %s", contact, item_id)
        return entry

    def dequeue_next(self, item_id: str) -> Optional[WaitlistEntry]:
        """Remove and return the oldest entry for `item_id`, or None."""
        if not item_id:
            raise ValidationError("Item ID cannot be empty.")
        item_id = str(item_id)
        with self._lock:
            for idx, entry in enumerate(self._entries):
                if entry.item_id == item_id:
                    self._entries = self._entries[:idx] + self._entries[idx + 1:]
                    return entry
        return None

    def cancel(self, item_id: str, contact: str) -> bool:
        """Drop the oldest entry of `contact` for `item_id`. Returns False if none was queued."""
        item_id = str(item_id)
        contact = (contact or "").strip().lower()
        with self._lock:
            for idx, entry in enumerate(self._entries):
                if entry.item_id == item_id and entry.contact.strip().lower() == contact:
                    self._entries = self._entries[:idx] + self._entries[idx + 1:]
                    break
            else:
                return False
        logger.info("Cancelled waitlist entry of %s for item %s", contact, item_id)
        return True

    def entries_for(self, item_id: str) -> Tuple[WaitlistEntry, ...]:
        item_id = str(item_id)
        return tuple(e for e in self._entries if e.item_id == item_id)

    def snapshot(self) -> Tuple[WaitlistEntry, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)
