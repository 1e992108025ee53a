"""
loan_record.py

One borrowing event: who borrowed what, when it is due, and the fine
bookkeeping attached to it.

A record starts ACTIVE and ends RETURNED. While active the fine follows the
attached FinePolicy; once returned it stays at the value computed on the return
date. The member's balance is charged from a record at most once.
"""

from __future__ import annotations
import datetime
import logging
import threading
import uuid
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from .exceptions import ValidationError
from .fine_policy import ZERO, Amount, FinePolicy, to_decimal
from .models import Item, MaterialCategory, Member

logger = logging.getLogger("LibraryLending.records")

ROW_COLUMNS = [
    "record_id", "member_id", "item_id", "category", "rate_per_day", "period_days",
    "borrow_date", "due_date", "status", "fine", "fine_applied", "fine_paid", "returned_on",
]


class LoanStatus(Enum):
    ACTIVE = "ACTIVE"
    RETURNED = "RETURNED"


def _require_date(value, what: str = "date") -> datetime.date:
    if value is None:
        raise ValidationError(f"{what} cannot be missing.")
    if isinstance(value, datetime.datetime):
        return value.date()
    if not isinstance(value, datetime.date):
        raise ValidationError(f"{what} must be a date, got {value!r}.")
    return value


class LoanRecord:
    """
    State holder for a single loan.

    Member and item are kept as references for the operations that touch them
    (charging the fine, freeing the item) but the record is identified and
    persisted by their ids only.
    """

    def __init__(self, member: Member, item: Item, policy: FinePolicy,
                 borrow_date: datetime.date, record_id: Optional[str] = None):
        if member is None or item is None or policy is None or borrow_date is None:
            raise ValidationError("LoanRecord: member, item, policy and borrow date are required.")
        self.record_id = record_id or uuid.uuid4().hex
        self._member = member
        self._item = item
        self._policy = policy
        self._category = item.category
        self._borrow_date = _require_date(borrow_date, "borrow date")
        self._due_date = self._borrow_date + datetime.timedelta(days=policy.get_allowed_period_days())
        self._status = LoanStatus.ACTIVE
        self._fine = ZERO
        self._fine_applied = False
        self._fine_paid = ZERO
        self._returned_on: Optional[datetime.date] = None
        # re-entrant: mark_returned -> apply_fine_to_user -> calculate_fine
        self._lock = threading.RLock()

    # ---------------- Accessors ----------------
    @property
    def member(self) -> Member:
        return self._member

    @property
    def item(self) -> Item:
        return self._item

    @property
    def member_id(self) -> str:
        return self._member.member_id

    @property
    def item_id(self) -> str:
        return self._item.item_id

    @property
    def policy(self) -> FinePolicy:
        return self._policy

    @property
    def category(self) -> MaterialCategory:
        return self._category

    @property
    def borrow_date(self) -> datetime.date:
        return self._borrow_date

    @property
    def due_date(self) -> datetime.date:
        return self._due_date

    @property
    def status(self) -> LoanStatus:
        return self._status

    @property
    def returned_on(self) -> Optional[datetime.date]:
        return self._returned_on

    @property
    def fine(self) -> Decimal:
        """Fine as of the last calculate_fine() call."""
        return self._fine

    @property
    def fine_paid(self) -> Decimal:
        return self._fine_paid

    def is_returned(self) -> bool:
        return self._status is LoanStatus.RETURNED

    def is_fine_applied(self) -> bool:
        return self._fine_applied

    # ---------------- Fine bookkeeping ----------------
    def calculate_fine(self, as_of: datetime.date) -> None:
        """Recompute the fine for `as_of`. Balances are not touched."""
        as_of = _require_date(as_of, "current date")
        with self._lock:
            if self.is_returned():
                return
            if as_of > self._due_date:
                days_overdue = (as_of - self._due_date).days
                self._fine = self._policy.calculate_fine(days_overdue)
            else:
                self._fine = ZERO

    def get_fine(self, as_of: datetime.date) -> Decimal:
        with self._lock:
            self.calculate_fine(as_of)
            return self._fine

    def get_remaining_fine(self) -> Decimal:
        remaining = self._fine - self._fine_paid
        return remaining if remaining > ZERO else ZERO

    def apply_fine_to_user(self, as_of: datetime.date) -> Decimal:
        """
        Charge the current fine to the member, once.

        Returns the amount charged by this call (zero when nothing was charged).
        """
        with self._lock:
            self.calculate_fine(as_of)
            if self._fine_applied or self._fine <= ZERO:
                return ZERO
            self._member.add_fine(self._fine)
            self._fine_applied = True
            charged = self._fine
        logger.info("Fine %s applied to %s for item %s (record %s)",
                    charged, self.member_id, self.item_id, self.record_id)
        return charged

    def set_fine_paid(self, amount: Amount) -> None:
        """Record how much of this record's fine has been paid in total."""
        value = to_decimal(amount, "paid amount")
        with self._lock:
            if value < ZERO:
                raise ValidationError("Paid amount cannot be negative.")
            if value > self._fine:
                raise ValidationError(f"Paid amount {value} cannot exceed total fine {self._fine}.")
            self._fine_paid = value

    # ---------------- State transitions ----------------
    def mark_returned(self, as_of: datetime.date) -> None:
        """
        Capture the final fine, free the item and close the record.

        A repeat call on a returned record changes nothing; the item may be on
        a newer loan by then.
        """
        as_of = _require_date(as_of, "return date")
        with self._lock:
            if self.is_returned():
                return
            self.apply_fine_to_user(as_of)
            self._item.return_item()
            self._status = LoanStatus.RETURNED
            self._returned_on = as_of
        logger.info("Record %s closed: %s returned %s on %s",
                    self.record_id, self.member_id, self.item_id, as_of.isoformat())

    def is_overdue(self, as_of: datetime.date) -> bool:
        as_of = _require_date(as_of, "current date")
        return not self.is_returned() and as_of > self._due_date

    # ---------------- Persistence ----------------
    def to_row(self) -> Dict[str, str]:
        """Flat representation used by the CSV store."""
        with self._lock:
            return {
                "record_id": self.record_id,
                "member_id": self.member_id,
                "item_id": self.item_id,
                "category": self._category.name,
                "rate_per_day": str(self._policy.rate_per_day),
                "period_days": str(self._policy.period_days),
                "borrow_date": self._borrow_date.isoformat(),
                "due_date": self._due_date.isoformat(),
                "status": self._status.value,
                "fine": str(self._fine),
                "fine_applied": "true" if self._fine_applied else "false",
                "fine_paid": str(self._fine_paid),
                "returned_on": self._returned_on.isoformat() if self._returned_on else "",
            }

    @classmethod
    def from_row(cls, row: Dict[str, str], member: Member, item: Item) -> "LoanRecord":
        """Rebuild a record saved with to_row(), bound to the resolved member and item."""
        try:
            policy = FinePolicy(row["rate_per_day"], int(row["period_days"]))
            borrow_date = datetime.date.fromisoformat(str(row["borrow_date"]))
            status = LoanStatus(str(row["status"]).strip().upper())
            returned_raw = str(row.get("returned_on", "") or "").strip()
            returned_on = datetime.date.fromisoformat(returned_raw) if returned_raw else None
        except (KeyError, ValueError) as exc:
            raise ValidationError(f"Malformed loan record row: {exc}") from exc
        record = cls(member, item, policy, borrow_date, record_id=str(row["record_id"]))
        record._status = status
        record._fine = to_decimal(row.get("fine") or "0", "fine")
        record._fine_applied = str(row.get("fine_applied", "")).strip().lower() in ("true", "1", "yes")
        record._fine_paid = to_decimal(row.get("fine_paid") or "0", "fine_paid")
        record._returned_on = returned_on
        return record

    def __repr__(self) -> str:
        return (f"LoanRecord({self.record_id[:8]}, member={self.member_id}, item={self.item_id}, "
                f"borrowed={self._borrow_date}, due={self._due_date}, {self._status.value}, fine={self._fine})")
