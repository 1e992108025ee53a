"""
borrow_manager.py

The borrow/return service: eligibility rules, loan records, overdue fines,
payments and the waitlist, kept consistent under concurrent callers.

Locking:
- a lock per item id around "check availability, then flip it" and around
  returns, so two borrowers can never both get the same item;
- a lock per member id around payment distribution;
- loan records live in an immutable tuple that is replaced under a lock on
  append, so readers always get a complete snapshot;
- saves take the latest snapshot under a save lock, so a slow writer cannot
  overwrite newer state with an older list.
"""

from __future__ import annotations
import datetime
import logging
import threading
import weakref
from decimal import Decimal
from typing import Callable, List, Mapping, Optional, Tuple

from .config import NOTIFICATIONS_ENABLED
from .exceptions import (
    EligibilityError,
    NotInitializedError,
    ReconciliationError,
    ValidationError,
)
from .fine_policy import ZERO, Amount, FinePolicy, for_category, to_decimal
from .loan_record import LoanRecord
from .models import Item, MaterialCategory, Member, MemberDirectory, WaitlistEntry
from .notifications import LoggingNotifier, Notifier, availability_message
from .waitlist import Waitlist

logger = logging.getLogger("LibraryLending.borrow")


class BorrowManager:
    """
    BorrowManager owns loan records and the waitlist and exposes the borrow,
    return, pay-fine and query operations.

    Build one explicitly and pass it around, or use init()/get_instance() when a
    single process-wide instance is wanted. Every public operation sweeps
    overdue fines first so eligibility is never judged on stale balances.
    """

    _instance: Optional["BorrowManager"] = None
    _instance_lock = threading.Lock()

    def __init__(self,
                 loan_store,
                 waitlist_store,
                 directory: MemberDirectory,
                 notifier: Optional[Notifier] = None,
                 clock: Callable[[], datetime.date] = datetime.date.today,
                 fine_policies: Optional[Mapping[MaterialCategory, FinePolicy]] = None,
                 notifications_enabled: bool = NOTIFICATIONS_ENABLED,
                 member_store=None):
        """
        Initialize the BorrowManager.

        Args:
            loan_store: object with load_all()/save_all() for LoanRecords.
            waitlist_store: object with load_all()/save_all() for WaitlistEntries.
            directory: resolves waitlist contacts back to members.
            notifier: receives availability notices (defaults to the log).
            clock: returns "today"; injected so tests can pin dates.
            fine_policies: per-category overrides of the built-in presets.
            notifications_enabled: when False, returns never notify waiters.
            member_store: optional object with save_all() for Members; when set,
                balances are saved with every loan record save.
        """
        if loan_store is None or waitlist_store is None:
            raise ValidationError("Loan record store and waitlist store are required.")
        if directory is None:
            raise ValidationError("Member directory is required.")
        self._loan_store = loan_store
        self._waitlist_store = waitlist_store
        self._member_store = member_store
        self._directory = directory
        self._notifier = notifier if notifier is not None else LoggingNotifier()
        self._clock = clock
        self._fine_policies = dict(fine_policies or {})
        self.notifications_enabled = bool(notifications_enabled)

        self._records: Tuple[LoanRecord, ...] = tuple(loan_store.load_all())
        self._waitlist = Waitlist(waitlist_store.load_all())
        self._records_lock = threading.Lock()
        self._save_lock = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], threading.Lock]" = \
            weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()
        self._reconcile_availability()
        logger.info("BorrowManager ready: %d borrow records, %d waitlist entries",
                    len(self._records), len(self._waitlist))

    # ---------------- Process-wide instance ----------------
    @classmethod
    def init(cls, *args, **kwargs) -> "BorrowManager":
        """Create the shared instance once; later calls return it and ignore their arguments."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls(*args, **kwargs)
            else:
                logger.debug("BorrowManager already initialized; ignoring init arguments")
            return cls._instance

    @classmethod
    def get_instance(cls) -> "BorrowManager":
        instance = cls._instance
        if instance is None:
            raise NotInitializedError("BorrowManager not initialized.")
        return instance

    @classmethod
    def reset_instance(cls) -> None:
        """Forget the shared instance (shutdown, or between test runs)."""
        with cls._instance_lock:
            cls._instance = None

    # -------------- Internal helpers ----------------
    def _today(self) -> datetime.date:
        return self._clock()

    def _lock_for(self, kind: str, key: str) -> threading.Lock:
        """Lock for one item or member id; dropped once no caller holds a reference."""
        with self._locks_guard:
            return self._locks.setdefault((kind, key), threading.Lock())

    def _reconcile_availability(self) -> None:
        """Mark items held by loaded active records as issued, whatever the catalog said."""
        for record in self._records:
            if not record.is_returned() and record.item.borrow():
                logger.debug("Item %s marked issued from active record %s", record.item_id, record.record_id)

    def _append_record(self, record: LoanRecord) -> None:
        with self._records_lock:
            self._records = self._records + (record,)

    def _save_records(self) -> None:
        with self._save_lock:
            self._loan_store.save_all(list(self._records))
            if self._member_store is not None:
                self._member_store.save_all(self._directory.list_all())

    def _save_waitlist(self) -> None:
        with self._save_lock:
            self._waitlist_store.save_all(list(self._waitlist.snapshot()))

    def _policy_for(self, item: Item) -> FinePolicy:
        return for_category(item.category, self._fine_policies)

    def _find_active_record(self, member: Member, item: Item) -> Optional[LoanRecord]:
        return next(
            (r for r in self._records
             if r.item_id == item.item_id and r.member_id == member.member_id and not r.is_returned()),
            None,
        )

    def _notify_next_waiter(self, entry: WaitlistEntry, item: Item) -> None:
        if not self.notifications_enabled:
            logger.info("Notifications disabled; not notifying %s about %s", entry.contact, item.item_id)
            return
        target = self._directory.find_by_contact(entry.contact)
        if target is None:
            logger.warning("Waitlist contact %s for item %s is not a known member; entry dropped",
                           entry.contact, item.item_id)
            return
        subject, body = availability_message(item.title)
        try:
            self._notifier.notify(target, subject, body)
        except Exception:
            logger.exception("Failed to notify %s that %s is available", target.email, item.item_id)
            return
        logger.info("Notified %s that '%s' is available", target.email, item.title)

    # ---------------- Core operations ----------------
    def borrow_item(self, member: Member, item: Item) -> bool:
        """
        Lend `item` to `member`.

        Returns True when a loan record was created, False when the item was out
        and the member was put on its waitlist instead.
        Raises EligibilityError when the member has unpaid fines or overdue
        items, or when a concurrent borrower took the item first.
        """
        if member is None or item is None:
            raise ValidationError("Member and item cannot be missing.")
        today = self._today()
        self.apply_overdue_fines(today)

        if member.has_outstanding_fine():
            logger.info("Refused borrow of %s by %s: unpaid fines %s",
                        item.item_id, member.member_id, member.fine_balance)
            raise EligibilityError("Cannot borrow: unpaid fines exist.")
        if any(r.is_overdue(today) for r in self.get_borrow_records_for_user(member)):
            logger.info("Refused borrow of %s by %s: overdue items", item.item_id, member.member_id)
            raise EligibilityError("Cannot borrow: overdue items exist.")

        with self._lock_for("item", item.item_id):
            if not item.is_available():
                self._waitlist.enqueue(item.item_id, member.email, today)
                self._save_waitlist()
                logger.info("Item %s unavailable; %s added to waitlist", item.item_id, member.email)
                return False
            if not item.borrow():
                logger.info("Borrow of %s by %s lost to a concurrent borrower", item.item_id, member.member_id)
                raise EligibilityError(f"Failed to borrow item '{item.title}': already issued.")
            record = LoanRecord(member, item, self._policy_for(item), today)
            self._append_record(record)
            self._save_records()

        logger.info("Borrowed %s to %s until %s", item.item_id, member.member_id, record.due_date.isoformat())
        return True

    def return_item(self, member: Member, item: Item) -> LoanRecord:
        """
        Close the member's active loan of `item` and tell the next waiter.

        Returns the closed record. Raises EligibilityError when the member has
        no active loan of the item. Notification problems are logged only.
        """
        if member is None or item is None:
            raise ValidationError("Member and item cannot be missing.")
        today = self._today()
        self.apply_overdue_fines(today)

        with self._lock_for("item", item.item_id):
            record = self._find_active_record(member, item)
            if record is None:
                logger.info("Refused return of %s by %s: no active loan", item.item_id, member.member_id)
                raise EligibilityError(f"No active borrowing of {item.item_id} by {member.member_id}.")
            record.mark_returned(today)
            self._save_records()
            entry = self._waitlist.dequeue_next(item.item_id)
            if entry is not None:
                self._save_waitlist()

        logger.info("Item %s returned by %s (fine %s)", item.item_id, member.member_id, record.fine)
        if entry is not None:
            self._notify_next_waiter(entry, item)
        return record

    def apply_overdue_fines(self, as_of: datetime.date) -> Decimal:
        """
        Charge every overdue active record's fine to its member (once per record).

        Returns the total charged by this sweep.
        """
        if as_of is None:
            raise ValidationError("Date cannot be missing.")
        charged = ZERO
        for record in self._records:
            if record.is_overdue(as_of):
                charged += record.apply_fine_to_user(as_of)
        if charged > ZERO:
            self._save_records()
        return charged

    def pay_fine_for_user(self, member: Member, amount: Amount, as_of: datetime.date) -> None:
        """
        Pay `amount` towards the member's fines.

        The payment is spread over the member's records with an unpaid fine,
        oldest borrow date first, and then taken off the member's balance.
        Nothing changes if the amount is not positive, exceeds what is still
        owed on the records, or exceeds the member's balance.
        """
        if member is None or as_of is None:
            raise ValidationError("Member and date cannot be missing.")
        value = to_decimal(amount, "payment amount")
        if value <= ZERO:
            raise ValidationError("Payment amount must be positive.")
        self.apply_overdue_fines(as_of)

        with self._lock_for("member", member.member_id):
            records = sorted(self.get_borrow_records_for_user(member), key=lambda r: r.borrow_date)
            for r in records:
                r.calculate_fine(as_of)
            payable = [r for r in records if r.get_remaining_fine() > ZERO]
            total_remaining = sum((r.get_remaining_fine() for r in payable), ZERO)
            if value > total_remaining:
                raise ValidationError(f"Payment {value} exceeds remaining fines {total_remaining}.")
            if value > member.fine_balance:
                raise ReconciliationError(
                    f"Payment {value} does not reconcile with balance {member.fine_balance} of {member.member_id}."
                )

            plan: List[Tuple[LoanRecord, Decimal]] = []
            left = value
            for r in payable:
                if left <= ZERO:
                    break
                share = min(left, r.get_remaining_fine())
                plan.append((r, r.fine_paid + share))
                left -= share
            distributed = value - left
            if distributed != value:
                raise ReconciliationError(f"Distributed {distributed} of payment {value}.")

            for r, new_paid in plan:
                r.set_fine_paid(new_paid)
            member.pay_fine(distributed)

        self._save_records()
        logger.info("Payment %s by %s spread over %d record(s); balance now %s",
                    distributed, member.member_id, len(plan), member.fine_balance)

    def cancel_waitlist(self, member: Member, item: Item) -> bool:
        """Withdraw the member's oldest waitlist request for `item`."""
        if member is None or item is None:
            raise ValidationError("Member and item cannot be missing.")
        with self._lock_for("item", item.item_id):
            removed = self._waitlist.cancel(item.item_id, member.email)
            if removed:
                self._save_waitlist()
        return removed

    # ---------------- Reports / Queries ----------------
    def calculate_total_fines(self, member: Member, as_of: datetime.date) -> Decimal:
        """Sum of fines over all the member's records, returned ones included."""
        if member is None or as_of is None:
            raise ValidationError("Member and date cannot be missing.")
        self.apply_overdue_fines(as_of)
        return sum((r.get_fine(as_of) for r in self.get_borrow_records_for_user(member)), ZERO)

    def get_overdue_items(self, as_of: datetime.date) -> List[LoanRecord]:
        self.apply_overdue_fines(as_of)
        return [r for r in self._records if r.is_overdue(as_of)]

    def get_borrow_records_for_user(self, member: Member) -> List[LoanRecord]:
        if member is None:
            raise ValidationError("Member cannot be missing.")
        return [r for r in self._records if r.member_id == member.member_id]

    def get_all_borrow_records(self) -> List[LoanRecord]:
        return list(self._records)

    def get_waitlist(self) -> List[WaitlistEntry]:
        return list(self._waitlist.snapshot())

    def get_waitlist_for_item(self, item: Item) -> List[WaitlistEntry]:
        if item is None:
            raise ValidationError("Item cannot be missing.")
        return list(self._waitlist.entries_for(item.item_id))
