"""
models.py

Members, items and waitlist entries as seen by the lending engine.

Catalog search, credentials and presentation live elsewhere; these classes only
carry what borrowing needs: identity, fine balance and availability.
"""

from __future__ import annotations
import datetime
import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .exceptions import ValidationError
from .fine_policy import ZERO, Amount, FinePolicy, for_category, to_decimal

logger = logging.getLogger("LibraryLending.models")


class MaterialCategory(Enum):
    BOOK = "BOOK"
    CD = "CD"
    JOURNAL = "JOURNAL"

    def default_policy(self) -> FinePolicy:
        return for_category(self)

    @classmethod
    def parse(cls, value) -> "MaterialCategory":
        """Accept a MaterialCategory or its (case-insensitive) name."""
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValidationError(f"Unknown material category: {value!r}") from None


class Member:
    """
    A library member and their aggregate fine balance.

    The balance is only changed through add_fine/pay_fine, which are serialized
    by a per-member lock.
    """

    def __init__(self, member_id: str, name: str, email: str, fine_balance: Amount = ZERO):
        if not member_id:
            raise ValidationError("Member ID cannot be empty.")
        if not email or "@" not in email:
            raise ValidationError(f"Invalid email for member {member_id}: {email!r}")
        balance = to_decimal(fine_balance, "fine_balance")
        if balance < ZERO:
            raise ValidationError("Fine balance cannot be negative.")
        self.member_id = str(member_id)
        self.name = name
        self.email = email.strip().lower()
        self._fine_balance = balance
        self._lock = threading.Lock()

    @property
    def fine_balance(self) -> Decimal:
        return self._fine_balance

    def get_fine_balance(self) -> Decimal:
        return self._fine_balance

    def add_fine(self, amount: Amount) -> None:
        value = to_decimal(amount)
        if value < ZERO:
            raise ValidationError("Fine amount cannot be negative.")
        with self._lock:
            self._fine_balance += value

    def pay_fine(self, amount: Amount) -> None:
        value = to_decimal(amount)
        if value < ZERO:
            raise ValidationError("Payment amount cannot be negative.")
        with self._lock:
            if value > self._fine_balance:
                raise ValidationError(
                    f"Payment {value} exceeds current fine balance {self._fine_balance}."
                )
            self._fine_balance -= value

    def has_outstanding_fine(self) -> bool:
        return self._fine_balance > ZERO

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Member) and other.member_id == self.member_id

    def __hash__(self) -> int:
        return hash(self.member_id)

    def __repr__(self) -> str:
        return f"Member({self.member_id!r}, {self.email!r}, balance={self._fine_balance})"


class Item:
    """A physical item that can be lent out. Availability flips are atomic."""

    def __init__(self, item_id: str, title: str, category, available: bool = True):
        if not item_id:
            raise ValidationError("Item ID cannot be empty.")
        if not title:
            raise ValidationError(f"Item {item_id} needs a title.")
        self.item_id = str(item_id)
        self.title = title
        self.category = MaterialCategory.parse(category)
        self._available = bool(available)
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        with self._lock:
            return self._available

    def borrow(self) -> bool:
        """Mark the item as lent out. Returns False if it already was."""
        with self._lock:
            if not self._available:
                return False
            self._available = False
            return True

    def return_item(self) -> bool:
        """Mark the item as back on the shelf. Returns False if it already was."""
        with self._lock:
            if self._available:
                return False
            self._available = True
            return True

    def get_material_category(self) -> MaterialCategory:
        return self.category

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Item) and other.item_id == self.item_id

    def __hash__(self) -> int:
        return hash(self.item_id)

    def __repr__(self) -> str:
        state = "Available" if self._available else "Issued"
        return f"Item({self.item_id!r}, {self.title!r}, {self.category.name}, {state})"


@dataclass(frozen=True)
class WaitlistEntry:
    """A request to be told when `item_id` is back."""
    item_id: str
    contact: str
    requested_at: datetime.date

    def __post_init__(self):
        if not self.item_id:
            raise ValidationError("Waitlist entry needs an item ID.")
        if not self.contact:
            raise ValidationError("Waitlist entry needs a contact.")
        if self.requested_at is None:
            raise ValidationError("Waitlist entry needs a request date.")


class MemberDirectory:
    """In-memory member registry; resolves waitlist contacts back to members."""

    def __init__(self, members: Optional[Iterable[Member]] = None) -> None:
        self._members: Dict[str, Member] = {}
        self._lock = threading.Lock()
        for m in members or []:
            self.add(m)

    def add(self, member: Member) -> None:
        with self._lock:
            if member.member_id in self._members:
                logger.debug("Replacing existing member %s", member.member_id)
            self._members[member.member_id] = member

    def get(self, member_id: str) -> Optional[Member]:
        return self._members.get(str(member_id))

    def find_by_contact(self, contact: str) -> Optional[Member]:
        c = (contact or "").strip().lower()
        if not c:
            return None
        return next((m for m in list(self._members.values()) if m.email == c), None)

    def list_all(self) -> List[Member]:
        return list(self._members.values())
