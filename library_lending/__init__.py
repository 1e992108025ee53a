"""
Library lending engine.

Loan records, per-category fine policies, the waitlist and the BorrowManager
that ties them together.
"""

from .exceptions import (
    LendingError,
    ValidationError,
    EligibilityError,
    ReconciliationError,
    NotInitializedError,
    StoreError,
)
from .fine_policy import FinePolicy, for_category
from .models import MaterialCategory, Member, Item, WaitlistEntry, MemberDirectory
from .loan_record import LoanRecord, LoanStatus
from .waitlist import Waitlist
from .stores import (
    InMemoryLoanRecordStore,
    InMemoryWaitlistStore,
    InMemoryMemberStore,
    CsvLoanRecordStore,
    CsvWaitlistStore,
    CsvMemberStore,
)
from .notifications import Notifier, LoggingNotifier, RecordingNotifier, availability_message
from .borrow_manager import BorrowManager

__all__ = [
    # errors
    "LendingError",
    "ValidationError",
    "EligibilityError",
    "ReconciliationError",
    "NotInitializedError",
    "StoreError",
    # domain
    "FinePolicy",
    "for_category",
    "MaterialCategory",
    "Member",
    "Item",
    "WaitlistEntry",
    "MemberDirectory",
    "LoanRecord",
    "LoanStatus",
    "Waitlist",
    # collaborators
    "InMemoryLoanRecordStore",
    "InMemoryWaitlistStore",
    "InMemoryMemberStore",
    "CsvLoanRecordStore",
    "CsvWaitlistStore",
    "CsvMemberStore",
    "Notifier",
    "LoggingNotifier",
    "RecordingNotifier",
    "availability_message",
    # service
    "BorrowManager",
]
