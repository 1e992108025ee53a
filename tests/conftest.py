import datetime
import pathlib
import sys

import pytest

# Add project root to sys.path so imports from repo root work without installing
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

from library_lending import (  # noqa: E402
    BorrowManager,
    InMemoryLoanRecordStore,
    InMemoryWaitlistStore,
    Item,
    MaterialCategory,
    Member,
    MemberDirectory,
    RecordingNotifier,
)

DAY0 = datetime.date(2025, 1, 1)


def day(n: int) -> datetime.date:
    return DAY0 + datetime.timedelta(days=n)


class FixedClock:
    def __init__(self, today: datetime.date = DAY0) -> None:
        self.today = today

    def __call__(self) -> datetime.date:
        return self.today

    def advance(self, days: int) -> None:
        self.today = self.today + datetime.timedelta(days=days)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def alice():
    return Member("M001", "Alice Reader", "alice@example.com")


@pytest.fixture
def bob():
    return Member("M002", "Bob Waiting", "Bob@Example.com")


@pytest.fixture
def book():
    return Item("B001", "Dune", MaterialCategory.BOOK)


@pytest.fixture
def cd():
    return Item("C001", "Kind of Blue", MaterialCategory.CD)


@pytest.fixture
def directory(alice, bob):
    return MemberDirectory([alice, bob])


@pytest.fixture
def loan_store():
    return InMemoryLoanRecordStore()


@pytest.fixture
def waitlist_store():
    return InMemoryWaitlistStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def manager(loan_store, waitlist_store, directory, notifier, clock):
    return BorrowManager(loan_store, waitlist_store, directory, notifier=notifier, clock=clock)


@pytest.fixture(autouse=True)
def _reset_shared_manager():
    yield
    BorrowManager.reset_instance()
