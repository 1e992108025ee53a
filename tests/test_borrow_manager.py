from decimal import Decimal

import pytest

from library_lending import (
    BorrowManager,
    EligibilityError,
    FinePolicy,
    InMemoryLoanRecordStore,
    InMemoryMemberStore,
    InMemoryWaitlistStore,
    Item,
    LoanRecord,
    MaterialCategory,
    Member,
    NotInitializedError,
    ReconciliationError,
    ValidationError,
    availability_message,
)
from conftest import DAY0, day


class ExplodingNotifier:
    def __init__(self):
        self.calls = 0

    def notify(self, member, subject, body):
        self.calls += 1
        raise ConnectionError("SMTP down")


# ---------------- borrow ----------------
def test_borrow_creates_record_and_issues_item(manager, alice, book, loan_store):
    assert manager.borrow_item(alice, book) is True
    assert not book.is_available()
    records = manager.get_borrow_records_for_user(alice)
    assert len(records) == 1
    assert records[0].borrow_date == DAY0
    assert records[0].due_date == day(28)
    assert loan_store.load_all() == records


def test_borrow_uses_item_category_policy(manager, alice, cd):
    manager.borrow_item(alice, cd)
    record = manager.get_borrow_records_for_user(alice)[0]
    assert record.policy == FinePolicy(20, 7)
    assert record.due_date == day(7)


def test_borrow_rejects_missing_arguments(manager, alice, book):
    with pytest.raises(ValidationError):
        manager.borrow_item(None, book)
    with pytest.raises(ValidationError):
        manager.borrow_item(alice, None)


def test_unavailable_item_puts_member_on_waitlist(manager, alice, bob, book, waitlist_store):
    manager.borrow_item(alice, book)
    assert manager.borrow_item(bob, book) is False

    waitlist = manager.get_waitlist()
    assert len(waitlist) == 1
    assert waitlist[0].item_id == book.item_id
    assert waitlist[0].contact == bob.email
    assert waitlist_store.load_all() == waitlist
    assert len(manager.get_borrow_records_for_user(bob)) == 0


def test_member_with_balance_is_refused(manager, alice, book, cd):
    alice.add_fine(Decimal("0.01"))
    with pytest.raises(EligibilityError):
        manager.borrow_item(alice, book)
    assert book.is_available()

    cd.borrow()
    with pytest.raises(EligibilityError):
        manager.borrow_item(alice, cd)
    assert manager.get_waitlist() == []


def test_sweep_before_borrow_catches_new_fines(manager, alice, cd, book, clock):
    manager.borrow_item(alice, cd)
    clock.advance(9)
    with pytest.raises(EligibilityError, match="unpaid fines"):
        manager.borrow_item(alice, book)
    assert alice.fine_balance == Decimal("40")


def test_overdue_item_blocks_borrow_even_without_fine(loan_store, waitlist_store, directory, alice, cd, book, clock):
    manager = BorrowManager(loan_store, waitlist_store, directory, clock=clock,
                            fine_policies={MaterialCategory.CD: FinePolicy(0, 7)})
    manager.borrow_item(alice, cd)
    clock.advance(8)
    with pytest.raises(EligibilityError, match="overdue"):
        manager.borrow_item(alice, book)
    assert alice.fine_balance == 0


def test_lost_race_is_reported(manager, alice, book, monkeypatch):
    monkeypatch.setattr(book, "borrow", lambda: False)
    with pytest.raises(EligibilityError):
        manager.borrow_item(alice, book)
    assert manager.get_all_borrow_records() == []


# ---------------- return ----------------
def test_return_notifies_next_waiter(manager, alice, bob, book, notifier, clock):
    manager.borrow_item(alice, book)
    manager.borrow_item(bob, book)
    clock.advance(3)

    record = manager.return_item(alice, book)

    assert record.is_returned()
    assert book.is_available()
    assert notifier.sent == [(bob.email,) + availability_message("Dune")]
    assert notifier.sent[0][1] == 'The item "Dune" is now available!'
    assert notifier.sent[0][2] == 'Good news! The item "Dune" you requested is now available for borrowing.'
    assert manager.get_waitlist() == []


def test_only_the_oldest_waiter_is_served(manager, alice, bob, book, notifier, directory):
    carol = Member("M003", "Carol", "carol@example.com")
    directory.add(carol)
    manager.borrow_item(alice, book)
    manager.borrow_item(bob, book)
    manager.borrow_item(carol, book)

    manager.return_item(alice, book)

    assert [email for email, _, _ in notifier.sent] == [bob.email]
    assert [e.contact for e in manager.get_waitlist()] == [carol.email]


def test_return_without_active_loan_is_refused(manager, alice, bob, book):
    with pytest.raises(EligibilityError):
        manager.return_item(alice, book)
    manager.borrow_item(alice, book)
    with pytest.raises(EligibilityError):
        manager.return_item(bob, book)
    manager.return_item(alice, book)
    with pytest.raises(EligibilityError):
        manager.return_item(alice, book)


def test_return_rejects_missing_arguments(manager, alice):
    with pytest.raises(ValidationError):
        manager.return_item(alice, None)


def test_unknown_waitlist_contact_is_dropped(manager, alice, book, notifier, directory):
    stranger = Member("M999", "Not Registered", "stranger@example.com")
    manager.borrow_item(alice, book)
    manager.borrow_item(stranger, book)

    manager.return_item(alice, book)

    assert notifier.sent == []
    assert manager.get_waitlist() == []


def test_notifier_failure_does_not_fail_return(loan_store, waitlist_store, directory, alice, bob, book, clock):
    exploding = ExplodingNotifier()
    manager = BorrowManager(loan_store, waitlist_store, directory, notifier=exploding, clock=clock)
    manager.borrow_item(alice, book)
    manager.borrow_item(bob, book)

    record = manager.return_item(alice, book)

    assert exploding.calls == 1
    assert record.is_returned()
    assert book.is_available()
    assert manager.get_waitlist() == []


def test_disabled_notifications_send_nothing(loan_store, waitlist_store, directory, notifier, alice, bob, book, clock):
    manager = BorrowManager(loan_store, waitlist_store, directory, notifier=notifier, clock=clock,
                            notifications_enabled=False)
    manager.borrow_item(alice, book)
    manager.borrow_item(bob, book)
    manager.return_item(alice, book)
    assert notifier.sent == []


def test_overdue_return_charges_final_fine(manager, alice, book, clock):
    manager.borrow_item(alice, book)
    clock.advance(31)
    record = manager.return_item(alice, book)
    assert record.fine == Decimal("30")
    assert alice.fine_balance == Decimal("30")


def test_stale_record_return_does_not_free_reborrowed_item(manager, alice, bob, book, directory):
    manager.borrow_item(alice, book)
    first = manager.return_item(alice, book)
    assert manager.borrow_item(bob, book) is True

    first.mark_returned(day(2))

    carol = Member("M003", "Carol", "carol@example.com")
    directory.add(carol)
    assert manager.borrow_item(carol, book) is False
    active = [r for r in manager.get_all_borrow_records() if not r.is_returned()]
    assert [r.member_id for r in active] == [bob.member_id]


def test_cancel_waitlist(manager, alice, bob, book):
    manager.borrow_item(alice, book)
    manager.borrow_item(bob, book)
    assert manager.cancel_waitlist(bob, book)
    assert manager.get_waitlist_for_item(book) == []
    assert not manager.cancel_waitlist(bob, book)


# ---------------- fines ----------------
def test_repeated_sweeps_charge_once(manager, alice, book):
    manager.borrow_item(alice, book)
    assert manager.apply_overdue_fines(day(30)) == Decimal("20")
    assert manager.apply_overdue_fines(day(30)) == 0
    assert manager.apply_overdue_fines(day(40)) == 0
    assert alice.fine_balance == Decimal("20")


def test_get_overdue_items(manager, alice, bob, book, cd):
    manager.borrow_item(alice, book)
    manager.borrow_item(bob, cd)
    overdue = manager.get_overdue_items(day(10))
    assert [r.item_id for r in overdue] == [cd.item_id]
    assert bob.fine_balance == Decimal("60")


def test_total_fines_include_returned_records(manager, alice, book, cd, clock):
    manager.borrow_item(alice, book)
    manager.borrow_item(alice, cd)
    clock.advance(9)
    manager.return_item(alice, cd)
    assert manager.calculate_total_fines(alice, day(30)) == Decimal("40") + Decimal("20")


def test_total_fines_charge_overdue_balance(manager, alice, book):
    manager.borrow_item(alice, book)
    assert alice.fine_balance == 0
    assert manager.calculate_total_fines(alice, day(30)) == Decimal("20")
    assert alice.fine_balance == Decimal("20")
    assert manager.get_borrow_records_for_user(alice)[0].is_fine_applied()


def test_payment_is_spread_oldest_first(manager, alice, book, cd, clock):
    manager.borrow_item(alice, book)
    clock.advance(1)
    manager.borrow_item(alice, cd)
    manager.apply_overdue_fines(day(30))
    book_record, cd_record = sorted(manager.get_borrow_records_for_user(alice), key=lambda r: r.borrow_date)
    assert alice.fine_balance == Decimal("460")

    manager.pay_fine_for_user(alice, 30, day(30))

    assert book_record.fine_paid == Decimal("20")
    assert cd_record.fine_paid == Decimal("10")
    assert alice.fine_balance == Decimal("430")


def test_payment_conserves_amount(manager, alice, book, cd, clock):
    manager.borrow_item(alice, book)
    manager.borrow_item(alice, cd)
    manager.apply_overdue_fines(day(30))
    before_paid = sum(r.fine_paid for r in manager.get_borrow_records_for_user(alice))
    before_balance = alice.fine_balance

    manager.pay_fine_for_user(alice, Decimal("123.45"), day(30))

    after_paid = sum(r.fine_paid for r in manager.get_borrow_records_for_user(alice))
    assert after_paid - before_paid == Decimal("123.45")
    assert before_balance - alice.fine_balance == Decimal("123.45")


def test_overpayment_is_rejected_without_changes(manager, alice, book):
    manager.borrow_item(alice, book)
    manager.apply_overdue_fines(day(30))

    with pytest.raises(ValidationError):
        manager.pay_fine_for_user(alice, 21, day(30))

    assert alice.fine_balance == Decimal("20")
    assert all(r.fine_paid == 0 for r in manager.get_borrow_records_for_user(alice))


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_payment_is_rejected(manager, alice, amount):
    with pytest.raises(ValidationError):
        manager.pay_fine_for_user(alice, amount, DAY0)


def test_payment_requires_member_and_date(manager, alice):
    with pytest.raises(ValidationError):
        manager.pay_fine_for_user(None, 5, DAY0)
    with pytest.raises(ValidationError):
        manager.pay_fine_for_user(alice, 5, None)


def test_payment_beyond_balance_does_not_reconcile(manager, alice, book):
    manager.borrow_item(alice, book)
    manager.apply_overdue_fines(day(29))
    assert alice.fine_balance == Decimal("10")

    with pytest.raises(ReconciliationError):
        manager.pay_fine_for_user(alice, 50, day(35))

    assert alice.fine_balance == Decimal("10")
    assert manager.get_borrow_records_for_user(alice)[0].fine_paid == 0


def test_paying_in_full_restores_eligibility(manager, alice, book, cd, clock):
    manager.borrow_item(alice, book)
    clock.advance(30)
    manager.return_item(alice, book)
    manager.pay_fine_for_user(alice, 20, clock.today)
    assert not alice.has_outstanding_fine()
    assert manager.borrow_item(alice, cd) is True


# ---------------- queries ----------------
def test_query_results_are_copies(manager, alice, bob, book):
    manager.borrow_item(alice, book)
    manager.borrow_item(bob, book)
    manager.get_all_borrow_records().clear()
    manager.get_waitlist().clear()
    manager.get_borrow_records_for_user(alice).clear()
    assert len(manager.get_all_borrow_records()) == 1
    assert len(manager.get_waitlist()) == 1


def test_loaded_active_records_mark_items_issued(directory, alice, book):
    record = LoanRecord(alice, book, FinePolicy(10, 28), DAY0)
    assert book.is_available()
    manager = BorrowManager(InMemoryLoanRecordStore([record]), InMemoryWaitlistStore(), directory)
    assert not book.is_available()
    assert manager.get_all_borrow_records() == [record]


def test_member_balances_are_saved_with_records(loan_store, waitlist_store, directory, alice, book, clock):
    member_store = InMemoryMemberStore()
    manager = BorrowManager(loan_store, waitlist_store, directory, clock=clock, member_store=member_store)
    manager.borrow_item(alice, book)
    saves = member_store.save_count

    manager.apply_overdue_fines(day(30))

    assert member_store.save_count == saves + 1
    saved = {m.member_id: m.fine_balance for m in member_store.load_all()}
    assert saved == {"M001": Decimal("20"), "M002": 0}


def test_manager_requires_stores(directory):
    with pytest.raises(ValidationError):
        BorrowManager(None, InMemoryWaitlistStore(), directory)


# ---------------- shared instance ----------------
def test_get_instance_before_init_fails():
    with pytest.raises(NotInitializedError):
        BorrowManager.get_instance()


def test_init_only_takes_first_arguments(directory, clock):
    first_store = InMemoryLoanRecordStore()
    first = BorrowManager.init(first_store, InMemoryWaitlistStore(), directory, clock=clock)
    second = BorrowManager.init(InMemoryLoanRecordStore(), InMemoryWaitlistStore(), directory)
    assert first is second
    assert BorrowManager.get_instance() is first

    alice = directory.get("M001")
    first.borrow_item(alice, Item("X1", "Shared", "book"))
    assert len(first_store.load_all()) == 1
