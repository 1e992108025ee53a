#!/usr/bin/env python3
"""
demo.py

Walk through a borrow / waitlist / overdue return / payment session against CSV
stores in a data directory, then write the fines report.

Typical usage:
    python -m library_lending.demo --data-dir library_data --date 2025-03-01
"""

from __future__ import annotations
import argparse
import datetime
import logging
import pathlib
from typing import Dict, Optional, Union

from .borrow_manager import BorrowManager
from .config import DEFAULT_DATA_DIR, FINE_CONFIG_FILE, load_fine_policies, setup_logging, write_default_fine_config
from .models import Item, MaterialCategory, Member, MemberDirectory
from .notifications import RecordingNotifier
from .reports import export_fines_report, overdue_report
from .stores import CsvLoanRecordStore, CsvMemberStore, CsvWaitlistStore

logger = logging.getLogger("LibraryLending.demo")

DEMO_START_OFFSET_DAYS = 30


class _DemoClock:
    """Settable 'today' handed to the BorrowManager."""

    def __init__(self, today: datetime.date) -> None:
        self.today = today

    def __call__(self) -> datetime.date:
        return self.today


def demo_run(data_dir: Union[str, pathlib.Path] = DEFAULT_DATA_DIR,
             today: Optional[datetime.date] = None) -> Dict[str, object]:
    """
    Run the demo session and return a small summary dictionary.

    Loans are opened DEMO_START_OFFSET_DAYS before `today` so both the CD
    (7 day period) and the book (28 day period) come back overdue.
    """
    data_dir = pathlib.Path(data_dir)
    today = today or datetime.date.today()
    config_path = data_dir / FINE_CONFIG_FILE
    if not config_path.exists():
        write_default_fine_config(config_path)
    policies = load_fine_policies(config_path)

    member_store = CsvMemberStore(data_dir / "members.csv")
    directory = MemberDirectory(member_store.load_all())
    for seed in (Member("M001", "Alice Reader", "alice@example.com"),
                 Member("M002", "Bob Waiting", "bob@example.com")):
        if directory.get(seed.member_id) is None:
            directory.add(seed)
    items = {i.item_id: i for i in [
        Item("B001", "Dune", MaterialCategory.BOOK),
        Item("C001", "Kind of Blue", MaterialCategory.CD),
        Item("J001", "Nature, Vol. 1", MaterialCategory.JOURNAL),
    ]}
    clock = _DemoClock(today - datetime.timedelta(days=DEMO_START_OFFSET_DAYS))
    notifier = RecordingNotifier()
    manager = BorrowManager(
        CsvLoanRecordStore(data_dir / "borrow_records.csv", directory.get, items.get),
        CsvWaitlistStore(data_dir / "waitlist.csv"),
        directory,
        notifier=notifier,
        clock=clock,
        fine_policies=policies,
        member_store=member_store,
    )
    alice = directory.get("M001")
    bob = directory.get("M002")
    dune, blue = items["B001"], items["C001"]

    if alice.has_outstanding_fine():
        logger.info("Settling %s left over from an earlier run", alice.fine_balance)
        manager.pay_fine_for_user(alice, alice.fine_balance, clock.today)

    manager.borrow_item(alice, dune)
    manager.borrow_item(alice, blue)
    queued = not manager.borrow_item(bob, dune)

    clock.today = today
    overdue = overdue_report(manager.get_overdue_items(today), today)
    logger.info("Overdue on %s:\n%s", today.isoformat(),
                overdue.to_string(index=False) if not overdue.empty else "(none)")

    manager.return_item(alice, blue)
    manager.return_item(alice, dune)
    owed = alice.fine_balance
    payment = min(owed, 100)
    if payment > 0:
        manager.pay_fine_for_user(alice, payment, today)

    report_path = export_fines_report(manager.get_all_borrow_records(), today, data_dir / "reports")
    return {
        "bob_queued": queued,
        "fines_charged": owed,
        "alice_balance": alice.fine_balance,
        "notified": [email for email, _, _ in notifier.sent],
        "report": report_path,
    }


# -------------------- CLI -------------------- #
def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Library lending engine demo")
    parser.add_argument("--data-dir", default=str(DEFAULT_DATA_DIR), help="Folder for CSV state, config and reports")
    parser.add_argument("--date", default=None, help="Date to treat as today (YYYY-MM-DD)")
    parser.add_argument("--verbose", action="store_true", help="Log debug messages too")
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    today = datetime.date.fromisoformat(args.date) if args.date else None
    summary = demo_run(args.data_dir, today)

    print("\n=== Lending demo: Summary ===")
    print(f"Bob queued for Dune: {summary['bob_queued']}")
    print(f"Fines charged to Alice: {summary['fines_charged']}")
    print(f"Alice balance after payment: {summary['alice_balance']}")
    print(f"Notified: {', '.join(summary['notified']) or 'nobody'}")
    print("Saved fines report to:", pathlib.Path(summary["report"]).resolve())


if __name__ == "__main__":
    main()
