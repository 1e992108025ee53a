"""
stores.py

Persistence collaborators for loan records, waitlist entries and members.

All stores expose the same load_all()/save_all() shape. The CSV stores keep a
pandas DataFrame round-trip per call; the in-memory ones just hold the last
snapshot that was saved.
"""

from __future__ import annotations
import datetime
import logging
import pathlib
from typing import Callable, List, Optional, Sequence, Union

import pandas as pd

from .exceptions import StoreError, ValidationError
from .loan_record import ROW_COLUMNS, LoanRecord
from .models import Item, Member, WaitlistEntry

logger = logging.getLogger("LibraryLending.stores")

WAITLIST_COLUMNS = ["item_id", "contact", "requested_at"]
MEMBER_COLUMNS = ["member_id", "name", "email", "fine_balance"]

MemberLookup = Callable[[str], Optional[Member]]
ItemLookup = Callable[[str], Optional[Item]]


class InMemoryLoanRecordStore:
    def __init__(self, records: Optional[Sequence[LoanRecord]] = None) -> None:
        self._records: List[LoanRecord] = list(records or [])
        self.save_count = 0

    def load_all(self) -> List[LoanRecord]:
        return list(self._records)

    def save_all(self, records: Sequence[LoanRecord]) -> None:
        self._records = list(records)
        self.save_count += 1


class InMemoryWaitlistStore:
    def __init__(self, entries: Optional[Sequence[WaitlistEntry]] = None) -> None:
        self._entries: List[WaitlistEntry] = list(entries or [])
        self.save_count = 0

    def load_all(self) -> List[WaitlistEntry]:
        return list(self._entries)

    def save_all(self, entries: Sequence[WaitlistEntry]) -> None:
        self._entries = list(entries)
        self.save_count += 1


class InMemoryMemberStore:
    def __init__(self, members: Optional[Sequence[Member]] = None) -> None:
        self._members: List[Member] = list(members or [])
        self.save_count = 0

    def load_all(self) -> List[Member]:
        return list(self._members)

    def save_all(self, members: Sequence[Member]) -> None:
        self._members = list(members)
        self.save_count += 1


def _read_csv(path: pathlib.Path, columns: List[str], what: str) -> pd.DataFrame:
    """
    Read `path` as all-string columns.

    A missing or empty file yields an empty frame with the expected columns.
    """
    if not path.exists():
        logger.warning("%s CSV not found: %s (starting empty)", what, path)
        return pd.DataFrame(columns=columns)
    try:
        df = pd.read_csv(path, dtype=str).fillna("")
    except pd.errors.EmptyDataError:
        return pd.DataFrame(columns=columns)
    except OSError as exc:
        raise StoreError(f"Failed to read {what} from {path}: {exc}") from exc
    # Ensure consistent columns
    for col in columns:
        if col not in df.columns:
            df[col] = ""
    return df


def _write_csv(path: pathlib.Path, rows: List[dict], columns: List[str], what: str) -> None:
    out_df = pd.DataFrame(rows, columns=columns)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        out_df.to_csv(path, index=False, columns=columns)
    except OSError as exc:
        raise StoreError(f"Failed to save {what} to {path}: {exc}") from exc
    logger.info("Saved %d %s to %s", len(out_df), what, path)


class CsvLoanRecordStore:
    """
    Loan records in a CSV file, one row per record.

    Rows carry member and item ids only; `member_lookup` and `item_lookup`
    resolve them back to live objects on load.
    """

    def __init__(self, path: Union[str, pathlib.Path], member_lookup: MemberLookup, item_lookup: ItemLookup):
        self.path = pathlib.Path(path)
        self._member_lookup = member_lookup
        self._item_lookup = item_lookup

    def load_all(self) -> List[LoanRecord]:
        df = _read_csv(self.path, ROW_COLUMNS, "borrow records")
        records: List[LoanRecord] = []
        for _, row in df.iterrows():
            member_id = str(row["member_id"]).strip()
            item_id = str(row["item_id"]).strip()
            member = self._member_lookup(member_id)
            if member is None:
                raise StoreError(f"Borrow record {row['record_id']} references unknown member {member_id!r}")
            item = self._item_lookup(item_id)
            if item is None:
                raise StoreError(f"Borrow record {row['record_id']} references unknown item {item_id!r}")
            try:
                records.append(LoanRecord.from_row(row.to_dict(), member, item))
            except ValidationError as exc:
                raise StoreError(f"Corrupt borrow record in {self.path}: {exc}") from exc
        logger.info("Loaded %d borrow records", len(records))
        return records

    def save_all(self, records: Sequence[LoanRecord]) -> None:
        _write_csv(self.path, [r.to_row() for r in records], ROW_COLUMNS, "borrow records")


class CsvWaitlistStore:
    def __init__(self, path: Union[str, pathlib.Path]):
        self.path = pathlib.Path(path)

    def load_all(self) -> List[WaitlistEntry]:
        df = _read_csv(self.path, WAITLIST_COLUMNS, "waitlist")
        entries: List[WaitlistEntry] = []
        for _, row in df.iterrows():
            try:
                requested_at = datetime.date.fromisoformat(str(row["requested_at"]).strip())
                entries.append(WaitlistEntry(str(row["item_id"]).strip(), str(row["contact"]).strip(), requested_at))
            except ValueError as exc:
                raise StoreError(f"Corrupt waitlist row in {self.path}: {exc}") from exc
        logger.info("Loaded %d waitlist entries", len(entries))
        return entries

    def save_all(self, entries: Sequence[WaitlistEntry]) -> None:
        rows = [
            {"item_id": e.item_id, "contact": e.contact, "requested_at": e.requested_at.isoformat()}
            for e in entries
        ]
        _write_csv(self.path, rows, WAITLIST_COLUMNS, "waitlist entries")


class CsvMemberStore:
    """
    Members and their fine balances in a CSV file.

    Loan records keep the per-loan fines, but the balance they were charged to
    lives on the member, so it is saved here alongside them.
    """

    def __init__(self, path: Union[str, pathlib.Path]):
        self.path = pathlib.Path(path)

    def load_all(self) -> List[Member]:
        df = _read_csv(self.path, MEMBER_COLUMNS, "members")
        members: List[Member] = []
        for _, row in df.iterrows():
            try:
                members.append(Member(
                    str(row["member_id"]).strip(),
                    str(row["name"]),
                    str(row["email"]).strip(),
                    fine_balance=str(row["fine_balance"]).strip() or "0",
                ))
            except ValidationError as exc:
                raise StoreError(f"Corrupt member row in {self.path}: {exc}") from exc
        logger.info("Loaded %d members", len(members))
        return members

    def save_all(self, members: Sequence[Member]) -> None:
        rows = [
            {"member_id": m.member_id, "name": m.name, "email": m.email, "fine_balance": str(m.fine_balance)}
            for m in members
        ]
        _write_csv(self.path, rows, MEMBER_COLUMNS, "members")
