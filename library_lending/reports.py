"""
reports.py

Tabular fine, overdue and borrowing activity reports built from loan record
snapshots.

Functions return pandas DataFrames; export_fines_report() also writes the
fines table to CSV the same way the stores do.
"""

from __future__ import annotations
import datetime
import logging
import pathlib
from decimal import Decimal
from typing import Dict, Iterable, Union

import pandas as pd

from .exceptions import StoreError, ValidationError
from .fine_policy import ZERO
from .loan_record import LoanRecord
from .models import MaterialCategory, Member

logger = logging.getLogger("LibraryLending.reports")

OVERDUE_COLUMNS = ["record_id", "member_id", "item_id", "category", "due_date", "days_overdue", "fine"]
ACTIVITY_COLUMNS = ["member_id", "item_id", "title"]


def _require_date(as_of) -> None:
    if as_of is None:
        raise ValidationError("Date cannot be missing.")


def fines_by_member(records: Iterable[LoanRecord], as_of: datetime.date) -> pd.DataFrame:
    """
    Fines per member as of `as_of`, with a column per material category.

    Returns columns: member_id, total, BOOK, CD, JOURNAL (one row per member,
    sorted by total descending). Amounts are Decimal.
    """
    _require_date(as_of)
    categories = [c.name for c in MaterialCategory]
    columns = ["member_id", "total"] + categories
    # amounts stay Decimal; the frame is only built once totals are known
    by_member: Dict[str, Dict[str, Decimal]] = {}
    for r in records:
        row = by_member.setdefault(r.member_id, {c: ZERO for c in ["total"] + categories})
        fine = r.get_fine(as_of)
        row[r.category.name] += fine
        row["total"] += fine
    rows = [dict(member_id=mid, **amounts) for mid, amounts in by_member.items()]
    df = pd.DataFrame(rows, columns=columns)
    if df.empty:
        return df
    df["__sort"] = df["total"].astype(float)
    df = df.sort_values(["__sort", "member_id"], ascending=[False, True]).drop(columns="__sort")
    return df.reset_index(drop=True)


def overdue_report(records: Iterable[LoanRecord], as_of: datetime.date) -> pd.DataFrame:
    """One row per active overdue record, most overdue first."""
    _require_date(as_of)
    rows = []
    for r in records:
        if not r.is_overdue(as_of):
            continue
        rows.append({
            "record_id": r.record_id,
            "member_id": r.member_id,
            "item_id": r.item_id,
            "category": r.category.name,
            "due_date": r.due_date.isoformat(),
            "days_overdue": (as_of - r.due_date).days,
            "fine": r.get_fine(as_of),
        })
    df = pd.DataFrame(rows, columns=OVERDUE_COLUMNS)
    if df.empty:
        return df
    return df.sort_values("days_overdue", ascending=False).reset_index(drop=True)



def _activity_frame(records: Iterable[LoanRecord]) -> pd.DataFrame:
    if records is None:
        raise ValidationError("Borrow records cannot be missing.")
    rows = [{"member_id": r.member_id, "item_id": r.item_id, "title": r.item.title} for r in records]
    return pd.DataFrame(rows, columns=ACTIVITY_COLUMNS)


def top_borrowers(records: Iterable[LoanRecord]) -> pd.DataFrame:
    """Loans per member, returned ones included. Columns: member_id, loans."""
    df = _activity_frame(records)
    if df.empty:
        return pd.DataFrame(columns=["member_id", "loans"])
    counts = df.groupby("member_id").size().reset_index(name="loans")
    return counts.sort_values(["loans", "member_id"], ascending=[False, True]).reset_index(drop=True)


def most_borrowed_items(records: Iterable[LoanRecord]) -> pd.DataFrame:
    """Loans per item. Columns: item_id, title, loans."""
    df = _activity_frame(records)
    if df.empty:
        return pd.DataFrame(columns=["item_id", "title", "loans"])
    counts = df.groupby(["item_id", "title"]).size().reset_index(name="loans")
    return counts.sort_values(["loans", "item_id"], ascending=[False, True]).reset_index(drop=True)


def overdue_for_member(records: Iterable[LoanRecord], member: Member, as_of: datetime.date) -> pd.DataFrame:
    """overdue_report() restricted to one member's records."""
    if member is None:
        raise ValidationError("Member cannot be missing.")
    _require_date(as_of)
    return overdue_report([r for r in records if r.member_id == member.member_id], as_of)


def export_fines_report(records: Iterable[LoanRecord], as_of: datetime.date,
                        out_dir: Union[str, pathlib.Path]) -> pathlib.Path:
    """Write fines_by_member() to <out_dir>/fines_<date>.csv and return the path."""
    _require_date(as_of)
    out_dir = pathlib.Path(out_dir)
    path = out_dir / f"fines_{as_of.isoformat()}.csv"
    df = fines_by_member(records, as_of)
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        df.to_csv(path, index=False)
    except OSError as exc:
        raise StoreError(f"Failed to write report: {path}") from exc
    logger.info("Saved fines report for %d member(s) to %s", len(df), path)
    return path
