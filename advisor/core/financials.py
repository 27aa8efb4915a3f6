"""
Derived fee and payroll positions.

Expected fee is derived from the fee plan and the join date, counting the
join month (or year) and the current one:

    monthly:  months_elapsed * fee_amount
    yearly:   years_elapsed * fee_amount
    one-time: fee_amount

remaining = max(0, expected - paid). Payroll uses the same rule per staff
member, with remaining = expected - paid (not clamped). All values are
integer paise until they leave this module.
"""

import sqlite3
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from .db import get_db
from .errors import DataUnavailable
from .money import from_minor
from ..util.logging import logger


@dataclass(frozen=True)
class FeePosition:
    student_id: str
    name: str
    class_name: Optional[str]
    expected: int
    paid: int

    @property
    def remaining(self) -> int:
        return max(0, self.expected - self.paid)


@dataclass(frozen=True)
class PayrollPosition:
    staff_id: str
    name: str
    expected: int
    paid: int

    @property
    def remaining(self) -> int:
        return self.expected - self.paid


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def periods_elapsed(plan_type: str, join_date: Optional[date], as_of: date) -> int:
    """Billing periods from join date to as_of, both ends inclusive."""
    if join_date is None:
        return 0
    if plan_type == "monthly":
        months = (as_of.year - join_date.year) * 12 + (as_of.month - join_date.month) + 1
        return max(0, months)
    if plan_type in ("yearly", "annually"):
        return max(0, as_of.year - join_date.year + 1)
    if plan_type == "one-time":
        return 1
    return 0


def expected_amount(amount: int, plan_type: str, join_date: Optional[date], as_of: date) -> int:
    if amount <= 0:
        return 0
    return periods_elapsed(plan_type, join_date, as_of) * amount


def fee_positions(conn: sqlite3.Connection, school_id: str, as_of: date,
                  class_name: Optional[str] = None) -> List[FeePosition]:
    """Per-student expected/paid positions for active students."""
    sql = (
        "SELECT s.id, s.name, s.class_name, s.fee_amount, s.fee_type, s.join_date, "
        "COALESCE((SELECT SUM(p.amount) FROM payments p WHERE p.student_id = s.id AND p.school_id = s.school_id), 0) AS paid "
        "FROM students s WHERE s.school_id = ? AND s.is_archived = 0"
    )
    params: List[Any] = [school_id]
    if class_name:
        sql += " AND s.class_name = ? COLLATE NOCASE"
        params.append(class_name)
    sql += " ORDER BY s.name"

    positions = []
    for row in conn.execute(sql, params).fetchall():
        positions.append(FeePosition(
            student_id=row["id"],
            name=row["name"],
            class_name=row["class_name"],
            expected=expected_amount(int(row["fee_amount"] or 0), row["fee_type"] or "monthly",
                                     _parse_date(row["join_date"]), as_of),
            paid=int(row["paid"]),
        ))
    return positions


def payroll_positions(conn: sqlite3.Connection, school_id: str, as_of: date) -> List[PayrollPosition]:
    """Per-staff expected/paid positions for active staff."""
    rows = conn.execute(
        "SELECT st.id, st.name, st.salary, st.salary_type, st.join_date, "
        "COALESCE((SELECT SUM(sa.net_amount) FROM salaries sa WHERE sa.staff_id = st.id AND sa.school_id = st.school_id), 0) AS paid "
        "FROM staff st WHERE st.school_id = ? AND st.is_archived = 0 ORDER BY st.name",
        (school_id,)
    ).fetchall()

    return [
        PayrollPosition(
            staff_id=row["id"],
            name=row["name"],
            expected=expected_amount(int(row["salary"] or 0), row["salary_type"] or "monthly",
                                     _parse_date(row["join_date"]), as_of),
            paid=int(row["paid"]),
        )
        for row in rows
    ]


def financial_snapshot(school_id: str, as_of: Optional[date] = None) -> Dict[str, Any]:
    """Fresh fee and salary totals for one school, amounts as decimal strings."""
    as_of = as_of or date.today()
    try:
        with get_db() as conn:
            fees = fee_positions(conn, school_id, as_of)
            payroll = payroll_positions(conn, school_id, as_of)
    except sqlite3.Error as e:
        logger.log_operation("financial_snapshot", "error", {"school_id": school_id, "error": str(e)})
        raise DataUnavailable("fees", f"Financial records could not be read: {e}")

    owing = sorted((p for p in fees if p.remaining > 0), key=lambda p: p.remaining, reverse=True)
    salary_expected = sum(p.expected for p in payroll)
    salary_paid = sum(p.paid for p in payroll)

    snapshot = {
        "as_of_date": as_of.isoformat(),
        "fees": {
            "expected": str(from_minor(sum(p.expected for p in fees))),
            "paid": str(from_minor(sum(p.paid for p in fees))),
            "remaining": str(from_minor(sum(p.remaining for p in fees))),
            "students": [
                {
                    "id": p.student_id,
                    "name": p.name,
                    "expected": str(from_minor(p.expected)),
                    "paid": str(from_minor(p.paid)),
                    "remaining": str(from_minor(p.remaining)),
                }
                for p in owing
            ],
        },
        "salaries": {
            "expected": str(from_minor(salary_expected)),
            "paid": str(from_minor(salary_paid)),
            "remaining": str(from_minor(salary_expected - salary_paid)),
        },
    }

    logger.log_operation("financial_snapshot", "success", {
        "school_id": school_id,
        "students_owing": len(owing),
    })
    return snapshot
