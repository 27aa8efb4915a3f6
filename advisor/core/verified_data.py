"""
Verified Data Fetcher - the only source of facts an answer may cite.

A bundle is built fresh for every query from the record store, scoped to one
school (plus optional date range and class). Aggregates are computed at read
time; row detail is bounded and carries display names only, never internal
identifiers. A requested domain with no records is present in the bundle and
marked empty. Nothing here is cached and nothing here writes.
"""

import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from . import config
from .auth import ATTENDANCE_READ, FEES_READ, PAYROLL_READ, STUDENTS_READ
from .db import get_db
from .errors import DataUnavailable
from .financials import fee_positions, payroll_positions
from .money import format_inr, from_minor
from .reconcile import QuantityPair
from ..util.logging import logger


class Domain(str, Enum):
    STUDENTS = "students"
    ATTENDANCE = "attendance"
    FEES = "fees"
    STAFF = "staff"


DOMAIN_CAPABILITY = {
    Domain.STUDENTS: STUDENTS_READ,
    Domain.ATTENDANCE: ATTENDANCE_READ,
    Domain.FEES: FEES_READ,
    Domain.STAFF: PAYROLL_READ,
}

ATTENDANCE_STATUSES = ("present", "absent", "late", "excused")


@dataclass(frozen=True)
class DataScope:
    """What a fetch may read: one school, optionally narrowed."""
    school_id: str
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    class_name: Optional[str] = None

    def __post_init__(self):
        if not self.school_id:
            raise ValueError("DataScope requires a school_id")
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")


@dataclass(frozen=True)
class DomainSection:
    domain: Domain
    empty: bool
    aggregates: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    rows: Tuple[Mapping[str, Any], ...] = ()
    total_rows: int = 0
    pairs: Tuple[QuantityPair, ...] = ()

    @property
    def truncated(self) -> bool:
        return self.total_rows > len(self.rows)


@dataclass(frozen=True)
class VerifiedDataBundle:
    as_of: datetime
    scope: DataScope
    sections: Mapping[Domain, DomainSection]

    def section(self, domain: Domain) -> Optional[DomainSection]:
        return self.sections.get(Domain(domain))

    def empty_domains(self) -> List[Domain]:
        return [domain for domain, section in self.sections.items() if section.empty]

    def quantity_pairs(self) -> List[QuantityPair]:
        pairs: List[QuantityPair] = []
        for section in self.sections.values():
            pairs.extend(section.pairs)
        return pairs

    def to_dict(self) -> Dict[str, Any]:
        def _plain(value):
            if isinstance(value, Decimal):
                return str(value)
            if isinstance(value, Mapping):
                return {k: _plain(v) for k, v in value.items()}
            return value

        return {
            "as_of": self.as_of.isoformat(),
            "sections": {
                domain.value: {
                    "empty": section.empty,
                    "aggregates": _plain(section.aggregates),
                    "rows": [_plain(row) for row in section.rows],
                    "total_rows": section.total_rows,
                }
                for domain, section in self.sections.items()
            },
        }


def _frozen(data: Dict[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(data))


def _date_clause(column: str, scope: DataScope) -> Tuple[str, List[Any]]:
    clauses, params = [], []
    if scope.date_from:
        clauses.append(f"{column} >= ?")
        params.append(scope.date_from.isoformat())
    if scope.date_to:
        clauses.append(f"{column} <= ?")
        params.append(scope.date_to.isoformat())
    return "".join(f" AND {c}" for c in clauses), params


class VerifiedDataFetcher:
    """Reads verified records for a DataScope. Never accepts a conversation."""

    def __init__(self, max_rows: Optional[int] = None):
        self.max_rows = max_rows if max_rows is not None else config.MAX_DETAIL_ROWS

    def fetch(self, scope: DataScope, domains: Iterable[Domain],
              as_of: Optional[datetime] = None) -> VerifiedDataBundle:
        if not isinstance(scope, DataScope):
            raise TypeError("fetch() requires a DataScope")

        as_of = as_of or datetime.now()
        readers = {
            Domain.STUDENTS: self._students,
            Domain.ATTENDANCE: self._attendance,
            Domain.FEES: self._fees,
            Domain.STAFF: self._staff,
        }

        sections: Dict[Domain, DomainSection] = {}
        for domain in domains:
            domain = Domain(domain)
            if domain in sections:
                continue
            try:
                with get_db() as conn:
                    sections[domain] = readers[domain](conn, scope, as_of.date())
            except sqlite3.Error as e:
                logger.log_operation("verified_fetch", "error", {
                    "domain": domain.value, "school_id": scope.school_id, "error": str(e)
                })
                raise DataUnavailable(domain.value, f"Could not read {domain.value} records")

        logger.log_operation("verified_fetch", "success", {
            "school_id": scope.school_id,
            "domains": [d.value for d in sections],
            "empty": [d.value for d, s in sections.items() if s.empty],
        })
        return VerifiedDataBundle(as_of=as_of, scope=scope, sections=MappingProxyType(sections))

    def _students(self, conn: sqlite3.Connection, scope: DataScope, today: date) -> DomainSection:
        class_filter, params = "", [scope.school_id]
        if scope.class_name:
            class_filter = " AND class_name = ? COLLATE NOCASE"
            params.append(scope.class_name)

        total = conn.execute(
            f"SELECT COUNT(*) FROM students WHERE school_id = ? AND is_archived = 0{class_filter}", params
        ).fetchone()[0]
        if total == 0:
            return DomainSection(domain=Domain.STUDENTS, empty=True)

        per_class = conn.execute(
            f"SELECT COALESCE(class_name, 'Unassigned') AS class_name, COUNT(*) AS n FROM students "
            f"WHERE school_id = ? AND is_archived = 0{class_filter} GROUP BY class_name ORDER BY class_name",
            params
        ).fetchall()
        roster = conn.execute(
            f"SELECT name, class_name FROM students WHERE school_id = ? AND is_archived = 0{class_filter} "
            f"ORDER BY class_name, name LIMIT ?",
            params + [self.max_rows]
        ).fetchall()

        by_class = {row["class_name"]: row["n"] for row in per_class}
        return DomainSection(
            domain=Domain.STUDENTS,
            empty=False,
            aggregates=_frozen({
                "active_students": total,
                "students_by_class": _frozen(by_class),
            }),
            rows=tuple(_frozen({"name": r["name"], "class": r["class_name"] or "Unassigned"}) for r in roster),
            total_rows=total,
            pairs=(QuantityPair(Domain.STUDENTS.value, "active students", total,
                                "sum of class counts", sum(by_class.values())),),
        )

    def _attendance(self, conn: sqlite3.Connection, scope: DataScope, today: date) -> DomainSection:
        date_sql, date_params = _date_clause("a.date", scope)
        class_sql, class_params = "", []
        if scope.class_name:
            class_sql = " AND s.class_name = ? COLLATE NOCASE"
            class_params.append(scope.class_name)

        base = (
            "FROM attendance a JOIN students s ON s.id = a.student_id "
            f"WHERE a.school_id = ?{date_sql}{class_sql}"
        )
        params = [scope.school_id] + date_params + class_params

        total = conn.execute(f"SELECT COUNT(*) {base}", params).fetchone()[0]
        if total == 0:
            return DomainSection(domain=Domain.ATTENDANCE, empty=True)

        status_rows = conn.execute(f"SELECT a.status, COUNT(*) AS n {base} GROUP BY a.status", params).fetchall()
        by_status = {status: 0 for status in ATTENDANCE_STATUSES}
        for row in status_rows:
            by_status[row["status"]] = row["n"]

        present_like = by_status.get("present", 0) + by_status.get("late", 0)
        rate = (Decimal(present_like) * 100 / Decimal(total)).quantize(Decimal("0.1"))

        student_count = conn.execute(f"SELECT COUNT(DISTINCT a.student_id) {base}", params).fetchone()[0]
        detail = conn.execute(
            "SELECT s.name, s.class_name, "
            "SUM(CASE WHEN a.status = 'present' THEN 1 ELSE 0 END) AS present, "
            "SUM(CASE WHEN a.status = 'absent' THEN 1 ELSE 0 END) AS absent, "
            "SUM(CASE WHEN a.status = 'late' THEN 1 ELSE 0 END) AS late, "
            "SUM(CASE WHEN a.status = 'excused' THEN 1 ELSE 0 END) AS excused "
            f"{base} GROUP BY a.student_id ORDER BY absent DESC, s.name LIMIT ?",
            params + [self.max_rows]
        ).fetchall()

        return DomainSection(
            domain=Domain.ATTENDANCE,
            empty=False,
            aggregates=_frozen({
                "attendance_records": total,
                "by_status": _frozen(by_status),
                "attendance_rate_percent": rate,
                "period_from": scope.date_from.isoformat() if scope.date_from else "all records",
                "period_to": scope.date_to.isoformat() if scope.date_to else today.isoformat(),
            }),
            rows=tuple(
                _frozen({
                    "name": r["name"],
                    "class": r["class_name"] or "Unassigned",
                    "present": r["present"],
                    "absent": r["absent"],
                    "late": r["late"],
                    "excused": r["excused"],
                })
                for r in detail
            ),
            total_rows=student_count,
            pairs=(QuantityPair(Domain.ATTENDANCE.value, "attendance records", total,
                                "sum of status breakdown", sum(by_status.values())),),
        )

    def _fees(self, conn: sqlite3.Connection, scope: DataScope, today: date) -> DomainSection:
        positions = fee_positions(conn, scope.school_id, today, scope.class_name)

        ledger_sql, ledger_params = _date_clause("posted_on", scope)
        ledger_row = conn.execute(
            f"SELECT COUNT(*), COALESCE(SUM(amount), 0) FROM fee_ledger WHERE school_id = ?{ledger_sql}",
            [scope.school_id] + ledger_params
        ).fetchone()
        ledger_count, ledger_total = ledger_row[0], int(ledger_row[1])

        if not positions and ledger_count == 0:
            return DomainSection(domain=Domain.FEES, empty=True)

        paid_sql, paid_params = _date_clause("p.paid_on", scope)
        class_rows = conn.execute(
            "SELECT COALESCE(s.class_name, 'Unassigned') AS class_name, SUM(p.amount) AS collected "
            "FROM payments p JOIN students s ON s.id = p.student_id "
            f"WHERE p.school_id = ?{paid_sql} GROUP BY s.class_name ORDER BY s.class_name",
            [scope.school_id] + paid_params
        ).fetchall()
        collections = {row["class_name"]: int(row["collected"]) for row in class_rows}

        expected = sum(p.expected for p in positions)
        paid = sum(p.paid for p in positions)
        remaining = sum(p.remaining for p in positions)
        owing = sorted((p for p in positions if p.remaining > 0), key=lambda p: p.remaining, reverse=True)

        pairs: Tuple[QuantityPair, ...] = ()
        if not scope.class_name:
            # The ledger is school-wide, so it only pairs with an unfiltered collection total.
            pairs = (QuantityPair(Domain.FEES.value, "fee ledger total", from_minor(ledger_total),
                                  "sum of class-wise collections", from_minor(sum(collections.values())),
                                  monetary=True),)

        return DomainSection(
            domain=Domain.FEES,
            empty=False,
            aggregates=_frozen({
                "students_billed": len(positions),
                "expected": from_minor(expected),
                "paid": from_minor(paid),
                "remaining": from_minor(remaining),
                "fee_ledger_total": from_minor(ledger_total),
                "collections_by_class": _frozen({k: from_minor(v) for k, v in collections.items()}),
                "students_with_balance": len(owing),
            }),
            rows=tuple(
                _frozen({
                    "name": p.name,
                    "class": p.class_name or "Unassigned",
                    "expected": format_inr(from_minor(p.expected)),
                    "paid": format_inr(from_minor(p.paid)),
                    "remaining": format_inr(from_minor(p.remaining)),
                })
                for p in owing[:self.max_rows]
            ),
            total_rows=len(owing),
            pairs=pairs,
        )

    def _staff(self, conn: sqlite3.Connection, scope: DataScope, today: date) -> DomainSection:
        positions = payroll_positions(conn, scope.school_id, today)

        paid_sql, paid_params = _date_clause("paid_on", scope)
        disbursed_total = int(conn.execute(
            f"SELECT COALESCE(SUM(net_amount), 0) FROM salaries WHERE school_id = ?{paid_sql}",
            [scope.school_id] + paid_params
        ).fetchone()[0])

        per_staff_sql, per_staff_params = _date_clause("sa.paid_on", scope)
        per_staff = conn.execute(
            "SELECT sa.staff_id, SUM(sa.net_amount) AS disbursed FROM salaries sa "
            f"JOIN staff st ON st.id = sa.staff_id WHERE st.school_id = ?{per_staff_sql} GROUP BY sa.staff_id",
            [scope.school_id] + per_staff_params
        ).fetchall()
        per_staff_total = sum(int(row["disbursed"]) for row in per_staff)

        if not positions and disbursed_total == 0 and not per_staff:
            return DomainSection(domain=Domain.STAFF, empty=True)

        expected = sum(p.expected for p in positions)
        paid = sum(p.paid for p in positions)

        return DomainSection(
            domain=Domain.STAFF,
            empty=False,
            aggregates=_frozen({
                "active_staff": len(positions),
                "salary_expected": from_minor(expected),
                "salary_paid": from_minor(paid),
                "salary_remaining": from_minor(expected - paid),
                "payroll_disbursed": from_minor(disbursed_total),
            }),
            rows=tuple(
                _frozen({
                    "name": p.name,
                    "expected": format_inr(from_minor(p.expected)),
                    "paid": format_inr(from_minor(p.paid)),
                    "remaining": format_inr(from_minor(p.remaining)),
                })
                for p in positions[:self.max_rows]
            ),
            total_rows=len(positions),
            pairs=(QuantityPair(Domain.STAFF.value, "payroll disbursements total", from_minor(disbursed_total),
                                "sum of per-staff disbursements", from_minor(per_staff_total),
                                monetary=True),),
        )
