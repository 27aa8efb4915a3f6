"""
Shared fixtures: a temporary database per test, a seeded school with members
of every role, and helpers for inserting operational records.
"""

import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from advisor.core import config
from advisor.core.auth import Identity
from advisor.core.db import get_db, init_db


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the store at a fresh SQLite file."""
    db_path = tmp_path / "advisor.db"
    monkeypatch.setattr(config, "DB_PATH", str(db_path))
    monkeypatch.setattr(config, "MIN_RESPONSE_MS", 0)
    monkeypatch.setattr(config, "GENERATOR_PROVIDER", "mock")
    init_db()
    return db_path


class Records:
    """Inserts rows directly, bypassing the advisor, to set up test state."""

    def _insert(self, sql, params):
        with get_db() as conn:
            conn.execute(sql, params)
            conn.commit()

    def school(self, school_id, name="Test School"):
        self._insert("INSERT INTO schools (id, name) VALUES (?, ?)", (school_id, name))

    def member(self, user_id, school_id, role, token=None, is_active=True):
        self._insert(
            "INSERT INTO school_members (user_id, school_id, role, is_active) VALUES (?, ?, ?, ?)",
            (user_id, school_id, role, int(is_active))
        )
        if token:
            self._insert(
                "INSERT INTO auth_tokens (token, user_id, expires_at) VALUES (?, ?, ?)",
                (token, user_id, (datetime.now() + timedelta(days=1)).isoformat())
            )
        return Identity(user_id=user_id, school_id=school_id, role=role)

    def student(self, school_id, name, class_name="Class 10", fee_amount=0, fee_type="monthly",
                join_date=None, archived=False):
        student_id = str(uuid.uuid4())
        self._insert(
            "INSERT INTO students (id, school_id, name, class_name, fee_amount, fee_type, join_date, is_archived) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (student_id, school_id, name, class_name, fee_amount, fee_type, join_date, int(archived))
        )
        return student_id

    def payment(self, school_id, student_id, amount, paid_on="2026-04-10", ledger=True):
        payment_id = str(uuid.uuid4())
        self._insert(
            "INSERT INTO payments (id, school_id, student_id, amount, paid_on) VALUES (?, ?, ?, ?, ?)",
            (payment_id, school_id, student_id, amount, paid_on)
        )
        if ledger:
            self.ledger(school_id, amount, paid_on, payment_id)
        return payment_id

    def ledger(self, school_id, amount, posted_on="2026-04-10", payment_id=None):
        self._insert(
            "INSERT INTO fee_ledger (id, school_id, amount, posted_on, payment_id) VALUES (?, ?, ?, ?, ?)",
            (str(uuid.uuid4()), school_id, amount, posted_on, payment_id)
        )

    def attendance(self, school_id, student_id, date, status):
        self._insert(
            "INSERT INTO attendance (id, school_id, student_id, date, status) VALUES (?, ?, ?, ?, ?)",
            (str(uuid.uuid4()), school_id, student_id, date, status)
        )

    def staff(self, school_id, name, salary=0, salary_type="monthly", join_date=None):
        staff_id = str(uuid.uuid4())
        self._insert(
            "INSERT INTO staff (id, school_id, name, salary, salary_type, join_date) VALUES (?, ?, ?, ?, ?, ?)",
            (staff_id, school_id, name, salary, salary_type, join_date)
        )
        return staff_id

    def salary(self, school_id, staff_id, net_amount, paid_on="2026-04-30"):
        self._insert(
            "INSERT INTO salaries (id, school_id, staff_id, net_amount, paid_on) VALUES (?, ?, ?, ?, ?)",
            (str(uuid.uuid4()), school_id, staff_id, net_amount, paid_on)
        )

    def count(self, table, where="1=1", params=()):
        with get_db() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params).fetchone()[0]


@pytest.fixture
def records(temp_db):
    return Records()


@pytest.fixture
def school(records):
    """School s1 with one member per role, plus a principal of another school."""
    records.school("s1", "Green Valley School")
    records.school("s2", "Hill View School")
    return SimpleNamespace(
        id="s1",
        principal=records.member("u-principal", "s1", "principal", token="tok-principal"),
        administrator=records.member("u-admin", "s1", "administrator", token="tok-admin"),
        accountant=records.member("u-accountant", "s1", "accountant", token="tok-accountant"),
        teacher=records.member("u-teacher", "s1", "teacher", token="tok-teacher"),
        second_principal=records.member("u-principal-2", "s1", "principal", token="tok-principal-2"),
        outsider=records.member("u-other", "s2", "principal", token="tok-other"),
    )


class FakeClock:
    """Settable clock for expiry tests."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 5, 4, 10, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()
