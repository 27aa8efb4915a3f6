"""
Tests for the two-phase write path: pending action lifecycle, confirmation
races, expiry and privileged execution.
"""

import sqlite3
import threading
from datetime import timedelta
from unittest.mock import patch

import pytest

from advisor.core import dao, execution
from advisor.core.auth import resolve_identity
from advisor.core.db import get_db
from advisor.core.errors import (
    AlreadyExecuted,
    AlreadyHandled,
    ExecutionFailed,
    Expired,
    Forbidden,
    InvalidAction,
    NotFound,
    Unauthenticated,
)
from advisor.core.execution import PrivilegedExecutor
from advisor.core.pending_actions import ActionState, PendingActionRegistry, load_action


@pytest.fixture
def registry(clock):
    return PendingActionRegistry(clock=clock)


@pytest.fixture
def student(school, records):
    return records.student("s1", "Asha", class_name="Class 10", fee_amount=150000,
                           fee_type="monthly", join_date="2026-04-01")


def locked_handler(store, action, payload):
    raise sqlite3.OperationalError("database is locked")


def payment_request(registry, identity, student_id, amount="1500"):
    return registry.create(
        identity, "add_payment", "Record ₹1,500 fee payment for Asha",
        {"student_id": student_id, "amount": amount, "paid_on": "2026-05-04", "method": "cash"},
    )


class TestCreate:

    def test_create_writes_nothing(self, registry, school, records, student):
        action = payment_request(registry, school.principal, student)

        assert action.state == ActionState.PENDING
        assert action.requester_user_id == school.principal.user_id
        assert action.school_scope_id == "s1"
        assert action.action_data["amount"] == "1500"
        assert action.expires_at - action.created_at == timedelta(minutes=5)
        assert records.count("payments") == 0
        assert records.count("fee_ledger") == 0

    @pytest.mark.parametrize("role", ["teacher", "accountant", "administrator"])
    def test_roles_without_write_capability(self, registry, school, student, role):
        identity = {"teacher": school.teacher, "accountant": school.accountant,
                    "administrator": school.administrator}[role]
        with pytest.raises(Forbidden):
            payment_request(registry, identity, student)

    def test_unknown_action_type(self, registry, school):
        with pytest.raises(InvalidAction) as exc_info:
            registry.create(school.principal, "drop_table", "Drop everything", {})
        assert "add_payment" in exc_info.value.details["supported"]

    def test_float_amount_is_refused(self, registry, school, student):
        with pytest.raises(InvalidAction):
            payment_request(registry, school.principal, student, amount=1500.5)

    def test_extra_fields_are_refused(self, registry, school, student):
        with pytest.raises(InvalidAction):
            registry.create(school.principal, "add_payment", "Payment",
                            {"student_id": student, "amount": "10", "paid_on": "2026-05-04", "note": "x"})

    def test_empty_summary(self, registry, school, student):
        with pytest.raises(InvalidAction):
            registry.create(school.principal, "add_payment", "  ",
                            {"student_id": student, "amount": "10", "paid_on": "2026-05-04"})

    def test_cannot_deactivate_self(self, registry, school):
        with pytest.raises(InvalidAction):
            registry.create(school.principal, "deactivate_member", "Remove me",
                            {"user_id": school.principal.user_id})

    def test_several_pending_actions_per_user(self, registry, school, student):
        first = payment_request(registry, school.principal, student)
        second = payment_request(registry, school.principal, student, amount="200")

        pending = registry.list_pending(school.principal)

        assert {a.id for a in pending} == {first.id, second.id}
        assert dao.list_audit(school.principal.user_id)[0]["action"] == "action_created"


class TestConfirm:

    def test_confirm_executes_once(self, registry, school, records, student):
        action = payment_request(registry, school.principal, student)

        executed = registry.confirm(action.id, school.principal)

        assert executed.state == ActionState.EXECUTED
        assert executed.confirmed_by == school.principal.user_id
        assert executed.executed_at is not None
        assert executed.result_message == "Recorded payment of ₹1,500."
        assert records.count("payments", "student_id = ? AND amount = ?", (student, 150000)) == 1
        assert records.count("fee_ledger", "amount = ?", (150000,)) == 1

    def test_second_confirm_is_already_executed(self, registry, school, records, student):
        action = payment_request(registry, school.principal, student)
        registry.confirm(action.id, school.principal)

        with pytest.raises(AlreadyExecuted):
            registry.confirm(action.id, school.principal)
        assert records.count("payments") == 1

    def test_only_requester_can_confirm(self, registry, school, records, student):
        action = payment_request(registry, school.principal, student)

        with pytest.raises(Forbidden):
            registry.confirm(action.id, school.second_principal)
        with pytest.raises(Forbidden):
            registry.confirm(action.id, school.outsider)

        assert load_action(action.id).state == ActionState.PENDING
        assert records.count("payments") == 0

    def test_role_is_rechecked_at_confirm(self, registry, school, records, student):
        action = payment_request(registry, school.principal, student)
        with get_db() as conn:
            conn.execute("UPDATE school_members SET role = 'teacher' WHERE user_id = ?",
                         (school.principal.user_id,))
            conn.commit()

        with pytest.raises(Forbidden):
            registry.confirm(action.id, school.principal)
        assert records.count("payments") == 0

    def test_unknown_action(self, registry, school):
        with pytest.raises(NotFound):
            registry.confirm("missing", school.principal)

    def test_concurrent_confirms_execute_exactly_once(self, school, records, student):
        registry = PendingActionRegistry()
        action = payment_request(registry, school.principal, student)
        barrier = threading.Barrier(2)
        outcomes = []

        def confirm():
            barrier.wait()
            try:
                outcomes.append(registry.confirm(action.id, school.principal).state)
            except Exception as e:
                outcomes.append(type(e))

        threads = [threading.Thread(target=confirm) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(outcomes) == 2
        assert outcomes.count(ActionState.EXECUTED) == 1
        loser = [o for o in outcomes if o != ActionState.EXECUTED][0]
        assert loser in (AlreadyExecuted, AlreadyHandled)
        assert records.count("payments") == 1
        assert load_action(action.id).state == ActionState.EXECUTED


class TestExpiry:

    def test_confirm_after_ttl_is_expired(self, registry, clock, school, records, student):
        action = payment_request(registry, school.principal, student)
        clock.advance(minutes=6)

        with pytest.raises(Expired):
            registry.confirm(action.id, school.principal)

        assert load_action(action.id).state == ActionState.EXPIRED
        assert records.count("payments") == 0

    def test_confirm_just_before_ttl_succeeds(self, registry, clock, school, student):
        action = payment_request(registry, school.principal, student)
        clock.advance(minutes=4, seconds=59)

        assert registry.confirm(action.id, school.principal).state == ActionState.EXECUTED

    def test_expired_action_stays_expired(self, registry, clock, school, student):
        action = payment_request(registry, school.principal, student)
        clock.advance(minutes=6)
        with pytest.raises(Expired):
            registry.confirm(action.id, school.principal)

        with pytest.raises(Expired):
            registry.confirm(action.id, school.principal)

    def test_listing_expires_overdue_actions(self, registry, clock, school, student):
        stale = payment_request(registry, school.principal, student)
        clock.advance(minutes=6)
        fresh = payment_request(registry, school.principal, student)

        assert [a.id for a in registry.list_pending(school.principal)] == [fresh.id]
        assert load_action(stale.id).state == ActionState.EXPIRED

    def test_expire_stale_sweep(self, registry, clock, school, student):
        action = payment_request(registry, school.principal, student)
        clock.advance(minutes=10)

        assert registry.expire_stale() == [action.id]
        assert registry.expire_stale() == []
        assert load_action(action.id).state == ActionState.EXPIRED

    def test_get_reports_expiry_lazily(self, registry, clock, school, student):
        action = payment_request(registry, school.principal, student)
        clock.advance(minutes=6)

        assert registry.get(action.id, school.principal).state == ActionState.EXPIRED


class TestCancel:

    def test_cancel_pending(self, registry, school, records, student):
        action = payment_request(registry, school.principal, student)

        cancelled = registry.cancel(action.id, school.principal)

        assert cancelled.state == ActionState.CANCELLED
        with pytest.raises(AlreadyHandled):
            registry.confirm(action.id, school.principal)
        assert records.count("payments") == 0

    def test_cancel_is_idempotent(self, registry, school, student):
        action = payment_request(registry, school.principal, student)
        registry.cancel(action.id, school.principal)
        assert registry.cancel(action.id, school.principal).state == ActionState.CANCELLED

    def test_cancel_after_execution_is_a_no_op(self, registry, school, records, student):
        action = payment_request(registry, school.principal, student)
        registry.confirm(action.id, school.principal)

        assert registry.cancel(action.id, school.principal).state == ActionState.EXECUTED
        assert records.count("payments") == 1

    def test_cancel_overdue_marks_expired(self, registry, clock, school, student):
        action = payment_request(registry, school.principal, student)
        clock.advance(minutes=6)
        assert registry.cancel(action.id, school.principal).state == ActionState.EXPIRED

    def test_only_requester_can_cancel(self, registry, school, student):
        action = payment_request(registry, school.principal, student)
        with pytest.raises(Forbidden):
            registry.cancel(action.id, school.second_principal)
        with pytest.raises(Forbidden):
            registry.get(action.id, school.second_principal)


class TestExecution:

    def test_executor_refuses_unconfirmed_actions(self, registry, clock, school, records, student):
        action = payment_request(registry, school.principal, student)

        with pytest.raises(AlreadyHandled):
            PrivilegedExecutor(clock).execute(action.id, school.principal)

        assert load_action(action.id).state == ActionState.PENDING
        assert records.count("payments") == 0

    def test_executor_refuses_executed_actions(self, registry, clock, school, records, student):
        action = payment_request(registry, school.principal, student)
        registry.confirm(action.id, school.principal)

        with pytest.raises(AlreadyExecuted):
            PrivilegedExecutor(clock).execute(action.id, school.principal)
        assert records.count("payments") == 1

    def test_store_failure_leaves_action_confirmed(self, registry, school, records, student):
        action = payment_request(registry, school.principal, student)

        def broken(store, action, payload):
            store.conn.execute("INSERT INTO expenses (id, school_id, category, amount, spent_on) "
                               "VALUES ('e1', 's1', 'partial', 1, '2026-05-04')")
            raise sqlite3.OperationalError("disk I/O error")

        with patch.dict(execution.ACTION_HANDLERS, {"add_payment": broken}):
            with pytest.raises(ExecutionFailed) as exc_info:
                registry.confirm(action.id, school.principal)

        assert exc_info.value.retryable
        failed = load_action(action.id)
        assert failed.state == ActionState.CONFIRMED
        assert "disk I/O error" in failed.last_error
        assert failed.executed_at is None
        assert records.count("expenses") == 0
        assert records.count("payments") == 0

        retried = registry.retry(action.id, school.principal)

        assert retried.state == ActionState.EXECUTED
        assert retried.last_error is None
        assert records.count("payments") == 1

    def test_role_rechecked_before_execution(self, registry, school, records, student):
        action = payment_request(registry, school.principal, student)
        with patch.dict(execution.ACTION_HANDLERS,
                        {"add_payment": locked_handler}):
            with pytest.raises(ExecutionFailed):
                registry.confirm(action.id, school.principal)

        with get_db() as conn:
            conn.execute("UPDATE school_members SET role = 'accountant' WHERE user_id = ?",
                         (school.principal.user_id,))
            conn.commit()

        with pytest.raises(Forbidden):
            registry.retry(action.id, school.principal)
        assert load_action(action.id).state == ActionState.CONFIRMED
        assert records.count("payments") == 0

    def test_confirmed_action_expires_before_retry(self, registry, clock, school, student):
        action = payment_request(registry, school.principal, student)
        with patch.dict(execution.ACTION_HANDLERS,
                        {"add_payment": locked_handler}):
            with pytest.raises(ExecutionFailed):
                registry.confirm(action.id, school.principal)

        clock.advance(minutes=6)

        with pytest.raises(Expired):
            registry.retry(action.id, school.principal)
        assert load_action(action.id).state == ActionState.EXPIRED

    def test_missing_target_rolls_back(self, registry, school, records):
        action = registry.create(school.principal, "update_student", "Archive a student",
                                 {"student_id": "no-such-student", "is_archived": True})

        with pytest.raises(ExecutionFailed) as exc_info:
            registry.confirm(action.id, school.principal)

        assert exc_info.value.retryable is False
        stored = load_action(action.id)
        assert stored.state == ActionState.CONFIRMED
        assert stored.last_error == "Student not found in this school"
        audit = [row["action"] for row in dao.list_audit(school.principal.user_id)]
        assert audit[0] == "action_failed"
        assert records.count("students") == 0

    def test_audit_trail(self, registry, school, student):
        action = payment_request(registry, school.principal, student)
        registry.confirm(action.id, school.principal)

        actions = [row["action"] for row in dao.list_audit(school.principal.user_id)]

        assert actions[:3] == ["action_executed", "action_confirmed", "action_created"]

    def test_service_store_requires_service_key(self, temp_db):
        with get_db() as conn:
            with pytest.raises(Forbidden):
                dao.ServiceStore(conn, "guess")


class TestActionTypes:

    def confirm(self, registry, identity, action_type, data):
        action = registry.create(identity, action_type, f"{action_type} request", data)
        return registry.confirm(action.id, identity)

    def test_add_student(self, registry, school):
        result = self.confirm(registry, school.principal, "add_student", {
            "name": "Ravi", "class_name": "Class 5", "fee_amount": "1200",
            "fee_type": "monthly", "join_date": "2026-04-01",
        })

        assert result.result_message == "Added student Ravi to Class 5."
        with get_db() as conn:
            row = conn.execute("SELECT school_id, fee_amount FROM students WHERE name = 'Ravi'").fetchone()
        assert (row["school_id"], row["fee_amount"]) == ("s1", 120000)

    def test_update_student(self, registry, school, records, student):
        self.confirm(registry, school.principal, "update_student",
                     {"student_id": student, "class_name": "Class 11", "fee_amount": 2000})

        with get_db() as conn:
            row = conn.execute("SELECT class_name, fee_amount FROM students WHERE id = ?", (student,)).fetchone()
        assert (row["class_name"], row["fee_amount"]) == ("Class 11", 200000)

    def test_update_student_needs_a_change(self, registry, school, student):
        with pytest.raises(InvalidAction):
            registry.create(school.principal, "update_student", "Nothing", {"student_id": student})

    def test_add_expense(self, registry, school, records):
        result = self.confirm(registry, school.principal, "add_expense", {
            "category": "Electricity", "amount": "4500.50", "spent_on": "2026-05-02",
        })

        assert result.result_message == "Recorded Electricity expense of ₹4,500.50."
        assert records.count("expenses", "amount = ?", (450050,)) == 1

    def test_update_attendance_upserts(self, registry, school, records, student):
        self.confirm(registry, school.principal, "update_attendance",
                     {"student_id": student, "date": "2026-05-04", "status": "Absent"})
        self.confirm(registry, school.principal, "update_attendance",
                     {"student_id": student, "date": "2026-05-04", "status": "present"})

        assert records.count("attendance", "student_id = ?", (student,)) == 1
        assert records.count("attendance", "status = 'present'") == 1

    def test_payment_for_other_school_student(self, registry, school, records):
        elsewhere = records.student("s2", "Elsewhere")
        action = payment_request(registry, school.principal, elsewhere)

        with pytest.raises(ExecutionFailed):
            registry.confirm(action.id, school.principal)
        assert records.count("payments") == 0

    def test_deactivate_member_revokes_access(self, registry, school, records):
        result = self.confirm(registry, school.principal, "deactivate_member",
                              {"user_id": school.teacher.user_id})

        assert result.result_message == "Member access revoked."
        assert records.count("school_members", "user_id = ? AND is_active = 1", (school.teacher.user_id,)) == 0
        with pytest.raises(Unauthenticated):
            resolve_identity("tok-teacher")
