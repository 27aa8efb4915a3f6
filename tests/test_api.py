"""
End-to-end tests for the HTTP API: authentication, chat, actions, financial
snapshot and error mapping.
"""

import sqlite3
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from advisor.agents import prompts
from advisor.agents.assembler import AnswerAssembler
from advisor.agents.generator import MockGenerator
from advisor.api import deps, main
from advisor.core import execution
from advisor.core.errors import GenerationFailed


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def generator():
    return MockGenerator(["There is 1 active student."])


@pytest.fixture
def client(school, generator):
    main.app.dependency_overrides[deps.get_assembler] = lambda: AnswerAssembler(generator=generator)
    try:
        with TestClient(main.app) as test_client:
            yield test_client
    finally:
        main.app.dependency_overrides.clear()


@pytest.fixture
def student(records):
    return records.student("s1", "Asha", class_name="Class 10", fee_amount=100000,
                           fee_type="one-time", join_date="2026-04-01")


def create_payment(client, student_id, token="tok-principal"):
    return client.post("/actions", headers=auth(token), json={
        "action_type": "add_payment",
        "action_summary": "Record ₹1,500 fee payment for Asha",
        "action_data": {"student_id": student_id, "amount": "1500", "paid_on": "2026-05-04"},
    })


class TestHealthAndAuth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["db_health"] is True
        assert body["status"] == "healthy"
        assert body["generator"] == "mock"
        assert body["generator_available"] is True

    def test_missing_token(self, client):
        response = client.post("/chat/message", json={"message": "hello"})
        assert response.status_code == 401
        assert response.json() == {"error": "Missing authorization", "code": "unauthenticated", "retryable": False}

    def test_unknown_token(self, client):
        response = client.post("/chat/message", headers=auth("nope"), json={"message": "hello"})
        assert response.status_code == 401

    def test_non_bearer_scheme(self, client):
        response = client.get("/actions", headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert response.status_code == 401
        assert response.json()["code"] == "unauthenticated"


class TestChatEndpoints:

    def test_greeting_creates_session(self, client):
        response = client.post("/chat/message", headers=auth("tok-principal"), json={"message": "hello"})

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == prompts.GREETING_REPLY
        assert body["session_id"]

    def test_hard_stop_over_http(self, client, generator):
        response = client.post("/chat/message", headers=auth("tok-teacher"),
                               json={"message": "How many students are in class 10?"})

        assert response.status_code == 200
        assert response.json()["message"] == "I cannot verify this. No student data exists for this query."
        assert generator.calls == 0

    def test_answer_from_verified_data(self, client, records, student):
        response = client.post("/chat/message", headers=auth("tok-teacher"),
                               json={"message": "How many students are enrolled?"})

        assert response.status_code == 200
        assert response.json()["message"] == "There is 1 active student."

    def test_generator_failure_is_bad_gateway(self, client, student):
        failing = MagicMock()
        failing.generate.side_effect = GenerationFailed("Answer generator is unreachable")
        main.app.dependency_overrides[deps.get_assembler] = lambda: AnswerAssembler(generator=failing)

        response = client.post("/chat/message", headers=auth("tok-teacher"),
                               json={"message": "How many students are enrolled?"})

        assert response.status_code == 502
        assert response.json() == {
            "error": "Answer generator is unreachable",
            "code": "generation_failed",
            "retryable": True,
        }

    def test_domain_not_readable_by_role(self, client, student):
        response = client.post("/chat/message", headers=auth("tok-teacher"),
                               json={"message": "What is the total fee collected?"})

        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"

    def test_empty_message(self, client):
        response = client.post("/chat/message", headers=auth("tok-principal"), json={"message": "   "})
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_request"

    def test_continue_session(self, client):
        first = client.post("/chat/message", headers=auth("tok-principal"), json={"message": "hello"}).json()
        client.post("/chat/message", headers=auth("tok-principal"),
                    json={"message": "hi", "session_id": first["session_id"]})

        detail = client.get(f"/chat/sessions/{first['session_id']}", headers=auth("tok-principal"))

        assert detail.status_code == 200
        assert [m["role"] for m in detail.json()["messages"]] == ["user", "assistant", "user", "assistant"]
        assert detail.json()["title"] == "hello"

    def test_sessions_are_private(self, client):
        session_id = client.post("/chat/message", headers=auth("tok-principal"),
                                 json={"message": "hello"}).json()["session_id"]

        assert client.get(f"/chat/sessions/{session_id}", headers=auth("tok-admin")).status_code == 403
        assert client.delete(f"/chat/sessions/{session_id}", headers=auth("tok-admin")).status_code == 403
        assert client.get("/chat/sessions", headers=auth("tok-admin")).json()["sessions"] == []

        response = client.post("/chat/message", headers=auth("tok-admin"),
                               json={"message": "hello", "session_id": session_id})
        assert response.status_code == 403

    def test_list_and_delete_sessions(self, client):
        session_id = client.post("/chat/message", headers=auth("tok-principal"),
                                 json={"message": "hello"}).json()["session_id"]

        listed = client.get("/chat/sessions", headers=auth("tok-principal")).json()["sessions"]
        assert [s["id"] for s in listed] == [session_id]

        response = client.delete(f"/chat/sessions/{session_id}", headers=auth("tok-principal"))
        assert response.json() == {"success": True, "session_id": session_id}
        assert client.get(f"/chat/sessions/{session_id}", headers=auth("tok-principal")).status_code == 404


class TestActionEndpoints:

    def test_create_then_confirm(self, client, records, student):
        created = create_payment(client, student)
        assert created.status_code == 201
        action = created.json()
        assert action["state"] == "PENDING"
        assert records.count("payments") == 0

        confirmed = client.post("/actions/confirm", headers=auth("tok-principal"),
                                json={"action_id": action["id"]})

        assert confirmed.status_code == 200
        assert confirmed.json() == {
            "message": "Recorded payment of ₹1,500.",
            "action_id": action["id"],
            "state": "EXECUTED",
        }
        assert records.count("payments") == 1

    def test_confirm_twice(self, client, student):
        action_id = create_payment(client, student).json()["id"]
        client.post("/actions/confirm", headers=auth("tok-principal"), json={"action_id": action_id})

        response = client.post("/actions/confirm", headers=auth("tok-principal"), json={"action_id": action_id})

        assert response.status_code == 409
        assert response.json()["code"] == "already_executed"

    def test_role_cannot_request_writes(self, client, student):
        response = create_payment(client, student, token="tok-accountant")
        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"

    def test_invalid_payload(self, client, student):
        response = client.post("/actions", headers=auth("tok-principal"), json={
            "action_type": "add_payment",
            "action_summary": "Bad amount",
            "action_data": {"student_id": student, "amount": 12.5, "paid_on": "2026-05-04"},
        })
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_action"

    def test_cancel(self, client, records, student):
        action_id = create_payment(client, student).json()["id"]

        response = client.post(f"/actions/{action_id}/cancel", headers=auth("tok-principal"))

        assert response.json()["state"] == "CANCELLED"
        confirm = client.post("/actions/confirm", headers=auth("tok-principal"), json={"action_id": action_id})
        assert confirm.status_code == 409
        assert confirm.json()["code"] == "already_handled"
        assert records.count("payments") == 0

    def test_list_and_get(self, client, student):
        action_id = create_payment(client, student).json()["id"]

        listed = client.get("/actions", headers=auth("tok-principal")).json()["actions"]
        assert [a["id"] for a in listed] == [action_id]

        assert client.get(f"/actions/{action_id}", headers=auth("tok-principal")).json()["state"] == "PENDING"
        assert client.get(f"/actions/{action_id}", headers=auth("tok-principal-2")).status_code == 403
        assert client.get("/actions/missing", headers=auth("tok-principal")).status_code == 404

    def test_other_principal_cannot_confirm(self, client, records, student):
        action_id = create_payment(client, student).json()["id"]

        response = client.post("/actions/confirm", headers=auth("tok-principal-2"), json={"action_id": action_id})

        assert response.status_code == 403
        assert records.count("payments") == 0

    def test_execution_failure_then_retry(self, client, records, student):
        action_id = create_payment(client, student).json()["id"]

        def locked(store, action, payload):
            raise sqlite3.OperationalError("database is locked")

        with patch.dict(execution.ACTION_HANDLERS, {"add_payment": locked}):
            failed = client.post("/actions/confirm", headers=auth("tok-principal"), json={"action_id": action_id})

        assert failed.status_code == 500
        assert failed.json()["code"] == "execution_failed"
        assert failed.json()["retryable"] is True
        assert client.get(f"/actions/{action_id}", headers=auth("tok-principal")).json()["state"] == "CONFIRMED"

        retried = client.post(f"/actions/{action_id}/retry", headers=auth("tok-principal"))

        assert retried.status_code == 200
        assert retried.json()["state"] == "EXECUTED"
        assert records.count("payments") == 1


class TestFinancialSnapshot:

    def test_snapshot_for_principal(self, client, records, student):
        records.payment("s1", student, 40000)

        response = client.get("/financials/snapshot", headers=auth("tok-principal"))

        assert response.status_code == 200
        fees = response.json()["fees"]
        assert fees["expected"] == "1000.00"
        assert fees["paid"] == "400.00"
        assert fees["remaining"] == "600.00"
        assert fees["students"][0]["name"] == "Asha"

    def test_accountant_can_read(self, client):
        assert client.get("/financials/snapshot", headers=auth("tok-accountant")).status_code == 200

    def test_teacher_cannot_read(self, client):
        response = client.get("/financials/snapshot", headers=auth("tok-teacher"))
        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"
