"""
Tests for rule-based query classification.
"""

from datetime import date

import pytest

from advisor.agents import intent
from advisor.core.verified_data import Domain

TODAY = date(2026, 5, 14)


class TestClassify:

    @pytest.mark.parametrize("text", ["hello", "Good morning!", "namaste"])
    def test_greetings(self, text):
        result = intent.classify(text, TODAY)
        assert result.category == intent.GREETING
        assert not result.requires_data

    @pytest.mark.parametrize("text", [
        "Add a new student named Ravi to class 5",
        "Record a payment of 1500 for Asha",
        "Mark attendance for Meera as absent",
        "Deactivate the access of the old accountant",
    ])
    def test_write_requests(self, text):
        assert intent.classify(text, TODAY).category == intent.WRITE_REQUEST

    def test_student_count_in_class(self):
        result = intent.classify("How many students are in class 10?", TODAY)
        assert result.category == intent.DATA_QUERY
        assert result.domains == (Domain.STUDENTS,)
        assert result.class_name == "Class 10"

    def test_financial_overview_needs_fees_and_staff(self):
        result = intent.classify("What is our profit this month?", TODAY)
        assert result.category == intent.DATA_QUERY
        assert Domain.FEES in result.domains
        assert Domain.STAFF in result.domains
        assert result.date_from == date(2026, 5, 1)
        assert result.date_to == TODAY

    def test_yesterday_range(self):
        result = intent.classify("Show attendance for yesterday", TODAY)
        assert result.domains == (Domain.ATTENDANCE,)
        assert result.date_from == result.date_to == date(2026, 5, 13)

    def test_last_month_range(self):
        result = intent.classify("Total fee collected last month", TODAY)
        assert result.date_from == date(2026, 4, 1)
        assert result.date_to == date(2026, 4, 30)

    def test_communication(self):
        result = intent.classify("Draft a notice to parents on pending fees", TODAY)
        assert result.category == intent.COMMUNICATION
        assert Domain.FEES in result.domains

    def test_strategy(self):
        result = intent.classify("How can we improve attendance?", TODAY)
        assert result.category == intent.STRATEGY
        assert result.domains == (Domain.ATTENDANCE,)

    def test_data_query_without_domain(self):
        result = intent.classify("Give me a summary", TODAY)
        assert result.category == intent.DATA_QUERY
        assert result.domains == ()

    def test_prior_turn_reference(self):
        assert intent.classify("And what about those in class 9?", TODAY).references_prior_turn
        assert not intent.classify("How many students are there?", TODAY).references_prior_turn

    def test_unmatched_text_is_general(self):
        result = intent.classify("Thanks", TODAY)
        assert result.category == intent.GENERAL
        assert not result.requires_data
