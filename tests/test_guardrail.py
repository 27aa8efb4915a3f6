"""
Tests for the guardrail filter on answer text.
"""

import uuid

import pytest

from advisor.agents import guardrail


class TestGuardrail:

    def test_exact_answer_is_allowed(self):
        verdict = guardrail.check("There are 42 active students in Class 10.")
        assert verdict.allowed
        assert verdict.flagged_terms == []

    @pytest.mark.parametrize("text,term", [
        ("There are approximately 40 students.", "approximately"),
        ("Fees are usually paid by the 5th.", "usually"),
        ("Attendance is around 90%.", "around"),
        ("Collections were roughly ₹8 lakh.", "roughly"),
        ("The ESTIMATED total is ₹5,000.", "estimated"),
        ("I think 12 students were absent.", "i think"),
        ("It is likely that fees are pending.", "it is likely"),
        ("On average 3 students are late.", "on average"),
        ("Based on patterns, Monday is worst.", "based on patterns"),
    ])
    def test_hedging_vocabulary_is_blocked(self, text, term):
        verdict = guardrail.check(text)
        assert not verdict.allowed
        assert term in verdict.flagged_terms

    def test_every_hit_is_reported_once(self):
        verdict = guardrail.check("Usually about 30, usually about 31.")
        assert verdict.flagged_terms == ["usually", "about"]

    @pytest.mark.parametrize("text,term", [
        ("These are the fees about which you asked: ₹12,000.", "about"),
        ("Staff salaries were paid around the 1st: ₹3,20,000.", "around"),
    ])
    def test_non_hedging_use_is_still_blocked(self, text, term):
        verdict = guardrail.check(text)
        assert not verdict.allowed
        assert verdict.flagged_terms == [term]

    def test_word_boundaries_are_respected(self):
        assert guardrail.check("The playground roundabout was repaired.").allowed

    def test_internal_identifier_is_blocked(self):
        verdict = guardrail.check(f"Student {uuid.uuid4()} owes ₹2,000.")
        assert not verdict.allowed
        assert "internal identifier" in verdict.flagged_terms
        assert "identifier" in verdict.reason

    def test_same_text_gives_same_verdict(self):
        text = "Roughly 12 staff were paid."
        assert guardrail.check(text) == guardrail.check(text)

    def test_empty_text_is_allowed(self):
        assert guardrail.check("").allowed
