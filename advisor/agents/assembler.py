"""
Answer Assembler - orchestrates one advisory query.

Flow for a data question:

1. Classify the message and work out the domains it needs
2. Fetch a fresh VerifiedDataBundle for the caller's school
3. Hard stop with the fixed refusal if any domain is empty or unreadable
4. Reconcile every quantity pair in the bundle
5. Generate, then gate the text through the guardrail (one corrective retry)
6. Make sure every discrepancy is in the released text
7. Record the turn in the caller's conversation

Conversation history is only ever passed to the generator as context; it
never reaches the fetcher.
"""

import asyncio
import re
import time
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from ..core import config, dao
from ..core.auth import ADVISOR_QUERY, Identity, require_capability
from ..core.errors import DataUnavailable, GuardrailRejected, InvalidAction
from ..core.money import format_inr
from ..core.reconcile import ReconciliationEngine, ReconciliationResult
from ..core.sessions import ConversationSession, Message, SessionStore, title_from
from ..core.verified_data import DOMAIN_CAPABILITY, DataScope, Domain, VerifiedDataFetcher
from ..util.logging import logger
from . import guardrail, intent, prompts
from .generator import GenerationRequest, TextGenerator

WRITE_REDIRECT = (
    "I do not change records from chat. Submit the change as an action and confirm it "
    "within five minutes to apply it."
)
CLARIFY_DOMAIN = (
    "Which records should I check: students, attendance, fees or staff payroll?"
)
NO_FACTS = "VERIFIED DATA\nNo school records were requested for this question."

# A figure only counts as stated when it is a whole number token, not part of a longer one.
_NUMBER_AT = r"(?<![\d.])(?<!\d,){}(?!\d|[.,]\d)"


@dataclass
class AssembledAnswer:
    answer_text: str
    session_id: str
    outcome: str
    discrepancies: int = 0


def _mentions(text: str, value, monetary: bool) -> bool:
    candidates = {str(value)}
    if isinstance(value, Decimal):
        candidates.add(str(abs(value)))
        if value == value.to_integral_value():
            candidates.add(str(abs(value.to_integral_value())))
        if monetary:
            candidates.add(format_inr(value))
            candidates.add(format_inr(abs(value)))
    else:
        candidates.add(str(abs(value)))
    return any(re.search(_NUMBER_AT.format(re.escape(c)), text) for c in candidates)


def ensure_discrepancies(text: str, results: List[ReconciliationResult]) -> str:
    """Append the fixed discrepancy notice unless every invalid result is already stated in full."""
    invalid = [r for r in results if not r.is_valid]
    if not invalid:
        return text

    for result in invalid:
        stated = all(
            _mentions(text, value, result.monetary)
            for value in (result.source_a_value, result.source_b_value, result.discrepancy)
        )
        if not stated:
            return f"{text}\n\n{prompts.discrepancy_notice(invalid)}"
    return text


class AnswerAssembler:
    """Request-scoped orchestration; holds collaborators, no per-request state."""

    def __init__(self, generator: Optional[TextGenerator] = None,
                 fetcher: Optional[VerifiedDataFetcher] = None,
                 reconciler: Optional[ReconciliationEngine] = None,
                 sessions: Optional[SessionStore] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.generator = generator or config.get_generator()
        self.fetcher = fetcher or VerifiedDataFetcher()
        self.reconciler = reconciler or ReconciliationEngine()
        self.sessions = sessions or SessionStore()
        self.clock = clock

    async def respond(self, query: str, identity: Identity, session_id: Optional[str] = None) -> AssembledAnswer:
        """handle() with a minimum caller-visible latency."""
        started = time.monotonic()
        answer = await asyncio.to_thread(self.handle, query, identity, session_id)
        remaining = config.MIN_RESPONSE_MS / 1000 - (time.monotonic() - started)
        if remaining > 0:
            await asyncio.sleep(remaining)
        return answer

    def handle(self, query: str, identity: Identity, session_id: Optional[str] = None) -> AssembledAnswer:
        query = (query or "").strip()
        if not query:
            raise InvalidAction("message cannot be empty")

        require_capability(identity, identity.school_id, ADVISOR_QUERY, "Your role cannot use the advisor")

        session = self.sessions.get(session_id, identity.user_id) if session_id else None
        now = self.clock()
        classified = intent.classify(query, now.date())

        text, outcome, discrepancies = self._answer(query, identity, classified, session, now)

        if session is None:
            session = self.sessions.create(identity.user_id, identity.school_id, title_from(query))
        self.sessions.append(session, Message.now("user", query), Message.now("assistant", text))

        logger.log_operation("advisor_query", outcome, {
            "user_id": identity.user_id,
            "category": classified.category,
            "domains": [d.value for d in classified.domains],
            "discrepancies": discrepancies,
        })
        dao.record_audit(identity.user_id, identity.school_id, "advisor_query", {
            "session_id": session.id,
            "category": classified.category,
            "outcome": outcome,
        })
        return AssembledAnswer(answer_text=text, session_id=session.id, outcome=outcome,
                               discrepancies=discrepancies)

    def _answer(self, query: str, identity: Identity, classified: intent.QueryIntent,
                session: Optional[ConversationSession], now: datetime) -> Tuple[str, str, int]:
        if classified.category == intent.GREETING:
            return prompts.GREETING_REPLY, "greeting", 0
        if classified.category == intent.WRITE_REQUEST:
            return WRITE_REDIRECT, "write_redirect", 0
        if classified.category == intent.DATA_QUERY and not classified.domains:
            return CLARIFY_DOMAIN, "clarify", 0

        results: List[ReconciliationResult] = []
        facts = NO_FACTS

        if classified.domains:
            for domain in classified.domains:
                require_capability(identity, identity.school_id, DOMAIN_CAPABILITY[domain],
                                   f"Your role cannot read {domain.value} records")

            scope = DataScope(
                school_id=identity.school_id,
                date_from=classified.date_from,
                date_to=classified.date_to,
                class_name=classified.class_name,
            )
            try:
                bundle = self.fetcher.fetch(scope, classified.domains, as_of=now)
            except DataUnavailable as e:
                logger.log_hard_stop(identity.user_id, e.domain, "unavailable")
                return prompts.hard_stop(Domain(e.domain)), "hard_stop", 0

            empty = bundle.empty_domains()
            if empty:
                logger.log_hard_stop(identity.user_id, empty[0].value, "empty")
                return prompts.hard_stop(empty[0]), "hard_stop", 0

            results = self.reconciler.reconcile_all(bundle.quantity_pairs())
            facts = f"{prompts.format_bundle(bundle)}\n\n{prompts.format_reconciliation(results)}"

        history = []
        if session is not None and classified.references_prior_turn:
            history = [
                {"role": m.role, "content": m.content}
                for m in self.sessions.history(session, config.MAX_HISTORY_MESSAGES)
            ]

        request = GenerationRequest(policy=prompts.SYSTEM_POLICY, facts=facts, question=query, history=history)
        try:
            text, outcome = self._generate_guarded(request), "answered"
        except GuardrailRejected as e:
            logger.warning(f"Guardrail refused release for {identity.user_id}: {e.message}")
            text, outcome = prompts.SAFE_REFUSAL, "refused"

        invalid = sum(1 for r in results if not r.is_valid)
        return ensure_discrepancies(text, results), outcome, invalid

    def _generate_guarded(self, request: GenerationRequest) -> str:
        """Generate, with one corrective retry if the guardrail rejects the first text."""
        text = self.generator.generate(request)
        verdict = guardrail.check(text)
        logger.log_guardrail_verdict(1, verdict.allowed, verdict.flagged_terms)
        if verdict.allowed:
            return text

        retry = replace(
            request,
            corrective_instruction=prompts.CORRECTIVE_INSTRUCTION.format(terms=", ".join(verdict.flagged_terms)),
            rejected_answer=text,
        )
        text = self.generator.generate(retry)
        verdict = guardrail.check(text)
        logger.log_guardrail_verdict(2, verdict.allowed, verdict.flagged_terms)
        if verdict.allowed:
            return text

        raise GuardrailRejected("Answer failed the guardrail twice", {"flagged_terms": verdict.flagged_terms})
