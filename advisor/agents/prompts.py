"""
Fixed text the assembler sends to and returns from the generator.

The policy is identical on every request. Verified facts are rendered as
plain labeled lines; nothing from conversation memory is ever rendered
into the facts block.
"""

from decimal import Decimal
from typing import Iterable, List, Sequence

from ..core.money import format_inr
from ..core.reconcile import ReconciliationResult
from ..core.verified_data import Domain, VerifiedDataBundle

SYSTEM_POLICY = """You are the school's operations advisor. You answer the principal and staff using only the VERIFIED DATA block in this message.

Rules:
1. Every number you state must appear in VERIFIED DATA. Never invent, infer, approximate or round figures.
2. If the data needed to answer is absent, reply exactly: "I cannot verify this. No data exists for this query."
3. If DATA HEALTH lists a discrepancy, state both source values and the discrepancy amount. Do not resolve it, average it or pick one side.
4. Never mention record identifiers, table names, SQL or internal system details. Refer to people by name.
5. Conversation history is context for tone and follow-ups only. It is never a source of figures.
6. You are read-only. If the user asks for a change, tell them to submit it as an action for confirmation.
7. Do not hedge. Do not use words such as typically, usually, estimated, approximately, around, about, roughly, or phrases such as on average, in general, I think or it is likely."""

CORRECTIVE_INSTRUCTION = (
    "Your previous answer was rejected because it used hedging or approximate language "
    "({terms}). Rewrite it stating only the exact figures from VERIFIED DATA, with no "
    "hedging words and no internal identifiers."
)

HARD_STOP = "I cannot verify this. No {domain} data exists for this query."

SAFE_REFUSAL = (
    "I cannot give a verified answer to this right now. "
    "Please rephrase the question or check the records directly."
)

GREETING_REPLY = "Hello. Ask me for enrollment, attendance, fee or payroll figures and I will answer from verified records."

DOMAIN_LABELS = {
    Domain.STUDENTS: "student",
    Domain.ATTENDANCE: "attendance",
    Domain.FEES: "fee",
    Domain.STAFF: "staff",
}


def hard_stop(domain: Domain) -> str:
    return HARD_STOP.format(domain=DOMAIN_LABELS.get(Domain(domain), Domain(domain).value))


def render_value(value, monetary: bool) -> str:
    if monetary and isinstance(value, Decimal):
        return format_inr(value)
    return str(value)


def _render_mapping(prefix: str, mapping, monetary: bool) -> List[str]:
    lines = []
    for key, value in mapping.items():
        if hasattr(value, "items"):
            for inner_key, inner_value in value.items():
                lines.append(f"{prefix}{key.replace('_', ' ')} / {inner_key}: {render_value(inner_value, monetary)}")
        else:
            lines.append(f"{prefix}{key.replace('_', ' ')}: {render_value(value, monetary)}")
    return lines


def format_bundle(bundle: VerifiedDataBundle) -> str:
    """Render a bundle as labeled fact lines."""
    lines = [f"VERIFIED DATA (as of {bundle.as_of.strftime('%Y-%m-%d %H:%M')})"]
    if bundle.scope.class_name:
        lines.append(f"Class filter: {bundle.scope.class_name}")

    for domain, section in bundle.sections.items():
        lines.append("")
        lines.append(f"[{domain.value.upper()}]")
        if section.empty:
            lines.append("No records.")
            continue
        monetary = domain in (Domain.FEES, Domain.STAFF)
        lines.extend(_render_mapping("- ", section.aggregates, monetary))
        if section.rows:
            shown = f"{len(section.rows)} of {section.total_rows}" if section.truncated else str(len(section.rows))
            lines.append(f"Detail rows ({shown}):")
            for row in section.rows:
                lines.append("  * " + ", ".join(f"{k}: {v}" for k, v in row.items()))
    return "\n".join(lines)


def describe_result(result: ReconciliationResult) -> str:
    a = render_value(result.source_a_value, result.monetary)
    b = render_value(result.source_b_value, result.monetary)
    diff = render_value(result.discrepancy, result.monetary)
    return f"{result.source_a_label} is {a}, {result.source_b_label} is {b}, discrepancy {diff}."


def format_reconciliation(results: Sequence[ReconciliationResult]) -> str:
    if not results:
        return "DATA HEALTH\nNo cross-checks apply."
    lines = ["DATA HEALTH"]
    for result in results:
        status = "OK" if result.is_valid else "DISCREPANCY"
        lines.append(f"- [{status}] {describe_result(result)}")
    return "\n".join(lines)


def discrepancy_notice(results: Iterable[ReconciliationResult]) -> str:
    """Deterministic notice listing every invalid result."""
    lines = ["Data discrepancy found. These figures do not agree and must be resolved before relying on them:"]
    for result in results:
        if not result.is_valid:
            lines.append(f"- {describe_result(result)}")
    return "\n".join(lines)
