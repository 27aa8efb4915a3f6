"""
Guardrail Filter - final gate on generated answer text.

The check is pure: a fixed, case-insensitive pattern set for hedging and
approximation vocabulary, plus internal record identifiers. Same text in,
same verdict out. What to do with a rejection is the assembler's call.
"""

import re
from dataclasses import dataclass, field
from typing import List

# Hedging and approximation vocabulary; any hit blocks release.
BANNED_PATTERNS = [
    r"\btypically\b",
    r"\busually\b",
    r"\bestimated\b",
    r"\bapproximately\b",
    r"\baround\b",
    r"\babout\b",
    r"\broughly\b",
    r"\bbased on (?:patterns|averages|previous)\b",
    r"\bI (?:assume|believe|think)\b",
    r"\bit(?:'s| is) (?:likely|probably)\b",
    r"\bon average\b",
    r"\bin general\b",
    r"\bgenerally speaking\b",
]

# Row identifiers must never reach the caller.
IDENTIFIER_PATTERNS = [
    r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b",
]

_BANNED = [re.compile(p, re.IGNORECASE) for p in BANNED_PATTERNS]
_IDENTIFIERS = [re.compile(p, re.IGNORECASE) for p in IDENTIFIER_PATTERNS]


@dataclass(frozen=True)
class GuardrailVerdict:
    """Result of a guardrail check."""
    allowed: bool
    flagged_terms: List[str] = field(default_factory=list)
    reason: str = ""


def check(text: str) -> GuardrailVerdict:
    """Test answer text against the banned vocabulary and identifier patterns."""
    flagged: List[str] = []

    for pattern in _BANNED:
        for match in pattern.finditer(text or ""):
            term = match.group(0).lower()
            if term not in flagged:
                flagged.append(term)

    leaked_ids = any(p.search(text or "") for p in _IDENTIFIERS)

    if not flagged and not leaked_ids:
        return GuardrailVerdict(allowed=True)

    reasons = []
    if flagged:
        reasons.append(f"hedging vocabulary: {', '.join(flagged)}")
    if leaked_ids:
        flagged.append("internal identifier")
        reasons.append("internal identifier in answer")

    return GuardrailVerdict(allowed=False, flagged_terms=flagged, reason="; ".join(reasons))
