"""
Rule-based query classification.

Decides what kind of request a message is, which verified-data domains it
needs, scope parameters (class, date range) and whether it leans on an
earlier turn. First matching category wins; domains accumulate.
"""

import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional, Tuple

from ..core.verified_data import Domain

WRITE_REQUEST = "WRITE_REQUEST"
DATA_QUERY = "DATA_QUERY"
STRATEGY = "STRATEGY"
COMMUNICATION = "COMMUNICATION"
NAVIGATOR = "NAVIGATOR"
GREETING = "GREETING"
GENERAL = "GENERAL"


def _compile(patterns: List[str]) -> List[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# Order matters: first category with a match wins.
CATEGORY_PATTERNS: List[Tuple[str, List[re.Pattern]]] = [
    (GREETING, _compile([
        r"^\s*(hi|hello|hey|good (morning|afternoon|evening)|namaste)\b[\s!.]*$",
    ])),
    (WRITE_REQUEST, _compile([
        r"\b(add|create|insert|new)\b.*\b(student|staff|fee|payment|expense)",
        r"\b(update|edit|modify|change)\b.*\b(student|staff|fee|payment|attendance)",
        r"\b(delete|remove|deactivate|revoke)\b.*\b(student|staff|fee|payment|member|access)",
        r"\bmark\b.*\b(attendance|present|absent)",
        r"\brecord\b.*\b(payment|expense|fee)",
    ])),
    (COMMUNICATION, _compile([
        r"\b(write|draft|compose)\b.*\b(email|letter|notice|circular|message|announcement)",
        r"\b(send|notify|inform)\b.*\b(parents?|staff|teachers?|students?)",
        r"\b(prepare|make)\b.*\b(notice|circular|announcement)",
    ])),
    (DATA_QUERY, _compile([
        r"\b(how many|count|total|number of)\b",
        r"\b(list|show|display|get|fetch)\b.*\b(all|students|staff|fees|payments|attendance|salar)",
        r"\b(what is|what's|what are)\b.*\b(the|our)\b",
        r"\b(report|summary|overview|breakdown)\b",
        r"\b(pending|collected|due|remaining|outstanding)\b.*\b(fee|amount|payment)",
        r"\b(attendance|present|absent)\b.*\b(rate|percentage|today|this week|this month)",
        r"\b(enrolled|admitted|active)\b.*\bstudents?",
        r"\b(profit|loss|revenue|income|net)\b",
        r"\bclass\s*\d+\b",
        r"\bsalar(y|ies)|payroll",
    ])),
    (STRATEGY, _compile([
        r"\b(how (can|do|should) (we|i)|suggest|recommend|advise)\b",
        r"\b(improve|increase|decrease|reduce|cut|optimi[sz]e)\b",
        r"\b(plan|strategy|approach|solution)\b.*\b(for|to)\b",
        r"\bwhat (should|can) (we|i) do\b",
    ])),
    (NAVIGATOR, _compile([
        r"\bwhere (can|do) i (find|see|open)\b",
        r"\b(take me to|go to|open) (the )?\w+ (page|screen|section)\b",
    ])),
]

DOMAIN_PATTERNS: List[Tuple[Domain, List[re.Pattern]]] = [
    (Domain.STUDENTS, _compile([
        r"\bstudents?\b", r"\benrol", r"\badmission", r"\bclass\s*\d+", r"\bgrade\s*\d+",
        r"\b(nursery|lkg|ukg|kindergarten)\b",
    ])),
    (Domain.ATTENDANCE, _compile([
        r"\battendance", r"\bpresent\b", r"\babsent", r"\bleave\b",
    ])),
    (Domain.FEES, _compile([
        r"\bfees?\b", r"\bpayments?\b", r"\bcollect", r"\bdue\b", r"\boutstanding", r"\bremaining\b",
        r"₹|\brupees?\b|\binr\b",
    ])),
    (Domain.STAFF, _compile([
        r"\bstaff\b", r"\bteachers?\b", r"\bemployees?\b", r"\bsalar(y|ies)\b", r"\bpayroll\b",
    ])),
]

# Whole-school financial questions need both sides of the ledger.
FINANCIAL_OVERVIEW = _compile([r"\b(profit|loss|revenue|income|net|balance sheet|financial)"])

PRIOR_TURN_PATTERNS = _compile([
    r"\b(that|those|these|them|it|same)\b",
    r"\b(previous|earlier|above|last answer|you said|again)\b",
    r"^\s*(and|what about|how about|also)\b",
])

CLASS_PATTERN = re.compile(r"\b(?:class|grade)\s*(\d+|nursery|lkg|ukg|kg)\b", re.IGNORECASE)


@dataclass(frozen=True)
class QueryIntent:
    category: str
    domains: Tuple[Domain, ...] = ()
    class_name: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    references_prior_turn: bool = False
    matched_patterns: int = 0

    @property
    def requires_data(self) -> bool:
        return self.category == DATA_QUERY or bool(self.domains)


def _date_range(text: str, today: date) -> Tuple[Optional[date], Optional[date]]:
    lowered = text.lower()
    if re.search(r"\btoday\b", lowered):
        return today, today
    if re.search(r"\byesterday\b", lowered):
        day = today - timedelta(days=1)
        return day, day
    if re.search(r"\bthis\s*week\b", lowered):
        return today - timedelta(days=today.weekday()), today
    if re.search(r"\bthis\s*month\b", lowered):
        return today.replace(day=1), today
    if re.search(r"\blast\s*month\b", lowered):
        last_day = today.replace(day=1) - timedelta(days=1)
        return last_day.replace(day=1), last_day
    return None, None


def classify(text: str, today: Optional[date] = None) -> QueryIntent:
    """Classify a user message."""
    today = today or date.today()
    text = (text or "").strip()

    category, matched = GENERAL, 0
    for name, patterns in CATEGORY_PATTERNS:
        hits = sum(1 for p in patterns if p.search(text))
        if hits:
            category, matched = name, hits
            break

    domains: List[Domain] = []
    for domain, patterns in DOMAIN_PATTERNS:
        if any(p.search(text) for p in patterns):
            domains.append(domain)
    if any(p.search(text) for p in FINANCIAL_OVERVIEW):
        for domain in (Domain.FEES, Domain.STAFF):
            if domain not in domains:
                domains.append(domain)

    class_name = None
    class_match = CLASS_PATTERN.search(text)
    if class_match:
        class_name = f"Class {class_match.group(1).upper()}"

    date_from, date_to = _date_range(text, today)

    return QueryIntent(
        category=category,
        domains=tuple(domains),
        class_name=class_name,
        date_from=date_from,
        date_to=date_to,
        references_prior_turn=any(p.search(text) for p in PRIOR_TURN_PATTERNS),
        matched_patterns=matched,
    )
