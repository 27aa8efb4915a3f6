"""
Reconciliation of independently derived totals.

Two figures that must agree by construction (a ledger total and the sum of
its per-category parts, a record count and the sum of its status buckets)
are compared exactly. Tolerance is zero: any nonzero difference is a
discrepancy and is reported, never smoothed. The engine only computes;
deciding how results are shown belongs to the answer assembler.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Union

from ..util.logging import logger

Exact = Union[int, Decimal]


@dataclass(frozen=True)
class QuantityPair:
    """Two labeled totals for the same quantity."""
    domain: str
    source_a_label: str
    source_a_value: Exact
    source_b_label: str
    source_b_value: Exact
    monetary: bool = False


@dataclass(frozen=True)
class ReconciliationResult:
    source_a_label: str
    source_a_value: Exact
    source_b_label: str
    source_b_value: Exact
    discrepancy: Exact
    is_valid: bool
    domain: str = ""
    monetary: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary (Decimals as strings)."""
        def _render(value):
            return str(value) if isinstance(value, Decimal) else value

        return {
            "domain": self.domain,
            "source_a_label": self.source_a_label,
            "source_a_value": _render(self.source_a_value),
            "source_b_label": self.source_b_label,
            "source_b_value": _render(self.source_b_value),
            "discrepancy": _render(self.discrepancy),
            "is_valid": self.is_valid,
        }


def _exact(value: Any, label: str) -> Exact:
    """Reject anything that cannot be compared exactly."""
    if isinstance(value, bool):
        raise TypeError(f"{label}: booleans are not quantities")
    if isinstance(value, float):
        raise TypeError(f"{label}: binary floats are not allowed, use int or Decimal")
    if isinstance(value, int):
        return value
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"{label}: non-finite Decimal")
        return value
    raise TypeError(f"{label}: unsupported quantity type {type(value).__name__}")


def reconcile(source_a_label: str, source_a_value: Exact, source_b_label: str,
              source_b_value: Exact, domain: str = "", monetary: bool = False) -> ReconciliationResult:
    """Compare two totals; discrepancy = a - b, valid only when exactly zero."""
    a = _exact(source_a_value, source_a_label)
    b = _exact(source_b_value, source_b_label)

    if isinstance(a, Decimal) or isinstance(b, Decimal):
        a, b = Decimal(a), Decimal(b)

    discrepancy = a - b
    return ReconciliationResult(
        source_a_label=source_a_label,
        source_a_value=a,
        source_b_label=source_b_label,
        source_b_value=b,
        discrepancy=discrepancy,
        is_valid=(discrepancy == 0),
        domain=domain,
        monetary=monetary,
    )


class ReconciliationEngine:
    """Computes one ReconciliationResult per pair, in input order."""

    def reconcile_pair(self, pair: QuantityPair) -> ReconciliationResult:
        result = reconcile(
            pair.source_a_label, pair.source_a_value,
            pair.source_b_label, pair.source_b_value,
            domain=pair.domain, monetary=pair.monetary,
        )
        logger.log_reconciliation(
            result.domain, result.source_a_label, result.source_b_label,
            result.discrepancy, result.is_valid
        )
        return result

    def reconcile_all(self, pairs: Iterable[QuantityPair]) -> List[ReconciliationResult]:
        return [self.reconcile_pair(pair) for pair in pairs]
