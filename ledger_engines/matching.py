"""
ledger_engines.matching -- Match suggestions between book and bank items.

Responsibility:
    Score candidate pairs of (book-side payment, bank-side transaction) for a
    reconciliation session and pick a non-overlapping set of pairs to clear
    automatically.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Works on ``ClearableItem`` projections; never touches the session.

Invariants enforced:
    - Identical inputs produce identical outputs; no clock access.
    - A pair is only a candidate when amount and direction are equal and the
      dates are at most ``date_window_days`` apart.
    - Confidence is an int in [0, 100].
    - select_auto_matches never uses a payment or bank item twice.

Scoring:
    base                                   70
    reference match (case-insensitive,
      either side containing the other)   +20
    same date                              +10
    payee contained in bank payee/desc.    +10
    capped at 100
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from uuid import UUID

from ledger_engines.reconciliation import ClearableItem
from ledger_engines.tracer import traced_engine
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.matching")

MAX_CONFIDENCE = 100

REASON_EXACT = "Exact match (amount, date, reference)"
REASON_HIGH = "High confidence match"
REASON_BASIC = "Amount and date match"


@dataclass(frozen=True)
class MatchWeights:
    """Points awarded per matching signal."""

    base: int = 70
    reference: int = 20
    same_date: int = 10
    payee: int = 10
    date_window_days: int = 3


@dataclass(frozen=True)
class MatchSuggestion:
    """One scored (payment, bank transaction) pair."""

    payment_id: UUID
    bank_transaction_id: UUID
    confidence: int
    reason: str


def _normalized(text: str | None) -> str:
    return (text or "").strip().lower()


def _reference_matches(payment: ClearableItem, bank_item: ClearableItem) -> bool:
    left = _normalized(payment.reference)
    right = _normalized(bank_item.reference)
    if not left or not right:
        return False
    return left in right or right in left


def _payee_matches(payment: ClearableItem, bank_item: ClearableItem) -> bool:
    payee = _normalized(payment.payee)
    if not payee:
        return False
    return payee in _normalized(bank_item.description) or payee in _normalized(bank_item.payee)


def reason_for(confidence: int) -> str:
    if confidence >= 90:
        return REASON_EXACT
    if confidence >= 80:
        return REASON_HIGH
    return REASON_BASIC


class MatchSuggestionEngine:
    """
    Stateless scorer for bank reconciliation pairs.

    Usage:
        engine = MatchSuggestionEngine()
        suggestions = engine.suggest(payments=payments, bank_items=bank_items)
        chosen = engine.select_auto_matches(suggestions, min_confidence=80)
    """

    def __init__(self, weights: MatchWeights | None = None):
        self.weights = weights or MatchWeights()

    def score(self, payment: ClearableItem, bank_item: ClearableItem) -> int | None:
        """Confidence for one pair, or None when the pair is not a candidate."""
        if payment.amount != bank_item.amount:
            return None
        if payment.direction is not bank_item.direction:
            return None
        day_gap = abs((payment.item_date - bank_item.item_date).days)
        if day_gap > self.weights.date_window_days:
            return None

        confidence = self.weights.base
        if _reference_matches(payment, bank_item):
            confidence += self.weights.reference
        if day_gap == 0:
            confidence += self.weights.same_date
        if _payee_matches(payment, bank_item):
            confidence += self.weights.payee
        return max(0, min(confidence, MAX_CONFIDENCE))

    @traced_engine("match_suggestion", "1.0", fingerprint_fields=("payments", "bank_items"))
    def suggest(
        self,
        *,
        payments: Iterable[ClearableItem],
        bank_items: Iterable[ClearableItem],
    ) -> list[MatchSuggestion]:
        """
        Score every candidate pair.

        Returns suggestions sorted by descending confidence; ties keep a
        stable order by (payment id, bank transaction id).
        """
        bank_items = list(bank_items)
        suggestions: list[MatchSuggestion] = []
        for payment in payments:
            for bank_item in bank_items:
                confidence = self.score(payment, bank_item)
                if confidence is None:
                    continue
                suggestions.append(
                    MatchSuggestion(
                        payment_id=payment.item_id,
                        bank_transaction_id=bank_item.item_id,
                        confidence=confidence,
                        reason=reason_for(confidence),
                    )
                )

        suggestions.sort(
            key=lambda s: (-s.confidence, str(s.payment_id), str(s.bank_transaction_id))
        )
        logger.debug("match_suggestions_computed", extra={"count": len(suggestions)})
        return suggestions

    @staticmethod
    def select_auto_matches(
        suggestions: Sequence[MatchSuggestion],
        min_confidence: int,
    ) -> list[MatchSuggestion]:
        """
        First-match-wins selection in descending confidence order.

        A suggestion below ``min_confidence`` is skipped, as is any whose
        payment or bank transaction was already taken by a stronger one.
        """
        ordered = sorted(suggestions, key=lambda s: -s.confidence)
        used_payments: set[UUID] = set()
        used_bank: set[UUID] = set()
        chosen: list[MatchSuggestion] = []
        for suggestion in ordered:
            if suggestion.confidence < min_confidence:
                continue
            if suggestion.payment_id in used_payments:
                continue
            if suggestion.bank_transaction_id in used_bank:
                continue
            used_payments.add(suggestion.payment_id)
            used_bank.add(suggestion.bank_transaction_id)
            chosen.append(suggestion)
        return chosen
