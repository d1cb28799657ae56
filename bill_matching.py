from dataclasses import dataclass, field
from typing import Optional, Sequence

from rapidfuzz import fuzz

from models import Confidence, RecurrenceInterval
from schemas import BillMatchingSettings, RecurringTransactionIn, TransactionRecord


DEFAULT_MATCHING_SETTINGS = BillMatchingSettings()


@dataclass(frozen=True)
class BillMatch:
    bill: RecurringTransactionIn
    transaction: TransactionRecord
    score: float
    confidence: Confidence
    reasons: list[str] = field(default_factory=list)


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def _exact_or_partial(a: str, b: str) -> tuple[bool, bool]:
    left, right = _normalize(a), _normalize(b)
    return left == right, left in right or right in left


def fuzzy_ratio(a: str, b: str) -> float:
    """Token-set similarity in 0..1, insensitive to word order and repeats."""
    return fuzz.token_set_ratio(_normalize(a), _normalize(b)) / 100


def _date_tolerance(bill: RecurringTransactionIn, settings: BillMatchingSettings) -> int:
    if bill.interval == RecurrenceInterval.weekly:
        return 3
    if bill.interval == RecurrenceInterval.yearly:
        return 30
    return settings.date_tolerance_days


def match_transaction_to_bill(
    transaction: TransactionRecord,
    bill: RecurringTransactionIn,
    settings: BillMatchingSettings = DEFAULT_MATCHING_SETTINGS,
) -> Optional[BillMatch]:
    if bill.is_paid:
        # A paid bill only matches payments strictly after the recorded one.
        if bill.last_paid_date is None or transaction.date is None:
            return None
        if (transaction.date.date() - bill.last_paid_date).days <= 0:
            return None

    score = 0.0
    reasons: list[str] = []

    bill_name = bill.name or bill.description or ""
    description = transaction.description or ""
    exact_name = False
    if bill_name and description:
        exact, partial = _exact_or_partial(bill_name, description)
        ratio = fuzzy_ratio(bill_name, description)
        if exact:
            score += 40
            exact_name = True
            reasons.append("Exact name match")
        elif partial:
            score += 30
            reasons.append("Partial name match")
        elif ratio > 0.5:
            score += 20
            reasons.append(f"Fuzzy name match ({round(ratio * 100)}%)")

    if bill.category and transaction.category:
        exact, partial = _exact_or_partial(bill.category, transaction.category)
        if exact:
            score += 30
            reasons.append("Exact category match")
        elif partial:
            score += 15
            reasons.append("Partial category match")

    if bill.recipient_name and transaction.recipient_name:
        exact, partial = _exact_or_partial(bill.recipient_name, transaction.recipient_name)
        if exact:
            score += 20
            reasons.append("Exact recipient match")
        elif partial:
            score += 10
            reasons.append("Partial recipient match")

    bill_amount = abs(bill.amount)
    txn_amount = abs(transaction.amount)
    exact_amount = False
    if bill_amount > 0 and txn_amount > 0:
        difference = abs(bill_amount - txn_amount)
        percentage = difference / bill_amount * 100
        if difference == 0:
            score += 30
            exact_amount = True
            reasons.append("Exact amount match")
        elif percentage <= settings.amount_tolerance:
            score += 15
            reasons.append(f"Amount within tolerance ({percentage:.1f}% diff)")
        elif percentage <= settings.amount_tolerance * 2:
            score += 8
            reasons.append(f"Amount close ({percentage:.1f}% diff)")

    if exact_name and exact_amount:
        score += 10
        reasons.append("Bonus: Exact name + Exact amount match")

    if bill.due_date and transaction.date is not None:
        days = abs((transaction.date.date() - bill.due_date).days)
        tolerance = _date_tolerance(bill, settings)
        if days <= tolerance:
            score += max(0, 10 - days)
            reasons.append(f"Date within tolerance ({days} days from due date)")
        elif days <= tolerance * 2:
            score += 2
            reasons.append(f"Date somewhat close ({days} days from due date)")

    if score < settings.min_match_score:
        return None

    if score >= 70:
        confidence = Confidence.high
    elif score >= 50:
        confidence = Confidence.medium
    else:
        confidence = Confidence.low
    return BillMatch(bill, transaction, score, confidence, reasons)


def find_bill_matches(
    transactions: Sequence[TransactionRecord],
    bills: Sequence[RecurringTransactionIn],
    settings: BillMatchingSettings = DEFAULT_MATCHING_SETTINGS,
) -> list[BillMatch]:
    """Assign each bill at most one transaction, best scores first."""
    if not settings.enabled:
        return []

    candidates: list[BillMatch] = []
    for txn in transactions:
        if not txn.is_expense:
            continue
        for bill in bills:
            match = match_transaction_to_bill(txn, bill, settings)
            if match is not None:
                candidates.append(match)
    candidates.sort(key=lambda m: m.score, reverse=True)

    matches: list[BillMatch] = []
    used_transactions: set[str] = set()
    used_bills: set[int] = set()
    for match in candidates:
        txn_key = match.transaction.id
        bill_key = id(match.bill)
        if txn_key in used_transactions or bill_key in used_bills:
            continue
        matches.append(match)
        used_transactions.add(txn_key)
        used_bills.add(bill_key)
    return matches
