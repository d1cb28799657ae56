import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from schemas import TransactionRecord


logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 150.0


@dataclass(frozen=True)
class SimilarityScore:
    score: float
    reasons: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DuplicateAlert:
    transaction: TransactionRecord
    similar_transactions: list[TransactionRecord]
    similarity_score: float
    reason: str


@dataclass(frozen=True)
class DuplicateDetectionResult:
    alerts: list[DuplicateAlert] = field(default_factory=list)
    total_duplicates: int = 0


def _words(text: str) -> list[str]:
    return [w for w in text.split() if len(w) > 2]


def similarity(a: TransactionRecord, b: TransactionRecord) -> SimilarityScore:
    """Weighted sum of independent duplicate signals between two transactions."""
    score = 0.0
    reasons: list[str] = []

    amount_a = abs(a.amount)
    amount_b = abs(b.amount)
    if amount_a > 0 and amount_a == amount_b:
        score += 100
        reasons.append("Exact amount match")
    elif amount_a > 0 and amount_b > 0:
        diff = abs(amount_a - amount_b) / max(amount_a, amount_b)
        if diff < 0.01:
            score += 80
            reasons.append("Nearly identical amount")
        elif diff < 0.05:
            score += 50
            reasons.append("Similar amount")

    desc_a = (a.description or "").strip().lower()
    desc_b = (b.description or "").strip().lower()
    if desc_a and desc_a == desc_b:
        score += 80
        reasons.append("Exact description match")
    elif desc_a and desc_b:
        words_a = _words(desc_a)
        words_b = _words(desc_b)
        common = [w for w in words_a if w in words_b]
        if common:
            score += len(common) / max(len(words_a), len(words_b)) * 60
            reasons.append(f"{len(common)} common words")

    recipient_a = (a.recipient_name or "").strip().lower()
    recipient_b = (b.recipient_name or "").strip().lower()
    if recipient_a and recipient_a == recipient_b:
        score += 70
        reasons.append("Same recipient")

    ref_a = (a.reference_number or "").strip()
    ref_b = (b.reference_number or "").strip()
    if ref_a and ref_a == ref_b:
        score += 90
        reasons.append("Same reference number")

    if a.date is not None and b.date is not None:
        days = abs((a.date.date() - b.date.date()).days)
        if days == 0:
            score += 50
            reasons.append("Same date")
        elif days <= 1:
            score += 30
            reasons.append("Within 1 day")
        elif days <= 7:
            score += 20
            reasons.append("Within 7 days")

    if a.category and a.category == b.category:
        score += 20
        reasons.append("Same category")

    return SimilarityScore(score, reasons)


def _newest_first(transactions: Sequence[TransactionRecord]) -> list[TransactionRecord]:
    # Undated rows sink to the end; ties keep input order.
    return sorted(transactions, key=lambda t: t.date or datetime.min, reverse=True)


def _collect_group(
    anchor_index: int,
    ordered: Sequence[TransactionRecord],
    threshold: float,
    visited: set[int],
) -> list[tuple[TransactionRecord, SimilarityScore]]:
    anchor = ordered[anchor_index]
    group: list[tuple[TransactionRecord, SimilarityScore]] = []
    for index in range(anchor_index + 1, len(ordered)):
        if index in visited:
            continue
        candidate = ordered[index]
        result = similarity(anchor, candidate)
        if result.score >= threshold:
            group.append((candidate, result))
            visited.add(index)
    return group


def detect_duplicates(
    transactions: Sequence[TransactionRecord],
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    *,
    visited: Optional[set[int]] = None,
) -> DuplicateDetectionResult:
    """Group probable duplicates around the newest transaction of each cluster.

    ``visited`` holds positions in the newest-first ordering that already
    belong to a group; a visited transaction can neither anchor a group nor
    join a second one.
    """
    if similarity_threshold <= 0:
        raise ValueError(
            f"similarity_threshold must be positive, got {similarity_threshold}"
        )
    ordered = _newest_first(transactions)
    visited = set() if visited is None else visited

    alerts: list[DuplicateAlert] = []
    for index, anchor in enumerate(ordered):
        if index in visited:
            continue
        group = _collect_group(index, ordered, similarity_threshold, visited)
        if not group:
            continue
        visited.add(index)
        average = sum(result.score for _, result in group) / len(group)
        alerts.append(
            DuplicateAlert(
                transaction=anchor,
                similar_transactions=[txn for txn, _ in group],
                similarity_score=average,
                reason=", ".join(group[0][1].reasons),
            )
        )
        logger.debug(
            "duplicate_group: anchor=%s members=%d score=%.1f",
            anchor.id,
            len(group),
            average,
        )

    return DuplicateDetectionResult(
        alerts=alerts,
        total_duplicates=sum(len(a.similar_transactions) for a in alerts),
    )
