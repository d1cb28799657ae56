"""Rule-based categorization of bank transaction text.

Rules live in one ordered table and are evaluated top to bottom; the first
match wins. The families, in order:

1. explicit reference number -> Bills
2. point-of-sale markers and masked card numbers -> Card Payment
3. ATM markers -> ATM Withdrawal
4. keyword lists (user rules first, then loans, utilities, merchants, bills)
5. card-network timestamps such as ``(..1234) 2024-01-02 13:45`` -> Card Payment
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, Iterable, Optional, Sequence

from models import Confidence, RuleMatchType
from schemas import CategoryRuleIn, TransactionRecord


logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Other"
INCOME_CATEGORY = "Income"
INCOME_CATEGORIES = frozenset(
    name.lower()
    for name in (
        "Income",
        "Palk",
        "Salary",
        "Freelance",
        "Investment",
        "Gift",
        "Refund",
        "Bonus",
    )
)

POS_PATTERN = re.compile(r"pos\s*:", re.IGNORECASE)
MASKED_CARD_PATTERN = re.compile(r"\d{4}\s+\d{2}\*{2,}")
CARD_TIMESTAMP_PATTERN = re.compile(r"\(\.\.\d+\)\s+\d{4}-\d{2}-\d{2}\s+\d{1,2}:\d{2}")
ATM_PREFIX_PATTERN = re.compile(r"^(?:atm|automaat)\s*:?\s+|^atm\s*:", re.IGNORECASE)
ATM_PATTERNS = (
    re.compile(r"atm\s*:", re.IGNORECASE),
    re.compile(r"atm\s+withdrawal", re.IGNORECASE),
    re.compile(r"atm\s+transaction", re.IGNORECASE),
    re.compile(r"withdrawal\s+at\s+atm", re.IGNORECASE),
    re.compile(r"automaat", re.IGNORECASE),
)
DESCRIPTION_REFERENCE_PATTERN = re.compile(r"\b\d{7,20}\b")
PAYMENT_CODE_PATTERN = re.compile(r"^\d{8,}\s+[a-z]|^[a-z0-9]{10,}\s", re.IGNORECASE)


def _keyword_pattern(keywords: Iterable[str]) -> re.Pattern:
    alternatives = "|".join(re.escape(k) for k in sorted(keywords, key=len, reverse=True))
    return re.compile(rf"(?<!\w)(?:{alternatives})(?!\w)", re.IGNORECASE)


GROCERY_KEYWORDS = _keyword_pattern(
    ["rimi", "maxima", "prisma", "selver", "lidl", "coop", "konsum", "grossi", "a1000"]
)
TRANSPORT_KEYWORDS = _keyword_pattern(
    ["bolt", "uber", "elron", "circle k", "neste", "alexela", "olerex", "ühistransport"]
)
DINING_KEYWORDS = _keyword_pattern(
    ["wolt", "mcdonalds", "mcdonald's", "hesburger", "restoran", "kohvik", "pizza"]
)
BILL_KEYWORDS = _keyword_pattern(
    [
        "arve",
        "makse",
        "viitenumber",
        "reference number",
        "invoice",
        "bill",
        "utility",
        "kommunaal",
        "kommunaalid",
        "elekter",
        "vesi",
        "gaas",
        "internet",
        "telefon",
        "tv",
        "rent",
        "üür",
        "blid",
        "staycool",
    ]
)
CARD_KEYWORDS = _keyword_pattern(
    ["kaart", "card payment", "purchase", "ost", "makse kaardiga"]
)


@dataclass(frozen=True)
class TransactionText:
    description: str
    reference_number: str
    recipient_name: str
    amount: Optional[float] = None

    @property
    def combined(self) -> str:
        return f"{self.description} {self.reference_number} {self.recipient_name}".lower()

    @property
    def has_pos_marker(self) -> bool:
        return bool(
            POS_PATTERN.search(self.description) or POS_PATTERN.search(self.combined)
        )

    @property
    def has_masked_card(self) -> bool:
        return bool(MASKED_CARD_PATTERN.search(self.description))

    @property
    def has_card_timestamp(self) -> bool:
        return bool(CARD_TIMESTAMP_PATTERN.search(self.description))

    @property
    def has_atm_marker(self) -> bool:
        if ATM_PREFIX_PATTERN.search(self.description):
            return True
        return any(p.search(self.combined) for p in ATM_PATTERNS)

    @property
    def looks_like_card_payment(self) -> bool:
        return self.has_pos_marker or self.has_masked_card or self.has_card_timestamp


@dataclass(frozen=True)
class CategorizationResult:
    category: str
    confidence: Confidence
    reason: str


@dataclass(frozen=True)
class CategoryRule:
    name: str
    category: str
    confidence: Confidence
    predicate: Callable[[TransactionText], bool]

    def evaluate(self, text: TransactionText) -> Optional[CategorizationResult]:
        if not self.predicate(text):
            return None
        return CategorizationResult(self.category, self.confidence, self.name)


def _is_calendar_date(digits: str) -> bool:
    if len(digits) != 8:
        return False
    try:
        parsed = date(int(digits[:4]), int(digits[4:6]), int(digits[6:8]))
    except ValueError:
        return False
    return 1900 <= parsed.year <= 2100


def _has_reference_number(text: TransactionText) -> bool:
    clean = re.sub(r"\s+", "", text.reference_number)
    if not clean or not re.search(r"\d", clean):
        return False
    return not (text.looks_like_card_payment or text.has_atm_marker)


def _has_description_reference(text: TransactionText) -> bool:
    match = DESCRIPTION_REFERENCE_PATTERN.search(text.description)
    if not match or _is_calendar_date(match.group(0)):
        return False
    return not text.looks_like_card_payment


def _not_card(predicate: Callable[[TransactionText], bool]) -> Callable[[TransactionText], bool]:
    def guarded(text: TransactionText) -> bool:
        return not text.looks_like_card_payment and predicate(text)

    return guarded


def _custom_rule(rule: CategoryRuleIn) -> CategoryRule:
    needle = rule.match_value.strip()
    needle_lower = needle.lower()

    def matches(text: TransactionText) -> bool:
        description = text.description.strip()
        description_lower = description.lower()
        recipient_lower = text.recipient_name.strip().lower()
        if rule.match_type == RuleMatchType.contains:
            return needle_lower in description_lower or needle_lower in recipient_lower
        if rule.match_type == RuleMatchType.equals:
            return description_lower == needle_lower
        if rule.match_type == RuleMatchType.starts_with:
            return description_lower.startswith(needle_lower)
        if rule.match_type == RuleMatchType.regex:
            try:
                return (
                    re.search(needle, description, flags=re.IGNORECASE) is not None
                    or re.search(needle, text.recipient_name, flags=re.IGNORECASE)
                    is not None
                )
            except re.error:
                return False
        return False

    return CategoryRule(f"User rule: {rule.name}", rule.category, Confidence.high, matches)


def build_rules(custom_rules: Sequence[CategoryRuleIn] = ()) -> tuple[CategoryRule, ...]:
    """Assemble the ordered rule table, user rules heading the keyword family."""
    user_rules = [
        _custom_rule(rule)
        for rule in sorted(custom_rules, key=lambda r: (r.priority, r.name))
        if rule.enabled
    ]
    return (
        CategoryRule(
            "Reference number detected", "Bills", Confidence.high, _has_reference_number
        ),
        CategoryRule(
            "POS: prefix detected",
            "Card Payment",
            Confidence.high,
            lambda t: t.has_pos_marker,
        ),
        CategoryRule(
            "Masked card number detected",
            "Card Payment",
            Confidence.high,
            lambda t: t.has_masked_card,
        ),
        CategoryRule(
            "ATM marker detected",
            "ATM Withdrawal",
            Confidence.high,
            lambda t: t.has_atm_marker,
        ),
        *user_rules,
        CategoryRule(
            "Loan pattern detected",
            "Kodulaen",
            Confidence.high,
            lambda t: bool(re.search(r"laenu\s+\d+|kodulaen", t.combined)),
        ),
        CategoryRule(
            "Energy self-service detected",
            "Kommunaalid",
            Confidence.high,
            lambda t: "iseteenindus.energia" in t.combined,
        ),
        CategoryRule(
            "PSD2/KLIX payment reference detected",
            "ESTO",
            Confidence.high,
            _not_card(lambda t: bool(re.search(r"psd2\s*-|klix", t.combined))),
        ),
        CategoryRule(
            "Reference number in description",
            "Bills",
            Confidence.high,
            _has_description_reference,
        ),
        CategoryRule(
            "Grocery merchant",
            "Groceries",
            Confidence.medium,
            lambda t: bool(GROCERY_KEYWORDS.search(t.combined)),
        ),
        CategoryRule(
            "Transport merchant",
            "Transport",
            Confidence.medium,
            lambda t: bool(TRANSPORT_KEYWORDS.search(t.combined)),
        ),
        CategoryRule(
            "Dining merchant",
            "Dining",
            Confidence.medium,
            lambda t: bool(DINING_KEYWORDS.search(t.combined)),
        ),
        CategoryRule(
            "Bill-related keyword",
            "Bills",
            Confidence.medium,
            _not_card(lambda t: bool(BILL_KEYWORDS.search(t.combined))),
        ),
        CategoryRule(
            "Payment reference code detected",
            "Bills",
            Confidence.medium,
            _not_card(lambda t: bool(PAYMENT_CODE_PATTERN.search(t.description))),
        ),
        CategoryRule(
            "Card timestamp detected",
            "Card Payment",
            Confidence.high,
            lambda t: t.has_card_timestamp,
        ),
        CategoryRule(
            "Card-related keyword",
            "Card Payment",
            Confidence.medium,
            lambda t: bool(CARD_KEYWORDS.search(t.combined)),
        ),
    )


DEFAULT_RULES = build_rules()


def categorize_transaction(
    description: str = "",
    reference_number: Optional[str] = None,
    recipient_name: Optional[str] = None,
    amount: Optional[float] = None,
    *,
    rules: Sequence[CategoryRule] = DEFAULT_RULES,
) -> CategorizationResult:
    text = TransactionText(
        description=(description or "").strip(),
        reference_number=(reference_number or "").strip(),
        recipient_name=(recipient_name or "").strip(),
        amount=amount,
    )
    for rule in rules:
        result = rule.evaluate(text)
        if result is not None:
            logger.debug("categorized: rule=%r category=%s", rule.name, rule.category)
            return result
    return CategorizationResult(
        DEFAULT_CATEGORY, Confidence.low, "No specific pattern detected"
    )


def suggest_category(
    description: str = "",
    reference_number: Optional[str] = None,
    recipient_name: Optional[str] = None,
    amount: Optional[float] = None,
    *,
    rules: Sequence[CategoryRule] = DEFAULT_RULES,
) -> Optional[str]:
    """Category label for high and medium confidence matches, else ``None``."""
    result = categorize_transaction(
        description, reference_number, recipient_name, amount, rules=rules
    )
    if result.confidence in (Confidence.high, Confidence.medium):
        return result.category
    return None


def needs_recategorization(
    category: Optional[str],
    description: Optional[str] = None,
    archive_id: Optional[str] = None,
) -> bool:
    if not category or not category.strip():
        return True
    if category.strip().lower() == DEFAULT_CATEGORY.lower():
        return True
    if POS_PATTERN.search(category) or MASKED_CARD_PATTERN.search(category):
        return True
    # Banks routinely file card-network timestamps under unrelated labels.
    return bool(
        CARD_TIMESTAMP_PATTERN.search(f"{description or ''} {archive_id or ''}")
    )


def resolve_category(
    txn: TransactionRecord, *, rules: Sequence[CategoryRule] = DEFAULT_RULES
) -> str:
    """Effective category of a stored transaction.

    Income rows keep only income-type labels. Expense rows are re-run through
    the rules when their stored label is empty, generic or leaked bank text.
    """
    category = (txn.category or "").strip() or DEFAULT_CATEGORY
    if txn.is_income:
        if category.lower() in INCOME_CATEGORIES:
            return category
        return INCOME_CATEGORY

    if not needs_recategorization(txn.category, txn.description, txn.archive_id):
        return category

    description = (txn.description or "").strip()
    archive_id = (txn.archive_id or "").strip()
    full_description = f"{description} {archive_id}".strip() if archive_id else description
    suggested = suggest_category(
        full_description or category,
        txn.reference_number,
        txn.recipient_name,
        txn.amount,
        rules=rules,
    )
    return suggested or category
