from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence

from schemas import TransactionRecord


logger = logging.getLogger(__name__)

BASE_CURRENCY = "EUR"

# Units of each currency per 1 EUR.
EXCHANGE_RATES: dict[str, Decimal] = {
    "EUR": Decimal("1.0"),
    "USD": Decimal("1.08"),
    "GBP": Decimal("0.85"),
    "SEK": Decimal("11.5"),
    "DKK": Decimal("7.45"),
    "NOK": Decimal("11.8"),
    "PLN": Decimal("4.3"),
    "CHF": Decimal("0.95"),
    "JPY": Decimal("160.0"),
}

# Checked in order; the first hit in a description wins.
CURRENCY_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("USD", re.compile(r"\$|USD|US\s*DOLLAR", re.IGNORECASE)),
    ("GBP", re.compile(r"£|GBP|POUND", re.IGNORECASE)),
    ("EUR", re.compile(r"€|EUR|EURO", re.IGNORECASE)),
    ("SEK", re.compile(r"SEK|SWEDISH", re.IGNORECASE)),
    ("DKK", re.compile(r"DKK|DANISH", re.IGNORECASE)),
    ("NOK", re.compile(r"NOK|NORWEGIAN", re.IGNORECASE)),
    ("PLN", re.compile(r"PLN|POLISH|ZŁ", re.IGNORECASE)),
    ("CHF", re.compile(r"CHF|SWISS", re.IGNORECASE)),
    ("JPY", re.compile(r"¥|JPY|YEN", re.IGNORECASE)),
]


@dataclass(frozen=True)
class CurrencyConversion:
    original_amount: Decimal
    original_currency: str
    converted_amount: Decimal
    target_currency: str
    rate: Decimal  # target per 1 original


def _known(currency: str, rates: dict[str, Decimal]) -> bool:
    if currency in rates:
        return True
    logger.warning("fx_unknown_currency: currency=%s", currency)
    return False


def exchange_rate(
    from_currency: str,
    to_currency: str,
    rates: Optional[dict[str, Decimal]] = None,
) -> Decimal:
    """Units of ``to_currency`` per one ``from_currency``.

    Unknown currencies convert at 1 so a stray code never blocks a report.
    """
    rates = EXCHANGE_RATES if rates is None else rates
    source, target = from_currency.upper(), to_currency.upper()
    if source == target:
        return Decimal("1")
    if not (_known(source, rates) and _known(target, rates)):
        return Decimal("1")
    return rates[target] / rates[source]


def convert_amount(
    amount: float | Decimal,
    from_currency: str,
    to_currency: str,
    rates: Optional[dict[str, Decimal]] = None,
) -> Decimal:
    value = Decimal(str(amount))
    converted = value * exchange_rate(from_currency, to_currency, rates)
    return converted.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def detect_currency(
    currency: Optional[str] = None,
    description: Optional[str] = None,
    default: str = BASE_CURRENCY,
) -> str:
    if currency and currency.strip():
        return currency.strip().upper()
    text = description or ""
    for code, pattern in CURRENCY_PATTERNS:
        if pattern.search(text):
            return code
    return default


def convert_record(
    txn: TransactionRecord,
    base_currency: str = BASE_CURRENCY,
    rates: Optional[dict[str, Decimal]] = None,
) -> CurrencyConversion:
    source = detect_currency(txn.currency, txn.description, default=base_currency)
    magnitude = Decimal(str(abs(txn.amount)))
    converted = convert_amount(magnitude, source, base_currency, rates)
    sign = Decimal("-1") if txn.amount < 0 else Decimal("1")
    return CurrencyConversion(
        original_amount=sign * magnitude,
        original_currency=source,
        converted_amount=sign * converted,
        target_currency=base_currency.upper(),
        rate=exchange_rate(source, base_currency, rates),
    )


def normalize_to_base_currency(
    transactions: Sequence[TransactionRecord],
    base_currency: str = BASE_CURRENCY,
    rates: Optional[dict[str, Decimal]] = None,
) -> list[TransactionRecord]:
    """Return copies of ``transactions`` restated in ``base_currency``, sign kept."""
    normalized = []
    for txn in transactions:
        conversion = convert_record(txn, base_currency, rates)
        normalized.append(
            txn.model_copy(
                update={
                    "amount": float(conversion.converted_amount),
                    "currency": conversion.target_currency,
                }
            )
        )
    return normalized
