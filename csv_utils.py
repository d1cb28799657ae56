import csv
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import TYPE_CHECKING, Any, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from schemas import TransactionRecord


_DATETIME_FORMATS = (
    "%d.%m.%Y %H:%M:%S",
    "%d.%m.%Y %H:%M",
    "%d.%m.%Y",
    "%d/%m/%Y",
)


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_datetime(value: Any) -> datetime:
    """Parse a transaction timestamp into a naive local datetime.

    Accepts datetimes, dates (midnight), ISO strings and the ``DD.MM.YYYY``
    family used by Estonian bank exports. Timezone info is dropped, never
    converted.
    """
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        raise TypeError(f"Unsupported date value: {value!r}")

    clean = value.strip()
    if clean.endswith("Z"):
        clean = clean[:-1]
    try:
        return datetime.fromisoformat(clean).replace(tzinfo=None)
    except ValueError:
        pass
    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(clean, fmt)
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {value!r}")


def parse_amount(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("Boolean is not an amount")
    if isinstance(value, (int, float, Decimal)):
        amount = float(value)
    elif isinstance(value, str):
        clean = (
            value.strip()
            .replace("€", "")
            .replace("$", "")
            .replace(" ", "")
            .replace("\u00a0", "")
        )
        clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
        try:
            amount = float(Decimal(clean))
        except InvalidOperation as exc:
            raise ValueError("Invalid amount") from exc
    else:
        raise TypeError(f"Unsupported amount value: {value!r}")
    if math.isnan(amount) or math.isinf(amount):
        raise ValueError("Invalid amount")
    return amount


@dataclass(frozen=True)
class BankProfile:
    id: str
    name: str
    column_mapping: dict[str, tuple[str, ...]] = field(default_factory=dict)
    delimiter: Optional[str] = None
    has_debit_credit_indicator: bool = False


_COMMON_ESTONIAN_COLUMNS: dict[str, tuple[str, ...]] = {
    "date": ("kuupäev", "kuupaev", "tehingu kuupäev", "date"),
    "amount": ("summa", "summa eur", "summa (eur)", "amount"),
    "description": ("selgitus", "kirjeldus", "tehingu kirjeldus", "description"),
    "type": ("deebet/kreedit (d/c)", "deebet/kreedit", "d/k", "debit/credit", "dc"),
    "recipient_name": ("saaja/maksja nimi", "saaja/maksja", "saaja", "saaja nimi"),
    "reference_number": ("viitenumber", "viitenr", "reference"),
    "archive_id": ("arhiveerimistunnus", "archive id", "archiveid"),
    "currency": ("valuuta", "currency"),
}

BANK_PROFILES: tuple[BankProfile, ...] = (
    BankProfile(
        id="lhv",
        name="LHV Pank",
        column_mapping={
            **_COMMON_ESTONIAN_COLUMNS,
            "archive_id": ("kande viide", "arhiveerimistunnus", "archive id"),
        },
        delimiter=",",
    ),
    BankProfile(
        id="seb",
        name="SEB Pank",
        column_mapping=_COMMON_ESTONIAN_COLUMNS,
        delimiter=";",
        has_debit_credit_indicator=True,
    ),
    BankProfile(
        id="estonian",
        name="Swedbank / Coop / Luminor",
        column_mapping=_COMMON_ESTONIAN_COLUMNS,
        delimiter=";",
    ),
    BankProfile(
        id="generic",
        name="Generic CSV",
        column_mapping={
            "date": ("date", "transaction date", "kuupäev"),
            "amount": ("amount", "value", "sum", "summa"),
            "description": ("description", "memo", "note", "selgitus"),
            "type": ("type",),
            "category": ("category",),
            "recipient_name": ("recipient", "payee", "to", "saaja"),
            "reference_number": ("reference", "reference number", "viitenumber"),
            "archive_id": ("archive id", "id"),
            "currency": ("currency",),
        },
    ),
)


def _normalize_header(header: str) -> str:
    return header.strip().strip("\"'").lower()


def detect_bank_profile(headers: Sequence[str]) -> BankProfile:
    normalized = {_normalize_header(h) for h in headers}
    profiles = {p.id: p for p in BANK_PROFILES}
    if "kande viide" in normalized or "konto teenusepakkuja viide" in normalized:
        return profiles["lhv"]
    if "saaja panga kood" in normalized and "tüüp" in normalized:
        return profiles["seb"]
    if normalized & {"kuupäev", "kuupaev", "selgitus", "summa"}:
        return profiles["estonian"]
    return profiles["generic"]


def _sniff_delimiter(first_line: str) -> str:
    return ";" if first_line.count(";") > first_line.count(",") else ","


def _pick(row: dict[str, str], names: tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = row.get(name)
        if value is not None and value.strip():
            return value.strip()
    return None


def parse_csv(
    content: str, profile: Optional[BankProfile] = None
) -> tuple[list["TransactionRecord"], list[str]]:
    from schemas import TransactionRecord

    content = content.lstrip("\ufeff")
    first_line = content.splitlines()[0] if content.strip() else ""
    delimiter = (profile.delimiter if profile else None) or _sniff_delimiter(
        first_line
    )
    reader = csv.DictReader(StringIO(content), delimiter=delimiter)
    headers = reader.fieldnames or []
    profile = profile or detect_bank_profile(headers)
    mapping = profile.column_mapping

    records: list[TransactionRecord] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        row = {_normalize_header(k): (v or "") for k, v in raw.items() if k}
        try:
            date_raw = _pick(row, mapping.get("date", ()))
            if not date_raw:
                raise ValueError("Missing date")
            occurred_at = parse_datetime(date_raw)
            amount = parse_amount(_pick(row, mapping.get("amount", ())) or "")

            type_raw = (_pick(row, mapping.get("type", ())) or "").lower()
            txn_type: Optional[str] = None
            if type_raw in ("d", "debit", "deebet", "expense"):
                txn_type = "expense"
            elif type_raw in ("c", "k", "credit", "kreedit", "income"):
                txn_type = "income"
            if profile.has_debit_credit_indicator and txn_type == "expense":
                amount = -abs(amount)

            archive_id = _pick(row, mapping.get("archive_id", ()))
            records.append(
                TransactionRecord(
                    id=archive_id or f"row-{idx}",
                    date=occurred_at,
                    amount=amount,
                    type=txn_type,
                    category=_pick(row, mapping.get("category", ())),
                    description=_pick(row, mapping.get("description", ())),
                    recipient_name=_pick(row, mapping.get("recipient_name", ())),
                    reference_number=_pick(row, mapping.get("reference_number", ())),
                    archive_id=archive_id,
                    currency=_pick(row, mapping.get("currency", ())),
                )
            )
        except (TypeError, ValueError) as exc:
            errors.append(f"Row {idx}: {exc}")
    return records, errors


def export_transactions(records: Sequence["TransactionRecord"]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(
        ["Date", "Type", "Amount", "Category", "Description", "Recipient", "Reference"]
    )
    for record in records:
        writer.writerow(
            [
                record.date.isoformat(sep=" ") if record.date else "",
                "expense" if record.is_expense else "income",
                f"{record.amount:.2f}",
                sanitize_csv_value(record.category or ""),
                sanitize_csv_value(record.description or ""),
                sanitize_csv_value(record.recipient_name or ""),
                sanitize_csv_value(record.reference_number or ""),
            ]
        )
    return output.getvalue()
