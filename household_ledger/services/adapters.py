"""Adapters turning CSV rows and sync-feed transactions into IncomingRecords."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from uuid import UUID

from household_ledger.schemas.imports import SyncTransactionIn
from household_ledger.services.matcher import IncomingRecord

CENTS = Decimal("0.01")
# Largest magnitude a Numeric(14, 2) amount column holds.
MAX_AMOUNT = Decimal("999999999999.99")
PENDING_WARNING = "Pending transaction, may change or be removed"

# Row 1 of an uploaded file is the header.
CSV_FIRST_DATA_ROW = 2

_COLUMN_ALIASES = {
    "id": "id",
    "externalid": "external_id",
    "date": "date",
    "amount": "amount",
    "type": "type",
    "description": "description",
    "merchant": "merchant",
    "merchantname": "merchant",
    "category": "category",
    "account": "account",
    "accountname": "account",
    "notes": "notes",
    "note": "notes",
    "memo": "notes",
}

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_US_SLASH_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_US_DASH_DATE = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")
_AMOUNT_NOISE = re.compile(r"[$€£¥,\s]")
_PARENTHESIZED = re.compile(r"^\((.+)\)$")

_OUTFLOW_TYPES = {"expense", "debit", "withdrawal"}
_INFLOW_TYPES = {"income", "credit", "deposit"}


def normalize_column_name(header: str) -> str:
    """Map a CSV header to a known field name; unknown headers pass through."""
    key = re.sub(r"[^a-z0-9]", "", header.lower())
    return _COLUMN_ALIASES.get(key, header)


def parse_date(value: str | None) -> date | None:
    """Parse ISO, MM/DD/YYYY or MM-DD-YYYY dates; None if unparseable."""
    if not value or not value.strip():
        return None
    trimmed = value.strip()
    try:
        if match := _ISO_DATE.match(trimmed):
            year, month, day = match.groups()
            return date(int(year), int(month), int(day))
        if match := _US_SLASH_DATE.match(trimmed) or _US_DASH_DATE.match(trimmed):
            month, day, year = match.groups()
            return date(int(year), int(month), int(day))
        return datetime.fromisoformat(trimmed).date()
    except ValueError:
        return None


def parse_amount(value: str | None) -> Decimal | None:
    """Parse a money string, handling currency symbols and (accounting) negatives."""
    if not value or not value.strip():
        return None
    cleaned = _AMOUNT_NOISE.sub("", value.strip())
    negative = False
    if match := _PARENTHESIZED.match(cleaned):
        cleaned = match.group(1)
        negative = True
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    amount = to_cents(amount)
    if amount is None:
        return None
    return -amount if negative else amount


def to_cents(amount: Decimal) -> Decimal | None:
    """Round to cents; None if not finite or too large to store."""
    if not amount.is_finite():
        return None
    try:
        amount = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None
    if abs(amount) > MAX_AMOUNT:
        return None
    return amount


def resolve_amount_sign(amount: Decimal, type_value: str | None) -> Decimal:
    """Apply the sign implied by a Type column (expense/income and friends)."""
    if not type_value:
        return amount
    normalized = type_value.strip().lower()
    if normalized in _OUTFLOW_TYPES:
        return -abs(amount)
    if normalized in _INFLOW_TYPES:
        return abs(amount)
    return amount


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def record_from_csv_row(row_number: int, values: Mapping[str, str | None]) -> IncomingRecord:
    fields = {normalize_column_name(header): value for header, value in values.items()}

    amount = parse_amount(fields.get("amount"))
    if amount is not None:
        amount = resolve_amount_sign(amount, _optional(fields.get("type")))

    return IncomingRecord(
        row_number=row_number,
        date=parse_date(fields.get("date")),
        amount=amount,
        description=(fields.get("description") or "").strip(),
        merchant=_optional(fields.get("merchant")),
        external_id=_optional(fields.get("external_id")),
        internal_id=_optional(fields.get("id")),
        account_name=_optional(fields.get("account")),
        category_name=_optional(fields.get("category")),
        notes=_optional(fields.get("notes")),
    )


def records_from_csv_rows(rows: Sequence[Mapping[str, str | None]]) -> list[IncomingRecord]:
    return [record_from_csv_row(index + CSV_FIRST_DATA_ROW, row) for index, row in enumerate(rows)]


def record_from_sync_transaction(index: int, txn: SyncTransactionIn, account_id: UUID) -> IncomingRecord:
    """Adapt one sync-feed transaction; amounts arrive already signed (negative = outflow)."""
    return IncomingRecord(
        row_number=index + 1,
        date=txn.date,
        amount=to_cents(txn.amount),
        description=txn.name.strip(),
        merchant=_optional(txn.merchant_name),
        external_id=txn.transaction_id,
        account_id=account_id,
        category_name=_optional(txn.category),
        warnings=(PENDING_WARNING,) if txn.pending else (),
    )


def records_from_sync_transactions(
    transactions: Sequence[SyncTransactionIn], account_id: UUID
) -> list[IncomingRecord]:
    return [record_from_sync_transaction(index, txn, account_id) for index, txn in enumerate(transactions)]
