"""Pydantic schemas for the CSV import and bank sync reconciliation API."""

import datetime as dt
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import Field

from household_ledger.schemas.base import CamelModel


class MatchActionEnum(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    UNCHANGED = "unchanged"
    SKIP = "skip"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CsvImportRequest(CamelModel):
    """Already-tokenized CSV rows keyed by their original header."""

    household_id: UUID
    default_account_id: UUID | None = None
    rows: list[dict[str, str | None]] = Field(default_factory=list, max_length=10000)


class CsvExecuteRequest(CsvImportRequest):
    skip_rows: list[int] = Field(default_factory=list)


class SyncTransactionIn(CamelModel):
    """A transaction delivered by the bank-aggregator feed, amount already signed."""

    transaction_id: str = Field(min_length=1)
    date: dt.date
    amount: Decimal
    name: str
    merchant_name: str | None = None
    category: str | None = None
    pending: bool = False


class SyncPreviewRequest(CamelModel):
    household_id: UUID
    transactions: list[SyncTransactionIn] = Field(default_factory=list, max_length=10000)


class SyncExecuteRequest(SyncPreviewRequest):
    skip_rows: list[int] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ParsedRow(CamelModel):
    date: dt.date | None
    amount: Decimal | None
    description: str
    merchant: str | None = None
    category: str | None = None
    category_id: UUID | None = None
    account_id: UUID | None = None
    account_name: str | None = None
    notes: str | None = None


class MatchedTransaction(CamelModel):
    id: UUID
    date: dt.date
    amount: Decimal
    description: str
    merchant_name: str | None
    category_id: UUID | None
    notes: str | None
    is_manual: bool


class FieldChangeResponse(CamelModel):
    field: str
    from_value: str = Field(alias="from")
    to_value: str = Field(alias="to")


class PreviewRow(CamelModel):
    row_number: int
    action: MatchActionEnum
    parsed: ParsedRow
    matched_transaction: MatchedTransaction | None = None
    match_confidence: Decimal | None = None
    changes: list[FieldChangeResponse] | None = None
    skip_reason: str | None = None
    warnings: list[str] = Field(default_factory=list)


class PreviewSummary(CamelModel):
    create: int = 0
    update: int = 0
    skip: int = 0
    unchanged: int = 0


class PreviewResponse(CamelModel):
    total_rows: int
    summary: PreviewSummary
    rows: list[PreviewRow]


class SkippedRowResponse(CamelModel):
    row_number: int
    reason: str


class ExecuteResponse(CamelModel):
    created: int
    updated: int
    skipped: int
    rules_applied: int
    skipped_details: list[SkippedRowResponse]
