"""Pydantic schemas package."""

from household_ledger.schemas.base import CamelModel
from household_ledger.schemas.imports import (
    CsvExecuteRequest,
    CsvImportRequest,
    ExecuteResponse,
    FieldChangeResponse,
    MatchActionEnum,
    MatchedTransaction,
    ParsedRow,
    PreviewResponse,
    PreviewRow,
    PreviewSummary,
    SkippedRowResponse,
    SyncExecuteRequest,
    SyncPreviewRequest,
    SyncTransactionIn,
)

__all__ = [
    "CamelModel",
    "CsvExecuteRequest",
    "CsvImportRequest",
    "ExecuteResponse",
    "FieldChangeResponse",
    "MatchActionEnum",
    "MatchedTransaction",
    "ParsedRow",
    "PreviewResponse",
    "PreviewRow",
    "PreviewSummary",
    "SkippedRowResponse",
    "SyncExecuteRequest",
    "SyncPreviewRequest",
    "SyncTransactionIn",
]
