"""CSV import and bank sync reconciliation API router."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from household_ledger.deps import DbSession
from household_ledger.models import Account
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
)
from household_ledger.services.adapters import records_from_csv_rows, records_from_sync_transactions
from household_ledger.services.candidate_pool import MatchScope
from household_ledger.services.executor import ExecuteReport, PersistenceError
from household_ledger.services.matcher import MatchResult
from household_ledger.services.reconciliation import (
    PreviewReport,
    execute_reconciliation,
    preview_reconciliation,
)
from household_ledger.services.resolution import DirectoryResolver
from household_ledger.services.rules import NullRuleEngine, RuleEngine
from household_ledger.utils.exceptions import raise_bad_request, raise_internal_error, raise_not_found

router = APIRouter(tags=["imports"])


def get_rule_engine() -> RuleEngine:
    """Rule engine used to categorize created transactions.

    Households without categorization rules get NullRuleEngine. Deployments
    with a rule store install theirs by overriding this dependency:

        app.dependency_overrides[get_rule_engine] = lambda: MyRuleEngine(...)
    """
    return NullRuleEngine()


def _build_preview_row(result: MatchResult) -> PreviewRow:
    record = result.record
    matched = result.matched
    return PreviewRow(
        row_number=result.row_number,
        action=MatchActionEnum(result.action.value),
        parsed=ParsedRow(
            date=record.date,
            amount=record.amount,
            description=record.description,
            merchant=record.merchant,
            category=record.category_name,
            category_id=result.category_id,
            account_id=result.account_id,
            account_name=result.account_name or record.account_name,
            notes=record.notes,
        ),
        matched_transaction=MatchedTransaction(
            id=matched.id,
            date=matched.date,
            amount=matched.amount,
            description=matched.description,
            merchant_name=matched.merchant_name,
            category_id=matched.category_id,
            notes=matched.notes,
            is_manual=matched.is_manual,
        )
        if matched
        else None,
        match_confidence=result.confidence,
        changes=[
            FieldChangeResponse(field=change.field, from_value=change.from_value, to_value=change.to_value)
            for change in result.changes
        ]
        or None,
        skip_reason=result.skip_reason,
        warnings=result.warnings,
    )


def _build_preview_response(report: PreviewReport) -> PreviewResponse:
    return PreviewResponse(
        total_rows=report.total_rows,
        summary=PreviewSummary(**report.summary),
        rows=[_build_preview_row(result) for result in report.rows],
    )


def _build_execute_response(report: ExecuteReport) -> ExecuteResponse:
    return ExecuteResponse(
        created=report.created,
        updated=report.updated,
        skipped=report.skipped,
        rules_applied=report.rules_applied,
        skipped_details=[
            SkippedRowResponse(row_number=row.row_number, reason=row.reason) for row in report.skipped_details
        ],
    )


async def _csv_resolver(db: AsyncSession, payload: CsvImportRequest) -> DirectoryResolver:
    resolver = await DirectoryResolver.load(db, payload.household_id, payload.default_account_id)
    if payload.default_account_id is not None and resolver.default_account_id is None:
        raise_bad_request("Default account does not belong to this household")
    return resolver


async def _sync_account(db: AsyncSession, household_id: UUID, account_id: UUID) -> Account:
    result = await db.execute(
        select(Account).where(Account.id == account_id).where(Account.household_id == household_id)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise_not_found("Account")
    return account


@router.post("/imports/csv/preview", response_model=PreviewResponse)
async def preview_csv_import(payload: CsvImportRequest, db: DbSession) -> PreviewResponse:
    resolver = await _csv_resolver(db, payload)
    report = await preview_reconciliation(
        db,
        records_from_csv_rows(payload.rows),
        MatchScope.for_file_import(payload.household_id),
        resolver,
    )
    return _build_preview_response(report)


@router.post("/imports/csv/execute", response_model=ExecuteResponse)
async def execute_csv_import(
    payload: CsvExecuteRequest,
    db: DbSession,
    rule_engine: RuleEngine = Depends(get_rule_engine),
) -> ExecuteResponse:
    resolver = await _csv_resolver(db, payload)
    try:
        report = await execute_reconciliation(
            db,
            records_from_csv_rows(payload.rows),
            MatchScope.for_file_import(payload.household_id),
            resolver,
            skip_rows=payload.skip_rows,
            rule_engine=rule_engine,
        )
    except PersistenceError as exc:
        raise_internal_error(f"Import failed, no changes were saved: {exc}", cause=exc)
    return _build_execute_response(report)


@router.post("/accounts/{account_id}/sync/preview", response_model=PreviewResponse)
async def preview_sync(account_id: UUID, payload: SyncPreviewRequest, db: DbSession) -> PreviewResponse:
    account = await _sync_account(db, payload.household_id, account_id)
    resolver = await DirectoryResolver.load(db, payload.household_id)
    report = await preview_reconciliation(
        db,
        records_from_sync_transactions(payload.transactions, account.id),
        MatchScope.for_bank_sync(payload.household_id, account.id),
        resolver,
    )
    return _build_preview_response(report)


@router.post("/accounts/{account_id}/sync/execute", response_model=ExecuteResponse)
async def execute_sync(
    account_id: UUID,
    payload: SyncExecuteRequest,
    db: DbSession,
    rule_engine: RuleEngine = Depends(get_rule_engine),
) -> ExecuteResponse:
    account = await _sync_account(db, payload.household_id, account_id)
    resolver = await DirectoryResolver.load(db, payload.household_id)
    try:
        report = await execute_reconciliation(
            db,
            records_from_sync_transactions(payload.transactions, account.id),
            MatchScope.for_bank_sync(payload.household_id, account.id),
            resolver,
            skip_rows=payload.skip_rows,
            rule_engine=rule_engine,
        )
    except PersistenceError as exc:
        raise_internal_error(f"Sync failed, no changes were saved: {exc}", cause=exc)
    return _build_execute_response(report)
