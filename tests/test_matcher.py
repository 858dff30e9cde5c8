"""Tests for row classification against a candidate pool.

GIVEN: incoming records and stored transactions already loaded into a pool
WHEN: records are classified in one run
THEN: each record gets create/update/unchanged/skip and no stored
      transaction is linked to more than one record
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from household_ledger.services.candidate_pool import CandidatePool
from household_ledger.services.matcher import (
    ClaimSet,
    DuplicateClaimError,
    IncomingRecord,
    MatchAction,
    RecordValidationError,
    classify_records,
    diff_fields,
    summarize,
    validate_record,
)
from household_ledger.services.resolution import DirectoryResolver
from tests.factories import TransactionFactory

ACCOUNT_ID = uuid4()
OTHER_ACCOUNT_ID = uuid4()
DINING_ID = uuid4()
THRESHOLD = Decimal("0.70")


def _resolver(*, default: bool = True) -> DirectoryResolver:
    return DirectoryResolver(
        accounts_by_name={"checking": ACCOUNT_ID, "savings": OTHER_ACCOUNT_ID},
        account_names={ACCOUNT_ID: "Checking", OTHER_ACCOUNT_ID: "Savings"},
        categories_by_name={"dining": DINING_ID},
        category_ids={DINING_ID},
        default_account_id=ACCOUNT_ID if default else None,
    )


def _record(row_number: int = 2, **overrides) -> IncomingRecord:
    values = {
        "row_number": row_number,
        "date": date(2024, 3, 1),
        "amount": Decimal("-45.00"),
        "description": "Coffee Shop",
    }
    values.update(overrides)
    return IncomingRecord(**values)


def _stored(**overrides):
    values = {
        "account_id": ACCOUNT_ID,
        "date": date(2024, 3, 1),
        "amount": Decimal("-45.00"),
        "description": "Coffee Shop",
    }
    values.update(overrides)
    return TransactionFactory.build(**values)


def _classify(records, stored, *, resolver=None, threshold=THRESHOLD, index_internal_ids=True):
    pool = CandidatePool.from_transactions(stored, index_internal_ids=index_internal_ids)
    return classify_records(records, pool, resolver or _resolver(), threshold=threshold)


class TestValidation:
    def test_zero_amount_is_skipped_regardless_of_other_fields(self) -> None:
        results, _ = _classify([_record(amount=Decimal("0.00"), external_id="ext-1")], [_stored()])
        assert results[0].action == MatchAction.SKIP
        assert results[0].skip_reason == "Invalid or zero amount"

    @pytest.mark.parametrize(
        ("overrides", "reason"),
        [
            ({"date": None, "description": ""}, "Empty row"),
            ({"date": None}, "Invalid or missing date"),
            ({"description": "   "}, "Missing required field: description"),
            ({"amount": None}, "Invalid or zero amount"),
        ],
    )
    def test_invalid_records(self, overrides, reason) -> None:
        with pytest.raises(RecordValidationError, match=reason):
            validate_record(_record(**overrides))


class TestAccountResolution:
    def test_unknown_account_name_without_default(self) -> None:
        results, _ = _classify([_record(account_name="Brokerage")], [], resolver=_resolver(default=False))
        assert results[0].action == MatchAction.SKIP
        assert results[0].skip_reason == "Account not found: 'Brokerage'"

    def test_no_account_and_no_default(self) -> None:
        results, _ = _classify([_record()], [], resolver=_resolver(default=False))
        assert results[0].skip_reason == "No account specified and no default account selected"

    def test_account_name_resolves_case_insensitively(self) -> None:
        results, _ = _classify([_record(account_name="SAVINGS")], [])
        assert results[0].action == MatchAction.CREATE
        assert results[0].account_id == OTHER_ACCOUNT_ID
        assert results[0].account_name == "Savings"


class TestExactMatch:
    def test_external_id_match_unchanged(self) -> None:
        stored = _stored(external_id="ext-1")
        results, claims = _classify([_record(external_id="ext-1")], [stored])

        result = results[0]
        assert result.action == MatchAction.UNCHANGED
        assert result.matched_transaction_id == stored.id
        assert result.confidence == Decimal("1.00")
        assert stored.id in claims

    def test_external_id_match_ignores_fuzzy_score(self) -> None:
        stored = _stored(external_id="ext-1", date=date(2024, 2, 1), description="Something else")
        results, _ = _classify([_record(external_id="ext-1")], [stored])

        assert results[0].action == MatchAction.UPDATE
        assert results[0].confidence == Decimal("1.00")
        assert results[0].changed_fields() == {"Description"}

    def test_internal_id_match(self) -> None:
        stored = _stored(description="Old label")
        results, _ = _classify([_record(internal_id=str(stored.id), description="New label")], [stored])

        assert results[0].action == MatchAction.UPDATE
        assert results[0].matched_transaction_id == stored.id

    def test_internal_id_ignored_when_not_indexed(self) -> None:
        stored = _stored(date=date(2024, 1, 1), description="Old label")
        results, _ = _classify(
            [_record(internal_id=str(stored.id), description="New label")],
            [stored],
            index_internal_ids=False,
        )
        assert results[0].action == MatchAction.CREATE

    def test_repeated_external_id_without_alternative_is_duplicate(self) -> None:
        stored = _stored(external_id="ext-1")
        results, _ = _classify(
            [_record(2, external_id="ext-1"), _record(3, external_id="ext-1")],
            [stored],
        )
        assert results[0].action == MatchAction.UNCHANGED
        assert results[1].action == MatchAction.SKIP
        assert "duplicate match" in results[1].skip_reason
        assert results[1].matched_transaction_id == stored.id

    def test_claimed_external_id_falls_through_to_internal_id(self) -> None:
        first = _stored(external_id="ext-1")
        second = _stored(description="Corner Bakery", amount=Decimal("-3.00"))
        records = [
            _record(2, external_id="ext-1"),
            _record(
                3,
                external_id="ext-1",
                internal_id=str(second.id),
                description="Corner Bakery",
                amount=Decimal("-3.00"),
            ),
        ]

        results, claims = _classify(records, [first, second])

        assert results[1].action == MatchAction.UNCHANGED
        assert results[1].matched_transaction_id == second.id
        assert results[1].confidence == Decimal("1.00")
        assert claims.ids == frozenset({first.id, second.id})

    def test_claimed_external_id_falls_through_to_fuzzy_match(self) -> None:
        first = _stored(external_id="ext-1")
        twin = _stored()
        records = [_record(2, external_id="ext-1"), _record(3, external_id="ext-1")]

        results, claims = _classify(records, [first, twin])

        assert results[0].matched_transaction_id == first.id
        assert results[1].action != MatchAction.SKIP
        assert results[1].matched_transaction_id == twin.id
        assert claims.ids == frozenset({first.id, twin.id})


class TestFuzzyMatch:
    def test_two_rows_same_target_second_is_duplicate(self) -> None:
        stored = _stored()
        records = [_record(2, notes="team lunch"), _record(3, notes="team lunch")]

        results, claims = _classify(records, [stored])

        assert results[0].action == MatchAction.UPDATE
        assert results[0].changed_fields() == {"Notes"}
        assert results[1].action == MatchAction.SKIP
        assert results[1].skip_reason == (
            "Skipped as duplicate match: another row already matched transaction 'Coffee Shop'"
        )
        assert claims.ids == frozenset({stored.id})

    def test_second_row_takes_next_unclaimed_candidate(self) -> None:
        first = _stored()
        second = _stored()
        results, claims = _classify([_record(2), _record(3)], [first, second])

        assert [r.action for r in results] == [MatchAction.UNCHANGED, MatchAction.UNCHANGED]
        assert results[0].matched_transaction_id == first.id
        assert results[1].matched_transaction_id == second.id
        assert len(claims) == 2

    def test_tie_goes_to_first_loaded_candidate(self) -> None:
        first = _stored(date=date(2024, 3, 2))
        second = _stored(date=date(2024, 2, 29))
        results, _ = _classify([_record()], [first, second])
        assert results[0].matched_transaction_id == first.id

    def test_higher_score_beats_load_order(self) -> None:
        near = _stored(date=date(2024, 3, 2))
        exact = _stored()
        results, _ = _classify([_record()], [near, exact])
        assert results[0].matched_transaction_id == exact.id
        assert results[0].confidence == Decimal("1.00")

    def test_fuzzy_match_stays_within_resolved_account(self) -> None:
        elsewhere = _stored(account_id=OTHER_ACCOUNT_ID)
        results, _ = _classify([_record()], [elsewhere])
        assert results[0].action == MatchAction.CREATE

    def test_description_drift_is_update(self) -> None:
        stored = _stored(date=date(2024, 3, 1), description="AMAZON.COM*1234")
        record = _record(date=date(2024, 3, 2), description="Amazon.com", merchant="Amazon")

        results, _ = _classify([record], [stored])

        result = results[0]
        assert result.action == MatchAction.UPDATE
        assert result.confidence == Decimal("0.79")
        assert [(c.field, c.from_value, c.to_value) for c in result.changes] == [
            ("Description", "AMAZON.COM*1234", "Amazon.com"),
            ("Merchant", "(none)", "Amazon"),
        ]

    def test_unrelated_descriptions_create(self) -> None:
        stored = _stored(description="AMZN MKTP US*1234")
        record = _record(date=date(2024, 3, 2), description="Amazon.com", merchant="Amazon")

        results, claims = _classify([record], [stored])

        assert results[0].action == MatchAction.CREATE
        assert len(claims) == 0

    def test_custom_threshold(self) -> None:
        stored = _stored(amount=Decimal("-45.30"))
        record = _record()

        loose, _ = _classify([record], [stored])
        strict, _ = _classify([record], [stored], threshold=Decimal("0.90"))

        assert loose[0].action == MatchAction.UPDATE
        assert loose[0].confidence == Decimal("0.80")
        assert strict[0].action == MatchAction.CREATE

    def test_threshold_is_inclusive(self) -> None:
        stored = _stored(description="abcdefghijklmnopqrstuvwxyz12")
        results, _ = _classify([_record(description="abcd")], [stored])
        assert results[0].action == MatchAction.UPDATE
        assert results[0].confidence == Decimal("0.70")


class TestDiff:
    def test_missing_optional_fields_do_not_count(self) -> None:
        stored = _stored(merchant_name="Blue Bottle", notes="weekly", category_id=DINING_ID)
        assert diff_fields(_record(), None, stored) == []

    def test_amount_change_reported(self) -> None:
        stored = _stored(amount=Decimal("-45.00"))
        changes = diff_fields(_record(amount=Decimal("-45.30")), None, stored)
        assert [(c.field, c.from_value, c.to_value) for c in changes] == [("Amount", "-45.00", "-45.30")]

    def test_category_change_uses_labels(self) -> None:
        stored = _stored()
        changes = diff_fields(_record(category_name="Dining"), DINING_ID, stored)
        assert [(c.field, c.from_value, c.to_value) for c in changes] == [("Category", "(none)", "Dining")]

        recategorized = _stored(category_id=uuid4())
        changes = diff_fields(_record(category_name="Dining"), DINING_ID, recategorized)
        assert changes[0].from_value == "(existing)"


class TestWarnings:
    def test_unknown_category_warns_and_continues(self) -> None:
        results, _ = _classify([_record(category_name="Travel")], [])
        assert results[0].action == MatchAction.CREATE
        assert results[0].category_id is None
        assert results[0].warnings == ["Category not found: 'Travel', will be left uncategorized"]

    def test_category_path_resolves_leaf(self) -> None:
        results, _ = _classify([_record(category_name="Food > Dining")], [])
        assert results[0].category_id == DINING_ID
        assert results[0].warnings == []

    def test_record_warnings_are_carried(self) -> None:
        results, _ = _classify([_record(warnings=("Pending transaction, may change or be removed",))], [])
        assert results[0].warnings == ["Pending transaction, may change or be removed"]


def test_claim_set_rejects_second_claim() -> None:
    stored = _stored()
    claims = ClaimSet()
    claims.claim(stored)
    with pytest.raises(DuplicateClaimError):
        claims.claim(stored)


def test_existing_claims_are_respected() -> None:
    stored = _stored()
    pool = CandidatePool.from_transactions([stored])
    results, claims = classify_records(
        [_record()], pool, _resolver(), threshold=THRESHOLD, claims=ClaimSet([stored.id])
    )
    assert results[0].action == MatchAction.SKIP
    assert len(claims) == 1


def test_summarize_counts_every_action() -> None:
    stored = _stored(external_id="ext-1")
    records = [
        _record(2, external_id="ext-1"),
        _record(3, description="Bookshop", date=date(2024, 1, 1)),
        _record(4, amount=Decimal("0")),
    ]
    results, _ = _classify(records, [stored])
    assert summarize(results) == {"create": 1, "update": 0, "unchanged": 1, "skip": 1}
