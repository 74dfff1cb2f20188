"""Tests for receipt ingestion and reconciliation."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledgerlens.models.transaction import Transaction
from ledgerlens.schemas.receipt import ReceiptPayload
from ledgerlens.services.receipt_service import (
    find_reconciliation_match,
    ingest_receipts,
    normalize_receipt_payload,
)


def _receipt(**overrides):
    data = {
        "date": "2025-01-12",
        "amount": 55000,
        "external_id": "rcpt-1",
        "merchant": "Starbucks",
    }
    data.update(overrides)
    return data


def _receipt_rows(db):
    return db.query(Transaction).filter(Transaction.source == "receipt").all()


class TestNormalizePayload:

    def test_shapes(self):
        one = {"external_id": "a"}
        assert normalize_receipt_payload([one]) == [one]
        assert normalize_receipt_payload({"receipts": [one]}) == [one]
        assert normalize_receipt_payload(one) == [one]


class TestIngestion:

    def test_unmatched_receipt_is_pending(self, db, user):
        result = ingest_receipts(db, _receipt(), user_id=user.id)

        assert result == {"total": 1, "success": 1, "failed": 0, "duplicates": 0, "errors": []}
        row = _receipt_rows(db)[0]
        assert row.status == "pending"
        assert row.match_id is None
        assert row.statement_id is None
        assert row.transaction_name == "Starbucks"
        assert row.currency == "IDR"
        assert row.category == "Uncategorized"
        assert row.type == "expense"

    def test_same_external_id_is_idempotent(self, db, user):
        ingest_receipts(db, _receipt(), user_id=user.id)
        result = ingest_receipts(db, _receipt(amount=99), user_id=user.id)

        assert result["duplicates"] == 1
        assert result["success"] == 0
        assert len(_receipt_rows(db)) == 1

    def test_repeated_id_within_one_payload(self, db, user):
        result = ingest_receipts(db, {"receipts": [_receipt(), _receipt()]}, user_id=user.id)

        assert (result["success"], result["duplicates"]) == (1, 1)
        assert len(_receipt_rows(db)) == 1

    def test_statement_row_external_id_does_not_block_receipt(self, db, user, make_transaction):
        make_transaction(external_id="rcpt-1", amount=Decimal("1"))

        result = ingest_receipts(db, _receipt(), user_id=user.id)

        assert result["success"] == 1
        assert len(_receipt_rows(db)) == 1

    def test_external_id_is_scoped_per_user(self, db, user, other_user):
        ingest_receipts(db, _receipt(), user_id=user.id)
        result = ingest_receipts(db, _receipt(), user_id=other_user.id)
        assert result["success"] == 1

    def test_missing_fields_are_reported_per_row(self, db, user):
        body = [
            _receipt(external_id="ok"),
            _receipt(external_id="no-date", date=None),
            _receipt(external_id="zero", amount=0),
            _receipt(external_id=None),
        ]
        result = ingest_receipts(db, body, user_id=user.id)

        assert (result["total"], result["success"], result["failed"]) == (4, 1, 3)
        assert [e["error"] for e in result["errors"]] == ["Missing required fields"] * 3
        assert [e["external_id"] for e in result["errors"]] == ["no-date", "zero", None]

    def test_unauthenticated_rows_need_user_id(self, db, user):
        result = ingest_receipts(db, [_receipt(), _receipt(external_id="r2", user_id=str(user.id))])

        assert (result["success"], result["failed"]) == (1, 1)
        assert result["errors"] == [{"external_id": "rcpt-1", "error": "Missing user_id"}]

    def test_invalid_row_does_not_abort_batch(self, db, user):
        result = ingest_receipts(db, [_receipt(date="not a date"), _receipt(external_id="r2")], user_id=user.id)

        assert (result["success"], result["failed"]) == (1, 1)
        assert result["errors"][0]["error"].startswith("Invalid receipt")

    def test_items_are_serialized_into_notes(self, db, user):
        ingest_receipts(db, _receipt(items=[{"name": "Latte", "qty": 1}], notes="table 4"), user_id=user.id)
        row = _receipt_rows(db)[0]
        assert row.notes == 'Items: [{"name": "Latte", "qty": 1}]\ntable 4'

    def test_numeric_external_id_is_stored_as_string(self, db, user):
        result = ingest_receipts(db, _receipt(external_id=8842), user_id=user.id)

        assert result["success"] == 1
        assert _receipt_rows(db)[0].external_id == "8842"

        again = ingest_receipts(db, _receipt(external_id="8842"), user_id=user.id)
        assert again["duplicates"] == 1

    def test_receipt_without_merchant(self, db, user):
        ingest_receipts(db, _receipt(merchant=None), user_id=user.id)
        assert _receipt_rows(db)[0].transaction_name == "Receipt"


class TestReconciliation:

    def test_match_within_window_marks_duplicate(self, db, user, make_transaction):
        statement_row = make_transaction(date=date(2025, 1, 10), merchant=None)

        result = ingest_receipts(db, _receipt(date="2025-01-13"), user_id=user.id)

        assert result["success"] == 1
        receipt = _receipt_rows(db)[0]
        assert receipt.status == "duplicate"
        assert receipt.match_id == statement_row.id

    def test_timestamped_receipt_matches_by_calendar_day(self, db, user, make_transaction):
        statement_row = make_transaction(date=date(2025, 1, 10))

        result = ingest_receipts(db, _receipt(date="2025-01-12T10:30:00+07:00"), user_id=user.id)

        assert (result["success"], result["failed"]) == (1, 0)
        receipt = _receipt_rows(db)[0]
        assert receipt.date == date(2025, 1, 12)
        assert receipt.match_id == statement_row.id

    def test_merchant_is_backfilled_onto_statement_row(self, db, user, make_transaction):
        statement_row = make_transaction(merchant=None)

        ingest_receipts(db, _receipt(), user_id=user.id)

        db.refresh(statement_row)
        assert statement_row.merchant == "Starbucks"

    def test_existing_merchant_is_not_overwritten(self, db, user, make_transaction):
        statement_row = make_transaction(merchant="SBUX Grand Indonesia")

        ingest_receipts(db, _receipt(), user_id=user.id)

        db.refresh(statement_row)
        assert statement_row.merchant == "SBUX Grand Indonesia"

    @pytest.mark.parametrize("receipt_date", ["2025-01-06", "2025-01-14"])
    def test_outside_window_stays_pending(self, db, user, make_transaction, receipt_date):
        make_transaction(date=date(2025, 1, 10))

        ingest_receipts(db, _receipt(date=receipt_date), user_id=user.id)

        assert _receipt_rows(db)[0].status == "pending"

    def test_amount_must_be_equal(self, db, user, make_transaction):
        make_transaction(amount=Decimal("55000"))
        ingest_receipts(db, _receipt(amount=55001), user_id=user.id)
        assert _receipt_rows(db)[0].status == "pending"

    def test_only_statement_rows_are_candidates(self, db, user, make_transaction):
        make_transaction(source="receipt", external_id="earlier")
        ingest_receipts(db, _receipt(), user_id=user.id)

        newest = db.query(Transaction).filter(Transaction.external_id == "rcpt-1").one()
        assert newest.status == "pending"

    def test_statement_row_is_matched_at_most_once(self, db, user, make_transaction):
        statement_row = make_transaction()

        ingest_receipts(db, [_receipt(external_id="a"), _receipt(external_id="b")], user_id=user.id)

        rows = {r.external_id: r for r in _receipt_rows(db)}
        assert rows["a"].match_id == statement_row.id
        assert rows["b"].status == "pending"
        assert rows["b"].match_id is None

    def test_earliest_created_candidate_wins(self, db, user, make_transaction):
        now = datetime.now(timezone.utc)
        later = make_transaction(transaction_name="later", created_at=now)
        earlier = make_transaction(transaction_name="earlier", created_at=now - timedelta(hours=1))

        match = find_reconciliation_match(
            db,
            user.id,
            ReceiptPayload(date=date(2025, 1, 10), amount=Decimal("55000"), external_id="x"),
        )

        assert match.id == earlier.id
        assert match.id != later.id

    def test_other_users_rows_are_never_matched(self, db, user, other_user, make_transaction):
        make_transaction(owner=other_user)
        ingest_receipts(db, _receipt(), user_id=user.id)
        assert _receipt_rows(db)[0].status == "pending"
