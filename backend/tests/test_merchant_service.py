"""Tests for the merchant backfill job."""

import json
from decimal import Decimal

import pytest

from conftest import FakeLLMClient
from ledgerlens.models.transaction import Transaction
from ledgerlens.services.llm_client import LLMError
from ledgerlens.services.merchant_service import backfill_merchants, build_merchant_prompt
from ledgerlens.scripts.backfill_merchants import parse_args


def test_prompt_contains_ids_and_names(make_transaction):
    tx = make_transaction(transaction_name="GRAB* A-5XYZ", merchant=None)
    prompt = build_merchant_prompt([tx])
    assert str(tx.id) in prompt
    assert "GRAB* A-5XYZ" in prompt


def test_fills_identified_merchants_only(db, make_transaction):
    grab = make_transaction(transaction_name="GRAB* A-5XYZ", merchant=None)
    unknown = make_transaction(transaction_name="TRSF 0192", merchant=None, amount=Decimal("1"))
    named = make_transaction(transaction_name="KFC", merchant="KFC", amount=Decimal("2"))
    llm = FakeLLMClient(json.dumps({str(grab.id): "Grab", str(unknown.id): None}))

    summary = backfill_merchants(db, llm)

    assert summary == {"processed": 2, "updated": 1, "failed_batches": 0}
    db.expire_all()
    assert db.get(Transaction, grab.id).merchant == "Grab"
    assert db.get(Transaction, unknown.id).merchant is None
    assert db.get(Transaction, named.id).merchant == "KFC"


def test_failed_batch_does_not_stop_the_run(db, make_transaction):
    first = make_transaction(transaction_name="A", merchant=None, amount=Decimal("1"))
    second = make_transaction(transaction_name="B", merchant=None, amount=Decimal("2"))
    # Answers naming both rows; only the row of the current batch may change
    llm = FakeLLMClient(LLMError("quota"), json.dumps({str(first.id): "Shop", str(second.id): "Shop"}))

    summary = backfill_merchants(db, llm, batch_size=1)

    assert summary == {"processed": 2, "updated": 1, "failed_batches": 1}
    assert len(llm.calls) == 2
    db.expire_all()
    merchants = sorted(str(db.get(Transaction, t.id).merchant) for t in (first, second))
    assert merchants == ["None", "Shop"]


def test_nothing_to_do(db):
    assert backfill_merchants(db, FakeLLMClient("{}")) == {"processed": 0, "updated": 0, "failed_batches": 0}


def test_scoped_to_one_user(db, user, other_user, make_transaction):
    mine = make_transaction(merchant=None)
    make_transaction(owner=other_user, merchant=None)
    llm = FakeLLMClient(json.dumps({str(mine.id): "Starbucks"}))

    summary = backfill_merchants(db, llm, user_id=user.id)

    assert summary["processed"] == 1
    assert summary["updated"] == 1


def test_batch_size_must_be_positive(db, make_transaction):
    make_transaction(merchant=None)
    with pytest.raises(ValueError, match="batch_size"):
        backfill_merchants(db, FakeLLMClient("{}"), batch_size=0)


@pytest.mark.parametrize("value", ["0", "-3", "abc"])
def test_cli_rejects_non_positive_batch_size(value):
    with pytest.raises(SystemExit):
        parse_args(["--batch-size", value])


def test_cli_defaults():
    args = parse_args([])
    assert args.batch_size == 50
    assert args.user_id is None
