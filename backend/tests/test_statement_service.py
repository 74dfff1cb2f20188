"""Tests for the statement lifecycle and the extraction pipeline."""

from decimal import Decimal

import pytest
from fastapi import HTTPException

from conftest import FakeLLMClient, gemini_text
from ledgerlens.models.enrichment_log import EnrichmentLog
from ledgerlens.models.statement import Statement
from ledgerlens.models.transaction import Transaction
from ledgerlens.services.llm_client import LLMError
from ledgerlens.services.statement_service import (
    StatusTransitionError,
    can_transition,
    create_statement,
    delete_statement,
    mark_for_retry,
    run_statement_processing,
    update_statement_status,
    upload_statement_file,
)
from ledgerlens.services.storage_service import StorageError


EXTRACTED = [
    {"date": "2025-01-02", "amount": 1500000, "transaction_name": "SALARY", "type": "income"},
    {"date": "2025-01-03", "amount": "55000.00", "transaction_name": "QRIS STARBUCKS", "type": "DB"},
    {"date": "2025-01-04", "amount": 200000, "transaction_name": "CC PAYMENT", "type": "transfer"},
]


class BrokenStorage:
    def upload(self, path, content, content_type):
        raise StorageError("bucket unavailable")


class TestTransitions:

    @pytest.mark.parametrize(
        "current,new",
        [
            ("draft", "processing"),
            ("processing", "parsed"),
            ("processing", "failed"),
            ("failed", "processing"),
        ],
    )
    def test_allowed(self, current, new):
        assert can_transition(current, new)

    @pytest.mark.parametrize(
        "current,new",
        [
            ("draft", "parsed"),
            ("draft", "failed"),
            ("parsed", "processing"),
            ("parsed", "failed"),
            ("failed", "parsed"),
            ("processing", "draft"),
        ],
    )
    def test_forbidden(self, db, make_statement, current, new):
        statement = make_statement(status=current)
        with pytest.raises(StatusTransitionError):
            update_statement_status(db, statement, new)
        db.refresh(statement)
        assert statement.status == current

    def test_parsed_stamps_parsed_at(self, db, make_statement):
        statement = make_statement(status="processing")
        assert statement.parsed_at is None

        update_statement_status(db, statement, "parsed")

        assert statement.parsed_at is not None


class TestCrud:

    def test_create_strips_name_and_starts_in_draft(self, db, user):
        statement = create_statement(db, user.id, "  BCA Jan  ")
        assert statement.name == "BCA Jan"
        assert statement.status == "draft"

    def test_blank_name_is_rejected(self, db, user):
        with pytest.raises(HTTPException) as exc:
            create_statement(db, user.id, "   ")
        assert exc.value.status_code == 400

    def test_delete_removes_children_and_blob(self, db, user, storage, make_statement, make_transaction):
        storage.upload("s/1.pdf", b"%PDF", "application/pdf")
        statement = make_statement(bank_statement_url="s/1.pdf", status="parsed")
        make_transaction(statement=statement)
        db.add(EnrichmentLog(statement_id=statement.id, enrichment_summary="Matched 1 receipt"))
        db.commit()

        delete_statement(db, statement.id, user.id, storage=storage)

        assert db.query(Statement).count() == 0
        assert db.query(Transaction).count() == 0
        assert db.query(EnrichmentLog).count() == 0
        with pytest.raises(StorageError):
            storage.download("s/1.pdf")

    def test_delete_other_users_statement_is_404(self, db, other_user, make_statement):
        statement = make_statement()
        with pytest.raises(HTTPException) as exc:
            delete_statement(db, statement.id, other_user.id)
        assert exc.value.status_code == 404


class TestUpload:

    def test_upload_stores_file_and_sets_processing(self, db, storage, make_statement):
        statement = make_statement()

        upload_statement_file(db, statement, "jan.PDF", b"%PDF-1.4", "application/pdf", storage)

        assert statement.status == "processing"
        assert statement.bank_statement_url.startswith(f"{statement.id}/")
        assert statement.bank_statement_url.endswith(".pdf")
        assert storage.download(statement.bank_statement_url)[0] == b"%PDF-1.4"

    def test_storage_failure_marks_failed(self, db, make_statement):
        statement = make_statement()

        with pytest.raises(StorageError):
            upload_statement_file(db, statement, "jan.pdf", b"%PDF", "application/pdf", BrokenStorage())

        db.refresh(statement)
        assert statement.status == "failed"
        assert statement.bank_statement_url is None

    @pytest.mark.parametrize(
        "filename,content,content_type",
        [
            ("jan.txt", b"hello", "text/plain"),
            ("jan.pdf", b"", "application/pdf"),
        ],
    )
    def test_rejected_files_leave_draft(self, db, storage, make_statement, filename, content, content_type):
        statement = make_statement()
        with pytest.raises(HTTPException) as exc:
            upload_statement_file(db, statement, filename, content, content_type, storage)
        assert exc.value.status_code == 400
        assert statement.status == "draft"

    def test_retry_requires_failed_and_a_file(self, db, make_statement):
        no_file = make_statement(status="failed")
        with pytest.raises(HTTPException):
            mark_for_retry(db, no_file)

        parsed = make_statement(status="parsed", bank_statement_url="x/1.pdf")
        with pytest.raises(StatusTransitionError):
            mark_for_retry(db, parsed)

        failed = make_statement(status="failed", bank_statement_url="x/2.pdf")
        assert mark_for_retry(db, failed).status == "processing"


class TestPipeline:

    def _uploaded(self, db, storage, make_statement):
        statement = make_statement()
        upload_statement_file(db, statement, "jan.png", b"\x89PNG", "image/png", storage)
        return statement

    def test_success_saves_rows_and_marks_parsed(self, db, storage, make_statement):
        statement = self._uploaded(db, storage, make_statement)
        llm = FakeLLMClient(gemini_text(EXTRACTED))

        result = run_statement_processing(statement.id, llm, storage)

        assert result == {"success": True, "count": 3}
        db.refresh(statement)
        assert statement.status == "parsed"
        assert statement.parsed_at is not None

        rows = {t.transaction_name: t for t in db.query(Transaction).all()}
        assert rows["SALARY"].type == "income"
        assert rows["QRIS STARBUCKS"].type == "expense"
        assert rows["QRIS STARBUCKS"].amount == Decimal("55000")
        assert rows["CC PAYMENT"].type == "internal_transfer"

        image = llm.calls[0]["images"][0]
        assert image["mime_type"] == "image/png"
        assert image["data"] == "iVBORw=="

    def test_reprocessing_overlapping_statement_inserts_only_new_rows(self, db, storage, make_statement):
        first = self._uploaded(db, storage, make_statement)
        run_statement_processing(first.id, FakeLLMClient(gemini_text(EXTRACTED)), storage)

        second = self._uploaded(db, storage, make_statement)
        overlap = EXTRACTED[1:] + [{"date": "2025-01-05", "amount": 1, "transaction_name": "NEW"}]
        result = run_statement_processing(second.id, FakeLLMClient(gemini_text(overlap)), storage)

        assert result == {"success": True, "count": 1}
        assert db.query(Transaction).count() == 4

    @pytest.mark.parametrize(
        "answer",
        [
            "Sorry, I cannot read this document.",
            gemini_text([]),
            "[{'broken': }]",
            LLMError("LLM API error 500"),
        ],
    )
    def test_any_failure_marks_failed(self, db, storage, make_statement, answer):
        statement = self._uploaded(db, storage, make_statement)

        result = run_statement_processing(statement.id, FakeLLMClient(answer), storage)

        assert "error" in result
        db.refresh(statement)
        assert statement.status == "failed"
        assert db.query(Transaction).count() == 0

    def test_missing_file_marks_failed(self, db, storage, make_statement):
        statement = make_statement(status="processing", bank_statement_url=None)

        result = run_statement_processing(statement.id, FakeLLMClient(gemini_text(EXTRACTED)), storage)

        assert result == {"error": "No bank statement file found"}
        db.refresh(statement)
        assert statement.status == "failed"

    def test_failed_statement_can_be_retried(self, db, storage, make_statement):
        statement = self._uploaded(db, storage, make_statement)
        run_statement_processing(statement.id, FakeLLMClient("no json here"), storage)
        db.refresh(statement)
        assert statement.status == "failed"

        mark_for_retry(db, statement)
        result = run_statement_processing(statement.id, FakeLLMClient(gemini_text(EXTRACTED)), storage)

        assert result["success"] is True
        db.refresh(statement)
        assert statement.status == "parsed"
