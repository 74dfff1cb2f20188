"""Tests for transaction fingerprints."""

import hashlib
from datetime import date
from decimal import Decimal

import pytest

from ledgerlens.utils.hash_helpers import compute_file_hash, compute_fingerprint


class TestComputeFingerprint:
    """Test fingerprint normalization."""

    def test_matches_sha256_of_normalized_key(self):
        """Should hash YYYY-MM-DD|amount|NAME."""
        expected = hashlib.sha256("2025-01-10|55000.00|QRIS STARBUCKS".encode("utf-8")).hexdigest()
        assert compute_fingerprint(date(2025, 1, 10), Decimal("55000"), "QRIS STARBUCKS") == expected

    def test_differs_from_raw_string_hash(self):
        """Normalized fingerprints do not equal hashes of the raw values."""
        raw = hashlib.sha256("2025-01-10|55000|Qris Starbucks".encode("utf-8")).hexdigest()
        assert compute_fingerprint(date(2025, 1, 10), 55000, "Qris Starbucks") != raw

    def test_amount_precision_does_not_matter(self):
        """150000, 150000.0 and Decimal('150000.00') hash the same."""
        d = date(2025, 1, 10)
        a = compute_fingerprint(d, 150000, "Transfer")
        b = compute_fingerprint(d, 150000.0, "Transfer")
        c = compute_fingerprint(d, Decimal("150000.00"), "Transfer")
        assert a == b == c

    def test_name_is_case_and_whitespace_insensitive(self):
        d = date(2025, 1, 10)
        assert compute_fingerprint(d, 10, "  grab food ") == compute_fingerprint(d, 10, "GRAB FOOD")

    def test_missing_name_hashes_as_empty(self):
        d = date(2025, 1, 10)
        assert compute_fingerprint(d, 10, None) == compute_fingerprint(d, 10, "")

    def test_any_component_changes_the_hash(self):
        base = compute_fingerprint(date(2025, 1, 10), 10, "A")
        assert compute_fingerprint(date(2025, 1, 11), 10, "A") != base
        assert compute_fingerprint(date(2025, 1, 10), 11, "A") != base
        assert compute_fingerprint(date(2025, 1, 10), 10, "B") != base

    def test_is_hex_sha256(self):
        fp = compute_fingerprint(date(2025, 1, 10), 10, "A")
        assert len(fp) == 64
        int(fp, 16)

    def test_rejects_non_date(self):
        with pytest.raises(ValueError, match="must be a date"):
            compute_fingerprint("2025-01-10", 10, "A")


def test_compute_file_hash():
    assert compute_file_hash(b"statement") == hashlib.sha256(b"statement").hexdigest()
