"""Fingerprint hashing utilities for deduplication."""
import hashlib
from datetime import date
from decimal import Decimal


def compute_fingerprint(
    transaction_date: date,
    amount: Decimal | float | int,
    transaction_name: str | None,
) -> str:
    """
    Compute the SHA-256 fingerprint of a transaction.

    The fingerprint only covers date, amount and name, so the same movement
    extracted twice (re-uploaded statement, overlapping statements) hashes to
    the same value regardless of which statement it came from.

    Normalization:
    - transaction_date as YYYY-MM-DD
    - amount to 2 decimals (150000 and 150000.00 hash the same)
    - name stripped and upper-cased

    Because of this normalization the hashes do not equal fingerprints
    taken over the raw "date|amount|transaction_name" strings, so rows
    imported with such fingerprints will not dedupe against new ones
    until they are recomputed.

    Returns:
        64-character hex string (SHA-256)
    """
    if not isinstance(transaction_date, date):
        raise ValueError(f"transaction_date must be a date, got: {type(transaction_date)}")

    name_norm = (transaction_name or "").strip().upper()

    if isinstance(amount, Decimal):
        amount_str = f"{amount.quantize(Decimal('0.00'))}"
    else:
        amount_str = f"{Decimal(str(amount)).quantize(Decimal('0.00'))}"

    # Format: YYYY-MM-DD|amount|NAME
    hash_input = f"{transaction_date.isoformat()}|{amount_str}|{name_norm}"

    return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()


def compute_file_hash(file_content: bytes) -> str:
    """Return SHA-256 hex digest for file content."""
    return hashlib.sha256(file_content).hexdigest()
