# ledgerlens/services/extraction_service.py

import logging
from typing import Any, Dict, List, Optional

from ledgerlens.services.llm_client import GeminiClient, LLMResponseError, extract_json_array

logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = """Extract ALL transactions from the bank statement image. For each transaction, extract the following fields:

- date: Transaction date (YYYY-MM-DD format)
- amount: Transaction amount (numeric value only, without currency symbol)
- currency: Currency code (e.g., IDR, USD)
- merchant: Merchant or business name (e.g., "Grab", "Tokopedia", "Starbucks", etc.). Extract the actual merchant/vendor name if visible, otherwise use null
- transaction_name: Name/description of the transaction
- reference_id: Reference or transaction ID (null if not available)
- category: Transaction category (e.g., Food, Transport, Shopping, etc.)
- type: Transaction type - "expense" for debit transactions (contains 'DB' or represents money going out), "income" for credit transactions (contains 'CR' or represents money coming in), "internal_transfer" for moving money between own accounts (e.g. credit card payments), or "external_transfer" for transfers to other people
- notes: Additional notes or details about the transaction

Return the result as a JSON array of transaction objects. Ensure all transactions are captured from the statement."""


def extract_transactions(
    client: GeminiClient,
    images: List[Dict[str, Any]],
    prompt: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Ask the model for the transactions in one or more statement images.

    The first [...] block of the answer is parsed as JSON. Objects are
    returned as-is; field coercion happens when they are saved.

    Raises:
        LLMError: Transport or HTTP failure
        LLMResponseError: No text, no array, invalid JSON, or an empty result
    """
    text = client.generate_text(prompt or EXTRACTION_PROMPT, images)

    try:
        parsed = extract_json_array(text)
    except LLMResponseError as e:
        raise LLMResponseError(f"Failed to parse transactions from Gemini response: {e}") from e

    if not isinstance(parsed, list):
        raise LLMResponseError("Gemini response is not a JSON array")

    transactions = [row for row in parsed if isinstance(row, dict)]
    if not transactions:
        raise LLMResponseError("No transactions found in the statement")

    logger.info(f"Extracted {len(transactions)} transactions")
    return transactions
